"""Runtime configuration for the kbchat services."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_EXTENSIONS: tuple[str, ...] = (".pdf", ".docx", ".txt", ".md")

# Model name and vector dimension used when the provider is chosen without them.
_EMBEDDING_DEFAULTS: dict[str, tuple[str, int]] = {
    "hash": ("text-embedding-3-large", 3072),
    "openai": ("text-embedding-3-large", 3072),
    "huggingface": ("BAAI/bge-small-en-v1.5", 384),
}


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="kbchat_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"

    # Chunking
    chunk_size: int = 600
    chunk_overlap: int = 50

    # Retrieval
    similarity_threshold: float = 0.7
    top_k: int = 5
    max_top_k: int = 20

    # Embeddings; the dimension must match the vector collection.
    # Model and dimension default per provider when left unset.
    embedding_provider: Literal["hash", "openai", "huggingface"] = "hash"
    embedding_model: str | None = None
    embedding_dim: int | None = None

    # Completion
    completion_provider: Literal["template", "openai"] = "template"
    completion_model: str = "gpt-4o-mini"
    temperature: float = 0.1
    max_tokens: int = 1000

    openai_api_key: str | None = None
    openai_base_url: str | None = None

    # Vector store
    chroma_persist_dir: Path = Path("./.chroma")
    chroma_collection: str = "kb_chatbot"
    chroma_host: str | None = None
    chroma_port: int | None = None
    chroma_ssl: bool = False
    distance_metric: Literal["cosine"] = "cosine"

    # Chat history
    log_capacity: int = 1000
    logs_max_page_size: int = 100
    allow_client_session_ids: bool = True

    # Retrieval evaluation gates
    evaluation_min_recall: float = 0.5
    evaluation_min_mrr: float = 0.5

    # Uploads
    allowed_extensions: tuple[str, ...] | str = _DEFAULT_EXTENSIONS
    max_upload_size_mb: int = 50

    # CORS
    cors_allow_origins: tuple[str, ...] = ()
    cors_allow_credentials: bool = False
    cors_allow_methods: tuple[str, ...] = ("GET", "POST", "DELETE", "OPTIONS")
    cors_allow_headers: tuple[str, ...] = ("*",)

    # Security
    api_key: str | None = None  # if set, required in X-API-Key header

    @model_validator(mode="after")
    def resolve_provider_defaults(self) -> "Settings":
        model, dim = _EMBEDDING_DEFAULTS[self.embedding_provider]
        if self.embedding_model is None:
            self.embedding_model = model
        if self.embedding_dim is None:
            self.embedding_dim = dim
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(f"chunk_overlap ({self.chunk_overlap}) must be smaller than chunk_size ({self.chunk_size})")
        return self

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    @property
    def allowed_extensions_tuple(self) -> tuple[str, ...]:
        value = self.allowed_extensions
        if isinstance(value, tuple):
            return value
        parts = [p.strip().lower() for p in value.split(",") if p.strip()]
        normalized = tuple(p if p.startswith(".") else f".{p}" for p in parts)
        return normalized or _DEFAULT_EXTENSIONS

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
