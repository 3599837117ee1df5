"""Embedding backends for kbchat."""

from __future__ import annotations

import asyncio
import hashlib
import math
from dataclasses import dataclass
from typing import List, Protocol, Sequence, Tuple

import openai
from langchain_core.embeddings import Embeddings as LangChainEmbeddings

from kbchat.config import Settings
from kbchat.errors import EmbeddingError
from kbchat.metrics.observability import get_logger

Vector = Tuple[float, ...]

_LOGGER = get_logger("embeddings")

# Per-request input cap of the OpenAI embeddings endpoint.
_OPENAI_BATCH_LIMIT = 2048


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for embedding backends."""

    model: str = "text-embedding-3-large"
    dim: int = 3072
    normalize: bool = True
    device: str | None = None
    cache_folder: str | None = None


class EmbeddingBackend(Protocol):
    """Converts text into fixed-length vectors."""

    @property
    def dimension(self) -> int:
        """Length of every vector this backend returns."""

    async def embed(self, text: str) -> Vector:
        """Return the embedding vector for a single text."""

    async def embed_batch(self, texts: Sequence[str]) -> List[Vector]:
        """Return one vector per input, in input order."""


def _normalize(vector: Sequence[float]) -> Vector:
    norm = math.sqrt(sum(value * value for value in vector)) or 1.0
    return tuple(value / norm for value in vector)


def _check_batch(vectors: Sequence[Sequence[float]], expected: int, provider: str) -> None:
    if len(vectors) != expected:
        raise EmbeddingError(
            f"Embedding backend returned {len(vectors)} vectors for {expected} inputs",
            provider_name=provider,
        )
    dims = {len(vector) for vector in vectors}
    if len(dims) > 1:
        raise EmbeddingError(f"Embedding backend returned mixed dimensions {sorted(dims)}", provider_name=provider)


class HashEmbeddingBackend:
    """Deterministic lightweight embedding used for tests and offline runs."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()

    @property
    def dimension(self) -> int:
        return self._config.dim

    def _hash_to_vector(self, text: str) -> Vector:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        repeat = (self._config.dim + len(digest) - 1) // len(digest)
        raw = (digest * repeat)[: self._config.dim]
        vector = [byte / 255.0 for byte in raw]
        if self._config.normalize:
            return _normalize(vector)
        return tuple(vector)

    async def embed(self, text: str) -> Vector:
        return self._hash_to_vector(text)

    async def embed_batch(self, texts: Sequence[str]) -> List[Vector]:
        return [self._hash_to_vector(text) for text in texts]


class OpenAIEmbeddingBackend:
    """Embedding backend calling an OpenAI-compatible embeddings API."""

    provider_name = "openai"

    def __init__(
        self,
        config: EmbeddingConfig | None = None,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        client: openai.AsyncOpenAI | None = None,
    ) -> None:
        self._config = config or EmbeddingConfig()
        if client is None:
            client_kwargs: dict[str, str] = {}
            if api_key:
                client_kwargs["api_key"] = api_key
            if base_url:
                client_kwargs["base_url"] = base_url
            client = openai.AsyncOpenAI(**client_kwargs)
        self._client = client

    @property
    def dimension(self) -> int:
        return self._config.dim

    async def embed(self, text: str) -> Vector:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> List[Vector]:
        if not texts:
            return []
        vectors: List[Vector] = []
        try:
            for start in range(0, len(texts), _OPENAI_BATCH_LIMIT):
                batch = list(texts[start : start + _OPENAI_BATCH_LIMIT])
                response = await self._client.embeddings.create(model=self._config.model, input=batch)
                vectors.extend(tuple(item.embedding) for item in response.data)
                _LOGGER.info(
                    "embedding.batch",
                    model=self._config.model,
                    batch_size=len(batch),
                    tokens=response.usage.total_tokens if response.usage else None,
                )
        except openai.OpenAIError as exc:
            raise EmbeddingError(f"Embedding request failed: {exc}", provider_name=self.provider_name) from exc
        _check_batch(vectors, len(texts), self.provider_name)
        return vectors


class HuggingFaceEmbeddingBackend:
    """Local sentence-embedding model loaded through LangChain."""

    provider_name = "huggingface"

    def __init__(self, config: EmbeddingConfig | None = None, *, client: LangChainEmbeddings | None = None) -> None:
        self._config = config or EmbeddingConfig(model="BAAI/bge-small-en-v1.5", dim=384)
        if client is None:
            from langchain_community.embeddings import HuggingFaceEmbeddings

            model_kwargs = {"device": self._config.device} if self._config.device else {}
            client = HuggingFaceEmbeddings(
                model_name=self._config.model,
                model_kwargs=model_kwargs,
                encode_kwargs={"normalize_embeddings": self._config.normalize},
                cache_folder=self._config.cache_folder,
            )
            _LOGGER.info("embedding.model_loaded", model=self._config.model)
        self._client = client

    @property
    def dimension(self) -> int:
        return self._config.dim

    async def embed(self, text: str) -> Vector:
        try:
            vector = await asyncio.to_thread(self._client.embed_query, text)
        except Exception as exc:  # pragma: no cover - model runtime errors
            raise EmbeddingError(f"Local embedding failed: {exc}", provider_name=self.provider_name) from exc
        return _normalize(vector) if self._config.normalize else tuple(vector)

    async def embed_batch(self, texts: Sequence[str]) -> List[Vector]:
        if not texts:
            return []
        try:
            raw = await asyncio.to_thread(self._client.embed_documents, list(texts))
        except Exception as exc:  # pragma: no cover - model runtime errors
            raise EmbeddingError(f"Local embedding failed: {exc}", provider_name=self.provider_name) from exc
        _check_batch(raw, len(texts), self.provider_name)
        if self._config.normalize:
            return [_normalize(vector) for vector in raw]
        return [tuple(vector) for vector in raw]


def build_embedding_backend(settings: Settings) -> EmbeddingBackend:
    """Instantiate the backend selected by ``settings.embedding_provider``."""

    config = EmbeddingConfig(model=settings.embedding_model, dim=settings.embedding_dim)
    if settings.embedding_provider == "openai":
        return OpenAIEmbeddingBackend(config, api_key=settings.openai_api_key, base_url=settings.openai_base_url)
    if settings.embedding_provider == "huggingface":
        return HuggingFaceEmbeddingBackend(config)
    _LOGGER.info("embedding.hash_mode", dim=config.dim)
    return HashEmbeddingBackend(config)
