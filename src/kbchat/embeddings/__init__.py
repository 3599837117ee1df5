"""Embedding backends and the vector store gateway."""

from .service import (
    EmbeddingBackend,
    EmbeddingConfig,
    HashEmbeddingBackend,
    HuggingFaceEmbeddingBackend,
    OpenAIEmbeddingBackend,
    Vector,
    build_embedding_backend,
)
from .store import ChromaVectorStore, VectorStore

__all__ = [
    "ChromaVectorStore",
    "EmbeddingBackend",
    "EmbeddingConfig",
    "HashEmbeddingBackend",
    "HuggingFaceEmbeddingBackend",
    "OpenAIEmbeddingBackend",
    "Vector",
    "VectorStore",
    "build_embedding_backend",
]
