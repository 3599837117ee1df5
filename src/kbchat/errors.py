"""Exception hierarchy shared by the kbchat pipeline.

Every error raised by the ingestion, retrieval and chat paths derives from
:class:`KBChatError`.  Gateway errors carry the name of the external service
that failed so log lines read ``[openai] rate limit exceeded``.

    KBChatError
    +-- IngestionError
    |   +-- UnsupportedFileTypeError
    |   +-- ExtractionError
    |   +-- EmptyDocumentError
    |   +-- NoChunksProducedError
    +-- EmbeddingError
    +-- VectorStoreError
    |   +-- VectorStoreConfigurationError
    |   +-- InvalidPayloadError
    +-- CompletionError
    +-- ChatProcessingError
    +-- NotFoundError
        +-- SessionNotFoundError

Lookups by id never raise on a miss; they return ``None``.  ``NotFoundError``
is reserved for operations that cannot proceed without the referenced entity.
"""

from __future__ import annotations


class KBChatError(RuntimeError):
    """Base exception for all kbchat errors."""

    def __init__(self, message: str = "kbchat operation failed", provider_name: str | None = None) -> None:
        self.message = message
        self.provider_name = provider_name
        super().__init__(message)

    def __str__(self) -> str:
        if self.provider_name:
            return f"[{self.provider_name}] {self.message}"
        return self.message


class IngestionError(KBChatError):
    """Raised when a document cannot be turned into stored vectors."""


class UnsupportedFileTypeError(IngestionError):
    """Raised when a document extension is not supported by the extractor."""


class ExtractionError(IngestionError):
    """Raised when a supported document cannot be parsed into text."""


class EmptyDocumentError(IngestionError):
    """Raised when extraction yields only whitespace."""


class NoChunksProducedError(IngestionError):
    """Raised when the chunker returns nothing for non-empty text."""


class EmbeddingError(KBChatError):
    """Raised when the embedding service call fails or returns malformed vectors."""


class VectorStoreError(KBChatError):
    """Raised when the vector database rejects or fails an operation."""


class VectorStoreConfigurationError(VectorStoreError):
    """Raised when the collection's dimension or metric disagrees with configuration."""


class InvalidPayloadError(VectorStoreError):
    """Raised when a stored record does not match the vector payload schema."""


class CompletionError(KBChatError):
    """Raised when the chat-completion service call fails."""


class ChatProcessingError(KBChatError):
    """Raised when answering a question fails after intent classification."""


class NotFoundError(KBChatError):
    """Raised when an operation requires an entity that does not exist."""


class SessionNotFoundError(NotFoundError):
    """Raised when a client-supplied session id is unknown and may not be created."""


__all__ = [
    "ChatProcessingError",
    "CompletionError",
    "EmbeddingError",
    "EmptyDocumentError",
    "ExtractionError",
    "IngestionError",
    "InvalidPayloadError",
    "KBChatError",
    "NoChunksProducedError",
    "NotFoundError",
    "SessionNotFoundError",
    "UnsupportedFileTypeError",
    "VectorStoreConfigurationError",
    "VectorStoreError",
]
