"""Shared domain models used across the kbchat pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Mapping, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from kbchat.errors import InvalidPayloadError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DocumentMetadata:
    """Metadata recorded for a successfully ingested document."""

    id: str
    user_id: str
    name: str
    file_type: str
    category: str
    version: str
    chunk_count: int
    uploaded_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class DocumentStats:
    document_count: int
    total_chunks: int


@dataclass(frozen=True)
class Chunk:
    """Bounded text segment ready for embedding; never stored on its own."""

    text: str
    index: int


class VectorPayload(BaseModel):
    """Fixed payload schema stamped on every stored vector."""

    model_config = ConfigDict(frozen=True, strict=True)

    user_id: str = Field(min_length=1, description="Owner of the vector; every search filters on it.")
    doc_id: str = Field(min_length=1, description="Document the chunk was cut from.")
    source: str = Field(description="Original upload filename, shown as the citation.")
    chunk_id: int = Field(ge=0, description="Position of the chunk within its document.")
    text: str
    category: str
    version: str
    uploaded_at: str

    def to_metadata(self) -> dict[str, str | int]:
        """Flatten to store metadata; the chunk text travels as the record document."""

        return self.model_dump(exclude={"text"})

    @classmethod
    def from_metadata(cls, metadata: Mapping[str, Any] | None, text: str | None) -> "VectorPayload":
        if not isinstance(metadata, Mapping):
            raise InvalidPayloadError("Vector record has no metadata")
        try:
            return cls.model_validate({**metadata, "text": text})
        except ValidationError as exc:
            raise InvalidPayloadError(f"Vector payload failed validation: {exc}") from exc


@dataclass(frozen=True)
class SearchResult:
    """Vector returned by a similarity search, score in [0, 1]."""

    id: str
    score: float
    payload: VectorPayload


@dataclass(frozen=True)
class CollectionInfo:
    vector_count: int
    status: str


@dataclass(frozen=True)
class ChatSource:
    """Citation attached to an answer: source name, text preview and score."""

    source: str
    text: str
    score: float


@dataclass(frozen=True)
class ChatMessageItem:
    """One question/answer exchange inside a session."""

    question: str
    answer: str
    sources: Sequence[ChatSource]
    timestamp: datetime


@dataclass(frozen=True)
class ChatMessage:
    """Audit log entry for one processed question."""

    id: str
    question: str
    answer: str
    sources: Sequence[ChatSource]
    timestamp: datetime
    user_id: str
    session_id: str | None = None

    def as_item(self) -> ChatMessageItem:
        return ChatMessageItem(
            question=self.question,
            answer=self.answer,
            sources=self.sources,
            timestamp=self.timestamp,
        )


@dataclass
class ChatSession:
    """Ordered exchanges grouped for display; mutated only by the session store."""

    id: str
    user_id: str
    messages: List[ChatMessageItem] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class LogPage:
    logs: Sequence[ChatMessage]
    total: int
    page: int
    pages: int
