"""Storage protocols for document metadata and chat history."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, Sequence

from kbchat.models import ChatMessage, ChatMessageItem, ChatSession, DocumentMetadata, DocumentStats, LogPage


class DocumentStore(Protocol):
    """Metadata table for ingested documents, keyed by document id."""

    def add(self, metadata: DocumentMetadata) -> None:
        ...

    def get(self, doc_id: str) -> DocumentMetadata | None:
        ...

    def list_for_user(self, user_id: str) -> Sequence[DocumentMetadata]:
        ...

    def delete(self, doc_id: str) -> bool:
        ...

    def stats(self, user_id: str) -> DocumentStats:
        ...


class SessionStore(Protocol):
    """Chat sessions plus the capped, newest-first audit log."""

    def create_session(
        self, user_id: str, session_id: str | None = None, created_at: datetime | None = None
    ) -> ChatSession:
        ...

    def get_session(self, session_id: str) -> ChatSession | None:
        ...

    def list_sessions(self, user_id: str) -> Sequence[ChatSession]:
        ...

    def delete_session(self, session_id: str) -> bool:
        ...

    def append_message(self, session_id: str, item: ChatMessageItem) -> ChatSession:
        ...

    def record_log(self, message: ChatMessage) -> None:
        ...

    def get_logs(self, page: int = 1, limit: int = 20, user_id: str | None = None) -> LogPage:
        ...

    def get_log(self, log_id: str) -> ChatMessage | None:
        ...

    def delete_log(self, log_id: str) -> bool:
        ...

    def clear_all(self) -> None:
        ...
