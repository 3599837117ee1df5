"""Volatile in-process storage backends.

State lives only for the life of the process.  The stores are not locked:
they are meant to be driven from a single event loop.
"""

from __future__ import annotations

import math
from collections import deque
from datetime import datetime
from itertools import islice
from typing import Deque, Dict, List, Sequence
from uuid import uuid4

from kbchat.errors import SessionNotFoundError
from kbchat.models import (
    ChatMessage,
    ChatMessageItem,
    ChatSession,
    DocumentMetadata,
    DocumentStats,
    LogPage,
    utcnow,
)

DEFAULT_LOG_CAPACITY = 1000


class InMemoryDocumentStore:
    def __init__(self) -> None:
        self._documents: Dict[str, DocumentMetadata] = {}

    def add(self, metadata: DocumentMetadata) -> None:
        self._documents[metadata.id] = metadata

    def get(self, doc_id: str) -> DocumentMetadata | None:
        return self._documents.get(doc_id)

    def list_for_user(self, user_id: str) -> Sequence[DocumentMetadata]:
        return [doc for doc in self._documents.values() if doc.user_id == user_id]

    def delete(self, doc_id: str) -> bool:
        return self._documents.pop(doc_id, None) is not None

    def stats(self, user_id: str) -> DocumentStats:
        docs = self.list_for_user(user_id)
        return DocumentStats(document_count=len(docs), total_chunks=sum(doc.chunk_count for doc in docs))


class InMemorySessionStore:
    """Sessions keyed by id and a log that keeps the newest ``log_capacity`` messages."""

    def __init__(self, log_capacity: int = DEFAULT_LOG_CAPACITY) -> None:
        if log_capacity <= 0:
            raise ValueError("log_capacity must be positive")
        self._sessions: Dict[str, ChatSession] = {}
        # Newest first; appendleft on a full deque drops the oldest entry.
        self._logs: Deque[ChatMessage] = deque(maxlen=log_capacity)

    @property
    def log_capacity(self) -> int:
        return self._logs.maxlen or DEFAULT_LOG_CAPACITY

    def create_session(
        self, user_id: str, session_id: str | None = None, created_at: datetime | None = None
    ) -> ChatSession:
        now = created_at or utcnow()
        session = ChatSession(id=session_id or uuid4().hex, user_id=user_id, created_at=now, updated_at=now)
        self._sessions[session.id] = session
        return session

    def get_session(self, session_id: str) -> ChatSession | None:
        return self._sessions.get(session_id)

    def list_sessions(self, user_id: str) -> Sequence[ChatSession]:
        owned = [session for session in self._sessions.values() if session.user_id == user_id]
        return sorted(owned, key=lambda session: session.updated_at, reverse=True)

    def delete_session(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def append_message(self, session_id: str, item: ChatMessageItem) -> ChatSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        session.messages.append(item)
        session.updated_at = item.timestamp
        return session

    def record_log(self, message: ChatMessage) -> None:
        self._logs.appendleft(message)

    def get_logs(self, page: int = 1, limit: int = 20, user_id: str | None = None) -> LogPage:
        page = max(page, 1)
        limit = max(limit, 1)
        if user_id is None:
            matching: List[ChatMessage] = list(self._logs)
        else:
            matching = [log for log in self._logs if log.user_id == user_id]
        start = (page - 1) * limit
        window = list(islice(matching, start, start + limit))
        total = len(matching)
        return LogPage(logs=window, total=total, page=page, pages=math.ceil(total / limit))

    def get_log(self, log_id: str) -> ChatMessage | None:
        return next((log for log in self._logs if log.id == log_id), None)

    def delete_log(self, log_id: str) -> bool:
        log = self.get_log(log_id)
        if log is None:
            return False
        self._logs.remove(log)
        return True

    def clear_all(self) -> None:
        self._logs.clear()
        self._sessions.clear()
