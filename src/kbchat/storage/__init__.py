"""Storage backends for document metadata and chat history."""

from .base import DocumentStore, SessionStore
from .memory import InMemoryDocumentStore, InMemorySessionStore

__all__ = ["DocumentStore", "InMemoryDocumentStore", "InMemorySessionStore", "SessionStore"]
