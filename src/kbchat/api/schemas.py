"""Pydantic models for the kbchat API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _FromDomain(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class DocumentModel(_FromDomain):
    id: str = Field(..., description="Server-generated document identifier")
    user_id: str
    name: str = Field(..., description="Original upload filename")
    file_type: str = Field(..., description="Lower-cased extension (pdf, docx, txt, md)")
    category: str
    version: str
    chunk_count: int = Field(..., ge=0, description="Number of vectors stored for the document")
    uploaded_at: datetime


class DocumentStatsModel(_FromDomain):
    document_count: int
    total_chunks: int


class DocumentListResponse(BaseModel):
    documents: List[DocumentModel]
    stats: DocumentStatsModel


class ChatRequest(BaseModel):
    question: str = Field(..., min_length=1, max_length=2000, description="End-user question to answer")
    session_id: Optional[str] = Field(default=None, description="Session to append the exchange to")


class SourceModel(_FromDomain):
    source: str
    text: str = Field(..., description="Preview of the supporting chunk")
    score: float = Field(..., ge=0.0, le=1.0)


class ChatMessageModel(_FromDomain):
    id: str
    question: str
    answer: str
    sources: List[SourceModel]
    timestamp: datetime
    user_id: str
    session_id: Optional[str] = None


class SessionMessageModel(_FromDomain):
    question: str
    answer: str
    sources: List[SourceModel]
    timestamp: datetime


class SessionModel(_FromDomain):
    id: str
    user_id: str
    messages: List[SessionMessageModel]
    created_at: datetime
    updated_at: datetime


class SessionListResponse(BaseModel):
    sessions: List[SessionModel]


class LogPageResponse(_FromDomain):
    logs: List[ChatMessageModel]
    total: int
    page: int
    pages: int


class CollectionStatsResponse(BaseModel):
    collection: str
    vector_count: int
    status: str
