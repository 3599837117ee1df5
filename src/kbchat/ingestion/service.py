"""Document ingestion orchestration: extract, chunk, embed, store."""

from __future__ import annotations

import time
from typing import Sequence
from uuid import uuid4

from kbchat.embeddings.service import EmbeddingBackend
from kbchat.embeddings.store import VectorStore
from kbchat.errors import EmptyDocumentError, IngestionError, KBChatError, NoChunksProducedError
from kbchat.ingestion.chunking import SentenceChunker
from kbchat.ingestion.extraction import LangChainTextExtractor, TextExtractor, file_extension
from kbchat.metrics.observability import PipelineMetrics, get_logger
from kbchat.models import DocumentMetadata, DocumentStats, utcnow
from kbchat.storage.base import DocumentStore

DEFAULT_CATEGORY = "General"
DEFAULT_VERSION = "v1.0"


class DocumentIngestionService:
    """Turns uploaded files into stored, user-scoped vectors and tracks their metadata.

    Each step depends on the previous one succeeding and nothing is retried.
    Metadata is recorded only after the vector upsert is acknowledged; if that
    final write fails the freshly stored vectors are deleted again.
    """

    def __init__(
        self,
        *,
        chunker: SentenceChunker,
        embeddings: EmbeddingBackend,
        vector_store: VectorStore,
        documents: DocumentStore,
        extractor: TextExtractor | None = None,
    ) -> None:
        self._chunker = chunker
        self._embeddings = embeddings
        self._vector_store = vector_store
        self._documents = documents
        self._extractor = extractor or LangChainTextExtractor()
        self._logger = get_logger("ingestion")

    async def ingest(
        self,
        user_id: str,
        data: bytes,
        filename: str,
        mime_type: str | None = None,
        category: str = DEFAULT_CATEGORY,
        version: str = DEFAULT_VERSION,
    ) -> DocumentMetadata:
        start = time.perf_counter()
        try:
            text = await self._extractor.extract(data, filename, mime_type)
            if not text.strip():
                raise EmptyDocumentError(f"{filename} appears to be empty or could not be parsed")

            chunks = self._chunker.chunk(text)
            if not chunks:
                raise NoChunksProducedError(f"No chunks could be created from {filename}")

            vectors = await self._embeddings.embed_batch([chunk.text for chunk in chunks])
            doc_id = uuid4().hex
            await self._vector_store.upsert(
                user_id=user_id,
                doc_id=doc_id,
                source=filename,
                chunks=chunks,
                vectors=vectors,
                category=category,
                version=version,
            )
        except KBChatError as exc:
            PipelineMetrics.record_failure("ingestion")
            self._logger.warning("ingestion.failed", filename=filename, user_id=user_id, error=str(exc))
            raise

        metadata = DocumentMetadata(
            id=doc_id,
            user_id=user_id,
            name=filename,
            file_type=file_extension(filename) or "unknown",
            category=category,
            version=version,
            chunk_count=len(chunks),
            uploaded_at=utcnow(),
        )
        try:
            self._documents.add(metadata)
        except Exception as exc:
            PipelineMetrics.record_failure("ingestion")
            await self._compensate(doc_id)
            raise IngestionError(f"Failed to record metadata for {filename}: {exc}") from exc

        duration = time.perf_counter() - start
        PipelineMetrics.observe_ingestion(duration, len(chunks))
        self._logger.info(
            "ingestion.complete",
            doc_id=doc_id,
            user_id=user_id,
            filename=filename,
            chunk_count=len(chunks),
            duration_seconds=duration,
        )
        return metadata

    async def delete_document(self, doc_id: str) -> bool:
        """Delete the document's vectors, then its metadata; False if no metadata existed."""

        await self._vector_store.delete_by_document(doc_id)
        deleted = self._documents.delete(doc_id)
        self._logger.info("ingestion.deleted", doc_id=doc_id, had_metadata=deleted)
        return deleted

    def get_document(self, doc_id: str) -> DocumentMetadata | None:
        return self._documents.get(doc_id)

    def list_documents(self, user_id: str) -> Sequence[DocumentMetadata]:
        return self._documents.list_for_user(user_id)

    def stats(self, user_id: str) -> DocumentStats:
        return self._documents.stats(user_id)

    async def _compensate(self, doc_id: str) -> None:
        self._logger.warning("ingestion.compensate", doc_id=doc_id)
        try:
            await self._vector_store.delete_by_document(doc_id)
        except KBChatError as exc:
            self._logger.error("ingestion.compensate_failed", doc_id=doc_id, error=str(exc))
