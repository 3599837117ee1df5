"""Vector store gateway backed by Chroma."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Protocol, Sequence
from uuid import uuid4

import chromadb
from chromadb.api import ClientAPI

from kbchat.errors import (
    InvalidPayloadError,
    KBChatError,
    VectorStoreConfigurationError,
    VectorStoreError,
)
from kbchat.metrics.observability import PipelineMetrics, clamp_score, get_logger
from kbchat.models import Chunk, CollectionInfo, SearchResult, VectorPayload, utcnow


class VectorStore(Protocol):
    """Per-user vector persistence with similarity search."""

    async def ensure_collection(self, dimension: int | None = None, distance_metric: str | None = None) -> None:
        """Create the collection if absent; verify its configuration if present."""

    async def upsert(
        self,
        *,
        user_id: str,
        doc_id: str,
        source: str,
        chunks: Sequence[Chunk],
        vectors: Sequence[Sequence[float]],
        category: str,
        version: str,
    ) -> Sequence[str]:
        """Store one point per chunk and return the point ids."""

    async def search(self, user_id: str, query_vector: Sequence[float], top_k: int) -> Sequence[SearchResult]:
        """Return at most ``top_k`` of the user's vectors, best first."""

    async def delete_by_document(self, doc_id: str) -> None:
        """Remove every point of the given document."""

    async def collection_info(self) -> CollectionInfo:
        """Report vector count and status without raising when the collection is missing."""

    async def clear(self) -> None:
        """Drop and recreate the collection."""


class ChromaVectorStore:
    """Chroma-backed vector store; every search is filtered by ``user_id``."""

    provider_name = "chroma"

    def __init__(
        self,
        collection_name: str = "kb_chatbot",
        *,
        dimension: int = 3072,
        distance_metric: str = "cosine",
        client: ClientAPI | None = None,
        persist_directory: str | Path | None = None,
    ) -> None:
        if client is not None:
            self._client = client
        elif persist_directory is not None:
            self._client = chromadb.PersistentClient(path=str(persist_directory))
        else:
            self._client = chromadb.EphemeralClient()
        self._collection_name = collection_name
        self._dimension = dimension
        self._distance_metric = distance_metric
        self._collection = None
        self._logger = get_logger("vector_store")

    @property
    def collection_name(self) -> str:
        return self._collection_name

    @property
    def dimension(self) -> int:
        return self._dimension

    async def ensure_collection(self, dimension: int | None = None, distance_metric: str | None = None) -> None:
        await asyncio.to_thread(
            self._ensure_sync,
            dimension or self._dimension,
            distance_metric or self._distance_metric,
        )

    async def upsert(
        self,
        *,
        user_id: str,
        doc_id: str,
        source: str,
        chunks: Sequence[Chunk],
        vectors: Sequence[Sequence[float]],
        category: str,
        version: str,
    ) -> Sequence[str]:
        if len(chunks) != len(vectors):
            raise VectorStoreError(
                f"Got {len(vectors)} vectors for {len(chunks)} chunks",
                provider_name=self.provider_name,
            )
        for vector in vectors:
            if len(vector) != self._dimension:
                raise VectorStoreConfigurationError(
                    f"Vector dimension {len(vector)} does not match collection dimension {self._dimension}",
                    provider_name=self.provider_name,
                )
        uploaded_at = utcnow().isoformat()
        payloads = [
            VectorPayload(
                user_id=user_id,
                doc_id=doc_id,
                source=source,
                chunk_id=chunk.index,
                text=chunk.text,
                category=category,
                version=version,
                uploaded_at=uploaded_at,
            )
            for chunk in chunks
        ]
        ids = [uuid4().hex for _ in payloads]
        await self._run(self._upsert_sync, ids, [list(vector) for vector in vectors], payloads)
        self._logger.info("vector_store.upsert", user_id=user_id, doc_id=doc_id, source=source, count=len(ids))
        return ids

    async def search(self, user_id: str, query_vector: Sequence[float], top_k: int) -> Sequence[SearchResult]:
        if top_k <= 0:
            return []
        results = await self._run(self._query_sync, user_id, list(query_vector), top_k)
        kept: List[SearchResult] = []
        for result in results:
            if result.payload.user_id != user_id:
                self._logger.warning(
                    "vector_store.foreign_result_dropped",
                    requested_user=user_id,
                    point_id=result.id,
                )
                continue
            kept.append(result)
        kept.sort(key=lambda item: item.score, reverse=True)
        return kept[:top_k]

    async def delete_by_document(self, doc_id: str) -> None:
        await self._run(self._delete_sync, doc_id)
        self._logger.info("vector_store.delete", doc_id=doc_id)

    async def collection_info(self) -> CollectionInfo:
        try:
            info = await asyncio.to_thread(self._info_sync)
        except Exception as exc:  # noqa: BLE001 - status endpoint reports instead of raising
            self._logger.warning("vector_store.info_failed", detail=str(exc))
            return CollectionInfo(vector_count=0, status="unavailable")
        PipelineMetrics.vector_count.set(info.vector_count)
        return info

    async def clear(self) -> None:
        await self._run(self._clear_sync)
        self._logger.warning("vector_store.cleared", collection=self._collection_name)

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except KBChatError:
            raise
        except Exception as exc:
            raise VectorStoreError(f"Vector store operation failed: {exc}", provider_name=self.provider_name) from exc

    # Synchronous helpers executed off the event loop.

    def _collection_names(self) -> set[str]:
        # Newer Chroma clients return names, older ones return Collection objects.
        return {getattr(item, "name", item) for item in self._client.list_collections()}

    def _ensure_sync(self, dimension: int, distance_metric: str):
        if self._collection_name in self._collection_names():
            collection = self._client.get_collection(name=self._collection_name)
            metadata: Mapping[str, Any] = collection.metadata or {}
            stored_dimension = metadata.get("dimension")
            if stored_dimension is not None and int(stored_dimension) != dimension:
                raise VectorStoreConfigurationError(
                    f"Collection {self._collection_name!r} has dimension {stored_dimension}, configured {dimension}",
                    provider_name=self.provider_name,
                )
            stored_metric = metadata.get("hnsw:space", "l2")
            if stored_metric != distance_metric:
                raise VectorStoreConfigurationError(
                    f"Collection {self._collection_name!r} uses {stored_metric} distance, configured {distance_metric}",
                    provider_name=self.provider_name,
                )
            self._logger.info("vector_store.collection_exists", collection=self._collection_name)
        else:
            collection = self._client.create_collection(
                name=self._collection_name,
                metadata={"hnsw:space": distance_metric, "dimension": dimension},
            )
            self._logger.info("vector_store.collection_created", collection=self._collection_name, dimension=dimension)
        self._dimension = dimension
        self._distance_metric = distance_metric
        self._collection = collection
        return collection

    def _require_collection(self):
        if self._collection is None:
            return self._ensure_sync(self._dimension, self._distance_metric)
        return self._collection

    def _upsert_sync(self, ids: list[str], vectors: list[list[float]], payloads: Sequence[VectorPayload]) -> None:
        self._require_collection().upsert(
            ids=ids,
            embeddings=vectors,
            documents=[payload.text for payload in payloads],
            metadatas=[payload.to_metadata() for payload in payloads],
        )

    def _query_sync(self, user_id: str, vector: list[float], top_k: int) -> Sequence[SearchResult]:
        collection = self._require_collection()
        if collection.count() == 0:
            return []
        raw = collection.query(
            query_embeddings=[vector],
            n_results=top_k,
            where={"user_id": user_id},
            include=["documents", "metadatas", "distances"],
        )
        return self._deserialize_results(raw)

    def _delete_sync(self, doc_id: str) -> None:
        self._require_collection().delete(where={"doc_id": doc_id})

    def _info_sync(self) -> CollectionInfo:
        if self._collection_name not in self._collection_names():
            return CollectionInfo(vector_count=0, status="not_found")
        collection = self._client.get_collection(name=self._collection_name)
        return CollectionInfo(vector_count=int(collection.count()), status="ready")

    def _clear_sync(self) -> None:
        if self._collection_name in self._collection_names():
            self._client.delete_collection(name=self._collection_name)
        self._collection = None
        self._ensure_sync(self._dimension, self._distance_metric)

    def _deserialize_results(self, results: Mapping[str, object]) -> Sequence[SearchResult]:
        ids = self._first(results.get("ids"))
        documents = self._first(results.get("documents"))
        metadatas = self._first(results.get("metadatas"))
        distances = self._first(results.get("distances"))
        if not (len(ids) == len(documents) == len(metadatas) == len(distances)):
            raise InvalidPayloadError("Vector store returned ragged query results", provider_name=self.provider_name)
        retrieved: List[SearchResult] = []
        for point_id, document, metadata, distance in zip(ids, documents, metadatas, distances):
            payload = VectorPayload.from_metadata(metadata, document)
            # Chroma reports cosine distance; similarity is its complement.
            score = clamp_score(1.0 - float(distance))
            retrieved.append(SearchResult(id=str(point_id), score=score, payload=payload))
        return retrieved

    @staticmethod
    def _first(value: object) -> list:
        if isinstance(value, list) and value:
            first = value[0]
            if isinstance(first, Iterable) and not isinstance(first, (str, bytes)):
                return list(first)
        return []
