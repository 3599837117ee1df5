from __future__ import annotations

from uuid import uuid4

import chromadb
import pytest

from kbchat.embeddings.service import EmbeddingConfig, HashEmbeddingBackend
from kbchat.embeddings.store import ChromaVectorStore
from kbchat.errors import VectorStoreConfigurationError, VectorStoreError
from kbchat.models import Chunk, SearchResult, VectorPayload

DIM = 8


def _store(name: str | None = None, dimension: int = DIM, client=None) -> ChromaVectorStore:
    return ChromaVectorStore(
        name or f"test-store-{uuid4().hex[:8]}",
        dimension=dimension,
        client=client or chromadb.EphemeralClient(),
    )


async def _upsert(store: ChromaVectorStore, user_id: str, doc_id: str, texts: list[str]) -> list[str]:
    backend = HashEmbeddingBackend(EmbeddingConfig(dim=DIM))
    chunks = [Chunk(text=text, index=index) for index, text in enumerate(texts)]
    vectors = await backend.embed_batch(texts)
    return list(
        await store.upsert(
            user_id=user_id,
            doc_id=doc_id,
            source=f"{doc_id}.txt",
            chunks=chunks,
            vectors=vectors,
            category="General",
            version="v1.0",
        )
    )


@pytest.mark.asyncio
async def test_store_upsert_and_similarity_search():
    store = _store()
    await store.ensure_collection()
    ids = await _upsert(store, "alice", "d1", ["alpha beta gamma", "lorem ipsum"])
    assert len(ids) == 2

    query = await HashEmbeddingBackend(EmbeddingConfig(dim=DIM)).embed("alpha beta gamma")
    results = await store.search("alice", query, top_k=2)
    assert results[0].payload.text == "alpha beta gamma"
    assert results[0].score == pytest.approx(1.0, abs=1e-4)
    assert all(0.0 <= result.score <= 1.0 for result in results)
    assert [result.score for result in results] == sorted((result.score for result in results), reverse=True)
    payload = results[0].payload
    assert (payload.user_id, payload.doc_id, payload.source, payload.chunk_id) == ("alice", "d1", "d1.txt", 0)
    assert payload.category == "General"
    assert payload.version == "v1.0"


@pytest.mark.asyncio
async def test_search_never_returns_other_users_vectors():
    store = _store()
    await _upsert(store, "alice", "d-alice", ["shared wording"])
    await _upsert(store, "bob", "d-bob", ["shared wording"])
    query = await HashEmbeddingBackend(EmbeddingConfig(dim=DIM)).embed("shared wording")

    results = await store.search("bob", query, top_k=5)
    assert [result.payload.doc_id for result in results] == ["d-bob"]
    assert await store.search("carol", query, top_k=5) == []


@pytest.mark.asyncio
async def test_foreign_results_from_backend_are_dropped():
    store = _store()

    def leaky_query(user_id, vector, top_k):
        payload = VectorPayload(
            user_id="mallory",
            doc_id="d",
            source="x.txt",
            chunk_id=0,
            text="secret",
            category="General",
            version="v1.0",
            uploaded_at="2024-01-01T00:00:00+00:00",
        )
        return [SearchResult(id="p1", score=0.9, payload=payload)]

    store._query_sync = leaky_query
    assert await store.search("alice", [0.1] * DIM, top_k=3) == []


@pytest.mark.asyncio
async def test_search_with_non_positive_top_k_is_empty():
    store = _store()
    await _upsert(store, "alice", "d1", ["text"])
    assert await store.search("alice", [0.1] * DIM, top_k=0) == []


@pytest.mark.asyncio
async def test_delete_by_document_removes_only_that_document():
    store = _store()
    await _upsert(store, "alice", "keep", ["first doc"])
    await _upsert(store, "alice", "drop", ["second doc", "more of it"])
    assert (await store.collection_info()).vector_count == 3

    await store.delete_by_document("drop")
    await store.delete_by_document("never-existed")

    info = await store.collection_info()
    assert info.vector_count == 1
    results = await store.search("alice", [0.1] * DIM, top_k=5)
    assert {result.payload.doc_id for result in results} == {"keep"}


@pytest.mark.asyncio
async def test_collection_info_reports_missing_then_ready():
    store = _store()
    assert (await store.collection_info()).status == "not_found"
    await store.ensure_collection()
    info = await store.collection_info()
    assert info.status == "ready"
    assert info.vector_count == 0


@pytest.mark.asyncio
async def test_ensure_collection_is_idempotent():
    client = chromadb.EphemeralClient()
    name = f"test-store-{uuid4().hex[:8]}"
    await _store(name, client=client).ensure_collection()
    await _store(name, client=client).ensure_collection()


@pytest.mark.asyncio
async def test_dimension_mismatch_is_fatal():
    client = chromadb.EphemeralClient()
    name = f"test-store-{uuid4().hex[:8]}"
    await _store(name, dimension=DIM, client=client).ensure_collection()
    with pytest.raises(VectorStoreConfigurationError):
        await _store(name, dimension=DIM * 2, client=client).ensure_collection()


@pytest.mark.asyncio
async def test_upsert_rejects_wrong_dimension_and_count():
    store = _store()
    chunk = Chunk(text="x", index=0)
    with pytest.raises(VectorStoreConfigurationError):
        await store.upsert(
            user_id="u", doc_id="d", source="s", chunks=[chunk], vectors=[[0.1] * 3], category="c", version="v"
        )
    with pytest.raises(VectorStoreError):
        await store.upsert(
            user_id="u", doc_id="d", source="s", chunks=[chunk], vectors=[], category="c", version="v"
        )


@pytest.mark.asyncio
async def test_clear_empties_collection_but_keeps_it():
    store = _store()
    await _upsert(store, "alice", "d1", ["one", "two"])
    await store.clear()
    info = await store.collection_info()
    assert info.status == "ready"
    assert info.vector_count == 0
