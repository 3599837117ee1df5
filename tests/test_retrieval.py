from __future__ import annotations

import pytest

from kbchat.models import SearchResult, VectorPayload
from kbchat.retrieval import RetrievalConfig, SimilarityRetriever, filter_by_threshold


def _result(score: float, text: str = "chunk") -> SearchResult:
    payload = VectorPayload(
        user_id="alice",
        doc_id="d1",
        source="a.txt",
        chunk_id=0,
        text=text,
        category="General",
        version="v1.0",
        uploaded_at="2024-01-01T00:00:00+00:00",
    )
    return SearchResult(id=text, score=score, payload=payload)


class StubEmbeddings:
    dimension = 4

    def __init__(self) -> None:
        self.questions: list[str] = []

    async def embed(self, text: str):
        self.questions.append(text)
        return (0.5, 0.5, 0.5, 0.5)

    async def embed_batch(self, texts):
        return [(0.5, 0.5, 0.5, 0.5) for _ in texts]


class StubStore:
    def __init__(self, results: list[SearchResult]) -> None:
        self.results = results
        self.calls: list[tuple[str, int]] = []

    async def search(self, user_id, query_vector, top_k):
        self.calls.append((user_id, top_k))
        return self.results[:top_k]


def test_threshold_is_inclusive():
    results = [_result(0.9), _result(0.7), _result(0.6999)]
    assert [item.score for item in filter_by_threshold(results, 0.7)] == [0.9, 0.7]


@pytest.mark.asyncio
async def test_retriever_filters_below_threshold():
    store = StubStore([_result(0.92, "a"), _result(0.71, "b"), _result(0.4, "c")])
    retriever = SimilarityRetriever(StubEmbeddings(), store, RetrievalConfig(top_k=5, similarity_threshold=0.7))
    kept = await retriever.retrieve("question", "alice")
    assert [item.id for item in kept] == ["a", "b"]
    assert store.calls == [("alice", 5)]


@pytest.mark.asyncio
async def test_retriever_returns_empty_when_nothing_clears_threshold():
    store = StubStore([_result(0.3), _result(0.2)])
    retriever = SimilarityRetriever(StubEmbeddings(), store, RetrievalConfig(similarity_threshold=0.7))
    assert await retriever.retrieve("question", "alice") == []


def test_effective_top_k_is_capped():
    retriever = SimilarityRetriever(StubEmbeddings(), StubStore([]), RetrievalConfig(top_k=5, max_top_k=20))
    assert retriever.effective_top_k() == 5
    assert retriever.effective_top_k(50) == 20
    assert retriever.effective_top_k(3) == 3
