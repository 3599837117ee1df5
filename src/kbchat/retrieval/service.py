"""Similarity-filtered retrieval over a user's vectors."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import List, Protocol, Sequence

from kbchat.embeddings.service import EmbeddingBackend
from kbchat.embeddings.store import VectorStore
from kbchat.metrics.observability import PipelineMetrics, get_logger
from kbchat.models import SearchResult


@dataclass(frozen=True)
class RetrievalConfig:
    """Configuration for retrieval."""

    top_k: int = 5
    similarity_threshold: float = 0.7
    max_top_k: int | None = 20


class Retriever(Protocol):
    """Retrieve chunks relevant to a question from one user's documents."""

    async def retrieve(self, question: str, user_id: str, *, top_k: int | None = None) -> Sequence[SearchResult]:
        """Return results at or above the similarity threshold, best first."""


class SimilarityRetriever:
    """Embeds the question, searches the user's vectors and drops weak matches."""

    def __init__(self, embeddings: EmbeddingBackend, store: VectorStore, config: RetrievalConfig | None = None) -> None:
        self._embeddings = embeddings
        self._store = store
        self._config = config or RetrievalConfig()
        self._logger = get_logger("retrieval")

    @property
    def config(self) -> RetrievalConfig:
        return self._config

    def effective_top_k(self, top_k: int | None = None) -> int:
        limit = top_k or self._config.top_k
        if self._config.max_top_k:
            limit = min(limit, self._config.max_top_k)
        return max(1, limit)

    async def retrieve(self, question: str, user_id: str, *, top_k: int | None = None) -> Sequence[SearchResult]:
        limit = self.effective_top_k(top_k)
        start = time.perf_counter()
        vector = await self._embeddings.embed(question)
        results = await self._store.search(user_id, vector, limit)
        kept = filter_by_threshold(results, self._config.similarity_threshold)
        duration = time.perf_counter() - start
        PipelineMetrics.observe_retrieval(duration, len(kept), (result.score for result in results))
        self._logger.info(
            "retrieval.complete",
            user_id=user_id,
            candidates=len(results),
            kept=len(kept),
            top_k=limit,
            threshold=self._config.similarity_threshold,
            duration_seconds=duration,
        )
        return kept


def filter_by_threshold(results: Sequence[SearchResult], threshold: float) -> List[SearchResult]:
    """Keep results scoring at least ``threshold``, preserving rank order."""

    return [result for result in results if result.score >= threshold]
