"""Observability helpers for kbchat."""

from __future__ import annotations

import logging
import time
from contextvars import ContextVar
from typing import Iterable

import structlog
from prometheus_client import Counter, Gauge, Histogram

_logger_configured = False
_correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


def configure_logging(level: int = logging.INFO) -> None:
    global _logger_configured  # noqa: PLW0603 - module-level guard
    if _logger_configured:
        return
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _logger_configured = True


def bind_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    structlog.contextvars.clear_contextvars()
    _correlation_id_var.set("-")


def get_correlation_id() -> str:
    return _correlation_id_var.get()


def get_logger(name: str = "kbchat") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


def clamp_score(score: float) -> float:
    if score < 0.0:
        return 0.0
    if score > 1.0:
        return 1.0
    return score


class PipelineMetrics:
    """Prometheus metrics for pipeline stages."""

    ingestion_latency = Histogram(
        "kbchat_ingestion_duration_seconds",
        "Time spent extracting, chunking, embedding and storing one document.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
    )
    ingestion_chunks = Histogram(
        "kbchat_ingestion_chunk_count",
        "Chunks produced per ingested document.",
        buckets=(0, 1, 5, 10, 20, 40, 80, 160),
    )
    retrieval_latency = Histogram(
        "kbchat_retrieval_duration_seconds",
        "Time spent embedding a question and searching the vector store.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    )
    retrieved_chunk_count = Histogram(
        "kbchat_retrieved_chunk_count",
        "Number of chunks that cleared the similarity threshold.",
        buckets=(0, 1, 2, 3, 5, 8, 13),
    )
    similarity_score = Histogram(
        "kbchat_similarity_score",
        "Similarity scores of chunks returned by the vector store.",
        buckets=(0.0, 0.25, 0.5, 0.7, 0.8, 0.9, 1.0),
    )
    generation_latency = Histogram(
        "kbchat_generation_duration_seconds",
        "Time spent generating answers.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0),
    )
    intent_short_circuits = Counter(
        "kbchat_intent_short_circuit_total",
        "Questions answered from canned responses without retrieval.",
        ["intent"],
    )
    failures = Counter(
        "kbchat_failures_total",
        "Failed pipeline operations.",
        ["stage"],
    )
    vector_count = Gauge(
        "kbchat_vector_count",
        "Number of vectors in the collection at last inspection.",
    )

    @classmethod
    def observe_ingestion(cls, duration_seconds: float, chunk_count: int) -> None:
        cls.ingestion_latency.observe(duration_seconds)
        cls.ingestion_chunks.observe(chunk_count)

    @classmethod
    def observe_retrieval(
        cls,
        duration_seconds: float,
        kept_count: int,
        scores: Iterable[float],
    ) -> None:
        cls.retrieval_latency.observe(duration_seconds)
        cls.retrieved_chunk_count.observe(kept_count)
        for score in scores:
            cls.similarity_score.observe(clamp_score(score))

    @classmethod
    def observe_generation(cls, duration_seconds: float) -> None:
        cls.generation_latency.observe(duration_seconds)

    @classmethod
    def record_short_circuit(cls, intent: str) -> None:
        cls.intent_short_circuits.labels(intent=intent).inc()

    @classmethod
    def record_failure(cls, stage: str) -> None:
        cls.failures.labels(stage=stage).inc()


class TimedSection:
    """Context manager capturing elapsed time for metrics."""

    def __init__(self, callback=None) -> None:
        self._callback = callback
        self._start = 0.0
        self.elapsed = 0.0

    def __enter__(self) -> "TimedSection":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.elapsed = time.perf_counter() - self._start
        if self._callback is not None and exc_type is None:
            self._callback(self.elapsed)


__all__ = [
    "PipelineMetrics",
    "TimedSection",
    "bind_correlation_id",
    "clamp_score",
    "clear_correlation_id",
    "configure_logging",
    "get_correlation_id",
    "get_logger",
]
