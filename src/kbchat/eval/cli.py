"""Offline retrieval benchmark for kbchat.

Fixture documents are ingested for a synthetic user into a throwaway Chroma
collection with deterministic hash embeddings, then every fixture question is
run through the similarity retriever.  Ranks are computed per document, so
several chunks of the same document count once.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import statistics
import sys
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import List, Sequence
from uuid import uuid4

import chromadb

from kbchat.config import Settings, get_settings
from kbchat.embeddings import ChromaVectorStore, EmbeddingConfig, HashEmbeddingBackend
from kbchat.ingestion import ChunkingConfig, DocumentIngestionService, SentenceChunker
from kbchat.metrics.observability import get_logger
from kbchat.retrieval import RetrievalConfig, SimilarityRetriever
from kbchat.storage import InMemoryDocumentStore

EVALUATION_USER = "evaluation"

_LOGGER = get_logger("eval")


@dataclass(frozen=True)
class DocumentFixture:
    id: str
    title: str
    content: str


@dataclass(frozen=True)
class QueryFixture:
    question: str
    relevant_document_ids: Sequence[str]


@dataclass(frozen=True)
class QueryOutcome:
    question: str
    retrieved: List[str]
    relevant: List[str]
    latency_ms: float

    @property
    def first_relevant_rank(self) -> int | None:
        relevant = set(self.relevant)
        return next((rank for rank, doc_id in enumerate(self.retrieved, start=1) if doc_id in relevant), None)


@dataclass(frozen=True)
class EvaluationResult:
    total_queries: int
    hits: int
    recall_at_k: float
    mean_reciprocal_rank: float
    average_latency_ms: float
    details: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    def passes(self, min_recall: float, min_mrr: float) -> bool:
        return self.recall_at_k >= min_recall and self.mean_reciprocal_rank >= min_mrr


def load_dataset(path: Path) -> tuple[list[DocumentFixture], list[QueryFixture]]:
    raw = json.loads(path.read_text(encoding="utf-8"))
    documents = [DocumentFixture(item["id"], item.get("title", ""), item["content"]) for item in raw["documents"]]
    queries = [QueryFixture(item["question"], item.get("relevant_document_ids", [])) for item in raw["queries"]]
    return documents, queries


def summarize(outcomes: Sequence[QueryOutcome]) -> EvaluationResult:
    """Aggregate per-query outcomes into recall@k and mean reciprocal rank."""

    ranks = [outcome.first_relevant_rank for outcome in outcomes]
    hits = sum(1 for rank in ranks if rank is not None)
    total = len(outcomes)
    return EvaluationResult(
        total_queries=total,
        hits=hits,
        recall_at_k=hits / total if total else 0.0,
        mean_reciprocal_rank=statistics.fmean([1 / rank if rank else 0.0 for rank in ranks]) if ranks else 0.0,
        average_latency_ms=statistics.fmean([outcome.latency_ms for outcome in outcomes]) if outcomes else 0.0,
        details=[asdict(outcome) for outcome in outcomes],
    )


async def _collect_outcomes(
    documents: Sequence[DocumentFixture],
    queries: Sequence[QueryFixture],
    *,
    top_k: int,
    settings: Settings,
) -> List[QueryOutcome]:
    embeddings = HashEmbeddingBackend(EmbeddingConfig(dim=settings.embedding_dim))
    store = ChromaVectorStore(
        f"evaluation-{uuid4().hex[:8]}",
        dimension=settings.embedding_dim,
        client=chromadb.EphemeralClient(),
    )
    await store.ensure_collection()
    ingestion = DocumentIngestionService(
        chunker=SentenceChunker(ChunkingConfig(chunk_size=settings.chunk_size, chunk_overlap=settings.chunk_overlap)),
        embeddings=embeddings,
        vector_store=store,
        documents=InMemoryDocumentStore(),
    )
    # Threshold 0 so ranking quality is measured independently of the cut-off.
    retriever = SimilarityRetriever(
        embeddings, store, RetrievalConfig(top_k=top_k, similarity_threshold=0.0, max_top_k=0)
    )

    fixture_ids: dict[str, str] = {}
    for fixture in documents:
        stored = await ingestion.ingest(EVALUATION_USER, fixture.content.encode("utf-8"), f"{fixture.id}.txt")
        fixture_ids[stored.id] = fixture.id

    outcomes: List[QueryOutcome] = []
    try:
        for query in queries:
            started = time.perf_counter()
            results = await retriever.retrieve(query.question, EVALUATION_USER)
            elapsed_ms = (time.perf_counter() - started) * 1000
            ranked: List[str] = []
            for result in results:
                doc_id = fixture_ids.get(result.payload.doc_id)
                if doc_id and doc_id not in ranked:
                    ranked.append(doc_id)
            outcomes.append(QueryOutcome(query.question, ranked, list(query.relevant_document_ids), elapsed_ms))
    finally:
        await store.clear()
    return outcomes


def run_evaluation(
    dataset_path: Path,
    *,
    top_k: int = 3,
    settings: Settings | None = None,
    json_out: Path | None = None,
    markdown_out: Path | None = None,
) -> EvaluationResult:
    settings = settings or get_settings()
    documents, queries = load_dataset(dataset_path)
    outcomes = asyncio.run(_collect_outcomes(documents, queries, top_k=top_k, settings=settings))
    result = summarize(outcomes)
    _LOGGER.info(
        "eval.complete",
        queries=result.total_queries,
        recall_at_k=result.recall_at_k,
        mrr=result.mean_reciprocal_rank,
    )

    if json_out:
        json_out.write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
    if markdown_out:
        markdown_out.write_text(render_markdown(result, top_k), encoding="utf-8")
    return result


def render_markdown(result: EvaluationResult, top_k: int) -> str:
    lines = [
        "# kbchat Retrieval Evaluation",
        "",
        "| Metric | Value |",
        "| --- | --- |",
        f"| Queries | {result.total_queries} |",
        f"| Hits | {result.hits} |",
        f"| Recall@{top_k} | {result.recall_at_k:.2f} |",
        f"| MRR | {result.mean_reciprocal_rank:.2f} |",
        f"| Avg latency (ms) | {result.average_latency_ms:.2f} |",
        "",
        "## Queries",
        "",
    ]
    for item in result.details:
        marker = "hit" if set(item["retrieved"]) & set(item["relevant"]) else "miss"
        retrieved = ", ".join(item["retrieved"]) or "-"
        lines.append(f"- **{marker}** {item['question']} (retrieved: {retrieved})")
    return "\n".join(lines) + "\n"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kbchat-eval", description="Benchmark kbchat retrieval on a fixture set.")
    parser.add_argument("--dataset", type=Path, default=Path("evaluations/sample.json"), help="Fixture JSON file")
    parser.add_argument("--top-k", type=int, default=3, help="Number of chunks retrieved per question")
    parser.add_argument("--json-out", type=Path, help="Write the full report as JSON")
    parser.add_argument("--markdown-out", type=Path, help="Write a Markdown summary")
    parser.add_argument("--min-recall", type=float, help="Fail below this recall@k")
    parser.add_argument("--min-mrr", type=float, help="Fail below this mean reciprocal rank")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    min_recall = settings.evaluation_min_recall if args.min_recall is None else args.min_recall
    min_mrr = settings.evaluation_min_mrr if args.min_mrr is None else args.min_mrr

    result = run_evaluation(
        args.dataset,
        top_k=args.top_k,
        settings=settings,
        json_out=args.json_out,
        markdown_out=args.markdown_out,
    )
    print(json.dumps(result.to_dict(), indent=2))

    if not result.passes(min_recall, min_mrr):
        print(
            f"Evaluation failed thresholds: recall {result.recall_at_k:.2f} < {min_recall} "
            f"or MRR {result.mean_reciprocal_rank:.2f} < {min_mrr}",
            file=sys.stderr,
        )
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    sys.exit(main())
