"""Retrieval components."""

from .service import RetrievalConfig, Retriever, SimilarityRetriever, filter_by_threshold

__all__ = ["RetrievalConfig", "Retriever", "SimilarityRetriever", "filter_by_threshold"]
