"""Document ingestion pipeline."""

from kbchat.errors import (
    EmptyDocumentError,
    ExtractionError,
    IngestionError,
    NoChunksProducedError,
    UnsupportedFileTypeError,
)

from .chunking import ChunkingConfig, SentenceChunker, chunk_text, estimate_tokens
from .extraction import LangChainTextExtractor, TextExtractor
from .service import DocumentIngestionService

__all__ = [
    "ChunkingConfig",
    "DocumentIngestionService",
    "EmptyDocumentError",
    "ExtractionError",
    "IngestionError",
    "LangChainTextExtractor",
    "NoChunksProducedError",
    "SentenceChunker",
    "TextExtractor",
    "UnsupportedFileTypeError",
    "chunk_text",
    "estimate_tokens",
]
