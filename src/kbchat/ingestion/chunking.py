"""Sentence-greedy text chunking with word overlap."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import List, Sequence

from kbchat.models import Chunk

CHARS_PER_TOKEN = 4

_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")


def estimate_tokens(text: str) -> int:
    """Approximate token count at a fixed four characters per token."""

    return math.ceil(len(text) / CHARS_PER_TOKEN)


def split_sentences(text: str) -> List[str]:
    return [sentence.strip() for sentence in _SENTENCE_BOUNDARY.split(text) if sentence.strip()]


@dataclass(frozen=True)
class ChunkingConfig:
    """Chunk budget and overlap, both in estimated tokens."""

    chunk_size: int = 600
    chunk_overlap: int = 50

    @property
    def overlap_words(self) -> int:
        return max(self.chunk_overlap, 0) // CHARS_PER_TOKEN


class SentenceChunker:
    """Greedily packs whole sentences into chunks of at most ``chunk_size`` tokens.

    When the next sentence would overflow a non-empty chunk, the chunk is closed
    and the next one is seeded with the last ``chunk_overlap // 4`` words of the
    closed chunk.  A sentence that cannot fit even in an empty chunk is kept
    whole, and the overlap prefix is never trimmed, so a chunk may exceed the
    budget by one sentence: either an oversized sentence on its own or the
    overlap words followed by the sentence that closed the previous chunk.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self._config = config or ChunkingConfig()
        if self._config.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self._config.chunk_overlap >= self._config.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")

    @property
    def config(self) -> ChunkingConfig:
        return self._config

    def split(self, text: str) -> List[str]:
        chunks: List[str] = []
        overlap_words = self._config.overlap_words
        current = ""
        for sentence in split_sentences(text):
            candidate = f"{current} {sentence}" if current else sentence
            if current and estimate_tokens(candidate) > self._config.chunk_size:
                chunks.append(current)
                tail = current.split()[-overlap_words:] if overlap_words else []
                current = " ".join([*tail, sentence])
                continue
            current = candidate
        if current:
            chunks.append(current)
        return chunks

    def chunk(self, text: str) -> Sequence[Chunk]:
        return [Chunk(text=piece, index=index) for index, piece in enumerate(self.split(text))]


def chunk_text(text: str, chunk_size: int = 600, chunk_overlap: int = 50) -> List[str]:
    """Convenience helper for tests and ad-hoc chunking."""

    return SentenceChunker(ChunkingConfig(chunk_size=chunk_size, chunk_overlap=chunk_overlap)).split(text)
