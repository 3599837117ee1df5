"""Plain-text extraction from uploaded document bytes."""

from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path
from typing import Mapping, Protocol

from langchain_community.document_loaders import Docx2txtLoader, PyPDFLoader
from langchain_community.document_loaders.base import BaseLoader

from kbchat.errors import ExtractionError, UnsupportedFileTypeError
from kbchat.metrics.observability import get_logger


def file_extension(filename: str) -> str:
    """Return the lower-cased extension without the dot, or ``""``."""

    return Path(filename).suffix.lower().lstrip(".")


class TextExtractor(Protocol):
    """Protocol for turning raw document bytes into plain text."""

    async def extract(self, data: bytes, filename: str, mime_type: str | None = None) -> str:
        """Return the document text; raise UnsupportedFileTypeError for unknown extensions."""


class LangChainTextExtractor:
    """Dispatch on the filename extension; binary formats go through LangChain loaders."""

    _LOADERS: Mapping[str, type[BaseLoader]] = {
        "pdf": PyPDFLoader,
        "docx": Docx2txtLoader,
    }
    _PLAIN_TEXT = frozenset({"txt", "md"})

    _logger = get_logger("ingestion.extraction")

    def __init__(self, encoding: str = "utf-8") -> None:
        self._encoding = encoding

    @property
    def supported_extensions(self) -> frozenset[str]:
        return frozenset(self._LOADERS) | self._PLAIN_TEXT

    async def extract(self, data: bytes, filename: str, mime_type: str | None = None) -> str:
        extension = file_extension(filename)
        if extension in self._PLAIN_TEXT:
            return data.decode(self._encoding, errors="replace")
        loader_cls = self._LOADERS.get(extension)
        if loader_cls is None:
            raise UnsupportedFileTypeError(f"Unsupported file type: {extension or '<none>'}")
        try:
            return await asyncio.to_thread(self._load_with, loader_cls, data, extension)
        except Exception as exc:  # pragma: no cover - loader specific errors
            self._logger.warning("extraction.failed", filename=filename, mime_type=mime_type, detail=str(exc))
            raise ExtractionError(f"Failed to extract text from {filename}: {exc}") from exc

    @staticmethod
    def _load_with(loader_cls: type[BaseLoader], data: bytes, extension: str) -> str:
        # Loaders read from disk, so spill the upload into a scratch directory.
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / f"upload.{extension}"
            path.write_bytes(data)
            documents = loader_cls(str(path)).load()
        return "\n".join(document.page_content for document in documents)
