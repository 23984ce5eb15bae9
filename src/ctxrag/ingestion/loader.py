"""Load documents from disk via LangChain loaders."""

from __future__ import annotations

import re
import unicodedata
from pathlib import Path
from typing import Mapping, Sequence

from langchain_community.document_loaders import Docx2txtLoader, PyPDFLoader, TextLoader
from langchain_community.document_loaders.base import BaseLoader
from langchain_core.documents import Document as LCDocument

from ctxrag.errors import ConfigError, CtxRagError
from ctxrag.metrics.observability import get_logger
from ctxrag.models import Document


class UnsupportedFileTypeError(ConfigError):
    """Raised when a document extension has no registered loader."""


class DocumentLoadError(CtxRagError):
    """Raised when a loader fails to read a document."""


_LOADERS: Mapping[str, type[BaseLoader]] = {
    ".pdf": PyPDFLoader,
    ".docx": Docx2txtLoader,
    ".txt": TextLoader,
    ".md": TextLoader,
}

_logger = get_logger("ingestion.loader")


def normalize_text(raw: str) -> str:
    """Normalise unicode and horizontal whitespace, keeping paragraph breaks."""

    normalized = unicodedata.normalize("NFKC", raw)
    normalized = normalized.replace("\u00a0", " ").replace("\r\n", "\n").replace("\r", "\n")
    normalized = re.sub(r"[ \t\f\v]+", " ", normalized)
    normalized = re.sub(r" *\n *", "\n", normalized)
    normalized = re.sub(r"\n{3,}", "\n\n", normalized)
    return normalized.strip()


def supported_extensions() -> tuple[str, ...]:
    return tuple(sorted(_LOADERS))


def _build_loader(loader_cls: type[BaseLoader], path: Path, encoding: str) -> BaseLoader:
    if loader_cls is TextLoader:
        return loader_cls(str(path), encoding=encoding)
    return loader_cls(str(path))


def join_pages(pages: Sequence[LCDocument]) -> str:
    return "\n\n".join(
        text for text in (normalize_text(page.page_content) for page in pages) if text
    )


def load_document(path: Path, *, document_id: str | None = None, encoding: str = "utf-8") -> Document:
    """Read ``path`` into a :class:`Document`; the id defaults to the file name."""

    suffix = path.suffix.lower()
    loader_cls = _LOADERS.get(suffix)
    if loader_cls is None:
        raise UnsupportedFileTypeError(f"Unsupported document type: {suffix or '<none>'}")
    try:
        pages = _build_loader(loader_cls, path, encoding).load()
    except Exception as exc:  # loaders raise assorted error types
        raise DocumentLoadError(f"Failed to load {path}: {exc}") from exc

    text = join_pages(pages)
    _logger.info("document.loaded", path=str(path), pages=len(pages), characters=len(text))
    return Document(
        document_id=document_id or path.name,
        text=text,
        source_path=str(path.resolve()),
        metadata={"media_type": suffix.lstrip("."), "pages": len(pages)},
    )
