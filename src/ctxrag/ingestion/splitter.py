"""Deterministic, size-bounded document splitting."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterator, Sequence

from ctxrag.errors import ConfigError
from ctxrag.models import Chunk, Document

if TYPE_CHECKING:
    from ctxrag.config import Settings

# Highest priority first; a cut is placed right after the separator.
DEFAULT_SEPARATORS: tuple[str, ...] = ("\n\n", "\n", ". ", "! ", "? ", " ")


def _validate(max_chunk_size: int, overlap: int) -> None:
    if max_chunk_size <= 0:
        raise ConfigError(f"max_chunk_size must be positive, got {max_chunk_size}")
    if overlap < 0:
        raise ConfigError(f"overlap must not be negative, got {overlap}")
    if overlap >= max_chunk_size:
        raise ConfigError(f"overlap ({overlap}) must be smaller than max_chunk_size ({max_chunk_size})")


def _find_cut(text: str, lo: int, hi: int, separators: Sequence[str]) -> int:
    """Return the cut position in ``(lo, hi]`` that best respects separators."""

    if hi >= len(text):
        return len(text)
    min_cut = lo + (hi - lo) // 2
    for floor in (min_cut, lo):
        for separator in separators:
            index = text.rfind(separator, lo, hi)
            if index == -1:
                continue
            cut = index + len(separator)
            if cut > floor:
                return cut
    return hi


def iter_chunks(
    document: Document,
    max_chunk_size: int,
    overlap: int = 0,
    separators: Sequence[str] = DEFAULT_SEPARATORS,
) -> Iterator[Chunk]:
    text = document.text
    own_start = 0
    ordinal = 0
    while own_start < len(text):
        start = max(0, own_start - overlap) if ordinal else 0
        end = _find_cut(text, own_start, start + max_chunk_size, separators)
        yield Chunk(
            document_id=document.document_id,
            ordinal=ordinal,
            start=start,
            end=end,
            own_start=own_start,
            text=text[start:end],
        )
        own_start = end
        ordinal += 1


class ChunkSequence:
    """Lazy, restartable view over the chunks of one document."""

    def __init__(
        self,
        document: Document,
        max_chunk_size: int,
        overlap: int,
        separators: Sequence[str] = DEFAULT_SEPARATORS,
    ) -> None:
        self.document = document
        self.max_chunk_size = max_chunk_size
        self.overlap = overlap
        self._separators = tuple(separators)

    def __iter__(self) -> Iterator[Chunk]:
        return iter_chunks(self.document, self.max_chunk_size, self.overlap, self._separators)

    def __repr__(self) -> str:
        return (
            f"ChunkSequence(document_id={self.document.document_id!r}, "
            f"max_chunk_size={self.max_chunk_size}, overlap={self.overlap})"
        )


def split(document: Document, max_chunk_size: int, overlap: int = 0) -> ChunkSequence:
    """Split ``document`` into chunks of at most ``max_chunk_size`` characters.

    Each chunk after the first repeats the last ``overlap`` characters of its
    predecessor. Raises ``ConfigError`` immediately on invalid parameters.
    """

    _validate(max_chunk_size, overlap)
    return ChunkSequence(document, max_chunk_size, overlap)


@dataclass(frozen=True)
class TextSplitter:
    """Splitter with validated, reusable configuration."""

    max_chunk_size: int = 1500
    overlap: int = 0
    separators: tuple[str, ...] = DEFAULT_SEPARATORS

    def __post_init__(self) -> None:
        _validate(self.max_chunk_size, self.overlap)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "TextSplitter":
        return cls(max_chunk_size=settings.chunk_size, overlap=settings.chunk_overlap)

    def split(self, document: Document) -> ChunkSequence:
        return ChunkSequence(document, self.max_chunk_size, self.overlap, self.separators)
