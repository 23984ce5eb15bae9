"""Shared domain models used across the ctxrag pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Sequence
from uuid import NAMESPACE_URL, uuid5

CONTEXT_SEPARATOR = "\n\n---\n\n"


def make_record_id(document_id: str, ordinal: int) -> str:
    """Stable vector-store id for one chunk of one document."""

    return uuid5(NAMESPACE_URL, f"ctxrag://{document_id}/{ordinal}").hex


@dataclass(frozen=True)
class Document:
    """Raw document text plus its logical identifier."""

    document_id: str
    text: str
    source_path: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Chunk:
    """Contiguous slice ``[start, end)`` of a document.

    ``own_start`` marks where the part not shared with the previous chunk
    begins; for the first chunk it equals ``start``.
    """

    document_id: str
    ordinal: int
    start: int
    end: int
    own_start: int
    text: str

    @property
    def fresh_text(self) -> str:
        return self.text[self.own_start - self.start :]

    @property
    def record_id(self) -> str:
        return make_record_id(self.document_id, self.ordinal)


@dataclass(frozen=True)
class ContextualChunk:
    """Chunk together with its generated context."""

    chunk: Chunk
    context: str

    @property
    def embedding_text(self) -> str:
        context = self.context.strip()
        if not context:
            return self.chunk.text
        return f"{context}{CONTEXT_SEPARATOR}{self.chunk.text}"


@dataclass(frozen=True)
class ChunkPayload:
    """Payload stored next to each vector."""

    document_id: str
    ordinal: int
    start: int
    end: int
    text: str
    context: str
    source_path: str = ""

    @property
    def embedding_text(self) -> str:
        context = self.context.strip()
        if not context:
            return self.text
        return f"{context}{CONTEXT_SEPARATOR}{self.text}"

    def to_metadata(self) -> dict[str, str | int]:
        return {
            "document_id": self.document_id,
            "ordinal": self.ordinal,
            "start": self.start,
            "end": self.end,
            "text": self.text,
            "context": self.context,
            "source_path": self.source_path,
        }

    @classmethod
    def from_metadata(cls, metadata: Mapping[str, object]) -> "ChunkPayload":
        return cls(
            document_id=str(metadata.get("document_id", "")),
            ordinal=int(metadata.get("ordinal", 0)),
            start=int(metadata.get("start", 0)),
            end=int(metadata.get("end", 0)),
            text=str(metadata.get("text", "")),
            context=str(metadata.get("context", "")),
            source_path=str(metadata.get("source_path", "") or ""),
        )

    @classmethod
    def from_contextual_chunk(cls, item: ContextualChunk, source_path: str | None = None) -> "ChunkPayload":
        chunk = item.chunk
        return cls(
            document_id=chunk.document_id,
            ordinal=chunk.ordinal,
            start=chunk.start,
            end=chunk.end,
            text=chunk.text,
            context=item.context,
            source_path=source_path or "",
        )


@dataclass(frozen=True)
class EmbeddingRecord:
    """Unit of storage in the vector database."""

    record_id: str
    vector: tuple[float, ...]
    payload: ChunkPayload


@dataclass(frozen=True)
class SearchHit:
    """One ranked result of a similarity search."""

    payload: ChunkPayload
    score: float


QueryResult = Sequence[SearchHit]


class ChunkStage(str, Enum):
    PENDING = "pending"
    CONTEXTUALIZED = "contextualized"
    EMBEDDED = "embedded"
    STORED = "stored"
    FAILED = "failed"


@dataclass(frozen=True)
class ChunkOutcome:
    """Final state of one chunk after an ingestion run."""

    ordinal: int
    record_id: str
    stage: ChunkStage
    failed_stage: ChunkStage | None = None
    cause: BaseException | None = None
    retries: int = 0

    @property
    def ok(self) -> bool:
        return self.stage is ChunkStage.STORED

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "ordinal": self.ordinal,
            "record_id": self.record_id,
            "stage": self.stage.value,
            "retries": self.retries,
        }
        if self.cause is not None:
            data["failed_stage"] = self.failed_stage.value if self.failed_stage else None
            data["error"] = type(self.cause).__name__
            data["detail"] = str(self.cause)
        return data


@dataclass(frozen=True)
class IngestionReport:
    """Per-document summary of an ingestion run."""

    document_id: str
    outcomes: Sequence[ChunkOutcome]
    duration_seconds: float = 0.0

    @property
    def stored(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.ok)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.ok)

    @property
    def failures(self) -> list[ChunkOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]

    @property
    def record_ids(self) -> list[str]:
        return [outcome.record_id for outcome in self.outcomes if outcome.ok]

    def to_dict(self) -> dict[str, object]:
        return {
            "document_id": self.document_id,
            "stored": self.stored,
            "failed": self.failed,
            "duration_seconds": self.duration_seconds,
            "chunks": [outcome.to_dict() for outcome in self.outcomes],
        }


@dataclass
class ChatTurn:
    """User message and the reply assembled for it; lives for one request."""

    message: str
    reply: str = ""
    hits: Sequence[SearchHit] = ()
    prompt: Sequence[Mapping[str, str]] = ()
    warnings: int = 0
    error: str | None = None

    @property
    def completed(self) -> bool:
        return self.error is None
