"""Pydantic models for the ctxrag API."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ctxrag.models import ChunkOutcome, IngestionReport


def _require_text(value: str, field: str) -> str:
    stripped = value.strip()
    if not stripped:
        raise ValueError(f"{field} must not be blank")
    return stripped


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, description="End-user message for this turn")
    top_k: Optional[int] = Field(default=None, ge=1, le=50, description="Override the number of retrieved chunks")

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, value: str) -> str:
        return _require_text(value, "message")


class TextIngestionRequest(BaseModel):
    """Payload for ingesting raw text content."""

    document_id: str = Field(..., min_length=1, description="Logical identifier of the document")
    text: str = Field(..., description="Raw document text")
    source_path: Optional[str] = Field(default=None, description="Where the text came from, if anywhere")

    @field_validator("document_id")
    @classmethod
    def document_id_not_blank(cls, value: str) -> str:
        return _require_text(value, "document_id")


class ChunkOutcomeModel(BaseModel):
    ordinal: int
    record_id: str
    stage: str
    retries: int = 0
    failed_stage: Optional[str] = None
    error: Optional[str] = None
    detail: Optional[str] = None

    @classmethod
    def from_outcome(cls, outcome: ChunkOutcome) -> "ChunkOutcomeModel":
        return cls(**outcome.to_dict())


class IngestionReportResponse(BaseModel):
    document_id: str = Field(..., description="Identifier of the ingested document")
    stored: int = Field(..., ge=0, description="Chunks stored in the collection")
    failed: int = Field(..., ge=0, description="Chunks that could not be stored")
    duration_seconds: float
    chunks: List[ChunkOutcomeModel]

    @classmethod
    def from_report(cls, report: IngestionReport) -> "IngestionReportResponse":
        return cls(
            document_id=report.document_id,
            stored=report.stored,
            failed=report.failed,
            duration_seconds=report.duration_seconds,
            chunks=[ChunkOutcomeModel.from_outcome(outcome) for outcome in report.outcomes],
        )


class IndexStatsResponse(BaseModel):
    collection: str
    chunks: int
