"""Observability helpers for ctxrag."""

from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import Iterable

import structlog
from prometheus_client import Counter, Histogram

_logger_configured = False
_correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


def configure_logging(level: int = logging.INFO) -> None:
    global _logger_configured  # noqa: PLW0603 - module-level guard
    if _logger_configured:
        return
    logging.basicConfig(level=level, format="%(message)s")
    logging.getLogger("httpx").setLevel(logging.WARNING)
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


def get_logger(name: str = "ctxrag") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


def _clamp_score(score: float) -> float:
    if score < 0.0:
        return 0.0
    if score > 1.0:
        return 1.0
    return score


class PipelineMetrics:
    """Prometheus metrics for pipeline stages."""

    ingestion_latency = Histogram(
        "ctxrag_ingestion_duration_seconds",
        "Time spent ingesting one document.",
        buckets=(0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0),
    )
    chunk_outcomes = Counter(
        "ctxrag_chunk_outcomes_total",
        "Chunks processed by the ingestion pipeline, by final stage.",
        ["stage"],
    )
    chunk_retries = Counter(
        "ctxrag_chunk_retries_total",
        "Retries of transient failures during ingestion.",
    )
    retrieval_latency = Histogram(
        "ctxrag_retrieval_duration_seconds",
        "Time spent embedding the query and searching the store.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    )
    grounding_score = Histogram(
        "ctxrag_grounding_score",
        "Similarity score of retrieved chunks.",
        buckets=(0.0, 0.25, 0.5, 0.75, 1.0),
    )
    generation_latency = Histogram(
        "ctxrag_generation_duration_seconds",
        "Time spent streaming one chat reply.",
        buckets=(0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
    )
    stream_decode_warnings = Counter(
        "ctxrag_stream_decode_warnings_total",
        "Malformed frames skipped by the stream decoder.",
    )
    chat_turn_errors = Counter(
        "ctxrag_chat_turn_errors_total",
        "Chat turns that ended with an error.",
        ["phase"],
    )

    @classmethod
    def observe_ingestion(cls, duration_seconds: float, stages: Iterable[str]) -> None:
        cls.ingestion_latency.observe(duration_seconds)
        for stage in stages:
            cls.chunk_outcomes.labels(stage=stage).inc()

    @classmethod
    def observe_retrieval(cls, duration_seconds: float, scores: Iterable[float]) -> None:
        cls.retrieval_latency.observe(duration_seconds)
        for score in scores:
            cls.grounding_score.observe(_clamp_score(score))

    @classmethod
    def observe_generation(cls, duration_seconds: float) -> None:
        cls.generation_latency.observe(duration_seconds)


__all__ = [
    "PipelineMetrics",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_correlation_id",
    "get_logger",
]
