"""Retrieval orchestration built on top of the embedder and vector store."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Sequence

from ctxrag.embeddings import EmbeddingBackend, VectorStore
from ctxrag.metrics.observability import PipelineMetrics, get_logger
from ctxrag.models import SearchHit


@dataclass(frozen=True)
class RetrievalConfig:
    """Configuration for retrieval."""

    top_k: int = 5
    score_threshold: float | None = None


class Retriever:
    """Embeds a query and returns the closest stored chunks."""

    def __init__(self, embedder: EmbeddingBackend, store: VectorStore, config: RetrievalConfig | None = None) -> None:
        self._embedder = embedder
        self._store = store
        self._config = config or RetrievalConfig()
        self._logger = get_logger("retrieval")

    async def retrieve(self, query: str, *, top_k: int | None = None) -> Sequence[SearchHit]:
        limit = max(1, top_k or self._config.top_k)
        start = time.perf_counter()
        vector = await self._embedder.embed(query)
        hits = list(await asyncio.to_thread(self._store.search, vector, limit))
        threshold = self._config.score_threshold
        if threshold is not None:
            hits = [hit for hit in hits if hit.score >= threshold]
        duration = time.perf_counter() - start
        PipelineMetrics.observe_retrieval(duration, (hit.score for hit in hits))
        self._logger.info(
            "retrieval.complete",
            chunk_count=len(hits),
            duration_seconds=duration,
            top_k=limit,
        )
        return hits
