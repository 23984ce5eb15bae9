"""Contextual ingestion: split, contextualize, embed and store one document."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable, Iterable, Iterator, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential_jitter

from ctxrag.embeddings import EmbeddingBackend, VectorStore
from ctxrag.errors import FATAL_INGESTION_ERRORS, is_transient
from ctxrag.ingestion.loader import load_document
from ctxrag.ingestion.splitter import TextSplitter
from ctxrag.metrics.observability import PipelineMetrics, get_logger
from ctxrag.models import (
    Chunk,
    ChunkOutcome,
    ChunkPayload,
    ChunkStage,
    ContextualChunk,
    Document,
    EmbeddingRecord,
    IngestionReport,
)
from ctxrag.services.context import ContextAgent

if TYPE_CHECKING:
    from ctxrag.config import Settings

T = TypeVar("T")


@dataclass(frozen=True)
class PipelineConfig:
    """Configuration for the ingestion pipeline."""

    collection: str = "documents"
    max_workers: int = 4
    retry_attempts: int = 3
    retry_initial_backoff: float = 0.5
    retry_max_backoff: float = 8.0
    context_neighbours: int = 2
    context_max_document_chars: int = 12000

    @classmethod
    def from_settings(cls, settings: "Settings") -> "PipelineConfig":
        return cls(
            collection=settings.collection,
            max_workers=settings.max_workers,
            retry_attempts=settings.retry_attempts,
            retry_initial_backoff=settings.retry_initial_backoff,
            retry_max_backoff=settings.retry_max_backoff,
            context_neighbours=settings.context_neighbours,
            context_max_document_chars=settings.context_max_document_chars,
        )


def context_windows(document: Document, chunks: Iterable[Chunk], neighbours: int) -> Iterator[tuple[Chunk, str]]:
    """Pair each chunk with the document text spanning its neighbours.

    The window runs from the start of the ``neighbours``-th previous chunk to
    the end of the ``neighbours``-th following one. Chunks are consumed
    lazily, holding at most ``2 * neighbours + 1`` of them at a time.
    """

    previous: deque[Chunk] = deque(maxlen=neighbours)
    following: deque[Chunk] = deque()

    def window(current: Chunk) -> str:
        start = previous[0].start if previous else current.start
        end = following[-1].end if following else current.end
        return document.text[start:end]

    for chunk in chunks:
        following.append(chunk)
        if len(following) > neighbours:
            current = following.popleft()
            yield current, window(current)
            previous.append(current)
    while following:
        current = following.popleft()
        yield current, window(current)
        previous.append(current)


@dataclass
class _ChunkRun:
    chunk: Chunk
    stage: ChunkStage = ChunkStage.PENDING
    retries: int = 0


class IngestionPipeline:
    """Drives every chunk of a document through its stages with bounded concurrency."""

    def __init__(
        self,
        splitter: TextSplitter,
        context_agent: ContextAgent,
        embedder: EmbeddingBackend,
        store: VectorStore,
        config: PipelineConfig | None = None,
    ) -> None:
        self._splitter = splitter
        self._context_agent = context_agent
        self._embedder = embedder
        self._store = store
        self._config = config or PipelineConfig()
        self._logger = get_logger("ingestion")

    async def ingest(self, document: Document) -> IngestionReport:
        start = time.perf_counter()
        await self._with_retry(
            lambda: asyncio.to_thread(
                self._store.ensure_collection, self._config.collection, self._embedder.dimension
            ),
            on_retry=lambda state: self._log_retry(state, ordinal=None, stage="ensure_collection"),
        )

        document_text = document.text
        use_full_document = len(document_text) <= self._config.context_max_document_chars
        windows = context_windows(document, self._splitter.split(document), self._config.context_neighbours)

        semaphore = asyncio.Semaphore(self._config.max_workers)
        fatal: list[BaseException] = []
        tasks: list[asyncio.Task[ChunkOutcome]] = []

        def on_done(task: asyncio.Task[ChunkOutcome]) -> None:
            semaphore.release()
            if not task.cancelled() and task.exception() is not None:
                fatal.append(task.exception())

        try:
            for chunk, window in windows:
                await semaphore.acquire()
                if fatal:
                    semaphore.release()
                    break
                context_source = document_text if use_full_document else window
                task = asyncio.create_task(self._process_chunk(document, chunk, context_source))
                task.add_done_callback(on_done)
                tasks.append(task)
            outcomes = await asyncio.gather(*tasks)
        except BaseException as exc:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._logger.error(
                "ingestion.aborted",
                document_id=document.document_id,
                error=type(exc).__name__,
                detail=str(exc),
            )
            raise

        ordered = sorted(outcomes, key=lambda outcome: outcome.ordinal)
        duration = time.perf_counter() - start
        report = IngestionReport(document.document_id, ordered, duration)
        PipelineMetrics.observe_ingestion(duration, (outcome.stage.value for outcome in ordered))
        self._logger.info(
            "ingestion.complete",
            document_id=document.document_id,
            stored=report.stored,
            failed=report.failed,
            duration_seconds=duration,
        )
        return report

    async def ingest_path(self, path: Path, *, document_id: str | None = None) -> IngestionReport:
        document = await asyncio.to_thread(load_document, path, document_id=document_id)
        return await self.ingest(document)

    async def _process_chunk(self, document: Document, chunk: Chunk, context_source: str) -> ChunkOutcome:
        run = _ChunkRun(chunk)

        def on_retry(state: RetryCallState) -> None:
            run.retries += 1
            self._log_retry(state, ordinal=chunk.ordinal, stage=run.stage.value)

        try:
            context = await self._with_retry(
                lambda: self._context_agent.contextualize(context_source, chunk), on_retry=on_retry
            )
            run.stage = ChunkStage.CONTEXTUALIZED
            contextual = ContextualChunk(chunk, context)
            vector = await self._with_retry(
                lambda: self._embedder.embed(contextual.embedding_text), on_retry=on_retry
            )
            run.stage = ChunkStage.EMBEDDED
            record = EmbeddingRecord(
                record_id=chunk.record_id,
                vector=tuple(vector),
                payload=ChunkPayload.from_contextual_chunk(contextual, document.source_path),
            )
            await self._with_retry(lambda: asyncio.to_thread(self._store.upsert, record), on_retry=on_retry)
            run.stage = ChunkStage.STORED
        except FATAL_INGESTION_ERRORS:
            raise
        except Exception as exc:
            self._logger.warning(
                "ingestion.chunk_failed",
                document_id=chunk.document_id,
                ordinal=chunk.ordinal,
                stage=run.stage.value,
                error=type(exc).__name__,
                detail=str(exc),
            )
            return ChunkOutcome(
                ordinal=chunk.ordinal,
                record_id=chunk.record_id,
                stage=ChunkStage.FAILED,
                failed_stage=run.stage,
                cause=exc,
                retries=run.retries,
            )
        return ChunkOutcome(
            ordinal=chunk.ordinal,
            record_id=chunk.record_id,
            stage=ChunkStage.STORED,
            retries=run.retries,
        )

    async def _with_retry(
        self,
        call: Callable[[], Awaitable[T]],
        *,
        on_retry: Callable[[RetryCallState], None],
    ) -> T:
        retrying = AsyncRetrying(
            retry=retry_if_exception(is_transient),
            stop=stop_after_attempt(self._config.retry_attempts),
            wait=wait_exponential_jitter(
                initial=self._config.retry_initial_backoff,
                max=self._config.retry_max_backoff,
                jitter=self._config.retry_initial_backoff,
            ),
            before_sleep=on_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await call()
        return result

    def _log_retry(self, state: RetryCallState, *, ordinal: int | None, stage: str) -> None:
        PipelineMetrics.chunk_retries.inc()
        exc = state.outcome.exception() if state.outcome else None
        self._logger.warning(
            "ingestion.retry",
            ordinal=ordinal,
            stage=stage,
            attempt=state.attempt_number,
            max_attempts=self._config.retry_attempts,
            error=type(exc).__name__ if exc else None,
        )
