from __future__ import annotations

import asyncio

import pytest

from ctxrag.embeddings.store import ChromaVectorStore
from ctxrag.errors import ContextGenerationError, DimensionMismatchError, SchemaMismatchError, StoreUnavailableError
from ctxrag.ingestion.pipeline import IngestionPipeline, PipelineConfig, context_windows
from ctxrag.ingestion.splitter import TextSplitter, split
from ctxrag.models import ChunkStage, Document, make_record_id
from ctxrag.services.context import TemplateContextAgent


class FailingAgent(TemplateContextAgent):
    """Fails permanently on selected ordinals, transiently a given number of times on others."""

    def __init__(self, *, broken: set[int] = frozenset(), flaky: dict[int, int] | None = None) -> None:
        super().__init__()
        self.broken = broken
        self.flaky = dict(flaky or {})
        self.calls: list[int] = []
        self.sources: dict[int, str] = {}

    async def contextualize(self, document_text, chunk):
        self.calls.append(chunk.ordinal)
        self.sources[chunk.ordinal] = document_text
        if chunk.ordinal in self.broken:
            raise ContextGenerationError(chunk.ordinal, "model refused")
        if self.flaky.get(chunk.ordinal, 0) > 0:
            self.flaky[chunk.ordinal] -= 1
            raise ContextGenerationError(chunk.ordinal, "timeout", transient=True)
        return await super().contextualize(document_text, chunk)


def _pipeline(store: ChromaVectorStore, embedder, agent=None, **overrides) -> IngestionPipeline:
    config = PipelineConfig(
        collection=store.collection_name,
        retry_initial_backoff=0.0,
        retry_max_backoff=0.0,
        **overrides,
    )
    return IngestionPipeline(TextSplitter(max_chunk_size=60), agent or TemplateContextAgent(), embedder, store, config)


@pytest.mark.asyncio
async def test_ingest_three_chunk_document(chroma_store, keyword_embedder, fruit_document) -> None:
    report = await _pipeline(chroma_store, keyword_embedder).ingest(fruit_document)

    assert (report.stored, report.failed) == (3, 0)
    assert [outcome.ordinal for outcome in report.outcomes] == [0, 1, 2]
    assert report.record_ids == [make_record_id("fruit-notes", ordinal) for ordinal in range(3)]
    assert chroma_store.count() == 3
    assert all(text.startswith("Part ") and "\n\n---\n\n" in text for text in keyword_embedder.calls)


@pytest.mark.asyncio
async def test_one_failing_chunk_does_not_abort_siblings(chroma_store, keyword_embedder, fruit_document) -> None:
    report = await _pipeline(chroma_store, keyword_embedder, FailingAgent(broken={1})).ingest(fruit_document)

    assert (report.stored, report.failed) == (2, 1)
    failure = report.failures[0]
    assert failure.ordinal == 1
    assert failure.stage is ChunkStage.FAILED
    assert failure.failed_stage is ChunkStage.PENDING
    assert isinstance(failure.cause, ContextGenerationError)
    assert chroma_store.count() == 2
    assert report.to_dict()["chunks"][1]["error"] == "ContextGenerationError"


@pytest.mark.asyncio
async def test_reingesting_overwrites_instead_of_duplicating(chroma_store, keyword_embedder, fruit_document) -> None:
    pipeline = _pipeline(chroma_store, keyword_embedder)

    first = await pipeline.ingest(fruit_document)
    second = await pipeline.ingest(fruit_document)

    assert first.record_ids == second.record_ids
    assert chroma_store.count() == 3


@pytest.mark.asyncio
async def test_transient_failures_are_retried(chroma_store, keyword_embedder, fruit_document) -> None:
    agent = FailingAgent(flaky={0: 2})
    report = await _pipeline(chroma_store, keyword_embedder, agent, retry_attempts=3).ingest(fruit_document)

    assert report.stored == 3
    assert report.outcomes[0].retries == 2
    assert agent.calls.count(0) == 3


@pytest.mark.asyncio
async def test_exhausted_retries_become_chunk_failure(chroma_store, keyword_embedder, fruit_document) -> None:
    agent = FailingAgent(flaky={2: 10})
    report = await _pipeline(chroma_store, keyword_embedder, agent, retry_attempts=2).ingest(fruit_document)

    assert (report.stored, report.failed) == (2, 1)
    assert report.failures[0].retries == 1
    assert report.failures[0].cause.transient


@pytest.mark.asyncio
async def test_store_outage_during_upsert_is_recorded(keyword_embedder, fruit_document, chroma_store) -> None:
    class FlakyStore:
        collection_name = chroma_store.collection_name

        def ensure_collection(self, name, dimension):
            chroma_store.ensure_collection(name, dimension)

        def upsert(self, record):
            if record.payload.ordinal == 0:
                raise StoreUnavailableError("connection reset")
            return chroma_store.upsert(record)

        def search(self, vector, k):
            return chroma_store.search(vector, k)

    report = await _pipeline(FlakyStore(), keyword_embedder, retry_attempts=2).ingest(fruit_document)

    assert report.failed == 1
    assert report.failures[0].failed_stage is ChunkStage.EMBEDDED
    assert report.failures[0].retries == 1


@pytest.mark.asyncio
async def test_dimension_mismatch_aborts_document(chroma_store, fruit_document) -> None:
    class WrongDimension:
        dimension = 4

        async def embed(self, text):
            raise DimensionMismatchError(4, 3)

    with pytest.raises(DimensionMismatchError):
        await _pipeline(chroma_store, WrongDimension()).ingest(fruit_document)
    assert chroma_store.count() == 0


@pytest.mark.asyncio
async def test_schema_mismatch_aborts_before_any_chunk(chroma_store, keyword_embedder, fruit_document) -> None:
    chroma_store.ensure_collection(chroma_store.collection_name, 16)
    agent = FailingAgent()

    with pytest.raises(SchemaMismatchError):
        await _pipeline(chroma_store, keyword_embedder, agent).ingest(fruit_document)
    assert agent.calls == []


@pytest.mark.asyncio
async def test_concurrency_is_bounded(chroma_store, keyword_embedder) -> None:
    active = 0
    peak = 0

    class SlowAgent(TemplateContextAgent):
        async def contextualize(self, document_text, chunk):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return await super().contextualize(document_text, chunk)

    document = Document(document_id="many", text=" ".join(f"word{i}" for i in range(200)))
    report = await _pipeline(chroma_store, keyword_embedder, SlowAgent(), max_workers=2).ingest(document)

    assert report.failed == 0
    assert len(report.outcomes) > 4
    assert peak == 2


@pytest.mark.asyncio
async def test_large_documents_use_neighbour_window(chroma_store, keyword_embedder, fruit_document) -> None:
    agent = FailingAgent()
    pipeline = _pipeline(chroma_store, keyword_embedder, agent, context_neighbours=1, context_max_document_chars=10)

    await pipeline.ingest(fruit_document)

    chunks = list(split(fruit_document, 60))
    assert agent.sources[0] == fruit_document.text[chunks[0].start : chunks[1].end]
    assert agent.sources[1] == fruit_document.text
    assert agent.sources[2] == fruit_document.text[chunks[1].start : chunks[2].end]


@pytest.mark.asyncio
async def test_small_documents_use_full_text(chroma_store, keyword_embedder, fruit_document) -> None:
    agent = FailingAgent()

    await _pipeline(chroma_store, keyword_embedder, agent, context_neighbours=0).ingest(fruit_document)

    assert set(agent.sources.values()) == {fruit_document.text}


def test_context_windows_cover_neighbours() -> None:
    document = Document(document_id="w", text="aaaa bbbb cccc dddd eeee")
    chunks = list(split(document, 5))

    windows = [window for _, window in context_windows(document, chunks, 2)]

    assert windows[0] == "aaaa bbbb cccc "
    assert windows[2] == document.text
    assert windows[-1] == "cccc dddd eeee"
    assert [chunk for chunk, _ in context_windows(document, chunks, 0)] == chunks
