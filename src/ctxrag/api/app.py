"""FastAPI application exposing the ctxrag chat and ingestion services."""

from __future__ import annotations

import json
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator
from uuid import uuid4

import httpx
from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, Response, StreamingResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ctxrag.api.schemas import ChatRequest, IndexStatsResponse, IngestionReportResponse, TextIngestionRequest
from ctxrag.config import Settings, get_settings
from ctxrag.embeddings import (
    ChromaVectorStore,
    EmbeddingBackend,
    EmbeddingConfig,
    HashEmbeddingBackend,
    OllamaEmbeddingBackend,
    connect_store,
)
from ctxrag.errors import CtxRagError, StoreUnavailableError
from ctxrag.ingestion import IngestionPipeline, PipelineConfig, TextSplitter
from ctxrag.metrics.observability import bind_correlation_id, clear_correlation_id, configure_logging, get_logger
from ctxrag.models import ChatTurn, Document
from ctxrag.retrieval import RetrievalConfig, Retriever
from ctxrag.services import (
    ChatService,
    ContextAgentConfig,
    GenerationConfig,
    OllamaChatModel,
    OllamaContextAgent,
    TemplateChatModel,
    TemplateContextAgent,
    build_ollama_client,
)

INDEX_PAGE = Path(__file__).parent / "static" / "index.html"


@dataclass(frozen=True)
class AppDependencies:
    pipeline: IngestionPipeline
    store: ChromaVectorStore
    chat_service: ChatService
    http_client: httpx.AsyncClient | None = None


def build_dependencies(settings: Settings, *, store: ChromaVectorStore | None = None) -> AppDependencies:
    """Wire clients, pipeline and chat service from settings."""

    settings.validate_chunking()
    embedding_config = EmbeddingConfig(
        model=settings.embedding_model,
        dim=settings.embedding_dim,
        normalize=settings.normalize_embeddings,
    )
    http_client: httpx.AsyncClient | None = None
    embedder: EmbeddingBackend
    if settings.offline:
        embedder = HashEmbeddingBackend(embedding_config)
        context_agent = TemplateContextAgent()
        chat_model = TemplateChatModel()
    else:
        http_client = build_ollama_client(settings)
        embedder = OllamaEmbeddingBackend(http_client, embedding_config)
        context_agent = OllamaContextAgent(
            http_client,
            ContextAgentConfig(model=settings.generator_model, temperature=settings.generator_temperature),
        )
        chat_model = OllamaChatModel(
            http_client,
            GenerationConfig(model=settings.generator_model, temperature=settings.generator_temperature),
        )

    store = store or connect_store(settings)
    store.ensure_collection(settings.collection, embedder.dimension)
    pipeline = IngestionPipeline(
        TextSplitter.from_settings(settings),
        context_agent,
        embedder,
        store,
        PipelineConfig.from_settings(settings),
    )
    retriever = Retriever(
        embedder,
        store,
        RetrievalConfig(top_k=settings.top_k, score_threshold=settings.score_threshold),
    )
    return AppDependencies(
        pipeline=pipeline,
        store=store,
        chat_service=ChatService(retriever, chat_model),
        http_client=http_client,
    )


def _sse(frame: dict[str, object]) -> str:
    return f"data: {json.dumps(frame, ensure_ascii=False)}\n\n"


async def _chat_frames(service: ChatService, turn: ChatTurn) -> AsyncIterator[str]:
    async with aclosing(service.stream_reply(turn)) as events:
        async for event in events:
            if event.type == "error":
                yield _sse({"error": turn.error or event.content.strip(), "done": True})
                return
            yield _sse({"message": {"role": "assistant", "content": event.content}, "done": False})
    yield _sse({"done": True})


def create_app(*, settings: Settings | None = None, dependencies: AppDependencies | None = None) -> FastAPI:
    settings = settings or get_settings()
    deps = dependencies or build_dependencies(settings)

    configure_logging()
    logger = get_logger("api")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        if deps.http_client is not None:
            await deps.http_client.aclose()

    from ctxrag import __version__

    app = FastAPI(title="ctxrag API", version=__version__, lifespan=lifespan)
    app.state.dependencies = deps

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Request-ID", uuid4().hex)
        request.state.correlation_id = correlation_id
        bind_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    @app.exception_handler(CtxRagError)
    async def handle_ctxrag_error(request: Request, exc: CtxRagError) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        unavailable = isinstance(exc, StoreUnavailableError)
        logger.error(
            "request.error",
            correlation_id=correlation_id,
            error=type(exc).__name__,
            detail=str(exc),
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE if unavailable else status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": str(exc), "error": type(exc).__name__, "correlation_id": correlation_id},
        )

    def get_dependencies(request: Request) -> AppDependencies:
        return request.app.state.dependencies

    def get_chat_service(dep: AppDependencies = Depends(get_dependencies)) -> ChatService:
        return dep.chat_service

    def get_pipeline(dep: AppDependencies = Depends(get_dependencies)) -> IngestionPipeline:
        return dep.pipeline

    def get_store(dep: AppDependencies = Depends(get_dependencies)) -> ChromaVectorStore:
        return dep.store

    @app.get("/", response_class=HTMLResponse)
    async def index() -> HTMLResponse:
        return HTMLResponse(INDEX_PAGE.read_text(encoding="utf-8"))

    @app.post("/chat")
    async def chat(payload: ChatRequest, service: ChatService = Depends(get_chat_service)) -> StreamingResponse:
        # Retrieval errors surface here as regular HTTP errors, before any frame is sent.
        turn = await service.prepare(payload.message, top_k=payload.top_k)
        return StreamingResponse(
            _chat_frames(service, turn),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    @app.post("/documents/text", response_model=IngestionReportResponse, status_code=status.HTTP_201_CREATED)
    async def ingest_raw_text(
        payload: TextIngestionRequest,
        pipeline: IngestionPipeline = Depends(get_pipeline),
    ) -> IngestionReportResponse:
        document = Document(
            document_id=payload.document_id,
            text=payload.text,
            source_path=payload.source_path,
        )
        report = await pipeline.ingest(document)
        return IngestionReportResponse.from_report(report)

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok", "version": __version__, "environment": settings.environment}

    @app.get("/livez")
    async def liveness() -> dict[str, str]:
        return {"status": "alive"}

    @app.get("/index/stats", response_model=IndexStatsResponse)
    async def index_stats(store: ChromaVectorStore = Depends(get_store)) -> IndexStatsResponse:
        return IndexStatsResponse(collection=store.collection_name, chunks=store.count())

    return app
