"""Command line entry point: ingest documents, chat in the terminal or serve the web chat."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Sequence

import httpx

from ctxrag.api.app import AppDependencies, build_dependencies, create_app
from ctxrag.config import Settings, get_settings
from ctxrag.errors import CtxRagError
from ctxrag.metrics.observability import get_logger

PROMPT = "Query> "

logger = get_logger("cli")


def db_override(value: str) -> dict[str, object]:
    """Map ``--db`` to chroma settings: a URL selects a server, anything else a directory."""

    if "://" in value:
        url = httpx.URL(value)
        return {
            "chroma_host": url.host,
            "chroma_port": url.port or (443 if url.scheme == "https" else 8000),
            "chroma_ssl": url.scheme == "https",
        }
    return {"chroma_host": None, "chroma_persist_dir": Path(value)}


def settings_from_args(args: argparse.Namespace) -> Settings:
    override: dict[str, object] = {}
    if args.model:
        override["generator_model"] = args.model
    if args.embed:
        override["embedding_model"] = args.embed
    if args.ollama:
        override["ollama_url"] = args.ollama
    if args.db:
        override.update(db_override(args.db))
    if args.offline:
        override["offline"] = True
    if args.command == "generate":
        if args.chunk_size is not None:
            override["chunk_size"] = args.chunk_size
        if args.overlap is not None:
            override["chunk_overlap"] = args.overlap
        if args.collection:
            override["collection"] = args.collection
    if args.command == "web":
        if args.host:
            override["web_host"] = args.host
        if args.port is not None:
            override["web_port"] = args.port
    return get_settings(override)


async def _close(deps: AppDependencies) -> None:
    if deps.http_client is not None:
        await deps.http_client.aclose()


async def run_generate(settings: Settings, document: Path, document_id: str | None) -> int:
    deps = await asyncio.to_thread(build_dependencies, settings)
    try:
        report = await deps.pipeline.ingest_path(document, document_id=document_id)
    finally:
        await _close(deps)
    print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    if report.failed:
        print(f"{report.failed} of {len(report.outcomes)} chunks failed", file=sys.stderr)
        return 1
    return 0


async def run_chat(settings: Settings) -> int:
    deps = await asyncio.to_thread(build_dependencies, settings)
    try:
        while True:
            try:
                message = (await asyncio.to_thread(input, PROMPT)).strip()
            except EOFError:
                break
            if not message:
                break
            try:
                async for event in deps.chat_service.stream(message):
                    print(event.content, end="", flush=True)
            except CtxRagError as exc:
                logger.error("chat.turn_failed", error=type(exc).__name__, detail=str(exc))
                print(f"error: {exc}", file=sys.stderr)
            print()
    finally:
        await _close(deps)
    return 0


def run_web(settings: Settings) -> int:
    import uvicorn

    uvicorn.run(create_app(settings=settings), host=settings.web_host, port=settings.web_port)
    return 0


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ctxrag", description="Contextual retrieval-augmented chat over documents.")
    parser.add_argument("--model", default=None, help="Ollama model used for context generation and chat")
    parser.add_argument("--embed", default=None, help="Ollama embedding model")
    parser.add_argument("--ollama", default=None, help="Ollama base URL")
    parser.add_argument("--db", default=None, help="Chroma server URL or local persistence directory")
    parser.add_argument("--offline", action="store_true", help="Use hash embeddings and template models")
    commands = parser.add_subparsers(dest="command", required=True)

    generate = commands.add_parser("generate", help="Ingest one document into the collection")
    generate.add_argument("--document", type=Path, required=True, help="Path to a .pdf, .docx, .txt or .md file")
    generate.add_argument("--document-id", default=None, help="Logical document id (defaults to the file name)")
    generate.add_argument("--chunk-size", type=int, default=None, help="Maximum chunk size in characters")
    generate.add_argument("--overlap", type=int, default=None, help="Characters shared by consecutive chunks")
    generate.add_argument("--collection", default=None, help="Target collection name")

    commands.add_parser("chat", help="Chat with the ingested documents in the terminal")

    web = commands.add_parser("web", help="Serve the chat page and API")
    web.add_argument("--host", default=None)
    web.add_argument("--port", type=int, default=None)
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    try:
        settings = settings_from_args(args)
        if args.command == "generate":
            return asyncio.run(run_generate(settings, args.document, args.document_id))
        if args.command == "chat":
            return asyncio.run(run_chat(settings))
        return run_web(settings)
    except CtxRagError as exc:
        logger.error("cli.failed", command=args.command, error=type(exc).__name__, detail=str(exc))
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    sys.exit(main())
