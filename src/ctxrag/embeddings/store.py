"""Vector store implementations."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Mapping, Protocol, Sequence

import chromadb
import httpx
from chromadb.api import ClientAPI
from chromadb.api.models.Collection import Collection
from chromadb.errors import ChromaError

from ctxrag.errors import SchemaMismatchError, StoreUnavailableError
from ctxrag.metrics.observability import get_logger
from ctxrag.models import ChunkPayload, EmbeddingRecord, SearchHit

if TYPE_CHECKING:
    from ctxrag.config import Settings

DIMENSION_KEY = "ctxrag_dimension"

_CONNECTION_ERRORS: tuple[type[BaseException], ...] = (httpx.TransportError, ConnectionError)


class VectorStore(Protocol):
    """Protocol for vector persistence backends."""

    def ensure_collection(self, name: str, dimension: int) -> None:
        """Create the collection unless it already exists with the same dimension."""

    def upsert(self, record: EmbeddingRecord) -> str:
        """Insert or overwrite one record; returns its id."""

    def search(self, query_vector: Sequence[float], k: int) -> Sequence[SearchHit]:
        """Return at most ``k`` hits, most similar first."""


class ChromaVectorStore:
    """Chroma-backed vector store using the cosine metric."""

    def __init__(self, client: ClientAPI, collection_name: str = "documents") -> None:
        self._client = client
        self._collection_name = collection_name
        self._collection: Collection | None = None
        self._logger = get_logger("store")

    @property
    def collection_name(self) -> str:
        return self._collection_name

    def ensure_collection(self, name: str, dimension: int) -> None:
        try:
            try:
                collection = self._client.get_collection(name=name)
            except (ValueError, ChromaError):
                collection = self._client.get_or_create_collection(
                    name=name,
                    metadata={"hnsw:space": "cosine", DIMENSION_KEY: dimension},
                )
                self._logger.info("store.collection_created", collection=name, dimension=dimension)
        except _CONNECTION_ERRORS as exc:
            raise StoreUnavailableError(f"vector store unreachable: {exc}") from exc
        existing = (collection.metadata or {}).get(DIMENSION_KEY)
        if existing is not None and int(existing) != dimension:
            raise SchemaMismatchError(name, dimension, int(existing))
        self._collection_name = name
        self._collection = collection

    def upsert(self, record: EmbeddingRecord) -> str:
        collection = self._require_collection()
        try:
            collection.upsert(
                ids=[record.record_id],
                embeddings=[list(record.vector)],
                documents=[record.payload.embedding_text],
                metadatas=[record.payload.to_metadata()],
            )
        except _CONNECTION_ERRORS as exc:
            raise StoreUnavailableError(f"upsert of {record.record_id} failed: {exc}") from exc
        return record.record_id

    def search(self, query_vector: Sequence[float], k: int) -> Sequence[SearchHit]:
        if k <= 0:
            return []
        collection = self._require_collection()
        try:
            available = collection.count()
            if available == 0:
                return []
            results = collection.query(
                query_embeddings=[list(query_vector)],
                n_results=min(k, available),
                include=["metadatas", "distances"],
            )
        except _CONNECTION_ERRORS as exc:
            raise StoreUnavailableError(f"search failed: {exc}") from exc
        hits = self._deserialize_results(results)
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:k]

    def count(self) -> int:
        collection = self._require_collection()
        try:
            return int(collection.count())
        except _CONNECTION_ERRORS as exc:
            raise StoreUnavailableError(f"count failed: {exc}") from exc

    def reset(self) -> None:
        """Drop every record of the collection, keeping its schema."""

        collection = self._require_collection()
        try:
            ids = collection.get(include=[])["ids"]
            if ids:
                collection.delete(ids=ids)
        except _CONNECTION_ERRORS as exc:
            raise StoreUnavailableError(f"reset failed: {exc}") from exc

    def _require_collection(self) -> Collection:
        if self._collection is None:
            try:
                self._collection = self._client.get_collection(name=self._collection_name)
            except _CONNECTION_ERRORS as exc:
                raise StoreUnavailableError(f"vector store unreachable: {exc}") from exc
        return self._collection

    def _deserialize_results(self, results: Mapping[str, object]) -> list[SearchHit]:
        metadatas = self._first(results.get("metadatas"))
        distances = self._first(results.get("distances"))
        hits: list[SearchHit] = []
        for metadata, distance in zip(metadatas, distances, strict=False):
            if not isinstance(metadata, Mapping):
                continue
            hits.append(SearchHit(payload=ChunkPayload.from_metadata(metadata), score=1.0 - float(distance)))
        return hits

    @staticmethod
    def _first(value: object) -> Iterable:
        if isinstance(value, list):
            return value[0] if value else []
        return []


def connect_store(settings: "Settings", *, client: ClientAPI | None = None) -> ChromaVectorStore:
    """Build a store from settings: HTTP client when a host is set, else on-disk."""

    if client is None:
        try:
            if settings.chroma_host:
                client = chromadb.HttpClient(
                    host=settings.chroma_host,
                    port=settings.chroma_port,
                    ssl=settings.chroma_ssl,
                )
            else:
                client = chromadb.PersistentClient(path=str(Path(settings.chroma_persist_dir)))
        except _CONNECTION_ERRORS + (ValueError,) as exc:
            raise StoreUnavailableError(f"cannot connect to vector store: {exc}") from exc
    return ChromaVectorStore(client, collection_name=settings.collection)
