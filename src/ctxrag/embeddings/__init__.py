"""Embedding services."""

from .service import EmbeddingBackend, EmbeddingConfig, HashEmbeddingBackend, OllamaEmbeddingBackend
from .store import ChromaVectorStore, VectorStore, connect_store

__all__ = [
    "EmbeddingBackend",
    "EmbeddingConfig",
    "HashEmbeddingBackend",
    "OllamaEmbeddingBackend",
    "ChromaVectorStore",
    "VectorStore",
    "connect_store",
]
