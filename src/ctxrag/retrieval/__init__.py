"""Retrieval services."""

from .service import RetrievalConfig, Retriever

__all__ = ["RetrievalConfig", "Retriever"]
