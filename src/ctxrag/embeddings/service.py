"""Embedding backends for ctxrag."""

from __future__ import annotations

import hashlib
import logging
import math
from dataclasses import dataclass
from typing import Protocol, Tuple

import httpx

from ctxrag.errors import DimensionMismatchError, EmbeddingError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for embedding backends."""

    model: str = "paraphrase-multilingual"
    dim: int = 768
    normalize: bool = True


class EmbeddingBackend(Protocol):
    """Protocol describing embedding behaviour."""

    @property
    def dimension(self) -> int:
        """Length of every vector this backend returns."""

    async def embed(self, text: str) -> Tuple[float, ...]:
        """Return the embedding vector for ``text``."""


def _normalize(vector: Tuple[float, ...]) -> Tuple[float, ...]:
    norm = math.sqrt(sum(value * value for value in vector)) or 1.0
    return tuple(value / norm for value in vector)


class HashEmbeddingBackend:
    """Deterministic lightweight embedding fallback used for testing."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()

    @property
    def dimension(self) -> int:
        return self._config.dim

    def _hash_to_vector(self, text: str) -> Tuple[float, ...]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        repeat = (self._config.dim + len(digest) - 1) // len(digest)
        raw = (digest * repeat)[: self._config.dim]
        vector = tuple(byte / 255.0 for byte in raw)
        if self._config.normalize:
            return _normalize(vector)
        return vector

    async def embed(self, text: str) -> Tuple[float, ...]:
        return self._hash_to_vector(text)


class OllamaEmbeddingBackend:
    """Embedding backend calling the Ollama ``/api/embed`` endpoint."""

    def __init__(self, client: httpx.AsyncClient, config: EmbeddingConfig | None = None) -> None:
        self._client = client
        self._config = config or EmbeddingConfig()

    @property
    def dimension(self) -> int:
        return self._config.dim

    async def embed(self, text: str) -> Tuple[float, ...]:
        payload = {"model": self._config.model, "input": text}
        try:
            response = await self._client.post("/api/embed", json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.TransportError as exc:
            raise EmbeddingError(f"embedding request failed: {exc}", transient=True) from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise EmbeddingError(
                f"embedding provider returned HTTP {status}", transient=status >= 500
            ) from exc
        except ValueError as exc:
            raise EmbeddingError(f"embedding response is not JSON: {exc}") from exc

        try:
            vector = tuple(float(value) for value in body["embeddings"][0])
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise EmbeddingError("embedding response has no vector") from exc
        if len(vector) != self._config.dim:
            LOGGER.error(
                "Embedding dim mismatch: configured=%d, actual=%d", self._config.dim, len(vector)
            )
            raise DimensionMismatchError(self._config.dim, len(vector))
        if self._config.normalize:
            return _normalize(vector)
        return vector
