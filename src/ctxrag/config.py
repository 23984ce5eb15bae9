"""Runtime configuration for ctxrag."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from ctxrag.errors import ConfigError


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="ctxrag_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"

    # LLM provider (Ollama)
    ollama_url: str = "http://localhost:11434"
    generator_model: str = "gemma3:12b"
    embedding_model: str = "paraphrase-multilingual"
    embedding_dim: int = 768
    normalize_embeddings: bool = True
    request_timeout_seconds: float = 120.0
    generator_temperature: float | None = None
    # Deterministic hash embeddings and template models, no Ollama needed
    offline: bool = False

    # Vector database
    chroma_host: str | None = None
    chroma_port: int = 8000
    chroma_ssl: bool = False
    chroma_persist_dir: Path = Path("./.chroma")
    collection: str = "documents"

    # Chunking and context generation
    chunk_size: int = 1500
    chunk_overlap: int = 0
    context_neighbours: int = 2
    context_max_document_chars: int = 12000

    # Ingestion workers and retries
    max_workers: int = 4
    retry_attempts: int = 3
    retry_initial_backoff: float = 0.5
    retry_max_backoff: float = 8.0

    # Retrieval
    top_k: int = 5
    score_threshold: float | None = None

    # Web chat
    web_host: str = "127.0.0.1"
    web_port: int = 3003

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    def validate_chunking(self) -> None:
        if self.chunk_size <= 0:
            raise ConfigError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.chunk_overlap < 0:
            raise ConfigError(f"chunk_overlap must not be negative, got {self.chunk_overlap}")
        if self.chunk_overlap >= self.chunk_size:
            raise ConfigError(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than chunk_size ({self.chunk_size})"
            )
        if self.max_workers < 1:
            raise ConfigError(f"max_workers must be at least 1, got {self.max_workers}")
        if self.retry_attempts < 1:
            raise ConfigError(f"retry_attempts must be at least 1, got {self.retry_attempts}")


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
