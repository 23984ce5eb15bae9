"""Error taxonomy shared by the ingestion pipeline and the chat loop."""

from __future__ import annotations


class CtxRagError(RuntimeError):
    """Base class for all ctxrag failures."""


class ConfigError(CtxRagError, ValueError):
    """Raised for invalid parameters; fatal before any work starts."""


class ContextGenerationError(CtxRagError):
    """Raised when the context agent cannot produce a context for a chunk."""

    def __init__(self, ordinal: int, message: str, *, transient: bool = False) -> None:
        super().__init__(f"chunk {ordinal}: {message}")
        self.ordinal = ordinal
        self.transient = transient


class EmbeddingError(CtxRagError):
    """Raised when the embedding provider fails."""

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class DimensionMismatchError(CtxRagError):
    """Raised when a vector does not have the configured dimension."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"expected embedding dimension {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class StoreUnavailableError(CtxRagError):
    """Raised when the vector database cannot be reached."""


class SchemaMismatchError(CtxRagError):
    """Raised when an existing collection was created with another dimension."""

    def __init__(self, collection: str, expected: int, actual: int) -> None:
        super().__init__(
            f"collection {collection!r} has dimension {actual}, configured dimension is {expected}"
        )
        self.collection = collection
        self.expected = expected
        self.actual = actual


class StreamTerminatedError(CtxRagError):
    """Raised when a model response stream breaks off; fatal to the current turn only."""


class StreamDecodeWarning(UserWarning):
    """A single malformed frame in a model response stream.

    Instances are handed to warning callbacks and logged; the decoder never
    raises them.
    """

    def __init__(self, frame: str, reason: str) -> None:
        super().__init__(f"{reason}: {frame[:200]!r}")
        self.frame = frame
        self.reason = reason


FATAL_INGESTION_ERRORS: tuple[type[Exception], ...] = (
    ConfigError,
    DimensionMismatchError,
    SchemaMismatchError,
)


def is_transient(exc: BaseException) -> bool:
    """Return True when retrying the failed call may succeed."""

    if isinstance(exc, StoreUnavailableError):
        return True
    if isinstance(exc, (ContextGenerationError, EmbeddingError)):
        return exc.transient
    return False


__all__ = [
    "ConfigError",
    "ContextGenerationError",
    "CtxRagError",
    "DimensionMismatchError",
    "EmbeddingError",
    "FATAL_INGESTION_ERRORS",
    "SchemaMismatchError",
    "StoreUnavailableError",
    "StreamDecodeWarning",
    "StreamTerminatedError",
    "is_transient",
]
