"""Document loading, splitting and the contextual ingestion pipeline."""

from .loader import DocumentLoadError, UnsupportedFileTypeError, load_document, normalize_text
from .pipeline import IngestionPipeline, PipelineConfig, context_windows
from .splitter import TextSplitter, split

__all__ = [
    "DocumentLoadError",
    "IngestionPipeline",
    "PipelineConfig",
    "TextSplitter",
    "UnsupportedFileTypeError",
    "context_windows",
    "load_document",
    "normalize_text",
    "split",
]
