"""Document ingestion: format detection, extraction and chunking."""
from __future__ import annotations

from .chunking import ChunkingConfig, SemanticTextChunker
from .format_detection import DocumentFormat, DocumentFormatDetector
from .normalization import normalize_text
from .normalizer import IngestionNormalizer, NormalizedDocument

__all__ = [
    "ChunkingConfig",
    "DocumentFormat",
    "DocumentFormatDetector",
    "IngestionNormalizer",
    "NormalizedDocument",
    "SemanticTextChunker",
    "normalize_text",
]
