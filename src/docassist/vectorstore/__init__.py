"""Vector index backends selected by configuration."""
from __future__ import annotations

from docassist.config import Settings

from .base import METRICS, VectorIndex, matches_filters
from .memory import InMemoryVectorIndex


def build_vector_index(settings: Settings, *, dimension: int, model: str) -> VectorIndex:
    """Return the backend named by ``VECTOR_STORE`` for the given embedding model."""

    if settings.vector_store == "chroma":
        from .chroma_store import ChromaVectorIndex

        return ChromaVectorIndex(
            dimension=dimension,
            model=model,
            metric=settings.vector_metric,
            collection_name=settings.collection_name,
            persist_dir=settings.chroma_persist_dir,
        )
    if settings.vector_store != "memory":
        raise ValueError(f"Unsupported VECTOR_STORE backend: {settings.vector_store!r}")
    return InMemoryVectorIndex(dimension=dimension, model=model, metric=settings.vector_metric)


__all__ = [
    "InMemoryVectorIndex",
    "METRICS",
    "VectorIndex",
    "build_vector_index",
    "matches_filters",
]
