"""Common contract shared by vector index backends."""
from __future__ import annotations

import json
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from docassist.errors import IndexInconsistency
from docassist.models import EmbeddingVector, IndexEntry, SearchHit

METRICS = ("cosine", "inner_product")


def matches_filters(metadata: Mapping[str, Any], filters: Optional[Mapping[str, Any]]) -> bool:
    """Equality match on every filter key; list, tuple and set values mean "any of"."""

    if not filters:
        return True
    for key, expected in filters.items():
        value = metadata.get(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


class VectorIndex(ABC):
    """Similarity index over chunk vectors of one model and one dimension.

    Entries are keyed by ``(document_id, sequence)``. Searches return at most
    ``k`` hits by descending score; equal scores put the most recently inserted
    entry first.
    """

    backend = "abstract"

    def __init__(self, *, dimension: int, model: str, metric: str = "cosine") -> None:
        if dimension <= 0:
            raise ValueError("dimension must be a positive integer")
        if metric not in METRICS:
            raise ValueError(f"Unsupported similarity metric: {metric!r}")
        self.dimension = dimension
        self.model = model
        self.metric = metric

    def check_vector(self, vector: EmbeddingVector) -> None:
        if vector.dimension != self.dimension:
            raise IndexInconsistency(
                f"Vector dimension {vector.dimension} does not match index dimension {self.dimension}"
            )
        if vector.model != self.model:
            raise IndexInconsistency(
                f"Vector model '{vector.model}' does not match index model '{self.model}'"
            )

    def check_entries(self, document_id: str, entries: Iterable[IndexEntry]) -> List[IndexEntry]:
        checked = []
        for entry in entries:
            if entry.document_id != document_id:
                raise IndexInconsistency(
                    f"Entry of document '{entry.document_id}' passed for '{document_id}'"
                )
            self.check_vector(entry.vector)
            checked.append(entry)
        return checked

    @abstractmethod
    async def upsert(self, entry: IndexEntry) -> None:
        """Insert ``entry`` or replace the one stored under the same key."""

    @abstractmethod
    async def replace_document(self, document_id: str, entries: Sequence[IndexEntry]) -> None:
        """Swap every entry of ``document_id`` for ``entries`` in one step."""

    @abstractmethod
    async def delete(self, document_id: str) -> int:
        """Remove every entry of ``document_id``; return how many were removed."""

    @abstractmethod
    async def search(
        self,
        vector: EmbeddingVector,
        k: int,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> List[SearchHit]:
        """Return the ``k`` entries most similar to ``vector``."""

    @abstractmethod
    async def entries(self) -> List[IndexEntry]:
        """Return every stored entry ordered by document and sequence."""

    async def count(self) -> int:
        return len(await self.entries())

    async def document_ids(self) -> List[str]:
        return sorted({entry.document_id for entry in await self.entries()})

    async def snapshot(self, snapshot_dir: Path) -> Path:
        """Write the index content as JSON into ``snapshot_dir``."""

        snapshot_dir.mkdir(parents=True, exist_ok=True)
        timestamp = time.strftime("%Y%m%d%H%M%S")
        snapshot_path = snapshot_dir / f"{self.backend}-index-{timestamp}.json"
        payload = {
            "backend": self.backend,
            "model": self.model,
            "dimension": self.dimension,
            "metric": self.metric,
            "entries": [
                {
                    "id": entry.chunk_id,
                    "document_id": entry.document_id,
                    "sequence": entry.sequence,
                    "content": entry.text,
                    "metadata": dict(entry.metadata),
                    "embedding": list(entry.vector.values),
                }
                for entry in await self.entries()
            ],
        }
        snapshot_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False, default=str))
        return snapshot_path


__all__ = ["METRICS", "VectorIndex", "matches_filters"]
