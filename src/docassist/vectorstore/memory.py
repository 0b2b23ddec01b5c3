"""In-process vector index scored with numpy."""
from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

from docassist.locks import KeyedLocks
from docassist.models import EmbeddingVector, IndexEntry, SearchHit
from docassist.telemetry import emit_index_event

from .base import VectorIndex, matches_filters

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _Stored:
    entry: IndexEntry
    inserted: int


class InMemoryVectorIndex(VectorIndex):
    """Dictionary of per-document, copy-on-write entry maps.

    Writers replace a document's map as a whole while holding that
    document's lock, so a concurrent search sees either the old or the new
    state of each document and never a partial delete.
    """

    backend = "memory"

    def __init__(self, *, dimension: int, model: str, metric: str = "cosine") -> None:
        super().__init__(dimension=dimension, model=model, metric=metric)
        self._documents: Dict[str, Mapping[int, _Stored]] = {}
        self._locks = KeyedLocks()
        self._counter = itertools.count(1)

    async def upsert(self, entry: IndexEntry) -> None:
        self.check_vector(entry.vector)
        async with self._locks.hold(entry.document_id):
            current = self._documents.get(entry.document_id, {})
            previous = current.get(entry.sequence)
            if previous is not None and previous.entry == entry:
                return
            updated = dict(current)
            updated[entry.sequence] = _Stored(entry, next(self._counter))
            self._documents[entry.document_id] = updated
        emit_index_event("index.upsert", backend=self.backend, document_id=entry.document_id, count=1)

    async def replace_document(self, document_id: str, entries: Sequence[IndexEntry]) -> None:
        checked = self.check_entries(document_id, entries)
        started = time.perf_counter()
        async with self._locks.hold(document_id):
            current = self._documents.get(document_id, {})
            updated: Dict[int, _Stored] = {}
            for entry in checked:
                previous = current.get(entry.sequence)
                if previous is not None and previous.entry == entry:
                    updated[entry.sequence] = previous
                else:
                    updated[entry.sequence] = _Stored(entry, next(self._counter))
            if updated:
                self._documents[document_id] = updated
            else:
                self._documents.pop(document_id, None)
        emit_index_event(
            "index.replace",
            backend=self.backend,
            document_id=document_id,
            count=len(checked),
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )

    async def delete(self, document_id: str) -> int:
        async with self._locks.hold(document_id):
            removed = self._documents.pop(document_id, {})
        emit_index_event("index.delete", backend=self.backend, document_id=document_id, count=len(removed))
        return len(removed)

    async def search(
        self,
        vector: EmbeddingVector,
        k: int,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> List[SearchHit]:
        self.check_vector(vector)
        if k <= 0:
            return []
        candidates = [
            stored
            for document in list(self._documents.values())
            for stored in document.values()
            if matches_filters(stored.entry.metadata, filters)
        ]
        if not candidates:
            return []

        matrix = np.asarray([stored.entry.vector.values for stored in candidates], dtype=np.float64)
        query = np.asarray(vector.values, dtype=np.float64)
        scores = matrix @ query
        if self.metric == "cosine":
            norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
            scores = np.divide(scores, norms, out=np.zeros_like(scores), where=norms > 0)

        ranked = sorted(
            zip(scores.tolist(), candidates),
            key=lambda item: (-item[0], -item[1].inserted),
        )
        return [SearchHit(entry=stored.entry, score=float(score)) for score, stored in ranked[:k]]

    async def entries(self) -> List[IndexEntry]:
        return [
            document[sequence].entry
            for _, document in sorted(self._documents.items())
            for sequence in sorted(document)
        ]

    async def count(self) -> int:
        return sum(len(document) for document in self._documents.values())


__all__ = ["InMemoryVectorIndex"]
