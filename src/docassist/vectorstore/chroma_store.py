"""Chroma-backed vector index."""
from __future__ import annotations

import asyncio
import logging
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import chromadb
import numpy as np

from docassist.errors import IndexInconsistency
from docassist.locks import KeyedLocks
from docassist.models import EmbeddingVector, IndexEntry, SearchHit
from docassist.telemetry import emit_index_event

from .base import VectorIndex

LOGGER = logging.getLogger(__name__)

_SPACES = {"cosine": "cosine", "inner_product": "ip"}
_RESERVED_KEYS = ("document_id", "sequence", "model", "inserted_seq")


def _where(filters: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    if not filters:
        return None
    clauses: List[Dict[str, Any]] = []
    for key, expected in filters.items():
        if isinstance(expected, (list, tuple, set, frozenset)):
            clauses.append({key: {"$in": list(expected)}})
        else:
            clauses.append({key: expected})
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _first(result: Mapping[str, Any], key: str) -> Sequence[Any]:
    # query results hold one list per query embedding; chroma may return numpy arrays
    value = result.get(key)
    if value is None or len(value) == 0:
        return []
    return value[0]


def _scalar_metadata(metadata: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        key: value
        for key, value in metadata.items()
        if isinstance(value, (str, int, float, bool)) and key not in _RESERVED_KEYS
    }


class ChromaVectorIndex(VectorIndex):
    """Persist entries in a Chroma collection.

    Chroma calls are blocking, so each one runs in a worker thread. The
    insertion counter used for tie-breaking is stored with every record as
    ``inserted_seq``.
    """

    backend = "chroma"

    def __init__(
        self,
        *,
        dimension: int,
        model: str,
        metric: str = "cosine",
        collection_name: str = "document_chunks",
        persist_dir: str | Path | None = None,
        client: Any = None,
    ) -> None:
        super().__init__(dimension=dimension, model=model, metric=metric)
        if client is None:
            if persist_dir is None:
                client = chromadb.EphemeralClient()
            else:
                path = Path(persist_dir)
                path.mkdir(parents=True, exist_ok=True)
                client = chromadb.PersistentClient(path=str(path))
        self._client = client
        self.collection_name = collection_name
        self._collection = client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": _SPACES[metric], "model": model, "dimension": dimension},
        )
        stored_model = (self._collection.metadata or {}).get("model")
        if stored_model not in (None, model):
            raise IndexInconsistency(
                f"Collection '{collection_name}' holds vectors of model '{stored_model}', not '{model}'"
            )
        self._locks = KeyedLocks()
        self._counter_lock = threading.Lock()
        self._counter = self._load_counter()

    def _load_counter(self) -> int:
        records = self._collection.get(include=["metadatas"])
        values = [int((metadata or {}).get("inserted_seq", 0)) for metadata in records.get("metadatas") or []]
        return max(values, default=0)

    def _next_seq(self) -> int:
        with self._counter_lock:
            self._counter += 1
            return self._counter

    def _existing(self, ids: List[str]) -> Dict[str, Dict[str, Any]]:
        if not ids:
            return {}
        records = self._collection.get(ids=ids, include=["documents", "metadatas", "embeddings"])
        existing: Dict[str, Dict[str, Any]] = {}
        embeddings = records.get("embeddings")
        for index, record_id in enumerate(records.get("ids") or []):
            existing[record_id] = {
                "document": (records.get("documents") or [None])[index],
                "metadata": (records.get("metadatas") or [{}])[index] or {},
                "embedding": [float(value) for value in embeddings[index]] if embeddings is not None else [],
            }
        return existing

    def _write(self, entries: Sequence[IndexEntry]) -> None:
        existing = self._existing([entry.chunk_id for entry in entries])
        ids, embeddings, documents, metadatas = [], [], [], []
        for entry in entries:
            current = existing.get(entry.chunk_id)
            metadata = _scalar_metadata(entry.metadata)
            metadata.update(
                document_id=entry.document_id,
                sequence=entry.sequence,
                model=entry.vector.model,
            )
            if (
                current is not None
                and current["document"] == entry.text
                and len(current["embedding"]) == entry.vector.dimension
                and np.allclose(current["embedding"], entry.vector.values, atol=1e-6)
                and _scalar_metadata(current["metadata"]) == _scalar_metadata(entry.metadata)
            ):
                continue
            metadata["inserted_seq"] = self._next_seq()
            ids.append(entry.chunk_id)
            embeddings.append(list(entry.vector.values))
            documents.append(entry.text)
            metadatas.append(metadata)
        if ids:
            self._collection.upsert(ids=ids, embeddings=embeddings, documents=documents, metadatas=metadatas)

    async def upsert(self, entry: IndexEntry) -> None:
        self.check_vector(entry.vector)
        async with self._locks.hold(entry.document_id):
            await asyncio.to_thread(self._write, [entry])
        emit_index_event("index.upsert", backend=self.backend, document_id=entry.document_id, count=1)

    async def replace_document(self, document_id: str, entries: Sequence[IndexEntry]) -> None:
        checked = self.check_entries(document_id, entries)
        started = time.perf_counter()
        async with self._locks.hold(document_id):
            await asyncio.to_thread(self._replace, document_id, checked)
        emit_index_event(
            "index.replace",
            backend=self.backend,
            document_id=document_id,
            count=len(checked),
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )

    def _replace(self, document_id: str, entries: List[IndexEntry]) -> None:
        # write the new entries first, then drop sequences the new version no longer has
        self._write(entries)
        keep = {entry.chunk_id for entry in entries}
        current = self._collection.get(where={"document_id": document_id}, include=["metadatas"])
        stale = [record_id for record_id in current.get("ids") or [] if record_id not in keep]
        if stale:
            self._collection.delete(ids=stale)

    async def delete(self, document_id: str) -> int:
        async with self._locks.hold(document_id):
            removed = await asyncio.to_thread(self._delete, document_id)
        emit_index_event("index.delete", backend=self.backend, document_id=document_id, count=removed)
        return removed

    def _delete(self, document_id: str) -> int:
        current = self._collection.get(where={"document_id": document_id}, include=["metadatas"])
        ids = list(current.get("ids") or [])
        if ids:
            self._collection.delete(ids=ids)
        return len(ids)

    async def search(
        self,
        vector: EmbeddingVector,
        k: int,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> List[SearchHit]:
        self.check_vector(vector)
        if k <= 0:
            return []
        return await asyncio.to_thread(self._search, vector, k, filters)

    def _search(
        self, vector: EmbeddingVector, k: int, filters: Optional[Mapping[str, Any]]
    ) -> List[SearchHit]:
        size = self._collection.count()
        if size == 0:
            return []
        # entries tied with the k-th score may sit past k; widen the fetch until
        # the weakest fetched score falls below it or the collection is exhausted
        n_results = min(size, k * 2 + 1)
        while True:
            scored = self._query(vector, n_results, filters)
            if len(scored) < n_results or n_results >= size or len(scored) <= k:
                break
            kth_score = sorted((score for score, _, _ in scored), reverse=True)[k - 1]
            if min(score for score, _, _ in scored) < kth_score:
                break
            n_results = min(size, n_results * 2)
        scored.sort(key=lambda item: (-item[0], -item[1]))
        return [SearchHit(entry=entry, score=score) for score, _, entry in scored[:k]]

    def _query(
        self, vector: EmbeddingVector, n_results: int, filters: Optional[Mapping[str, Any]]
    ) -> List[Tuple[float, int, IndexEntry]]:
        result = self._collection.query(
            query_embeddings=[list(vector.values)],
            n_results=n_results,
            where=_where(filters),
            include=["documents", "metadatas", "distances", "embeddings"],
        )
        ids = _first(result, "ids")
        documents = _first(result, "documents")
        metadatas = _first(result, "metadatas")
        distances = _first(result, "distances")
        embeddings = _first(result, "embeddings")

        scored = []
        for record_id, document, metadata, distance, embedding in zip(
            ids, documents, metadatas, distances, embeddings
        ):
            entry = self._to_entry(record_id, document, metadata or {}, embedding)
            score = 1.0 - float(distance)
            scored.append((score, int((metadata or {}).get("inserted_seq", 0)), entry))
        return scored

    def _to_entry(
        self, record_id: str, document: Optional[str], metadata: Mapping[str, Any], embedding: Sequence[float]
    ) -> IndexEntry:
        return IndexEntry(
            document_id=str(metadata.get("document_id", "")),
            sequence=int(metadata.get("sequence", 0)),
            vector=EmbeddingVector(
                chunk_id=record_id,
                values=tuple(float(value) for value in embedding),
                model=str(metadata.get("model", self.model)),
            ),
            text=document or "",
            metadata=_scalar_metadata(metadata),
        )

    async def entries(self) -> List[IndexEntry]:
        records = await asyncio.to_thread(
            self._collection.get, include=["documents", "metadatas", "embeddings"]
        )
        embeddings = records.get("embeddings")
        entries = [
            self._to_entry(
                record_id,
                (records.get("documents") or [])[index],
                (records.get("metadatas") or [])[index] or {},
                embeddings[index] if embeddings is not None else [],
            )
            for index, record_id in enumerate(records.get("ids") or [])
        ]
        entries.sort(key=lambda entry: entry.key)
        return entries

    async def count(self) -> int:
        return await asyncio.to_thread(self._collection.count)


__all__ = ["ChromaVectorIndex"]
