"""Domain records shared by the ingestion and query paths."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

SNIPPET_CHARS = 240


class DocumentStatus(str, Enum):
    """Processing states of an uploaded document."""

    PENDING = "pending"
    CHUNKED = "chunked"
    INDEXED = "indexed"
    FAILED = "failed"


# owner_id stored on index entries of documents uploaded without a caller identity
SHARED_OWNER = ""


def make_chunk_id(document_id: str, sequence: int) -> str:
    """Return the stable identifier of a document's chunk."""

    return uuid.uuid5(uuid.NAMESPACE_URL, f"{document_id}:{sequence}").hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def make_snippet(text: str, limit: int = SNIPPET_CHARS) -> str:
    collapsed = " ".join(text.split())
    if len(collapsed) <= limit:
        return collapsed
    return collapsed[: limit - 1].rstrip() + "…"


@dataclass(slots=True)
class Document:
    """Metadata record describing an uploaded source document."""

    document_id: str
    file_name: str
    content_type: Optional[str]
    object_key: str
    content_hash: str
    size_bytes: int
    owner_id: Optional[str] = None
    uploaded_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    status: DocumentStatus = DocumentStatus.PENDING
    chunk_count: int = 0
    language: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Chunk:
    """A contiguous span of a document's normalised text."""

    document_id: str
    sequence: int
    text: str
    char_start: int
    char_end: int
    overlap_chars: int = 0

    @property
    def chunk_id(self) -> str:
        return make_chunk_id(self.document_id, self.sequence)


@dataclass(frozen=True, slots=True)
class EmbeddingVector:
    """Vector produced for a single chunk by a given embedding model."""

    chunk_id: str
    values: Tuple[float, ...]
    model: str

    @property
    def dimension(self) -> int:
        return len(self.values)


@dataclass(frozen=True, slots=True)
class IndexEntry:
    """Unit stored by a vector index; carries enough data for provenance."""

    document_id: str
    sequence: int
    vector: EmbeddingVector
    text: str
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def snippet(self) -> str:
        return make_snippet(self.text)

    @property
    def chunk_id(self) -> str:
        return self.vector.chunk_id

    @property
    def key(self) -> Tuple[str, int]:
        return (self.document_id, self.sequence)


@dataclass(frozen=True, slots=True)
class SearchHit:
    """A search result paired with its similarity score."""

    entry: IndexEntry
    score: float


@dataclass(slots=True)
class Query:
    """Ephemeral user question plus optional conversation context."""

    question: str
    context: List[str] = field(default_factory=list)
    filters: Dict[str, Any] = field(default_factory=dict)
    top_k: Optional[int] = None
    owner_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ChunkReference:
    """Provenance pointer to a chunk used as evidence for an answer."""

    chunk_id: str
    document_id: str
    sequence: int
    score: float
    snippet: str


@dataclass(slots=True)
class Answer:
    """Generated text together with its ordered provenance chain."""

    text: str
    citations: List[ChunkReference]
    states: List[str] = field(default_factory=list)
    fallback: bool = False
    truncated: bool = False


__all__ = [
    "Answer",
    "Chunk",
    "ChunkReference",
    "Document",
    "DocumentStatus",
    "EmbeddingVector",
    "IndexEntry",
    "Query",
    "SHARED_OWNER",
    "SearchHit",
    "make_chunk_id",
    "make_snippet",
    "utcnow",
]
