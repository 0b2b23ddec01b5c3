"""Service façade wiring the ingestion and query paths together."""
from __future__ import annotations

import asyncio
import hashlib
import logging
import time
import uuid
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, AsyncContextManager, Dict, List, Mapping, Optional, Sequence

from docassist.config import Settings, get_settings
from docassist.embedding import EmbeddingProducer
from docassist.errors import DocAssistError, DocumentConflict
from docassist.ingest import ChunkingConfig, IngestionNormalizer
from docassist.locks import KeyedLocks
from docassist.logging_config import AUDIT_LOGGER_NAME
from docassist.metadata import DocumentRepository, InMemoryDocumentRepository
from docassist.models import SHARED_OWNER, Answer, Document, DocumentStatus, IndexEntry, Query
from docassist.orchestrator import QueryOrchestrator
from docassist.providers import build_embedding_provider, build_generation_provider
from docassist.providers.base import EmbeddingProvider, GenerationProvider
from docassist.resilience import Deadline, FailureRetryCoordinator
from docassist.storage import InMemoryObjectStore, LocalObjectStore, ObjectStore, make_object_key
from docassist.telemetry import emit_ingest_event
from docassist.vectorstore import VectorIndex, build_vector_index

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger(AUDIT_LOGGER_NAME)


@dataclass(slots=True)
class IngestRequest:
    file_name: str
    content: bytes
    content_type: Optional[str] = None
    document_id: Optional[str] = None
    owner_id: Optional[str] = None


class DocumentAssistant:
    """Entry point used by the HTTP and CLI bindings.

    Every write to a document (ingest, re-index, delete) runs inside that
    document's single-writer section. A second writer either waits for it or
    is rejected with :class:`DocumentConflict`, depending on
    ``conflict_policy``.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        embedding_provider: Optional[EmbeddingProvider] = None,
        generation_provider: Optional[GenerationProvider] = None,
        coordinator: Optional[FailureRetryCoordinator] = None,
        index: Optional[VectorIndex] = None,
        object_store: Optional[ObjectStore] = None,
        repository: Optional[DocumentRepository] = None,
        normalizer: Optional[IngestionNormalizer] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.coordinator = coordinator or FailureRetryCoordinator.from_settings(self.settings)
        self.normalizer = normalizer or IngestionNormalizer(
            ChunkingConfig(
                chunk_tokens=self.settings.chunk_tokens,
                overlap_ratio=self.settings.overlap_ratio,
            )
        )
        self.producer = EmbeddingProducer(
            embedding_provider or build_embedding_provider(self.settings),
            self.coordinator,
            batch_size=self.settings.embedding_batch_size,
        )
        self.generator = generation_provider or build_generation_provider(self.settings)
        self.index = index or build_vector_index(
            self.settings,
            dimension=self.producer.dimension,
            model=self.producer.model,
        )
        if object_store is None:
            object_store = (
                LocalObjectStore(self.settings.object_store_dir)
                if self.settings.object_store_dir
                else InMemoryObjectStore()
            )
        self.object_store = object_store
        self.repository = repository or InMemoryDocumentRepository()
        self.orchestrator = QueryOrchestrator(
            self.producer,
            self.index,
            self.generator,
            self.coordinator,
            top_k=self.settings.top_k,
            max_tokens=self.settings.llm_max_tokens,
            context_tokens=self.settings.llm_context_tokens,
            fallback_answer=self.settings.fallback_answer,
        )
        self._writers = KeyedLocks()

    def _deadline(self) -> Optional[Deadline]:
        return Deadline.from_timeout(self.settings.request_timeout)

    def _writer(self, document_id: str, *, policy: Optional[str] = None) -> AsyncContextManager[None]:
        if (policy or self.settings.conflict_policy) == "reject" and self._writers.locked(document_id):
            raise DocumentConflict(f"Document '{document_id}' is already being written")
        return self._writers.hold(document_id)

    async def ingest(
        self,
        file_name: str,
        content: bytes,
        *,
        content_type: Optional[str] = None,
        document_id: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> Document:
        """Store, chunk, embed and index one document.

        Pipeline failures do not raise: the returned document has status
        ``failed`` and carries the cause in ``error``/``error_kind``.
        """

        document_id = document_id or uuid.uuid4().hex
        async with self._writer(document_id):
            document = Document(
                document_id=document_id,
                file_name=file_name,
                content_type=content_type,
                object_key=make_object_key(document_id, file_name),
                content_hash=hashlib.sha256(content).hexdigest(),
                size_bytes=len(content),
                owner_id=owner_id,
            )
            previous = await self.repository.get(document_id)
            if previous is not None:
                document.uploaded_at = previous.uploaded_at
                if previous.object_key != document.object_key:
                    await self.object_store.delete(previous.object_key)
                await self.object_store.put(document.object_key, content)
                document = await self.repository.update(document)
            else:
                await self.object_store.put(document.object_key, content)
                document = await self.repository.create(document)
            emit_ingest_event(
                "ingest.received",
                document_id=document_id,
                file_name=file_name,
                size_bytes=len(content),
                status=document.status.value,
            )
            return await self._process(document, content)

    async def ingest_many(self, requests: Sequence[IngestRequest]) -> List[Document]:
        """Ingest independent documents concurrently, bounded by ``ingest_concurrency``."""

        semaphore = asyncio.Semaphore(self.settings.ingest_concurrency)

        async def _run(request: IngestRequest) -> Document:
            async with semaphore:
                return await self.ingest(
                    request.file_name,
                    request.content,
                    content_type=request.content_type,
                    document_id=request.document_id,
                    owner_id=request.owner_id,
                )

        return list(await asyncio.gather(*(_run(request) for request in requests)))

    async def reindex_document(self, document_id: str) -> Document:
        """Rebuild a document's chunks and vectors from its stored bytes."""

        async with self._writer(document_id):
            document = await self.repository.require(document_id)
            content = await self.object_store.get(document.object_key)
            document.status = DocumentStatus.PENDING
            document.error = None
            document.error_kind = None
            document = await self.repository.update(document)
            return await self._process(document, content)

    async def delete_document(self, document_id: str) -> Document:
        """Remove a document with its stored bytes and every index entry."""

        async with self._writer(document_id, policy="wait"):
            document = await self.repository.require(document_id)
            removed = await self.index.delete(document_id)
            await self.object_store.delete(document.object_key)
            await self.repository.delete(document_id)
        self._audit("delete", document, chunks=removed)
        return document

    async def get_document(self, document_id: str) -> Document:
        return await self.repository.require(document_id)

    async def list_documents(self, status: Optional[DocumentStatus] = None) -> List[Document]:
        return await self.repository.list(status)

    async def query(
        self,
        question: str,
        *,
        filters: Optional[Mapping[str, Any]] = None,
        top_k: Optional[int] = None,
        context: Optional[Sequence[str]] = None,
        owner_id: Optional[str] = None,
        req_id: Optional[str] = None,
    ) -> Answer:
        query = Query(
            question=question,
            context=list(context or []),
            filters=dict(filters or {}),
            top_k=top_k,
            owner_id=owner_id,
        )
        req_id = req_id or uuid.uuid4().hex
        started = time.perf_counter()
        answer = await self.orchestrator.answer(query, deadline=self._deadline(), req_id=req_id)
        AUDIT_LOGGER.info(
            {
                "event": "query",
                "req_id": req_id,
                "owner_id": owner_id,
                "citations": [citation.chunk_id for citation in answer.citations],
                "fallback": answer.fallback,
                "duration_ms": round((time.perf_counter() - started) * 1000.0, 3),
            }
        )
        return answer

    async def ready(self) -> Dict[str, Any]:
        return {
            "embedding_model": self.producer.model,
            "generation_model": self.generator.model,
            "vector_store": self.index.backend,
            "indexed_chunks": await self.index.count(),
        }

    async def _process(self, document: Document, content: bytes) -> Document:
        started = time.perf_counter()
        try:
            normalized = await asyncio.to_thread(self.normalizer.process, document, content)
            document.status = DocumentStatus.CHUNKED
            document.chunk_count = len(normalized.chunks)
            document.language = normalized.language
            document = await self.repository.update(document)

            vectors = await self.producer.embed(normalized.chunks, deadline=self._deadline())
            metadata = {
                "owner_id": document.owner_id or SHARED_OWNER,
                "file_name": document.file_name,
            }
            entries = [
                IndexEntry(
                    document_id=chunk.document_id,
                    sequence=chunk.sequence,
                    vector=vector,
                    text=chunk.text,
                    metadata=dict(metadata),
                )
                for chunk, vector in zip(normalized.chunks, vectors)
            ]
            await self.index.replace_document(document.document_id, entries)
        except DocAssistError as error:
            return await self._mark_failed(document, error, error.kind, str(error), started)
        except Exception as error:
            LOGGER.exception("Unexpected error while processing document %s", document.document_id)
            return await self._mark_failed(
                document, error, DocAssistError.kind, f"{type(error).__name__}: {error}", started
            )

        document.status = DocumentStatus.INDEXED
        document = await self.repository.update(document)
        emit_ingest_event(
            "ingest.indexed",
            document_id=document.document_id,
            file_name=document.file_name,
            size_bytes=document.size_bytes,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            status=document.status.value,
            language=document.language,
            chunks=document.chunk_count,
        )
        self._audit("ingest", document)
        return document

    async def _mark_failed(
        self,
        document: Document,
        error: Exception,
        kind: str,
        message: str,
        started: float,
    ) -> Document:
        # a failed document must not stay retrievable with stale chunks
        await self.index.delete(document.document_id)
        document.status = DocumentStatus.FAILED
        document.error = message
        document.error_kind = kind
        document = await self.repository.update(document)
        emit_ingest_event(
            "ingest.failed",
            document_id=document.document_id,
            file_name=document.file_name,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            status=document.status.value,
            error=error,
        )
        self._audit("ingest", document)
        return document

    def _audit(self, event: str, document: Document, *, chunks: Optional[int] = None) -> None:
        AUDIT_LOGGER.info(
            {
                "event": event,
                "document_id": document.document_id,
                "owner_id": document.owner_id,
                "filename": document.file_name,
                "status": document.status.value,
                "chunks": document.chunk_count if chunks is None else chunks,
                "error_kind": document.error_kind,
            }
        )


@lru_cache()
def get_assistant() -> DocumentAssistant:
    """Return the process-wide assistant built from environment settings."""

    return DocumentAssistant(get_settings())


def reset_assistant_cache() -> None:
    get_assistant.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "DocumentAssistant",
    "IngestRequest",
    "get_assistant",
    "reset_assistant_cache",
]
