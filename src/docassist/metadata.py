"""Document metadata repository."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, List, Optional

from docassist.errors import DocumentNotFound
from docassist.models import Document, DocumentStatus, utcnow


class DocumentRepository(ABC):
    """Persistence of :class:`Document` records keyed by ``document_id``."""

    @abstractmethod
    async def create(self, document: Document) -> Document: ...

    @abstractmethod
    async def update(self, document: Document) -> Document: ...

    @abstractmethod
    async def get(self, document_id: str) -> Optional[Document]: ...

    @abstractmethod
    async def delete(self, document_id: str) -> None: ...

    @abstractmethod
    async def list(self, status: Optional[DocumentStatus] = None) -> List[Document]: ...

    async def require(self, document_id: str) -> Document:
        document = await self.get(document_id)
        if document is None:
            raise DocumentNotFound(f"Document '{document_id}' does not exist")
        return document


class InMemoryDocumentRepository(DocumentRepository):
    """Keeps copies of the records so callers cannot mutate stored state."""

    def __init__(self) -> None:
        self._records: Dict[str, Document] = {}

    async def create(self, document: Document) -> Document:
        self._records[document.document_id] = replace(document)
        return replace(document)

    async def update(self, document: Document) -> Document:
        if document.document_id not in self._records:
            raise DocumentNotFound(f"Document '{document.document_id}' does not exist")
        document.updated_at = utcnow()
        self._records[document.document_id] = replace(document)
        return replace(document)

    async def get(self, document_id: str) -> Optional[Document]:
        record = self._records.get(document_id)
        return replace(record) if record is not None else None

    async def delete(self, document_id: str) -> None:
        self._records.pop(document_id, None)

    async def list(self, status: Optional[DocumentStatus] = None) -> List[Document]:
        return [
            replace(record)
            for record in sorted(self._records.values(), key=lambda item: item.uploaded_at)
            if status is None or record.status is status
        ]


__all__ = ["DocumentRepository", "InMemoryDocumentRepository"]
