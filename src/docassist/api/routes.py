"""API router exposing document and query endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, File, Form, Header, Query as QueryParam, Response, UploadFile
from pydantic import BaseModel, Field

from docassist.errors import DocumentNotFound
from docassist.models import Answer, Document, DocumentStatus
from docassist.service import DocumentAssistant, get_assistant

router = APIRouter(tags=["documents"])

_UNAVAILABLE_KINDS = {
    "provider_rate_limited",
    "provider_unavailable",
    "provider_circuit_open",
    "retries_exhausted",
    "deadline_exceeded",
}


class DocumentResponse(BaseModel):
    """Metadata of a stored document."""

    document_id: str
    file_name: str
    content_type: Optional[str]
    content_hash: str
    size_bytes: int
    owner_id: Optional[str]
    status: DocumentStatus
    chunk_count: int
    language: Optional[str]
    uploaded_at: datetime
    updated_at: datetime
    error: Optional[str] = None
    error_kind: Optional[str] = None


class QueryRequest(BaseModel):
    """Request body accepted by the query endpoint."""

    question: str = Field(..., min_length=1, description="Question to answer from the uploaded documents.")
    top_k: Optional[int] = Field(None, ge=0, le=50, description="How many chunks should be retrieved.")
    filters: dict[str, Any] = Field(default_factory=dict, description="Metadata equality filters.")
    context: list[str] = Field(default_factory=list, description="Earlier conversation turns.")


class CitationResponse(BaseModel):
    chunk_id: str
    document_id: str
    sequence: int
    score: float
    snippet: str


class QueryResponse(BaseModel):
    answer: str
    citations: list[CitationResponse]
    fallback: bool
    truncated: bool
    states: list[str]


def _document_response(document: Document) -> DocumentResponse:
    return DocumentResponse(
        document_id=document.document_id,
        file_name=document.file_name,
        content_type=document.content_type,
        content_hash=document.content_hash,
        size_bytes=document.size_bytes,
        owner_id=document.owner_id,
        status=document.status,
        chunk_count=document.chunk_count,
        language=document.language,
        uploaded_at=document.uploaded_at,
        updated_at=document.updated_at,
        error=document.error,
        error_kind=document.error_kind,
    )


def _answer_response(answer: Answer) -> QueryResponse:
    return QueryResponse(
        answer=answer.text,
        citations=[
            CitationResponse(
                chunk_id=citation.chunk_id,
                document_id=citation.document_id,
                sequence=citation.sequence,
                score=citation.score,
                snippet=citation.snippet,
            )
            for citation in answer.citations
        ],
        fallback=answer.fallback,
        truncated=answer.truncated,
        states=answer.states,
    )


def _failure_status(document: Document) -> int:
    if document.error_kind in _UNAVAILABLE_KINDS:
        return 503
    if document.error_kind == "internal":
        return 500
    return 422


async def _owned_document(
    assistant: DocumentAssistant, document_id: str, caller_id: Optional[str]
) -> Document:
    document = await assistant.get_document(document_id)
    if caller_id is not None and document.owner_id not in (None, caller_id):
        raise DocumentNotFound(f"Document '{document_id}' does not exist")
    return document


@router.post("/documents", response_model=DocumentResponse, status_code=201)
async def upload_document(
    response: Response,
    file: UploadFile = File(...),
    document_id: Optional[str] = Form(None),
    caller_id: Optional[str] = Header(None, alias="X-Caller-Id"),
    assistant: DocumentAssistant = Depends(get_assistant),
) -> DocumentResponse:
    """Store and index an uploaded document."""

    content = await file.read()
    if document_id:
        existing = await assistant.repository.get(document_id)
        if existing is not None:
            await _owned_document(assistant, document_id, caller_id)
    document = await assistant.ingest(
        file.filename or "upload",
        content,
        content_type=file.content_type,
        document_id=document_id or None,
        owner_id=caller_id,
    )
    if document.status is DocumentStatus.FAILED:
        response.status_code = _failure_status(document)
    return _document_response(document)


@router.get("/documents", response_model=list[DocumentResponse])
async def list_documents(
    status: Optional[DocumentStatus] = QueryParam(None),
    caller_id: Optional[str] = Header(None, alias="X-Caller-Id"),
    assistant: DocumentAssistant = Depends(get_assistant),
) -> list[DocumentResponse]:
    documents = await assistant.list_documents(status)
    return [
        _document_response(document)
        for document in documents
        if caller_id is None or document.owner_id in (None, caller_id)
    ]


@router.get("/documents/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: str,
    caller_id: Optional[str] = Header(None, alias="X-Caller-Id"),
    assistant: DocumentAssistant = Depends(get_assistant),
) -> DocumentResponse:
    return _document_response(await _owned_document(assistant, document_id, caller_id))


@router.delete("/documents/{document_id}", response_model=DocumentResponse)
async def delete_document(
    document_id: str,
    caller_id: Optional[str] = Header(None, alias="X-Caller-Id"),
    assistant: DocumentAssistant = Depends(get_assistant),
) -> DocumentResponse:
    """Delete a document together with its chunks and vectors."""

    await _owned_document(assistant, document_id, caller_id)
    return _document_response(await assistant.delete_document(document_id))


@router.post("/documents/{document_id}/reindex", response_model=DocumentResponse)
async def reindex_document(
    document_id: str,
    response: Response,
    caller_id: Optional[str] = Header(None, alias="X-Caller-Id"),
    assistant: DocumentAssistant = Depends(get_assistant),
) -> DocumentResponse:
    await _owned_document(assistant, document_id, caller_id)
    document = await assistant.reindex_document(document_id)
    if document.status is DocumentStatus.FAILED:
        response.status_code = _failure_status(document)
    return _document_response(document)


@router.post("/query", response_model=QueryResponse)
async def query_documents(
    request: QueryRequest,
    caller_id: Optional[str] = Header(None, alias="X-Caller-Id"),
    assistant: DocumentAssistant = Depends(get_assistant),
) -> QueryResponse:
    """Answer a question from the caller's indexed documents."""

    answer = await assistant.query(
        request.question,
        filters=request.filters,
        top_k=request.top_k,
        context=request.context,
        owner_id=caller_id,
    )
    return _answer_response(answer)
