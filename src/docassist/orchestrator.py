"""Read path: question → retrieval → bounded prompt → generation → answer."""
from __future__ import annotations

import logging
import time
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

from docassist.embedding import EmbeddingProducer
from docassist.errors import DocAssistError, IndexInconsistency, ProviderError
from docassist.models import SHARED_OWNER, Answer, ChunkReference, Query, SearchHit
from docassist.prompt_builder import BuiltPrompt, PromptBuilder
from docassist.providers.base import GenerationProvider
from docassist.resilience import Deadline, FailureRetryCoordinator
from docassist.telemetry import (
    emit_exception,
    emit_inference_result,
    emit_prompt_event,
    emit_retriever_event,
    log_event,
)
from docassist.vectorstore.base import VectorIndex

LOGGER = logging.getLogger(__name__)

DEFAULT_TOP_K = 5


class QueryState(str, Enum):
    RECEIVED = "received"
    EMBEDDED = "embedded"
    RETRIEVED = "retrieved"
    PROMPTED = "prompted"
    GENERATED = "generated"
    ANSWERED = "answered"
    FAILED = "failed"


def _reference(hit: SearchHit) -> ChunkReference:
    entry = hit.entry
    return ChunkReference(
        chunk_id=entry.chunk_id,
        document_id=entry.document_id,
        sequence=entry.sequence,
        score=round(hit.score, 6),
        snippet=entry.snippet,
    )


class QueryOrchestrator:
    """Drive a query through the answer state machine.

    Embedding, search and generation run through the retry coordinator.
    Prompt assembly is local and cannot fail. The answer cites exactly the
    chunks that were placed in the prompt, in rank order.
    """

    def __init__(
        self,
        producer: EmbeddingProducer,
        index: VectorIndex,
        generator: GenerationProvider,
        coordinator: FailureRetryCoordinator,
        *,
        top_k: int = DEFAULT_TOP_K,
        max_tokens: int = 256,
        context_tokens: Optional[int] = None,
        fallback_answer: Optional[str] = None,
    ) -> None:
        self.producer = producer
        self.index = index
        self.generator = generator
        self.coordinator = coordinator
        self.top_k = top_k
        self.max_tokens = max_tokens
        budget = generator.context_tokens
        if context_tokens is not None:
            budget = min(budget, context_tokens)
        self.prompt_builder = PromptBuilder(
            budget, reserved_tokens=max_tokens, counter=generator.count_tokens
        )
        self.fallback_answer = fallback_answer

    async def answer(
        self,
        query: Query,
        *,
        deadline: Optional[Deadline] = None,
        req_id: Optional[str] = None,
    ) -> Answer:
        req_id = req_id or uuid.uuid4().hex
        states: List[QueryState] = [QueryState.RECEIVED]
        top_k = self.top_k if query.top_k is None else max(query.top_k, 0)
        filters: Dict[str, Any] = dict(query.filters)
        if query.owner_id is not None:
            filters["owner_id"] = [query.owner_id, SHARED_OWNER]
        prompt: Optional[BuiltPrompt] = None

        try:
            vector = await self.producer.embed_query(query.question, deadline=deadline)
            states.append(QueryState.EMBEDDED)

            started = time.perf_counter()
            hits = await self.coordinator.call(
                self.index.backend,
                "search",
                lambda: self.index.search(vector, top_k, filters),
                deadline=deadline,
            )
            states.append(QueryState.RETRIEVED)
            emit_retriever_event(
                req_id=req_id,
                query=query.question,
                top_k=top_k,
                results=[
                    {"chunk_id": hit.entry.chunk_id, "score": round(hit.score, 4)} for hit in hits
                ],
                duration_ms=(time.perf_counter() - started) * 1000.0,
            )

            if not hits and self.fallback_answer is not None:
                return self._fallback(states, None, req_id, reason="no_results")

            prompt = self.prompt_builder.build(query.question, hits, conversation=query.context)
            states.append(QueryState.PROMPTED)
            emit_prompt_event(
                req_id=req_id,
                sources=[hit.entry.chunk_id for hit in prompt.included],
                context_tokens=prompt.context_tokens,
                dropped=len(prompt.dropped),
                truncated=prompt.truncated,
            )

            started = time.perf_counter()
            text = await self.coordinator.call(
                self.generator.name,
                "generate",
                lambda: self.generator.generate(prompt.text, self.max_tokens),
                deadline=deadline,
            )
            states.append(QueryState.GENERATED)
        except DocAssistError as error:
            if isinstance(error, ProviderError) and self.fallback_answer is not None:
                emit_exception(module=__name__, error=error, req_id=req_id)
                return self._fallback(states, prompt, req_id, reason=error.kind)
            states.append(QueryState.FAILED)
            if isinstance(error, IndexInconsistency):
                LOGGER.error("Vector index inconsistency during query %s: %s", req_id, error)
            log_event(
                LOGGER,
                "query.failed",
                level="error",
                req_id=req_id,
                details={"states": [state.value for state in states], "kind": error.kind},
                exc=error,
            )
            raise

        emit_inference_result(
            req_id=req_id,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            model_used=self.generator.model,
            answer_preview=text,
            fallback=False,
        )
        states.append(QueryState.ANSWERED)
        return Answer(
            text=text,
            citations=[_reference(hit) for hit in prompt.included],
            states=[state.value for state in states],
            truncated=prompt.truncated,
        )

    def _fallback(
        self,
        states: List[QueryState],
        prompt: Optional[BuiltPrompt],
        req_id: str,
        *,
        reason: str,
    ) -> Answer:
        states.append(QueryState.ANSWERED)
        log_event(LOGGER, "query.fallback", level="warning", req_id=req_id, details={"reason": reason})
        return Answer(
            text=self.fallback_answer or "",
            citations=[_reference(hit) for hit in prompt.included] if prompt else [],
            states=[state.value for state in states],
            fallback=True,
            truncated=prompt.truncated if prompt else False,
        )


__all__ = ["DEFAULT_TOP_K", "QueryOrchestrator", "QueryState"]
