"""Centralised observability helpers for structured lifecycle logging."""

from __future__ import annotations

import logging
import time
import traceback
from typing import Any, Iterable, Optional

LOGGER = logging.getLogger("docassist.telemetry")


def _format_exception(error: BaseException) -> str:
    return "".join(traceback.format_exception(error.__class__, error, error.__traceback__))


def log_event(
    logger: Optional[logging.Logger],
    step: str,
    *,
    level: str = "info",
    req_id: str | None = None,
    document_id: str | None = None,
    duration_ms: float | None = None,
    exc: BaseException | str | None = None,
    details: dict[str, Any] | None = None,
    extra: dict[str, Any] | None = None,
    **payload: Any,
) -> None:
    """Emit a structured log event with the agreed-upon schema."""

    logger = logger or LOGGER
    event: dict[str, Any] = {"step": step, "module": logger.name}
    if req_id:
        event["req_id"] = req_id
    if document_id:
        event["document_id"] = document_id
    if duration_ms is not None:
        event["duration_ms"] = round(duration_ms, 3)
    if details is not None:
        event["details"] = details
    if extra:
        event.update(extra)
    event.update(payload)

    exc_info = None
    if exc is not None:
        if isinstance(exc, BaseException):
            event["exc"] = _format_exception(exc)
            exc_info = (exc.__class__, exc, exc.__traceback__)
        else:
            event["exc"] = str(exc)

    log_method = getattr(logger, level.lower(), logger.info)
    log_method(event, exc_info=exc_info)


def emit_embeddings_event(
    *, model: str, count: int, batches: int, duration_ms: float, errors: list[str] | None = None
) -> None:
    details = {
        "model": model,
        "count": count,
        "batches": batches,
        "errors": errors or [],
        "per_item_ms": round(duration_ms / count, 3) if count else None,
    }
    level = "warning" if errors else "info"
    log_event(LOGGER, "embeddings.compute", level=level, duration_ms=duration_ms, details=details)


def emit_index_event(
    step: str,
    *,
    backend: str,
    document_id: str | None,
    count: int,
    duration_ms: float | None = None,
    error: BaseException | None = None,
) -> None:
    details = {"backend": backend, "count": count}
    level = "error" if error else "info"
    log_event(
        LOGGER,
        step,
        level=level,
        document_id=document_id,
        duration_ms=duration_ms,
        details=details,
        exc=error,
    )


def emit_retriever_event(
    *,
    req_id: str,
    query: str,
    top_k: int,
    results: list[dict[str, Any]],
    duration_ms: float,
) -> None:
    details = {
        "query_preview": query[:120],
        "top_k": top_k,
        "results": results,
    }
    log_event(LOGGER, "retriever.search", req_id=req_id, duration_ms=duration_ms, details=details)


def emit_prompt_event(
    *,
    req_id: str,
    sources: Iterable[str],
    context_tokens: int,
    dropped: int,
    truncated: bool,
) -> None:
    details = {
        "sources": list(sources),
        "context_tokens": context_tokens,
        "dropped": dropped,
        "truncated": truncated,
    }
    log_event(LOGGER, "prompt.compose", req_id=req_id, details=details)


def emit_inference_result(
    *,
    req_id: str,
    duration_ms: float,
    model_used: str,
    answer_preview: str,
    fallback: bool,
) -> None:
    details = {
        "model_used": model_used,
        "answer_preview": answer_preview[:120],
        "fallback": fallback,
        "tokens_generated": len(answer_preview.split()),
    }
    log_event(LOGGER, "inference.result", req_id=req_id, duration_ms=duration_ms, details=details)


def emit_retry_event(
    *, provider: str, operation: str, attempt: int, delay: float, error: BaseException
) -> None:
    details = {
        "provider": provider,
        "operation": operation,
        "attempt": attempt,
        "next_delay_s": round(delay, 3),
        "error_kind": getattr(error, "kind", type(error).__name__),
        "error": str(error),
    }
    log_event(LOGGER, "provider.retry", level="warning", details=details)


def emit_provider_call_event(
    *,
    provider: str,
    operation: str,
    attempts: int,
    duration_ms: float,
    error: BaseException | None = None,
) -> None:
    details = {"provider": provider, "operation": operation, "attempts": attempts}
    if error is not None:
        details["error_kind"] = getattr(error, "kind", type(error).__name__)
    level = "error" if error else "info"
    log_event(LOGGER, "provider.call", level=level, duration_ms=duration_ms, details=details)


def emit_circuit_event(*, provider: str, state: str, failures: int) -> None:
    details = {"provider": provider, "state": state, "consecutive_failures": failures}
    level = "warning" if state == "open" else "info"
    log_event(LOGGER, "circuit.transition", level=level, details=details)


def emit_ingest_event(
    step: str,
    *,
    document_id: str,
    file_name: str,
    size_bytes: int | None = None,
    duration_ms: float | None = None,
    status: str | None = None,
    language: str | None = None,
    chunks: int | None = None,
    error: BaseException | None = None,
) -> None:
    details = {
        "file": file_name,
        "size_bytes": size_bytes,
        "status": status,
        "language": language,
        "chunks": chunks,
    }
    level = "error" if error else "info"
    log_event(
        LOGGER,
        step,
        level=level,
        document_id=document_id,
        duration_ms=duration_ms,
        details=details,
        exc=error,
    )


def emit_exception(
    *,
    module: str,
    error: BaseException,
    req_id: str | None = None,
    document_id: str | None = None,
) -> None:
    log_event(
        LOGGER,
        "exception",
        level="error",
        req_id=req_id,
        document_id=document_id,
        details={"module": module, "kind": getattr(error, "kind", type(error).__name__)},
        exc=error,
    )


__all__ = [
    "emit_circuit_event",
    "emit_embeddings_event",
    "emit_exception",
    "emit_index_event",
    "emit_inference_result",
    "emit_ingest_event",
    "emit_prompt_event",
    "emit_provider_call_event",
    "emit_retriever_event",
    "emit_retry_event",
    "log_event",
]
