"""Translate typed assistant errors into HTTP responses."""
from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from docassist.errors import DocAssistError

_STATUS_BY_KIND = {
    "unsupported_format": 422,
    "empty_content": 422,
    "provider_rejected": 502,
    "provider_rate_limited": 503,
    "provider_unavailable": 503,
    "provider_circuit_open": 503,
    "retries_exhausted": 503,
    "deadline_exceeded": 504,
    "document_conflict": 409,
    "document_not_found": 404,
}


def error_status(kind: str | None) -> int:
    return _STATUS_BY_KIND.get(kind or "", 500)


async def _handle_assistant_error(request: Request, exc: DocAssistError) -> JSONResponse:
    headers = None
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        headers = {"Retry-After": str(max(int(retry_after), 1))}
    return JSONResponse(
        status_code=error_status(exc.kind),
        content={"error": exc.to_dict()},
        headers=headers,
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DocAssistError, _handle_assistant_error)  # type: ignore[arg-type]
