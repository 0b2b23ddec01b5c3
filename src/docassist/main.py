"""FastAPI application exposing the document assistant."""
from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import PlainTextResponse

from docassist.api import install_error_handlers, router
from docassist.logging_config import configure_logging
from docassist.service import DocumentAssistant, get_assistant

configure_logging()

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="Document Assistant API")
app.include_router(router)
install_error_handlers(app)


@app.get("/healthz", response_class=PlainTextResponse)
def healthcheck() -> str:
    """Liveness probe."""
    return "ok"


@app.get("/readyz")
async def readiness_probe(assistant: DocumentAssistant = Depends(get_assistant)) -> dict[str, object]:
    """Readiness probe that ensures the vector index answers."""

    try:
        return await assistant.ready()
    except Exception as exc:
        LOGGER.exception("Readiness check failed")
        raise HTTPException(status_code=503, detail=f"vector_store_unavailable: {exc}") from exc
