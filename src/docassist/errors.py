"""Typed errors raised by the ingestion and query pipelines."""
from __future__ import annotations


class DocAssistError(RuntimeError):
    """Base class for every error surfaced by the assistant core."""

    kind = "internal"
    retryable = False

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, object]:
        return {"kind": self.kind, "message": str(self)}


class IngestionError(DocAssistError):
    """Raised when a document cannot be turned into chunks."""


class UnsupportedFormat(IngestionError):
    kind = "unsupported_format"


class EmptyContent(IngestionError):
    kind = "empty_content"


class ProviderError(DocAssistError):
    """Raised by embedding and generation provider adapters."""

    kind = "provider_error"

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.provider = provider

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        if self.provider:
            payload["provider"] = self.provider
        return payload


class ProviderRateLimited(ProviderError):
    kind = "provider_rate_limited"
    retryable = True


class ProviderUnavailable(ProviderError):
    kind = "provider_unavailable"
    retryable = True


class ProviderRejected(ProviderError):
    kind = "provider_rejected"


class ProviderCircuitOpen(ProviderError):
    kind = "provider_circuit_open"

    def __init__(self, provider: str, *, retry_after: float) -> None:
        super().__init__(
            f"Circuit for provider '{provider}' is open; retry in {retry_after:.1f}s",
            provider=provider,
        )
        self.retry_after = retry_after


class RetriesExhausted(ProviderError):
    """Raised once the retry budget is spent; the last failure is the cause."""

    kind = "retries_exhausted"

    def __init__(self, provider: str, *, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"Provider '{provider}' failed after {attempts} attempts: "
            f"{type(last_error).__name__}: {last_error}",
            provider=provider,
            cause=last_error,
        )
        self.attempts = attempts
        self.last_error = last_error

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["attempts"] = self.attempts
        payload["cause"] = getattr(self.last_error, "kind", type(self.last_error).__name__)
        return payload


class DeadlineExceeded(ProviderError):
    kind = "deadline_exceeded"


class IndexInconsistency(DocAssistError):
    """Internal invariant violation inside a vector index."""

    kind = "index_inconsistency"


class DocumentConflict(DocAssistError):
    kind = "document_conflict"


class DocumentNotFound(DocAssistError):
    kind = "document_not_found"


__all__ = [
    "DeadlineExceeded",
    "DocAssistError",
    "DocumentConflict",
    "DocumentNotFound",
    "EmptyContent",
    "IndexInconsistency",
    "IngestionError",
    "ProviderCircuitOpen",
    "ProviderError",
    "ProviderRateLimited",
    "ProviderRejected",
    "ProviderUnavailable",
    "RetriesExhausted",
    "UnsupportedFormat",
]
