"""Shared fixtures and scripted providers for the test-suite."""
from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence

import pytest

os.environ.setdefault("LOG_DIR", str(Path(tempfile.gettempdir()) / "docassist-test-logs"))

from docassist.config import Settings  # noqa: E402
from docassist.providers.base import EmbeddingProvider  # noqa: E402
from docassist.providers.hashing import HashingEmbeddingProvider  # noqa: E402
from docassist.resilience import FailureRetryCoordinator, RetryPolicy  # noqa: E402
from docassist.service import DocumentAssistant  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


async def no_sleep(_seconds: float) -> None:
    return None


class ScriptedEmbeddingProvider(EmbeddingProvider):
    """Hashing embeddings preceded by a scripted list of failures."""

    name = "scripted-embeddings"

    def __init__(
        self,
        failures: Sequence[BaseException] = (),
        *,
        dimension: int = 64,
        fail_forever: Optional[BaseException] = None,
    ) -> None:
        self._delegate = HashingEmbeddingProvider(dimension)
        self._failures = list(failures)
        self._fail_forever = fail_forever
        self.calls = 0
        self.batches: List[List[str]] = []

    @property
    def model(self) -> str:
        return self._delegate.model

    @property
    def dimension(self) -> int:
        return self._delegate.dimension

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls += 1
        if self._failures:
            raise self._failures.pop(0)
        if self._fail_forever is not None:
            raise self._fail_forever
        self.batches.append(list(texts))
        return await self._delegate.embed(texts)


def make_coordinator(**overrides) -> FailureRetryCoordinator:
    policy = RetryPolicy(
        max_attempts=overrides.pop("max_attempts", 5),
        max_elapsed=overrides.pop("max_elapsed", 60.0),
        initial_wait=0.01,
        max_wait=0.05,
        jitter=0.0,
    )
    return FailureRetryCoordinator(
        policy,
        failure_threshold=overrides.pop("failure_threshold", 5),
        cooldown=overrides.pop("cooldown", 30.0),
        sleep=no_sleep,
        **overrides,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        chunk_tokens=40,
        overlap_ratio=0.15,
        embedding_dimension=128,
        embedding_batch_size=4,
        retry_initial_wait=0.01,
        retry_max_wait=0.05,
        retry_jitter=0.0,
        request_timeout=None,
    )


@pytest.fixture
def assistant_factory(settings):
    def _build(**kwargs) -> DocumentAssistant:
        kwargs.setdefault("coordinator", make_coordinator())
        overrides = kwargs.pop("settings_overrides", {})
        for key, value in overrides.items():
            setattr(settings, key, value)
        return DocumentAssistant(settings, **kwargs)

    return _build
