"""Order-preserving, batched embedding of chunks through the retry coordinator."""
from __future__ import annotations

import logging
import time
from typing import List, Optional, Sequence

from docassist.errors import ProviderRejected
from docassist.models import Chunk, EmbeddingVector
from docassist.providers.base import EmbeddingProvider
from docassist.resilience import Deadline, FailureRetryCoordinator
from docassist.telemetry import emit_embeddings_event

LOGGER = logging.getLogger(__name__)


class EmbeddingProducer:
    """Compute one vector per chunk, in chunk order.

    Batches are sent one after another; each batch is a single coordinated
    provider call, so a transient failure only repeats the failing batch.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        coordinator: FailureRetryCoordinator,
        *,
        batch_size: int = 32,
    ) -> None:
        self.provider = provider
        self.coordinator = coordinator
        self.batch_size = max(1, min(batch_size, provider.max_batch_size))

    @property
    def model(self) -> str:
        return self.provider.model

    @property
    def dimension(self) -> int:
        return self.provider.dimension

    async def embed(
        self, chunks: Sequence[Chunk], *, deadline: Optional[Deadline] = None
    ) -> List[EmbeddingVector]:
        started = time.perf_counter()
        vectors: List[EmbeddingVector] = []
        batches = 0
        try:
            for offset in range(0, len(chunks), self.batch_size):
                batch = chunks[offset : offset + self.batch_size]
                values = await self._embed_batch([chunk.text for chunk in batch], deadline)
                batches += 1
                vectors.extend(
                    EmbeddingVector(chunk_id=chunk.chunk_id, values=tuple(row), model=self.model)
                    for chunk, row in zip(batch, values)
                )
        except Exception as error:
            emit_embeddings_event(
                model=self.model,
                count=len(vectors),
                batches=batches,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                errors=[getattr(error, "kind", type(error).__name__)],
            )
            raise

        emit_embeddings_event(
            model=self.model,
            count=len(vectors),
            batches=batches,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return vectors

    async def embed_query(self, text: str, *, deadline: Optional[Deadline] = None) -> EmbeddingVector:
        """Embed a single free-text query."""

        values = await self._embed_batch([text], deadline, operation="embed_query")
        return EmbeddingVector(chunk_id="", values=tuple(values[0]), model=self.model)

    async def _embed_batch(
        self,
        texts: List[str],
        deadline: Optional[Deadline],
        *,
        operation: str = "embed",
    ) -> List[List[float]]:
        values = await self.coordinator.call(
            self.provider.name,
            operation,
            lambda: self.provider.embed(texts),
            deadline=deadline,
        )
        if len(values) != len(texts):
            raise ProviderRejected(
                f"Provider returned {len(values)} vectors for {len(texts)} inputs",
                provider=self.provider.name,
            )
        expected = self.dimension
        for row in values:
            if len(row) != expected:
                raise ProviderRejected(
                    f"Provider returned a vector of dimension {len(row)}, expected {expected}",
                    provider=self.provider.name,
                )
        return [[float(value) for value in row] for row in values]


__all__ = ["EmbeddingProducer"]
