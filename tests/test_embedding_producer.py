from __future__ import annotations

from typing import List, Sequence

import pytest

from conftest import ScriptedEmbeddingProvider, make_coordinator
from docassist.embedding import EmbeddingProducer
from docassist.errors import ProviderRateLimited, ProviderRejected
from docassist.models import Chunk
from docassist.providers.base import EmbeddingProvider


def _chunks(count: int) -> List[Chunk]:
    return [
        Chunk(document_id="doc", sequence=index, text=f"chunk number {index}", char_start=0, char_end=1)
        for index in range(count)
    ]


@pytest.mark.anyio
async def test_vectors_follow_chunk_order_across_batches() -> None:
    provider = ScriptedEmbeddingProvider()
    producer = EmbeddingProducer(provider, make_coordinator(), batch_size=3)
    chunks = _chunks(7)

    vectors = await producer.embed(chunks)
    expected = await provider._delegate.embed([chunk.text for chunk in chunks])

    assert [vector.chunk_id for vector in vectors] == [chunk.chunk_id for chunk in chunks]
    assert [list(vector.values) for vector in vectors] == expected
    assert [len(batch) for batch in provider.batches] == [3, 3, 1]
    assert all(vector.model == provider.model for vector in vectors)


@pytest.mark.anyio
async def test_only_the_failing_batch_is_retried() -> None:
    provider = ScriptedEmbeddingProvider([ProviderRateLimited("slow down", provider="scripted")])
    producer = EmbeddingProducer(provider, make_coordinator(), batch_size=2)

    vectors = await producer.embed(_chunks(4))

    assert len(vectors) == 4
    assert provider.calls == 3


@pytest.mark.anyio
async def test_empty_input_makes_no_calls() -> None:
    provider = ScriptedEmbeddingProvider()
    producer = EmbeddingProducer(provider, make_coordinator())

    assert await producer.embed([]) == []
    assert provider.calls == 0


class _ShortProvider(EmbeddingProvider):
    name = "short"

    def __init__(self, drop: int = 1, dimension: int = 4, returned_dimension: int = 4) -> None:
        self.drop = drop
        self._dimension = dimension
        self.returned_dimension = returned_dimension

    @property
    def model(self) -> str:
        return "short-v1"

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        return [[1.0] * self.returned_dimension for _ in texts[self.drop :]]


@pytest.mark.anyio
async def test_wrong_vector_count_is_rejected() -> None:
    producer = EmbeddingProducer(_ShortProvider(drop=1), make_coordinator())

    with pytest.raises(ProviderRejected):
        await producer.embed(_chunks(3))


@pytest.mark.anyio
async def test_wrong_dimension_is_rejected() -> None:
    producer = EmbeddingProducer(_ShortProvider(drop=0, returned_dimension=3), make_coordinator())

    with pytest.raises(ProviderRejected, match="dimension"):
        await producer.embed(_chunks(2))


@pytest.mark.anyio
async def test_embed_query_returns_single_vector() -> None:
    provider = ScriptedEmbeddingProvider(dimension=32)
    producer = EmbeddingProducer(provider, make_coordinator())

    vector = await producer.embed_query("what is covered?")

    assert vector.dimension == 32
    assert vector.model == provider.model
