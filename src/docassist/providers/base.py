"""Base provider interfaces for embeddings and language models."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Sequence

__all__ = ["EmbeddingProvider", "GenerationProvider"]


class EmbeddingProvider(ABC):
    """Abstract interface for batch embedding providers.

    Implementations raise :class:`~docassist.errors.ProviderRateLimited`,
    :class:`~docassist.errors.ProviderUnavailable` or
    :class:`~docassist.errors.ProviderRejected`; they never retry on their own.
    """

    name: str = "embedding"
    max_batch_size: int = 64

    @property
    @abstractmethod
    def model(self) -> str:
        """Identifier and version of the model producing the vectors."""

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Length of every vector returned by :meth:`embed`."""

    @abstractmethod
    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """Encode ``texts`` into vectors, one per input and in input order."""


class GenerationProvider(ABC):
    """Abstract interface for prompt completion providers."""

    name: str = "generation"

    @property
    @abstractmethod
    def model(self) -> str:
        """Identifier of the model generating answers."""

    @property
    @abstractmethod
    def context_tokens(self) -> int:
        """Upper bound on the prompt size accepted by the provider."""

    @abstractmethod
    async def generate(self, prompt: str, max_tokens: int = 256) -> str:
        """Generate text from the given prompt."""

    def count_tokens(self, text: str) -> int:
        """Size of ``text`` in the units :attr:`context_tokens` is measured in.

        The default is a whitespace count; adapters with a real tokenizer
        override it so prompt budgets match what the model will see.
        """

        return len(text.split())
