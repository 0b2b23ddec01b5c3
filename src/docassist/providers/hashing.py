"""Deterministic hashed bag-of-words embeddings for offline use and tests."""
from __future__ import annotations

import hashlib
import re
from typing import List, Sequence

import numpy as np

from docassist.errors import ProviderRejected

from .base import EmbeddingProvider

_WORD_RE = re.compile(r"\w+", re.UNICODE)


class HashingEmbeddingProvider(EmbeddingProvider):
    """Project lower-cased word counts onto a fixed number of buckets.

    Texts that share vocabulary end up close under cosine similarity, which
    is enough for retrieval without downloading a model.
    """

    name = "hashing"

    def __init__(self, dimension: int = 384, *, max_batch_size: int = 64) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be a positive integer")
        self._dimension = dimension
        self.max_batch_size = max_batch_size

    @property
    def model(self) -> str:
        return f"hashing-bow-v1-{self._dimension}"

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        if len(texts) > self.max_batch_size:
            raise ProviderRejected(
                f"Batch of {len(texts)} exceeds the limit of {self.max_batch_size}",
                provider=self.name,
            )
        return [self._vector(text) for text in texts]

    def _vector(self, text: str) -> List[float]:
        vector = np.zeros(self._dimension, dtype=np.float64)
        for word in _WORD_RE.findall(text.lower()):
            digest = hashlib.sha256(word.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:8], "big") % self._dimension
            sign = 1.0 if digest[8] & 1 else -1.0
            vector[bucket] += sign
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector.tolist()
