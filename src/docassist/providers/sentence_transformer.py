"""Embedding provider backed by Sentence Transformers."""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import List, Optional, Sequence

from sentence_transformers import SentenceTransformer

from docassist.errors import ProviderRejected, ProviderUnavailable

from .base import EmbeddingProvider

LOGGER = logging.getLogger(__name__)


class SentenceTransformerEmbeddingProvider(EmbeddingProvider):
    """Lazy-loading wrapper around a local ``SentenceTransformer`` model."""

    name = "sentence-transformers"

    def __init__(
        self,
        model_name_or_path: str,
        *,
        device: Optional[str] = None,
        max_batch_size: int = 64,
    ) -> None:
        self._model_name = model_name_or_path
        self._device = device
        self._model: Optional[SentenceTransformer] = None
        self._lock = threading.Lock()
        self.max_batch_size = max_batch_size

    @property
    def model(self) -> str:
        return self._model_name

    @property
    def dimension(self) -> int:
        return int(self._ensure_loaded().get_sentence_embedding_dimension())

    def _ensure_loaded(self) -> SentenceTransformer:
        with self._lock:
            if self._model is None:
                LOGGER.info("Loading sentence-transformers model %s", self._model_name)
                try:
                    self._model = SentenceTransformer(self._model_name, device=self._device)
                except Exception as error:
                    raise ProviderUnavailable(
                        f"Failed to load embedding model '{self._model_name}'",
                        provider=self.name,
                        cause=error,
                    ) from error
            return self._model

    def _encode(self, texts: List[str]) -> List[List[float]]:
        model = self._ensure_loaded()
        try:
            embeddings = model.encode(
                texts,
                convert_to_numpy=True,
                show_progress_bar=False,
                normalize_embeddings=False,
            )
        except (TypeError, ValueError) as error:
            raise ProviderRejected("Embedding model rejected the input", provider=self.name, cause=error) from error
        except RuntimeError as error:
            raise ProviderUnavailable("Embedding model failed", provider=self.name, cause=error) from error
        return embeddings.tolist()

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        return await asyncio.to_thread(self._encode, list(texts))
