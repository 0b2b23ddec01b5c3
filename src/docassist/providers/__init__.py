"""Provider adapters and factories selected from settings."""
from __future__ import annotations

import logging

from docassist.config import Settings

from .base import EmbeddingProvider, GenerationProvider
from .extractive import ExtractiveGenerationProvider
from .hashing import HashingEmbeddingProvider

LOGGER = logging.getLogger(__name__)


def build_embedding_provider(settings: Settings) -> EmbeddingProvider:
    """Instantiate the embedding provider named by ``EMBEDDING_PROVIDER``."""

    if settings.embedding_provider in {"sentence-transformers", "sentence_transformers"}:
        from .sentence_transformer import SentenceTransformerEmbeddingProvider

        return SentenceTransformerEmbeddingProvider(
            settings.embedding_model_path,
            device=settings.embedding_device,
            max_batch_size=settings.embedding_batch_size,
        )
    if settings.embedding_provider != "hashing":
        LOGGER.warning(
            "Unknown EMBEDDING_PROVIDER '%s'; using hashing embeddings",
            settings.embedding_provider,
        )
    return HashingEmbeddingProvider(
        settings.embedding_dimension, max_batch_size=max(settings.embedding_batch_size, 1)
    )


def build_generation_provider(settings: Settings) -> GenerationProvider:
    """Instantiate the generation provider named by ``GENERATION_PROVIDER``."""

    if settings.generation_provider == "transformers":
        if not settings.llm_model_path:
            LOGGER.warning("GENERATION_PROVIDER=transformers but LLM_MODEL_PATH is unset")
        else:
            from .transformers_llm import TransformersGenerationProvider

            return TransformersGenerationProvider(
                settings.llm_model_path,
                context_tokens=settings.llm_context_tokens,
                temperature=settings.llm_temperature,
            )
    elif settings.generation_provider != "extractive":
        LOGGER.warning(
            "Unknown GENERATION_PROVIDER '%s'; using extractive answers",
            settings.generation_provider,
        )
    return ExtractiveGenerationProvider(context_tokens=settings.llm_context_tokens)


__all__ = [
    "EmbeddingProvider",
    "ExtractiveGenerationProvider",
    "GenerationProvider",
    "HashingEmbeddingProvider",
    "build_embedding_provider",
    "build_generation_provider",
]
