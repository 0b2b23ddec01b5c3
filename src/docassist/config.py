"""Runtime configuration resolved from environment variables."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

LOGGER = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]

_CONFLICT_POLICIES = {"reject", "wait"}
_METRICS = {"cosine", "inner_product"}


def _int_from_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Invalid integer for %s: %s; using default %s", name, value, default)
        return default


def _float_from_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Invalid float for %s: %s; using default %s", name, value, default)
        return default


def _str_from_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _choice_from_env(name: str, default: str, choices: set[str]) -> str:
    value = _str_from_env(name, default).lower()
    if value not in choices:
        LOGGER.warning("Invalid value for %s: %s; using default %s", name, value, default)
        return default
    return value


@dataclass(slots=True)
class Settings:
    """All tunables of the ingestion and query pipelines."""

    chunk_tokens: int = 200
    overlap_ratio: float = 0.15

    embedding_provider: str = "hashing"
    embedding_model_path: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_device: Optional[str] = None
    embedding_dimension: int = 384
    embedding_batch_size: int = 32

    generation_provider: str = "extractive"
    llm_model_path: Optional[str] = None
    llm_max_tokens: int = 256
    llm_context_tokens: int = 2048
    llm_temperature: float = 0.0

    vector_store: str = "memory"
    vector_metric: str = "cosine"
    chroma_persist_dir: str = "chroma_db"
    collection_name: str = "document_chunks"

    top_k: int = 5
    fallback_answer: Optional[str] = None

    retry_max_attempts: int = 5
    retry_max_elapsed: float = 30.0
    retry_initial_wait: float = 0.5
    retry_max_wait: float = 8.0
    retry_jitter: float = 0.5
    circuit_failure_threshold: int = 5
    circuit_cooldown: float = 30.0
    request_timeout: Optional[float] = 60.0

    ingest_concurrency: int = 4
    conflict_policy: str = "reject"
    object_store_dir: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        timeout = _float_from_env("REQUEST_TIMEOUT", 60.0)
        fallback = os.getenv("FALLBACK_ANSWER")
        return cls(
            chunk_tokens=max(_int_from_env("CHUNK_TOKENS", 200), 1),
            overlap_ratio=min(max(_float_from_env("CHUNK_OVERLAP_RATIO", 0.15), 0.0), 0.5),
            embedding_provider=_str_from_env("EMBEDDING_PROVIDER", "hashing").lower(),
            embedding_model_path=_str_from_env(
                "EMBEDDING_MODEL_PATH", "sentence-transformers/all-MiniLM-L6-v2"
            ),
            embedding_device=os.getenv("EMBEDDING_DEVICE") or None,
            embedding_dimension=_int_from_env("EMBEDDING_DIMENSION", 384),
            embedding_batch_size=max(_int_from_env("EMBEDDING_BATCH_SIZE", 32), 1),
            generation_provider=_str_from_env("GENERATION_PROVIDER", "extractive").lower(),
            llm_model_path=os.getenv("LLM_MODEL_PATH") or None,
            llm_max_tokens=_int_from_env("LLM_MAX_TOKENS", 256),
            llm_context_tokens=_int_from_env("LLM_CONTEXT_TOKENS", 2048),
            llm_temperature=_float_from_env("LLM_TEMPERATURE", 0.0),
            vector_store=_choice_from_env("VECTOR_STORE", "memory", {"memory", "chroma"}),
            vector_metric=_choice_from_env("VECTOR_METRIC", "cosine", _METRICS),
            chroma_persist_dir=_str_from_env("CHROMA_PERSIST_DIR", "chroma_db"),
            collection_name=_str_from_env("CHROMA_COLLECTION", "document_chunks"),
            top_k=max(_int_from_env("TOP_K", 5), 0),
            fallback_answer=fallback.strip() if fallback and fallback.strip() else None,
            retry_max_attempts=max(_int_from_env("RETRY_MAX_ATTEMPTS", 5), 1),
            retry_max_elapsed=_float_from_env("RETRY_MAX_ELAPSED", 30.0),
            retry_initial_wait=_float_from_env("RETRY_INITIAL_WAIT", 0.5),
            retry_max_wait=_float_from_env("RETRY_MAX_WAIT", 8.0),
            retry_jitter=_float_from_env("RETRY_JITTER", 0.5),
            circuit_failure_threshold=max(_int_from_env("CIRCUIT_FAILURE_THRESHOLD", 5), 1),
            circuit_cooldown=_float_from_env("CIRCUIT_COOLDOWN", 30.0),
            request_timeout=timeout if timeout > 0 else None,
            ingest_concurrency=max(_int_from_env("INGEST_CONCURRENCY", 4), 1),
            conflict_policy=_choice_from_env("CONFLICT_POLICY", "reject", _CONFLICT_POLICIES),
            object_store_dir=os.getenv("OBJECT_STORE_DIR") or None,
        )


def _load_dotenv() -> None:
    env_file = PROJECT_ROOT / ".env"
    if env_file.exists():
        load_dotenv(dotenv_path=env_file)
    else:
        load_dotenv()


@lru_cache()
def get_settings() -> Settings:
    """Return process-wide settings, reading ``.env`` on first use."""

    _load_dotenv()
    return Settings.from_env()


def reset_settings_cache() -> None:
    """Clear cached settings (primarily for testing)."""

    get_settings.cache_clear()  # type: ignore[attr-defined]


__all__ = ["Settings", "get_settings", "reset_settings_cache"]
