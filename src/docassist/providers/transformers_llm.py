"""Generation provider running a local Hugging Face causal language model."""
from __future__ import annotations

import asyncio
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Optional

import torch
from transformers import AutoModelForCausalLM, AutoTokenizer

from docassist.config import PROJECT_ROOT
from docassist.errors import ProviderRejected, ProviderUnavailable

from .base import GenerationProvider

LOGGER = logging.getLogger(__name__)


def resolve_model_path(raw_path: str) -> str:
    """Expand ``raw_path`` and resolve relative paths against the project root."""

    expanded = Path(os.path.expanduser(raw_path.strip()))
    if not expanded.is_absolute():
        candidate = PROJECT_ROOT / expanded
        if candidate.exists():
            return str(candidate)
    if not expanded.exists():
        LOGGER.warning("Configured LLM_MODEL_PATH '%s' does not exist locally", raw_path)
    return str(expanded)


class TransformersGenerationProvider(GenerationProvider):
    """Lazy-loading causal LM; loading and inference run off the event loop."""

    name = "transformers"

    def __init__(
        self,
        model_path: str,
        *,
        context_tokens: int = 2048,
        temperature: float = 0.0,
        device: Optional[str] = None,
    ) -> None:
        self._model_path = resolve_model_path(model_path)
        self._context_tokens = context_tokens
        self._temperature = temperature
        self._device = device or ("cuda" if torch.cuda.is_available() else "cpu")
        self._model: Any = None
        self._tokenizer: Any = None
        self._lock = threading.Lock()

    @property
    def model(self) -> str:
        return Path(self._model_path).name or self._model_path

    @property
    def context_tokens(self) -> int:
        return self._context_tokens

    def _ensure_tokenizer(self) -> Any:
        with self._lock:
            if self._tokenizer is None:
                try:
                    tokenizer = AutoTokenizer.from_pretrained(self._model_path)
                except (OSError, ValueError) as error:
                    raise ProviderUnavailable(
                        f"Failed to load tokenizer from '{self._model_path}'",
                        provider=self.name,
                        cause=error,
                    ) from error
                if tokenizer.pad_token_id is None and tokenizer.eos_token_id is not None:
                    tokenizer.pad_token_id = tokenizer.eos_token_id
                # an overlong prompt loses its oldest text, never the question
                tokenizer.truncation_side = "left"
                self._tokenizer = tokenizer
            return self._tokenizer

    def _ensure_loaded(self) -> None:
        self._ensure_tokenizer()
        with self._lock:
            if self._model is not None:
                return
            started = time.perf_counter()
            LOGGER.info("Loading LLM from %s on %s", self._model_path, self._device)
            try:
                model = AutoModelForCausalLM.from_pretrained(self._model_path)
                model.to(self._device)
                model.eval()
            except (OSError, ValueError, RuntimeError) as error:
                raise ProviderUnavailable(
                    f"Failed to load LLM from '{self._model_path}'",
                    provider=self.name,
                    cause=error,
                ) from error
            self._model = model
            LOGGER.info(
                "LLM loaded in %.1f ms", (time.perf_counter() - started) * 1000.0
            )

    def count_tokens(self, text: str) -> int:
        return len(self._ensure_tokenizer()(text)["input_ids"])

    def _generate(self, prompt: str, max_tokens: int) -> str:
        self._ensure_loaded()
        effective_max_tokens = max_tokens if max_tokens > 0 else 256
        try:
            inputs = self._tokenizer(
                prompt,
                return_tensors="pt",
                truncation=True,
                max_length=self._context_tokens,
            ).to(self._device)
            with torch.no_grad():
                output_ids = self._model.generate(
                    **inputs,
                    max_new_tokens=effective_max_tokens,
                    temperature=max(self._temperature, 1e-5),
                    do_sample=self._temperature > 0.0,
                    pad_token_id=self._tokenizer.pad_token_id,
                    eos_token_id=self._tokenizer.eos_token_id,
                )
        except (TypeError, ValueError) as error:
            raise ProviderRejected("LLM rejected the prompt", provider=self.name, cause=error) from error
        except RuntimeError as error:
            raise ProviderUnavailable("LLM generation failed", provider=self.name, cause=error) from error

        input_length = inputs["input_ids"].shape[1]
        text = self._tokenizer.decode(output_ids[0, input_length:], skip_special_tokens=True)
        return text.strip()

    async def generate(self, prompt: str, max_tokens: int = 256) -> str:
        return await asyncio.to_thread(self._generate, prompt, max_tokens)
