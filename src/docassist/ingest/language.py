"""Language detection helpers."""
from __future__ import annotations

import logging
from typing import Optional

from langdetect import DetectorFactory, LangDetectException, detect

LOGGER = logging.getLogger(__name__)
# langdetect is probabilistic; a fixed seed keeps ingestion deterministic.
DetectorFactory.seed = 0

_SAMPLE_CHARS = 5000


class LanguageDetector:
    """Best-effort language tagging of extracted document text."""

    def detect(self, text: str) -> Optional[str]:
        sample = text[:_SAMPLE_CHARS].strip()
        if not sample:
            return None
        try:
            language = detect(sample)
        except LangDetectException:
            LOGGER.info("Unable to determine language for text of length %s", len(text))
            return None
        LOGGER.debug("Detected language: %s", language)
        return language
