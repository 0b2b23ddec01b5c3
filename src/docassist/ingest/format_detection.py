"""Utilities for detecting the format of uploaded documents."""
from __future__ import annotations

import mimetypes
from enum import Enum
from pathlib import Path
from typing import Optional

from docassist.errors import UnsupportedFormat


class DocumentFormat(str, Enum):
    """Document formats with a registered extractor."""

    PDF = "pdf"
    DOCX = "docx"
    TXT = "txt"
    MD = "md"


class DocumentFormatDetector:
    """Detects the document format based on MIME type and file name."""

    _MIME_MAP = {
        "application/pdf": DocumentFormat.PDF,
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document": DocumentFormat.DOCX,
        "text/plain": DocumentFormat.TXT,
        "text/markdown": DocumentFormat.MD,
        "text/x-markdown": DocumentFormat.MD,
    }
    _SUFFIX_ALIASES = {"text": DocumentFormat.TXT, "markdown": DocumentFormat.MD}

    @classmethod
    def detect(cls, file_name: str, mime_type: Optional[str] = None) -> DocumentFormat:
        """Return the detected document format.

        An explicit MIME type wins, then ``mimetypes.guess_type`` and finally
        the file suffix. Anything else raises :class:`UnsupportedFormat`.
        """

        if mime_type:
            declared = mime_type.split(";", 1)[0].strip().lower()
            if declared in cls._MIME_MAP:
                return cls._MIME_MAP[declared]

        guessed_type, _ = mimetypes.guess_type(file_name)
        if guessed_type and guessed_type in cls._MIME_MAP:
            return cls._MIME_MAP[guessed_type]

        suffix = Path(file_name).suffix.lower().lstrip(".")
        if suffix in cls._SUFFIX_ALIASES:
            return cls._SUFFIX_ALIASES[suffix]
        try:
            return DocumentFormat(suffix)
        except ValueError as exc:
            raise UnsupportedFormat(
                f"No extractor for '{file_name}' (declared type: {mime_type or 'unknown'})",
                cause=exc,
            ) from exc
