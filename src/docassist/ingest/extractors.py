"""Extractors for supported document types."""
from __future__ import annotations

import io
import logging
from typing import List

from docx import Document as load_docx
from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError

from docassist.errors import UnsupportedFormat

LOGGER = logging.getLogger(__name__)


class PDFExtractor:
    """Extract text from PDF documents page by page."""

    def extract(self, data: bytes) -> str:
        try:
            reader = PdfReader(io.BytesIO(data))
        except (PdfReadError, ValueError) as error:
            raise UnsupportedFormat(f"Content could not be parsed as PDF: {error}", cause=error) from error

        pages: List[str] = []
        for index, page in enumerate(reader.pages, start=1):
            try:
                text = page.extract_text() or ""
            except Exception as error:  # pragma: no cover - depends on pdf internals
                LOGGER.warning("Failed to extract text from PDF page %s: %s", index, error)
                text = ""
            pages.append(text)
        return "\n\n".join(pages)


class DocxExtractor:
    """Extract paragraph text from Microsoft Word documents."""

    def extract(self, data: bytes) -> str:
        try:
            document = load_docx(io.BytesIO(data))
        except Exception as error:
            raise UnsupportedFormat(f"Content could not be parsed as DOCX: {error}", cause=error) from error
        return "\n\n".join(paragraph.text for paragraph in document.paragraphs if paragraph.text)


class TextExtractor:
    """Decode plaintext and markdown documents."""

    def extract(self, data: bytes, encoding: str = "utf-8") -> str:
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            LOGGER.info("Content is not valid %s; decoding as latin-1", encoding)
            return data.decode("latin-1")
