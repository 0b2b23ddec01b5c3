"""Turn raw uploaded documents into ordered, embedding-ready chunks."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from docassist.errors import EmptyContent
from docassist.models import Chunk, Document

from .chunking import ChunkingConfig, SemanticTextChunker
from .extractors import DocxExtractor, PDFExtractor, TextExtractor
from .format_detection import DocumentFormat, DocumentFormatDetector
from .language import LanguageDetector
from .normalization import normalize_text

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class NormalizedDocument:
    text: str
    chunks: List[Chunk]
    document_format: DocumentFormat
    language: Optional[str]


class IngestionNormalizer:
    """Extraction, normalisation and chunking of a single document.

    The output depends only on the document identifier, its bytes and the
    chunking configuration, so re-running it reproduces the same chunks.
    """

    def __init__(
        self,
        config: Optional[ChunkingConfig] = None,
        *,
        language_detector: Optional[LanguageDetector] = None,
    ) -> None:
        self.config = config or ChunkingConfig()
        self.chunker = SemanticTextChunker(self.config)
        self.language_detector = language_detector or LanguageDetector()
        self._pdf = PDFExtractor()
        self._docx = DocxExtractor()
        self._text = TextExtractor()

    def normalize(self, document: Document, content: bytes) -> List[Chunk]:
        """Return the ordered chunks of ``document``."""

        return self.process(document, content).chunks

    def process(self, document: Document, content: bytes) -> NormalizedDocument:
        document_format = DocumentFormatDetector.detect(document.file_name, document.content_type)
        raw_text = self._extract(content, document_format)
        text = normalize_text(raw_text)
        if not text:
            raise EmptyContent(
                f"Document '{document.file_name}' contains no text after normalisation"
            )

        chunks = self.chunker.chunk(document.document_id, text)
        language = self.language_detector.detect(text)
        LOGGER.info(
            "Normalised %s (%s) into %s chunks",
            document.file_name,
            document_format.value,
            len(chunks),
        )
        return NormalizedDocument(
            text=text,
            chunks=chunks,
            document_format=document_format,
            language=language,
        )

    def _extract(self, content: bytes, document_format: DocumentFormat) -> str:
        if document_format is DocumentFormat.PDF:
            return self._pdf.extract(content)
        if document_format is DocumentFormat.DOCX:
            return self._docx.extract(content)
        return self._text.extract(content)
