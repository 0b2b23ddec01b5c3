"""Chunking utilities for breaking text into embedding-friendly units."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterator, List, Tuple

from docassist.models import Chunk

_TOKEN_RE = re.compile(r"\S+")
_SENTENCE_END_RE = re.compile(r"[.!?…][\"')\]]*$")
LOGGER = logging.getLogger(__name__)

_WORD = 0
_SENTENCE = 1
_PARAGRAPH = 2


@dataclass(slots=True)
class ChunkingConfig:
    chunk_tokens: int = 200
    overlap_ratio: float = 0.15

    @property
    def overlap_tokens(self) -> int:
        ratio = min(max(self.overlap_ratio, 0.0), 0.5)
        return int(round(self.chunk_tokens * ratio))


class SemanticTextChunker:
    """Split normalised text into chunks respecting semantic boundaries.

    Text is measured in whitespace-delimited tokens. Each chunk ends on the
    last paragraph break inside the window when one exists past a third of
    the window, otherwise on the last sentence end past a quarter of the
    window, otherwise at the fixed window edge. Cuts that fall inside a
    paragraph carry ``overlap_ratio`` of the window into the next chunk.
    """

    def __init__(self, config: ChunkingConfig) -> None:
        self.config = config

    def chunk(self, document_id: str, text: str) -> List[Chunk]:
        chunks: List[Chunk] = []
        previous_end = 0
        for sequence, (start, end) in enumerate(self._spans(text)):
            overlap = max(0, previous_end - start) if sequence else 0
            chunks.append(
                Chunk(
                    document_id=document_id,
                    sequence=sequence,
                    text=text[start:end],
                    char_start=start,
                    char_end=end,
                    overlap_chars=overlap,
                )
            )
            LOGGER.debug("Chunk %s offsets %s-%s overlap %s", sequence, start, end, overlap)
            previous_end = end
        return chunks

    def _spans(self, text: str) -> Iterator[Tuple[int, int]]:
        tokens = [(match.start(), match.end()) for match in _TOKEN_RE.finditer(text)]
        if not tokens:
            return
        breaks = self._break_strengths(text, tokens)
        window = max(self.config.chunk_tokens, 1)
        overlap = self.config.overlap_tokens
        total = len(tokens)
        start = 0
        while start < total:
            limit = min(start + window, total)
            if limit == total:
                yield tokens[start][0], tokens[total - 1][1]
                return
            end, strength = self._find_cut(breaks, start, limit, window)
            yield tokens[start][0], tokens[end - 1][1]
            if strength == _PARAGRAPH:
                start = end
            else:
                start = max(end - overlap, start + 1)

    @staticmethod
    def _break_strengths(text: str, tokens: List[Tuple[int, int]]) -> List[int]:
        strengths: List[int] = []
        for (start, end), (next_start, _) in zip(tokens, tokens[1:]):
            if "\n\n" in text[end:next_start]:
                strengths.append(_PARAGRAPH)
            elif _SENTENCE_END_RE.search(text[start:end]):
                strengths.append(_SENTENCE)
            else:
                strengths.append(_WORD)
        return strengths

    @staticmethod
    def _find_cut(breaks: List[int], start: int, limit: int, window: int) -> Tuple[int, int]:
        # ``breaks[i]`` describes the gap after token ``i``; a cut at ``end``
        # keeps tokens ``start .. end - 1``.
        for strength, minimum in ((_PARAGRAPH, window // 3), (_SENTENCE, window // 4)):
            for end in range(limit, start, -1):
                if end - start < max(minimum, 1):
                    break
                if breaks[end - 1] == strength:
                    return end, strength
        return limit, _WORD
