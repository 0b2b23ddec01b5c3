"""Deterministic generation provider that answers by quoting its sources."""
from __future__ import annotations

import re
from typing import List, Tuple

from docassist.prompt_builder import ANSWER_PREFIX, QUESTION_PREFIX, SOURCES_HEADER

from .base import GenerationProvider

NO_ANSWER_TEXT = "The uploaded documents do not contain enough information to answer."

_WORD_RE = re.compile(r"\w+", re.UNICODE)
_SOURCE_RE = re.compile(r"^\[(\d+)\] \(document [^)]*\)\n(.*)$", re.MULTILINE)
_SENTENCE_RE = re.compile(r"(?<=[.!?…])\s+")


def _words(text: str) -> set[str]:
    return {word.lower() for word in _WORD_RE.findall(text) if len(word) > 2}


class ExtractiveGenerationProvider(GenerationProvider):
    """Pick the source sentences sharing the most words with the question.

    Used when no local LLM is configured and in tests; the output only depends
    on the prompt, so identical prompts always yield identical answers.
    """

    name = "extractive"

    def __init__(self, *, context_tokens: int = 2048, max_sentences: int = 3) -> None:
        self._context_tokens = context_tokens
        self.max_sentences = max_sentences

    @property
    def model(self) -> str:
        return "extractive-v1"

    @property
    def context_tokens(self) -> int:
        return self._context_tokens

    async def generate(self, prompt: str, max_tokens: int = 256) -> str:
        question, sources = self._parse(prompt)
        question_words = _words(question)
        scored: List[Tuple[int, int, int, str]] = []
        for source_index, body in sources:
            for position, sentence in enumerate(_SENTENCE_RE.split(body)):
                sentence = sentence.strip()
                overlap = len(question_words & _words(sentence))
                if sentence and overlap:
                    scored.append((-overlap, source_index, position, f"{sentence} [{source_index}]"))
        if not scored:
            return NO_ANSWER_TEXT
        best = sorted(scored)[: self.max_sentences]
        best.sort(key=lambda item: (item[1], item[2]))
        words = " ".join(item[3] for item in best).split()
        return " ".join(words[:max_tokens])

    @staticmethod
    def _parse(prompt: str) -> Tuple[str, List[Tuple[int, str]]]:
        question = ""
        marker = prompt.rfind(QUESTION_PREFIX)
        if marker >= 0:
            question = prompt[marker + len(QUESTION_PREFIX):]
            question = question.split(ANSWER_PREFIX, 1)[0].strip()
        sources_start = prompt.find(SOURCES_HEADER)
        section = prompt[sources_start:marker] if sources_start >= 0 and marker > sources_start else ""
        sources = [(int(match.group(1)), match.group(2)) for match in _SOURCE_RE.finditer(section)]
        return question, sources
