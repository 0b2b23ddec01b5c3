"""Bounded prompt assembly from ranked search hits."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Sequence

from docassist.models import SearchHit

SYSTEM_PROMPT = (
    "You are a document assistant. Answer the question using only the numbered "
    "sources below and cite them as [n]. If the sources do not contain the answer, "
    "say that the uploaded documents do not contain enough information."
)
SOURCES_HEADER = "Sources:"
NO_SOURCES_TEXT = "(no sources available)"
CONVERSATION_HEADER = "Conversation so far:"
QUESTION_PREFIX = "Question:"
ANSWER_PREFIX = "Answer:"

TokenCounter = Callable[[str], int]


def count_tokens(text: str) -> int:
    """Whitespace token count, the default prompt budget measure."""

    return len(text.split())


def format_source(index: int, hit: SearchHit, text: str | None = None) -> str:
    entry = hit.entry
    body = " ".join((text if text is not None else entry.text).split())
    return f"[{index}] (document {entry.document_id}, chunk {entry.sequence})\n{body}"


@dataclass(slots=True)
class BuiltPrompt:
    """Result of prompt assembly: the text and the hits it actually contains."""

    text: str
    included: List[SearchHit] = field(default_factory=list)
    dropped: List[SearchHit] = field(default_factory=list)
    truncated: bool = False
    context_tokens: int = 0


class PromptBuilder:
    """Compose prompts that fit a generation provider's context window.

    The prompt never exceeds ``context_tokens - reserved_tokens`` as measured
    by ``counter``, apart from the fixed instructions and headers. Oldest
    conversation turns go first, then the question is clipped. Hits are
    placed in rank order; when they do not all fit, the lowest-ranked hits
    are left out first and a top-ranked hit that alone exceeds the budget
    is clipped instead of dropped.
    """

    def __init__(
        self,
        context_tokens: int,
        *,
        reserved_tokens: int = 256,
        counter: TokenCounter = count_tokens,
    ) -> None:
        self.context_tokens = context_tokens
        self.reserved_tokens = reserved_tokens
        self.counter = counter

    @property
    def limit(self) -> int:
        return max(self.context_tokens - self.reserved_tokens, 0)

    def build(
        self,
        question: str,
        hits: Sequence[SearchHit],
        *,
        conversation: Sequence[str] = (),
    ) -> BuiltPrompt:
        limit = self.limit
        question = " ".join(question.split())
        turns = [" ".join(turn.split()) for turn in conversation if turn.strip()]
        placeholder = self.counter(NO_SOURCES_TEXT)
        truncated = False

        while turns and self._frame_tokens(question, turns) + placeholder > limit:
            turns.pop(0)
            truncated = True
        overflow = self._frame_tokens(question, turns) + placeholder - limit
        if overflow > 0 and question:
            question = self._clip(question, self.counter(question) - overflow)
            truncated = True

        budget = limit - self._frame_tokens(question, turns)
        sections: List[str] = []
        included: List[SearchHit] = []
        dropped: List[SearchHit] = []
        used = 0
        for position, hit in enumerate(hits):
            index = len(included) + 1
            section = format_source(index, hit)
            cost = self.counter(section)
            if used + cost <= budget:
                sections.append(section)
                included.append(hit)
                used += cost
                continue
            if not included:
                room = budget - self.counter(format_source(index, hit, ""))
                if room > 0:
                    clipped = format_source(index, hit, self._clip(hit.entry.text, room))
                    sections.append(clipped)
                    included.append(hit)
                    used += self.counter(clipped)
                    truncated = True
                    position += 1
            dropped = list(hits[position:])
            break

        text = self._render(question, turns, sections)
        # section costs need not add up exactly under a subword tokenizer
        while included and self.counter(text) > limit:
            dropped.insert(0, included.pop())
            sections.pop()
            used = sum(self.counter(section) for section in sections)
            text = self._render(question, turns, sections)

        return BuiltPrompt(
            text=text,
            included=included,
            dropped=dropped,
            truncated=truncated or bool(dropped),
            context_tokens=used,
        )

    def _frame_tokens(self, question: str, turns: Sequence[str]) -> int:
        tokens = (
            self.counter(SYSTEM_PROMPT)
            + self.counter(SOURCES_HEADER)
            + self.counter(_tail(question))
        )
        if turns:
            tokens += self.counter(_conversation_block(turns))
        return tokens

    def _clip(self, text: str, limit: int) -> str:
        """Longest word prefix of ``text`` that counts at most ``limit`` tokens."""

        if limit <= 0:
            return ""
        if self.counter(text) <= limit:
            return text
        words = text.split()
        low, high = 0, len(words)
        while low < high:
            middle = (low + high + 1) // 2
            if self.counter(" ".join(words[:middle])) <= limit:
                low = middle
            else:
                high = middle - 1
        return " ".join(words[:low])

    @staticmethod
    def _render(question: str, turns: Sequence[str], sections: Sequence[str]) -> str:
        parts = [SYSTEM_PROMPT]
        if turns:
            parts.append(_conversation_block(turns))
        sources_block = "\n\n".join(sections) if sections else NO_SOURCES_TEXT
        parts.append(f"{SOURCES_HEADER}\n{sources_block}")
        parts.append(_tail(question))
        return "\n\n".join(parts)


def _tail(question: str) -> str:
    return f"{QUESTION_PREFIX} {question}\n\n{ANSWER_PREFIX}"


def _conversation_block(turns: Sequence[str]) -> str:
    return CONVERSATION_HEADER + "\n" + "\n".join(turns)


__all__ = [
    "ANSWER_PREFIX",
    "BuiltPrompt",
    "CONVERSATION_HEADER",
    "NO_SOURCES_TEXT",
    "PromptBuilder",
    "QUESTION_PREFIX",
    "SOURCES_HEADER",
    "SYSTEM_PROMPT",
    "TokenCounter",
    "count_tokens",
    "format_source",
]
