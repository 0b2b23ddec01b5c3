from __future__ import annotations

from docassist.models import EmbeddingVector, IndexEntry, SearchHit, make_chunk_id
from docassist.prompt_builder import (
    CONVERSATION_HEADER,
    NO_SOURCES_TEXT,
    QUESTION_PREFIX,
    PromptBuilder,
    count_tokens,
)

QUESTION = "How long does the warranty last?"


def _hit(sequence: int, words: int, score: float = 0.5, word: str = "term") -> SearchHit:
    text = " ".join(f"{word}{index}" for index in range(words))
    entry = IndexEntry(
        document_id="doc",
        sequence=sequence,
        vector=EmbeddingVector(chunk_id=make_chunk_id("doc", sequence), values=(1.0,), model="m"),
        text=text,
    )
    return SearchHit(entry=entry, score=score)


def _fixed_tokens(builder: PromptBuilder) -> int:
    return count_tokens(builder.build(QUESTION, []).text) - count_tokens(NO_SOURCES_TEXT)


def test_all_hits_fit_in_rank_order() -> None:
    hits = [_hit(2, 5, 0.9, "alpha"), _hit(0, 5, 0.8, "beta"), _hit(4, 5, 0.7, "gamma")]

    prompt = PromptBuilder(4096, reserved_tokens=256).build(QUESTION, hits)

    assert prompt.included == hits
    assert prompt.dropped == []
    assert prompt.truncated is False
    assert prompt.text.index("alpha0") < prompt.text.index("beta0") < prompt.text.index("gamma0")
    assert "[1] (document doc, chunk 2)" in prompt.text
    assert QUESTION in prompt.text


def test_lowest_ranked_hits_are_dropped_first() -> None:
    reference = PromptBuilder(10_000, reserved_tokens=0)
    fixed = _fixed_tokens(reference)
    hits = [_hit(0, 10, 0.9), _hit(1, 10, 0.8), _hit(2, 10, 0.7)]

    prompt = PromptBuilder(fixed + 32, reserved_tokens=0).build(QUESTION, hits)

    assert prompt.included == hits[:2]
    assert prompt.dropped == hits[2:]
    assert prompt.truncated is True
    assert count_tokens(prompt.text) <= fixed + 32


def test_oversize_top_hit_is_clipped_not_dropped() -> None:
    reference = PromptBuilder(10_000, reserved_tokens=0)
    fixed = _fixed_tokens(reference)
    top, other = _hit(0, 100, 0.9), _hit(1, 3, 0.1)

    prompt = PromptBuilder(fixed + 20, reserved_tokens=0).build(QUESTION, [top, other])

    assert prompt.included == [top]
    assert prompt.dropped == [other]
    assert prompt.truncated is True
    assert "term14" in prompt.text
    assert "term15" not in prompt.text
    assert count_tokens(prompt.text) <= fixed + 20


def test_exhausted_budget_still_builds_a_prompt() -> None:
    hits = [_hit(0, 10)]

    prompt = PromptBuilder(5, reserved_tokens=256).build(QUESTION, hits)

    assert prompt.included == []
    assert prompt.dropped == hits
    assert prompt.truncated is True
    assert NO_SOURCES_TEXT in prompt.text
    assert QUESTION_PREFIX in prompt.text
    assert QUESTION not in prompt.text


def test_conversation_turns_precede_the_question() -> None:
    prompt = PromptBuilder(4096).build(
        QUESTION,
        [_hit(0, 3)],
        conversation=["user: I bought a kettle", "assistant: noted"],
    )

    assert prompt.text.index("I bought a kettle") < prompt.text.index(QUESTION)


def test_long_conversation_cannot_push_prompt_past_the_limit() -> None:
    builder = PromptBuilder(200, reserved_tokens=50)

    prompt = builder.build("What is it?", [], conversation=["word " * 500])

    assert count_tokens(prompt.text) <= 150
    assert prompt.truncated is True
    assert CONVERSATION_HEADER not in prompt.text
    assert "What is it?" in prompt.text


def test_oldest_turn_goes_before_recent_ones() -> None:
    reference = PromptBuilder(10_000, reserved_tokens=0)
    fixed = _fixed_tokens(reference)
    turns = ["earlierturn " * 40, "recent question about kettles"]

    prompt = PromptBuilder(fixed + 15, reserved_tokens=0).build(QUESTION, [], conversation=turns)

    assert "earlierturn" not in prompt.text
    assert "recent question about kettles" in prompt.text
    assert QUESTION in prompt.text
    assert prompt.truncated is True
    assert count_tokens(prompt.text) <= fixed + 15


def test_overlong_question_is_clipped_to_the_limit() -> None:
    prompt = PromptBuilder(200, reserved_tokens=50).build("why " * 300, [_hit(0, 5)])

    assert count_tokens(prompt.text) <= 150
    assert prompt.truncated is True
    assert prompt.text.count("why") > 10
    assert QUESTION_PREFIX in prompt.text


def test_budget_is_measured_with_the_given_counter() -> None:
    def doubled(text: str) -> int:
        return 2 * len(text.split())

    reference = PromptBuilder(10_000, reserved_tokens=0, counter=doubled)
    fixed = doubled(reference.build(QUESTION, []).text) - doubled(NO_SOURCES_TEXT)
    hits = [_hit(0, 10, 0.9), _hit(1, 10, 0.8), _hit(2, 10, 0.7)]

    prompt = PromptBuilder(fixed + 40, reserved_tokens=0, counter=doubled).build(QUESTION, hits)

    assert prompt.included == hits[:1]
    assert prompt.dropped == hits[1:]
    assert doubled(prompt.text) <= fixed + 40


def test_hits_are_dropped_when_the_whole_prompt_counts_more_than_its_parts() -> None:
    def with_newlines(text: str) -> int:
        return len(text.split()) + text.count("\n")

    reference = PromptBuilder(10_000, reserved_tokens=0, counter=with_newlines)
    fixed = with_newlines(reference.build(QUESTION, []).text) - with_newlines(NO_SOURCES_TEXT)
    hits = [_hit(0, 10, 0.9), _hit(1, 10, 0.8), _hit(2, 10, 0.7)]
    limit = fixed + 32

    prompt = PromptBuilder(limit, reserved_tokens=0, counter=with_newlines).build(QUESTION, hits)

    assert prompt.included == hits[:1]
    assert prompt.dropped == hits[1:]
    assert with_newlines(prompt.text) <= limit
