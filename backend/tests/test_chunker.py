"""Tests for chunker."""

import pytest

from localdex.ingest.chunker import chunk_text


def test_chunk_boundaries_basic(sample_text: str) -> None:
    text = "\n\n".join([sample_text] * 5)
    chunks = chunk_text(text, target_tokens=8, max_tokens=12, min_tokens=2, overlap_tokens=0)
    assert len(chunks) > 1
    assert [chunk.position for chunk in chunks] == list(range(len(chunks)))
    assert all(c.start_char < c.end_char for c in chunks)
    assert all(text[c.start_char : c.end_char] == c.text for c in chunks)


def test_sentences_split_when_paragraph_exceeds_budget() -> None:
    text = "one two three four five. six seven eight nine ten. eleven twelve thirteen fourteen fifteen."
    chunks = chunk_text(text, target_tokens=5, max_tokens=5, min_tokens=1, overlap_tokens=0)
    assert [chunk.text for chunk in chunks] == [
        "one two three four five.",
        "six seven eight nine ten.",
        "eleven twelve thirteen fourteen fifteen.",
    ]
    assert all(chunk.token_count == 5 for chunk in chunks)


def test_overlap_repeats_trailing_segment() -> None:
    text = "alpha beta.\n\ngamma delta.\n\nepsilon zeta."
    chunks = chunk_text(text, target_tokens=2, max_tokens=4, min_tokens=1, overlap_tokens=2)
    assert chunks[1].text.startswith("alpha beta.")


def test_empty_and_invalid_input() -> None:
    assert chunk_text("   \n ") == []
    with pytest.raises(ValueError):
        chunk_text("some text", max_tokens=0)
    with pytest.raises(ValueError):
        chunk_text("some text", overlap_tokens=-1)
