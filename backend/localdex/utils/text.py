"""Text processing helpers."""

from __future__ import annotations

import re


WHITESPACE_RE = re.compile(r"\s+")
TOKEN_RE = re.compile(r"\w+")
_SENTENCE_END_RE = re.compile(r"(?<=[.!?\n])")


def normalize(text: str) -> str:
    """Collapse whitespace and strip."""
    return WHITESPACE_RE.sub(" ", text).strip()


def tokenize(text: str) -> list[str]:
    """Lowercased word tokens."""
    return TOKEN_RE.findall(text.lower())


def split_sentences(text: str) -> list[str]:
    """Split on sentence terminators and newlines, dropping blanks."""
    return [part.strip() for part in _SENTENCE_END_RE.split(text) if part.strip()]
