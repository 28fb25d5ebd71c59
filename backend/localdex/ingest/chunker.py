"""Token-budgeted text chunking.

Text is cut at blank lines first, then at sentence ends, then at word
boundaries, and the pieces are packed greedily into chunks. A chunk's
``text`` is always an exact slice of the input.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator

from localdex.ingest.types import ChunkSpan

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SENTENCE = re.compile(r"[^.!?\n]+[.!?]?")
_WORD = re.compile(r"\S+")


@dataclass(slots=True, frozen=True)
class _Piece:
    start: int
    end: int
    tokens: int


def count_tokens(text: str) -> int:
    return max(1, len(text.split()))


@dataclass(slots=True)
class Chunker:
    target_tokens: int = 200
    max_tokens: int = 256
    min_tokens: int = 80
    overlap_tokens: int = 20

    def __post_init__(self) -> None:
        if self.max_tokens < 1 or self.min_tokens < 0 or self.overlap_tokens < 0:
            raise ValueError("max_tokens must be positive and min/overlap tokens non-negative")

    def split(self, text: str) -> list[ChunkSpan]:
        """Return chunk spans for ``text``; positions are dense from 0."""
        if not text.strip():
            return []
        pieces: list[_Piece] = []
        for start, end in _paragraphs(text):
            pieces.extend(self._fit(text, start, end))
        return self._pack(text, pieces)

    def _fit(self, text: str, start: int, end: int) -> list[_Piece]:
        tokens = count_tokens(text[start:end])
        if tokens <= self.max_tokens:
            return [_Piece(start, end, tokens)]
        sentences = list(_matches(_SENTENCE, text, start, end))
        if len(sentences) > 1:
            return [piece for s, e in sentences for piece in self._fit(text, s, e)]
        words = list(_matches(_WORD, text, start, end))
        return [
            _Piece(window[0][0], window[-1][1], len(window))
            for window in (words[i : i + self.max_tokens] for i in range(0, len(words), self.max_tokens))
        ]

    def _pack(self, text: str, pieces: list[_Piece]) -> list[ChunkSpan]:
        chunks: list[ChunkSpan] = []
        current: list[_Piece] = []
        size = 0
        for piece in pieces:
            fits = size + piece.tokens <= self.max_tokens and size < self.target_tokens
            if current and not fits and size >= self.min_tokens:
                chunks.append(_emit(text, current, len(chunks)))
                current = self._carry(current)
                size = sum(item.tokens for item in current)
            current.append(piece)
            size += piece.tokens
        if current:
            chunks.append(_emit(text, current, len(chunks)))
        return chunks

    def _carry(self, pieces: list[_Piece]) -> list[_Piece]:
        # trailing pieces that fit in the overlap are repeated at the head of the next chunk
        kept: list[_Piece] = []
        room = self.overlap_tokens
        for piece in reversed(pieces):
            if piece.tokens > room:
                break
            kept.append(piece)
            room -= piece.tokens
        kept.reverse()
        return kept


def chunk_text(
    text: str,
    target_tokens: int = 200,
    max_tokens: int = 256,
    min_tokens: int = 80,
    overlap_tokens: int = 20,
) -> list[ChunkSpan]:
    return Chunker(target_tokens, max_tokens, min_tokens, overlap_tokens).split(text)


def _paragraphs(text: str) -> Iterator[tuple[int, int]]:
    cursor = 0
    for brk in _PARAGRAPH_BREAK.finditer(text):
        yield from _trimmed(text, cursor, brk.start())
        cursor = brk.end()
    yield from _trimmed(text, cursor, len(text))


def _matches(pattern: re.Pattern[str], text: str, start: int, end: int) -> Iterator[tuple[int, int]]:
    for match in pattern.finditer(text, start, end):
        yield from _trimmed(text, match.start(), match.end())


def _trimmed(text: str, start: int, end: int) -> Iterator[tuple[int, int]]:
    window = text[start:end]
    stripped = window.strip()
    if stripped:
        offset = start + len(window) - len(window.lstrip())
        yield offset, offset + len(stripped)


def _emit(text: str, pieces: list[_Piece], position: int) -> ChunkSpan:
    start, end = pieces[0].start, pieces[-1].end
    body = text[start:end]
    return ChunkSpan(position=position, start_char=start, end_char=end, text=body, token_count=count_tokens(body))


__all__ = ["Chunker", "chunk_text", "count_tokens"]
