"""Paragraph-aware chunking with exact character overlap.

Strategy:
1. Content that fits in ``size`` is a single chunk, verbatim.
2. Otherwise split into paragraphs (blank-line delimited). Paragraphs longer
   than ``size`` are cut at the last whitespace inside the window.
3. Pack consecutive pieces into bodies of at most ``size`` characters,
   never splitting a paragraph that fits on its own.
4. Every chunk after the first is prefixed with the last ``overlap``
   characters of the previous chunk, so adjacent chunks share an identical
   overlap region. A chunk can therefore reach ``size + overlap``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n")


@dataclass(frozen=True, slots=True)
class TextChunk:
    """A chunk before embedding. ``position`` is the body's offset in the note."""

    content: str
    position: int


def chunk_content(content: str, size: int, overlap: int) -> list[TextChunk]:
    """Split *content* into overlapping chunks. Pure function of its inputs."""
    if size <= 0:
        raise ValueError(f"chunk size must be positive, got {size}")
    overlap = max(0, overlap)

    if not content.strip():
        return []
    if len(content) <= size:
        return [TextChunk(content=content, position=0)]

    bodies = _pack(content, _pieces(content, size), size)

    chunks: list[TextChunk] = []
    for start, end in bodies:
        body = content[start:end]
        if chunks and overlap:
            previous = chunks[-1].content
            body = previous[-overlap:] + body
        chunks.append(TextChunk(content=body, position=start))
    return chunks


def _paragraph_spans(content: str) -> list[tuple[int, int]]:
    """(start, end) offsets of non-blank paragraphs, whitespace trimmed."""
    spans: list[tuple[int, int]] = []
    cursor = 0
    for match in PARAGRAPH_BREAK.finditer(content):
        spans.append((cursor, match.start()))
        cursor = match.end()
    spans.append((cursor, len(content)))

    trimmed: list[tuple[int, int]] = []
    for start, end in spans:
        text = content[start:end]
        stripped = text.strip()
        if not stripped:
            continue
        lead = len(text) - len(text.lstrip())
        trimmed.append((start + lead, start + lead + len(stripped)))
    return trimmed


def _split_long(content: str, start: int, end: int, size: int) -> list[tuple[int, int]]:
    """Cut an oversize paragraph into windows of at most ``size`` characters."""
    pieces: list[tuple[int, int]] = []
    while end - start > size:
        limit = start + size
        cut = limit
        # Prefer a whitespace boundary in the back half of the window
        for i in range(limit, start + size // 2, -1):
            if content[i - 1].isspace():
                cut = i
                break
        piece_end = cut
        while piece_end > start and content[piece_end - 1].isspace():
            piece_end -= 1
        if piece_end == start:
            piece_end = cut = limit
        pieces.append((start, piece_end))
        start = cut
        while start < end and content[start].isspace():
            start += 1
    if start < end:
        pieces.append((start, end))
    return pieces


def _pieces(content: str, size: int) -> list[tuple[int, int]]:
    pieces: list[tuple[int, int]] = []
    for start, end in _paragraph_spans(content):
        if end - start > size:
            pieces.extend(_split_long(content, start, end, size))
        else:
            pieces.append((start, end))
    return pieces


def _pack(content: str, pieces: list[tuple[int, int]], size: int) -> list[tuple[int, int]]:
    """Greedily merge adjacent pieces while the covered span stays within ``size``."""
    bodies: list[tuple[int, int]] = []
    body_start: int | None = None
    body_end = 0
    for start, end in pieces:
        if body_start is None:
            body_start, body_end = start, end
        elif end - body_start <= size:
            body_end = end
        else:
            bodies.append((body_start, body_end))
            body_start, body_end = start, end
    if body_start is not None:
        bodies.append((body_start, body_end))
    return bodies
