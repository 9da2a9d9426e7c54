"""Plain-text helpers behind the ``clean`` and ``chunk`` steps."""

from __future__ import annotations

import re
from typing import List, Optional

from .models import DEFAULT_MAX_SEGMENT_CHARACTERS

_SENTENCE_BOUNDARY = re.compile(r"(?<=\S[.?!])\s+(?=[A-Z0-9])")
_PARAGRAPH_BREAK = re.compile(r"\n{2,}")
_INLINE_SPACE = re.compile(r"[ \t]+")
_BULLET_MARKER = re.compile(r"^\s*[-*•]+\s*")
_NUMBER_MARKER = re.compile(r"^\s*\d+\.\s*")


def normalise_whitespace(text: str) -> str:
    """Collapse runs of spaces and trim lines.

    Every non-blank line becomes its own paragraph, separated by one blank
    line, so a later paragraph split treats each line as a unit.
    """
    lines = (
        _INLINE_SPACE.sub(" ", line).strip()
        for line in text.replace("\r\n", "\n").split("\n")
    )
    return "\n\n".join(line for line in lines if line)


def strip_bullet_markers(text: str) -> str:
    """Remove leading ``-``, ``*``, bullet and ``1.`` markers from every line."""
    return "\n".join(
        _NUMBER_MARKER.sub("", _BULLET_MARKER.sub("", line))
        for line in text.split("\n")
    )


def split_into_paragraphs(text: str) -> List[str]:
    return [part.strip() for part in _PARAGRAPH_BREAK.split(text) if part.strip()]


def split_into_sentences(text: str) -> List[str]:
    return [part.strip() for part in _SENTENCE_BOUNDARY.split(text) if part.strip()]


def _hard_split(token: str, max_characters: int) -> List[str]:
    pieces = (
        token[start : start + max_characters]
        for start in range(0, len(token), max_characters)
    )
    return [piece.strip() for piece in pieces if piece.strip()]


def _join_short(segments: List[str], max_characters: int) -> List[str]:
    joined: List[str] = []
    buffer = ""
    for segment in segments:
        if not buffer:
            buffer = segment
            continue
        if len(buffer) + len(segment) + 1 <= max_characters / 2:
            buffer = f"{buffer}\n\n{segment}"
        else:
            joined.append(buffer)
            buffer = segment
    if buffer:
        joined.append(buffer)
    return joined


def chunk_text(
    text: str,
    strategy: str = "paragraph",
    max_characters: Optional[int] = None,
    join_short_segments: bool = False,
) -> List[str]:
    """Pack paragraphs or sentences greedily into segments of bounded size.

    Tokens longer than ``max_characters`` are cut into fixed-width pieces.
    With ``join_short_segments`` adjacent segments are merged while the merged
    segment stays within half the limit.
    """
    limit = max_characters or DEFAULT_MAX_SEGMENT_CHARACTERS
    if not text.strip():
        return []

    tokens = (
        split_into_sentences(text)
        if strategy == "sentence"
        else split_into_paragraphs(text)
    )
    if not tokens:
        return [text.strip()]

    segments: List[str] = []
    current = ""
    for token in tokens:
        if len(token) >= limit:
            if current.strip():
                segments.append(current.strip())
            current = ""
            segments.extend(_hard_split(token, limit))
            continue
        if len(current) + len(token) + 1 > limit:
            if current.strip():
                segments.append(current.strip())
            current = ""
        current = f"{current} {token}" if current else token

    if current.strip():
        segments.append(current.strip())

    if join_short_segments and len(segments) > 1:
        return _join_short(segments, limit)
    return segments
