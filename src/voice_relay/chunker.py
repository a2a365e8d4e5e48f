"""
Text segmentation for streaming speech synthesis.

Short sentences are merged so fewer synthesis calls are needed, and long ones
are split at natural pauses so the first audio arrives quickly.
"""

import re
from dataclasses import dataclass
from typing import List

DEFAULT_MAX_LENGTH = 50

# Terminator followed by whitespace and a capital letter
SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?;])\s+(?=[A-Z])")

# Preferred break points, best first
BREAK_POINTS = (", ", " and ", " or ", " but ", " - ", " ")


@dataclass
class TTSSegment:
    """One span of reply text to synthesize."""
    text: str
    index: int
    is_last: bool


def split_sentences(text: str) -> List[str]:
    sentences = [s.strip() for s in SENTENCE_BOUNDARY.split(text)]
    return [s for s in sentences if s]


def _find_break(text: str, max_length: int) -> int:
    """Index of the character that ends the left part, or -1."""
    for separator in BREAK_POINTS:
        # A separator starting with a space may begin at max_length, the space
        # is stripped. A comma stays with the left part so it must fit.
        limit = max_length if separator[0] == " " else max_length - 1
        position = text.rfind(separator, 0, limit + len(separator))
        if position >= max_length * 0.5:
            return position
    return -1


def split_long_segment(text: str, max_length: int) -> List[str]:
    """Split text longer than max_length at natural break points."""
    parts: List[str] = []
    remaining = text
    while len(remaining) > max_length:
        position = _find_break(remaining, max_length)
        if position > 0:
            parts.append(remaining[:position + 1].strip())
            remaining = remaining[position + 1:].strip()
        else:
            # No good break point, force a cut
            parts.append(remaining[:max_length].strip())
            remaining = remaining[max_length:].strip()
    if remaining:
        parts.append(remaining)
    return parts


def chunk_text(text: str, max_length: int = DEFAULT_MAX_LENGTH) -> List[str]:
    """
    Split reply text into segments of at most max_length characters.

    Args:
        text: Free-form reply text
        max_length: Maximum characters per segment

    Returns:
        Ordered, non-empty segments
    """
    if max_length < 1:
        raise ValueError("max_length must be positive")
    if not text or not text.strip():
        return []

    sentences = split_sentences(text) or [text.strip()]

    grouped: List[str] = []
    current = ""
    for sentence in sentences:
        candidate = f"{current} {sentence}" if current else sentence
        if current and len(candidate) > max_length:
            grouped.append(current.strip())
            current = sentence
        else:
            current = candidate
    if current:
        grouped.append(current.strip())

    segments: List[str] = []
    for group in grouped:
        if not group:
            continue
        if len(group) > max_length:
            segments.extend(split_long_segment(group, max_length))
        else:
            segments.append(group)
    return [s for s in segments if s]


def create_tts_segments(text: str, max_length: int = DEFAULT_MAX_LENGTH) -> List[TTSSegment]:
    """Chunk text and tag each segment with its position and the last flag."""
    chunks = chunk_text(text, max_length)
    return [
        TTSSegment(text=chunk, index=i, is_last=i == len(chunks) - 1)
        for i, chunk in enumerate(chunks)
    ]
