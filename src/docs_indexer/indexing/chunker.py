from __future__ import annotations

import re

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


def _hard_split(paragraph: str, max_chars: int) -> list[str]:
    pieces = []
    remaining = paragraph
    while len(remaining) > max_chars:
        # Prefer a whitespace boundary in the second half of the window
        cut = remaining.rfind(" ", max_chars // 2, max_chars)
        if cut <= 0:
            cut = max_chars
        pieces.append(remaining[:cut].strip())
        remaining = remaining[cut:].strip()
    if remaining:
        pieces.append(remaining)
    return pieces


def split_into_chunks(text: str, max_chars: int) -> list[str]:
    """
    Pack blank-line separated paragraphs greedily into chunks of at most max_chars.

    Paragraphs that alone exceed max_chars are split on whitespace (or hard cut).
    """
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")

    chunks: list[str] = []
    current = ""
    for raw in _PARAGRAPH_BREAK.split(text):
        paragraph = raw.strip()
        if not paragraph:
            continue
        for piece in _hard_split(paragraph, max_chars) if len(paragraph) > max_chars else [paragraph]:
            if current and len(current) + 2 + len(piece) > max_chars:
                chunks.append(current)
                current = piece
            else:
                current = f"{current}\n\n{piece}" if current else piece
    if current:
        chunks.append(current)
    return [chunk for chunk in chunks if chunk]
