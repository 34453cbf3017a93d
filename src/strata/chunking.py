"""Text chunking: markdown-aware and plain sliding-window splitters."""

from __future__ import annotations

import re

_HEADING_RE = re.compile(r"(?=^#{1,6}\s)", re.MULTILINE)
_PARAGRAPH_RE = re.compile(r"\n\s*\n")

# Sentence ends and line breaks, CJK full-width punctuation included.
_BREAKS = ("。", "！", "？", ".\n", ". ", "! ", "? ", "\n\n", "\n")

MIN_BREAK_RATIO = 0.3


def chunk(
    text: str,
    max_size: int = 500,
    overlap: int = 50,
    structured: bool = False,
    min_length: int = 10,
) -> list[str]:
    """Split text into bounded, overlapping chunks.

    Every chunk is at most ``max_size + overlap`` characters long and at
    least ``min_length`` characters after trimming; shorter pieces are
    dropped as noise. Empty input yields an empty list.
    """
    if not text or not text.strip():
        return []
    if max_size <= 0:
        raise ValueError("max_size must be positive")
    overlap = max(0, min(overlap, max_size - 1))
    if structured:
        pieces = _split_structured(text, max_size, overlap)
    else:
        pieces = _split_plain(text, max_size, overlap)
    return [p for p in pieces if len(p.strip()) >= min_length]


def looks_like_markdown(name: str) -> bool:
    return name.lower().endswith((".md", ".markdown"))


def _split_plain(text: str, max_size: int, overlap: int) -> list[str]:
    # Pieces are cut from the trimmed text and kept verbatim so each one
    # starts with exactly the last ``overlap`` characters of the previous.
    text = text.strip()
    if len(text) <= max_size:
        return [text]

    out: list[str] = []
    n = len(text)
    start = 0
    while start < n:
        end = min(start + max_size, n)
        if end < n:
            window = text[start:end]
            best = max(window.rfind(sep) for sep in _BREAKS)
            # A break too close to the window start would leave a sliver.
            if best > max_size * MIN_BREAK_RATIO:
                end = start + best + 1
        piece = text[start:end]
        if piece.strip():
            out.append(piece)
        if end >= n:
            break
        nxt = end - overlap
        start = nxt if nxt > start else end
    return out


def _split_structured(text: str, max_size: int, overlap: int) -> list[str]:
    out: list[str] = []
    for section in _HEADING_RE.split(text):
        section = section.strip()
        if not section:
            continue
        if len(section) <= max_size:
            out.append(section)
        else:
            out.extend(_split_paragraphs(section, max_size, overlap))
    return out


def _split_paragraphs(section: str, max_size: int, overlap: int) -> list[str]:
    paragraphs = [p.strip() for p in _PARAGRAPH_RE.split(section) if p.strip()]
    out: list[str] = []
    current = ""
    for para in paragraphs:
        if len(para) > max_size:
            if current:
                out.append(current)
                current = ""
            out.extend(_split_plain(para, max_size, overlap))
            continue
        candidate = f"{current}\n\n{para}" if current else para
        if len(candidate) <= max_size:
            current = candidate
            continue
        out.append(current)
        current = _seed(current, para, max_size, overlap)
    if current:
        out.append(current)
    return out


def _seed(previous: str, para: str, max_size: int, overlap: int) -> str:
    """Start a new buffer with the tail of the previous one, then ``para``."""
    keep = min(overlap, max_size + overlap - len(para) - 2)
    if keep <= 0:
        return para
    tail = previous[-keep:].strip()
    return f"{tail}\n\n{para}" if tail else para
