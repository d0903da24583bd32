from __future__ import annotations

import re
from typing import Iterator

# text-embedding-3-small accepts 8191 tokens; ~4 chars per token.
DEFAULT_MAX_CHUNK_CHARS = 8000 * 4

_PARAGRAPH_SPLIT = re.compile(r"\n\n+")
# A trailing fragment without terminal punctuation still counts as a sentence.
_SENTENCE = re.compile(r"[^.!?]+(?:[.!?]+|$)")
_WHITESPACE = re.compile(r"\s+")
_MARKDOWN_LINK_BRACKETS = re.compile(r"\[.*?\]")
_URL = re.compile(r"https?://\S+")


class TextChunker:
    """Splits text into bounded segments at paragraph, then sentence, boundaries.

    ``chunks`` returns a fresh generator on every call, so the sequence can be
    re-iterated by calling it again.
    """

    def __init__(self, *, max_chunk_chars: int = DEFAULT_MAX_CHUNK_CHARS) -> None:
        if max_chunk_chars <= 0:
            raise ValueError("max_chunk_chars must be positive")
        self.max_chunk_chars = max_chunk_chars

    def chunks(self, text: str) -> Iterator[str]:
        if not text or not text.strip():
            return
        current = ""
        for paragraph in _PARAGRAPH_SPLIT.split(text):
            paragraph = paragraph.strip()
            if not paragraph:
                continue
            if len(paragraph) > self.max_chunk_chars:
                if current:
                    yield current
                    current = ""
                yield from self._split_oversized(paragraph)
                continue
            candidate = f"{current}\n\n{paragraph}" if current else paragraph
            if len(candidate) > self.max_chunk_chars:
                yield current
                current = paragraph
            else:
                current = candidate
        if current:
            yield current

    def _split_oversized(self, paragraph: str) -> Iterator[str]:
        units = [s.strip() for s in _SENTENCE.findall(paragraph) if s.strip()]
        if not units:
            units = [paragraph]

        current = ""
        for unit in units:
            if len(unit) > self.max_chunk_chars:
                if current:
                    yield current
                    current = ""
                yield from self._hard_split(unit)
                continue
            candidate = f"{current} {unit}" if current else unit
            if len(candidate) > self.max_chunk_chars:
                yield current
                current = unit
            else:
                current = candidate
        if current:
            yield current

    def _hard_split(self, unit: str) -> Iterator[str]:
        for start in range(0, len(unit), self.max_chunk_chars):
            piece = unit[start : start + self.max_chunk_chars].strip()
            if piece:
                yield piece


def prepare_newsletter_text(*, subject: str, sender: str, body: str) -> str:
    """Render the composite text embedded for a newsletter."""
    cleaned = _WHITESPACE.sub(" ", body or "")
    cleaned = _MARKDOWN_LINK_BRACKETS.sub("", cleaned)
    cleaned = _URL.sub("", cleaned).strip()
    return f"Subject: {subject}\nFrom: {sender}\n\n{cleaned}"
