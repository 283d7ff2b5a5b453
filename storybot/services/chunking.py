"""Split long generated text into transport-sized messages.

Chat transports cap a single message at a few thousand characters while a
generated chapter easily runs to tens of thousands.  :func:`chunk_text`
packs whole lines greedily into chunks and only falls back to sentence
boundaries when one line is too long on its own.
"""
from __future__ import annotations

import logging
import re
from typing import List, Sequence

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_LENGTH = 4000

# A period followed by a space ends a sentence; the period stays with it.
_SENTENCE_BREAK = re.compile(r"(?<=\.) ")


class Chunk(str):
    """A chunk of text.  ``oversized`` marks an unsplittable sentence."""

    oversized: bool = False

    def __new__(cls, value: str, *, oversized: bool = False) -> "Chunk":
        chunk = super().__new__(cls, value)
        chunk.oversized = oversized
        return chunk


class _ChunkBuffer:
    def __init__(self, max_length: int) -> None:
        self.max_length = max_length
        self.chunks: List[Chunk] = []
        self._buffer = ""

    def add(self, piece: str, separator: str) -> None:
        candidate = f"{self._buffer}{separator}{piece}" if self._buffer else piece
        if len(candidate) <= self.max_length:
            self._buffer = candidate
            return

        self.flush()
        self._buffer = piece
        if len(piece) > self.max_length:
            self.flush()

    def flush(self) -> None:
        text = self._buffer.strip()
        self._buffer = ""
        if not text:
            return
        oversized = len(text) > self.max_length
        if oversized:
            LOGGER.warning(
                "Sentence of %d characters exceeds the %d character limit; sending it whole.",
                len(text),
                self.max_length,
            )
        self.chunks.append(Chunk(text, oversized=oversized))


def chunk_text(text: str, max_length: int = DEFAULT_MAX_LENGTH) -> List[Chunk]:
    """Return ``text`` split into ordered chunks of at most ``max_length``.

    Lines are kept together whenever possible.  A line longer than
    ``max_length`` is split on sentence boundaries instead, and a single
    sentence longer than ``max_length`` is returned as its own chunk with
    ``oversized`` set.
    """

    if max_length <= 0:
        raise ValueError("max_length must be positive.")
    if not text:
        return []
    if len(text) <= max_length:
        return [Chunk(text)]

    buffer = _ChunkBuffer(max_length)
    for line in text.split("\n"):
        if len(line) <= max_length:
            buffer.add(line, "\n")
            continue

        buffer.flush()
        for sentence in _SENTENCE_BREAK.split(line):
            buffer.add(sentence, " ")

    buffer.flush()
    return buffer.chunks


def label_parts(chunks: Sequence[str]) -> List[str]:
    """Prefix each chunk with ``Part i/N`` when there is more than one."""

    total = len(chunks)
    if total <= 1:
        return [str(chunk) for chunk in chunks]
    return [f"📄 Part {index}/{total}\n\n{chunk}" for index, chunk in enumerate(chunks, start=1)]


__all__ = ["Chunk", "DEFAULT_MAX_LENGTH", "chunk_text", "label_parts"]
