"""Boundary-aware text chunker with a hard character budget."""

from __future__ import annotations

import logging
import re
from typing import Iterator

from core.config import settings
from core.models import Chunk, Document

logger = logging.getLogger(__name__)

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


class Chunker:
    """Split documents into chunks of at most `max_chars` characters.

    Strategy:
    1. Pack whole paragraphs (blank-line separated) while they fit
    2. Split oversized paragraphs on sentence boundaries
    3. Split oversized sentences between words
    4. Hard-cut a single word longer than the budget (flagged as truncated)

    With `overlap_ratio` > 0 each chunk starts with the word-aligned tail of
    the previous chunk, never exceeding the budget.
    """

    def __init__(self, max_chars: int | None = None, overlap_ratio: float | None = None):
        if max_chars is None:
            max_chars = settings.chunk_size
        if overlap_ratio is None:
            overlap_ratio = settings.chunk_overlap_ratio
        if max_chars <= 0:
            raise ValueError("max_chars must be positive")
        if not 0.0 <= overlap_ratio < 0.5:
            raise ValueError("overlap_ratio must be in [0, 0.5)")
        self.max_chars = max_chars
        self.overlap_chars = int(max_chars * overlap_ratio)

    def chunk(self, document: Document) -> Iterator[Chunk]:
        """Lazily yield the chunks of one document. Empty text yields nothing."""
        for ordinal, (text, truncated) in enumerate(
            chunk_text(document.text, self.max_chars, self.overlap_chars)
        ):
            if truncated:
                logger.warning(
                    "Chunk %d of %s hard-split: no break point within %d chars",
                    ordinal,
                    document.id,
                    self.max_chars,
                )
            yield Chunk(
                document_id=document.id,
                ordinal=ordinal,
                text=text,
                truncated=truncated,
            )


def chunk_text(
    text: str, max_chars: int, overlap_chars: int = 0
) -> Iterator[tuple[str, bool]]:
    """Yield (chunk_text, hard_split) pairs packed from boundary-aligned pieces."""
    current = ""
    truncated = False

    for sep, piece, hard in _pieces(text, max_chars):
        if current and len(current) + len(sep) + len(piece) <= max_chars:
            current += sep + piece
            truncated = truncated or hard
            continue

        if current:
            yield current, truncated
            tail = _overlap_tail(current, min(overlap_chars, max_chars - len(piece) - 1))
            current = f"{tail} {piece}" if tail else piece
        else:
            current = piece
        truncated = hard

    if current:
        yield current, truncated


def _pieces(text: str, max_chars: int) -> Iterator[tuple[str, str, bool]]:
    """Yield (separator, piece, hard_split) with every piece within budget."""
    for para in _PARAGRAPH_BREAK.split(text):
        para = para.strip()
        if not para:
            continue

        if len(para) <= max_chars:
            yield "\n\n", para, False
            continue

        sep = "\n\n"
        for sentence in _SENTENCE_END.split(para):
            sentence = sentence.strip()
            if not sentence:
                continue
            if len(sentence) <= max_chars:
                yield sep, sentence, False
            else:
                for part, hard in _split_long_sentence(sentence, max_chars):
                    yield sep, part, hard
                    sep = " "
            sep = " "


def _split_long_sentence(sentence: str, max_chars: int) -> Iterator[tuple[str, bool]]:
    """Split between words; cut a word only when it alone exceeds the budget."""
    current = ""
    for word in sentence.split():
        if len(word) > max_chars:
            if current:
                yield current, False
                current = ""
            for start in range(0, len(word), max_chars):
                yield word[start : start + max_chars], True
            continue

        if not current:
            current = word
        elif len(current) + 1 + len(word) <= max_chars:
            current += " " + word
        else:
            yield current, False
            current = word

    if current:
        yield current, False


def _overlap_tail(text: str, limit: int) -> str:
    """Last `limit` chars of `text`, trimmed forward to a word boundary."""
    if limit <= 0:
        return ""
    if len(text) <= limit:
        return text
    tail = text[-limit:]
    if not text[-limit - 1].isspace() and not tail[0].isspace():
        parts = tail.split(None, 1)
        tail = parts[1] if len(parts) > 1 else ""
    return tail.strip()
