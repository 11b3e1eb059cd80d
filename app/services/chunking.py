"""
Word-bounded text chunking.

Paragraphs are packed greedily into chunks of at most ``chunk_size`` words.
A paragraph that is too long on its own is packed sentence by sentence, and
a sentence that is still too long is cut on word boundaries.  Chunks are
stored with their document and seed the fallback mind map when the model
cannot structure the text.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from app.config import settings
from app.utils.helpers import count_words

logger = logging.getLogger(__name__)

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")

# Sentence end followed by whitespace and an uppercase letter, quote or bracket
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+(?=[A-Z\"\(\[])")


def split_paragraphs(text: str) -> List[str]:
    return [p.strip() for p in _PARAGRAPH_BREAK.split(text) if p.strip()]


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_BREAK.split(text) if s.strip()]


def pack_words(units: Iterable[List[str]], limit: int) -> List[List[str]]:
    """Concatenate word lists in order, starting a new group before *limit* is exceeded."""
    groups: List[List[str]] = []
    current: List[str] = []
    for words in units:
        if current and len(current) + len(words) > limit:
            groups.append(current)
            current = []
        current.extend(words)
    if current:
        groups.append(current)
    return groups


class ChunkingService:
    """Produces bounded-size chunks from a document's plain text."""

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
    ) -> None:
        self.chunk_size = chunk_size or settings.CHUNK_SIZE
        self.chunk_overlap = settings.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap

    def chunk_text(
        self,
        text: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Split *text* into ordered chunks.

        Returns a list of ``{"content", "chunk_index", "metadata"}`` dicts;
        each metadata dict holds ``approximate_token_count`` plus the
        caller's *metadata* entries (e.g. ``{"filename": "notes.txt"}``).
        """
        pieces = self.split(text)
        if self.chunk_overlap > 0:
            pieces = self._overlap(pieces)

        chunks = [
            {
                "content": piece,
                "chunk_index": index,
                "metadata": {**(metadata or {}), "approximate_token_count": count_words(piece)},
            }
            for index, piece in enumerate(pieces)
        ]
        logger.info("Created %d chunks from %d words of text", len(chunks), count_words(text))
        return chunks

    def split(self, text: str) -> List[str]:
        """Chunk contents without overlap, each at most ``chunk_size`` words."""
        units: List[List[str]] = []
        for paragraph in split_paragraphs(text):
            words = paragraph.split()
            if len(words) <= self.chunk_size:
                units.append(words)
            else:
                units.extend(self._sentence_units(paragraph))
        return [" ".join(group) for group in pack_words(units, self.chunk_size)]

    def _sentence_units(self, paragraph: str) -> List[List[str]]:
        units: List[List[str]] = []
        for sentence in split_sentences(paragraph):
            words = sentence.split()
            # hard cut for run-on sentences
            for start in range(0, len(words), self.chunk_size):
                units.append(words[start:start + self.chunk_size])
        return units

    def _overlap(self, pieces: List[str]) -> List[str]:
        """Prefix every chunk after the first with the previous chunk's last words."""
        result = pieces[:1]
        for previous, piece in zip(pieces, pieces[1:]):
            tail = previous.split()[-self.chunk_overlap:]
            result.append(" ".join(tail + piece.split()))
        return result
