"""
Text chunker for the RAG pipeline.

Splits extracted document text into bounded, order-preserving chunks:
paragraphs first, sentences for paragraphs that do not fit, lines for
sentences that still do not fit. A single sentence (or line) longer than
the limit is kept whole rather than truncated.
"""

import logging
import re
from typing import List

from rag.errors import ValidationError

logger = logging.getLogger(__name__)

PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
# Latin terminators need trailing whitespace (keeps "500.5kN" and "e.g.x" intact);
# CJK terminators end a sentence on their own.
SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+|(?<=[。！？])\s*")

PARAGRAPH_JOINER = "\n\n"
SENTENCE_JOINER = " "


def split_sentences(paragraph: str) -> List[str]:
    """Split a paragraph into sentences, keeping their terminators."""
    return [s.strip() for s in SENTENCE_BREAK.split(paragraph) if s and s.strip()]


def _split_units(paragraph: str, max_chunk_size: int) -> List[str]:
    """Sentences, with oversize ones broken at line ends (IFC/DXF dumps have no terminators)."""
    units: List[str] = []
    for sentence in split_sentences(paragraph):
        if len(sentence) > max_chunk_size and "\n" in sentence:
            units.extend(line.strip() for line in sentence.splitlines() if line.strip())
        else:
            units.append(sentence)
    return units


class Chunker:
    """
    Paragraph-first, sentence-fallback text splitter.

    Guarantees:
    - every chunk is non-empty and at most ``max_chunk_size`` characters,
      except a lone sentence that is itself longer than the limit
    - chunks come out in document order and, ignoring whitespace,
      concatenate back to the input
    """

    def __init__(self, max_chunk_size: int = 1000):
        if int(max_chunk_size) < 1:
            raise ValidationError(f"max_chunk_size must be positive, got {max_chunk_size}")
        self.max_chunk_size = int(max_chunk_size)

    def split(self, text: str) -> List[str]:
        chunks: List[str] = []
        current = ""

        for paragraph in PARAGRAPH_BREAK.split(text or ""):
            paragraph = paragraph.strip()
            if not paragraph:
                continue

            if len(paragraph) > self.max_chunk_size:
                if current:
                    chunks.append(current)
                # the tail of an oversize paragraph may still absorb what follows
                current = self._pack_sentences(paragraph, chunks)
                continue

            candidate = f"{current}{PARAGRAPH_JOINER}{paragraph}" if current else paragraph
            if len(candidate) <= self.max_chunk_size:
                current = candidate
            else:
                chunks.append(current)
                current = paragraph

        if current:
            chunks.append(current)

        logger.debug(f"Split text of {len(text or '')} chars into {len(chunks)} chunks")
        return chunks

    def _pack_sentences(self, paragraph: str, chunks: List[str]) -> str:
        """Append full sentence groups to ``chunks`` and return the unfinished tail."""
        current = ""
        for sentence in _split_units(paragraph, self.max_chunk_size):
            candidate = f"{current}{SENTENCE_JOINER}{sentence}" if current else sentence
            if len(candidate) <= self.max_chunk_size:
                current = candidate
                continue
            if current:
                chunks.append(current)
            current = sentence
        return current


def split_text(text: str, max_chunk_size: int = 1000) -> List[str]:
    """Convenience wrapper around :class:`Chunker`."""
    return Chunker(max_chunk_size).split(text)
