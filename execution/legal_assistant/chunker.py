"""
Overlapping Text Chunker for Legal Documents

Splits extracted document text into ordered, overlapping segments that can be
embedded and retrieved independently.

Splitting strategy, coarsest boundary first:
- Paragraphs (blank-line separated)
- Sentences, for paragraphs longer than the target length
- Words, for sentences longer than the target length
- Fixed-width slices, for single tokens longer than the target length

Consecutive chunks share a tail of the previous chunk (the overlap) so a
sentence that straddles a boundary is still whole in at least one chunk.
The output depends only on the input text and the configuration.
"""

import re
import logging
from dataclasses import dataclass
from typing import Optional

from .errors import InvalidArgument

logger = logging.getLogger(__name__)

_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n+")
# Sentence boundary: terminal punctuation followed by whitespace and an
# uppercase letter, digit, or opening quote/bracket (common in legal text).
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?;])\s+(?=[A-Z0-9\"'(\[])")


@dataclass
class ChunkConfig:
    """Configuration for chunking parameters."""
    target_length: int = 1000  # characters
    overlap_ratio: float = 0.12

    def __post_init__(self):
        if self.target_length <= 0:
            raise InvalidArgument("target_length must be positive")
        if not 0 <= self.overlap_ratio < 0.5:
            raise InvalidArgument("overlap_ratio must be in [0, 0.5)")

    @property
    def overlap_length(self) -> int:
        return int(self.target_length * self.overlap_ratio)


class TextChunker:
    """
    Chunks extracted document text with a fixed overlap.

    Never emits an empty chunk. Whitespace-only input yields no chunks;
    text no longer than the target length yields exactly one chunk.
    """

    def __init__(self, config: Optional[ChunkConfig] = None):
        self.config = config or ChunkConfig()

    @classmethod
    def from_settings(cls, settings) -> "TextChunker":
        return cls(ChunkConfig(
            target_length=settings.chunk_target_length,
            overlap_ratio=settings.chunk_overlap_ratio,
        ))

    def chunk(self, text: str) -> list[str]:
        """
        Split text into ordered chunk texts.

        Args:
            text: Extracted document text

        Returns:
            List of non-empty chunk strings in document order
        """
        if not text or not text.strip():
            return []

        normalized = text.replace("\r\n", "\n").replace("\r", "\n").strip()
        target = self.config.target_length

        if len(normalized) <= target:
            return [normalized]

        segments = self._split_segments(normalized)

        chunks = []
        current_text = ""
        for segment, joiner in segments:
            if not current_text:
                current_text = segment
                continue

            if len(current_text) + len(joiner) + len(segment) <= target:
                current_text += joiner + segment
                continue

            chunks.append(current_text)
            overlap_text = self._get_overlap(current_text)
            current_text = f"{overlap_text} {segment}" if overlap_text else segment

        if current_text.strip():
            chunks.append(current_text)

        logger.debug(f"Split {len(normalized)} characters into {len(chunks)} chunks")
        return chunks

    def _split_segments(self, text: str) -> list[tuple[str, str]]:
        """
        Break text into (segment, joiner) pairs no longer than the target.

        The joiner is the separator to use when the segment is appended to
        the running chunk: a blank line between paragraphs, a space inside one.
        """
        target = self.config.target_length
        segments = []

        for paragraph in _PARAGRAPH_SPLIT.split(text):
            paragraph = paragraph.strip()
            if not paragraph:
                continue

            if len(paragraph) <= target:
                segments.append((paragraph, "\n\n"))
                continue

            pieces = self._split_on_sentences(paragraph)
            for i, piece in enumerate(pieces):
                segments.append((piece, "\n\n" if i == 0 else " "))

        return segments

    def _split_on_sentences(self, paragraph: str) -> list[str]:
        """Split an oversized paragraph into pieces no longer than the target."""
        target = self.config.target_length
        pieces = []

        for sentence in _SENTENCE_SPLIT.split(paragraph):
            sentence = sentence.strip()
            if not sentence:
                continue
            if len(sentence) <= target:
                pieces.append(sentence)
            else:
                pieces.extend(self._split_on_words(sentence))

        return pieces

    def _split_on_words(self, sentence: str) -> list[str]:
        """Split an oversized sentence on whitespace, slicing words that are still too long."""
        target = self.config.target_length
        pieces = []
        current = ""

        for word in sentence.split():
            if len(word) > target:
                if current:
                    pieces.append(current)
                    current = ""
                pieces.extend(word[i:i + target] for i in range(0, len(word), target))
                continue

            if current and len(current) + 1 + len(word) > target:
                pieces.append(current)
                current = word
            else:
                current = f"{current} {word}" if current else word

        if current:
            pieces.append(current)

        return pieces

    def _get_overlap(self, text: str) -> str:
        """Get overlap text from the end of the previous chunk, starting on a word boundary."""
        size = self.config.overlap_length
        if size <= 0:
            return ""

        tail = text[-size:]
        if len(text) > size and not text[-size - 1].isspace():
            # Drop the partial leading word
            parts = tail.split(None, 1)
            tail = parts[1] if len(parts) > 1 else ""

        return tail.strip()
