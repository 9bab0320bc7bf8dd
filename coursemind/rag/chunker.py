"""Text chunking with overlap for the ingestion pipeline.

Implements character-based chunking to avoid tokenizer dependencies.
Boundaries are deterministic: the same text always yields the same chunks.
"""
from typing import List, Optional
from dataclasses import dataclass
import structlog

from coursemind import config

logger = structlog.get_logger()

SENTENCE_BREAKS = (". ", "! ", "? ", ".\n", "!\n", "?\n")


@dataclass
class Chunk:
    """A slice of extracted text with its position in the source."""

    text: str
    index: int
    start_char: int
    end_char: int
    total_chunks: int = 0


class TextChunker:
    """Character-based text chunker with overlap support."""

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        min_tail: Optional[int] = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Size of each chunk in characters (default from config)
            chunk_overlap: Overlap between chunks in characters (default from config)
            min_tail: Unconsumed tail shorter than this is not chunked again
        """
        self.chunk_size = chunk_size if chunk_size is not None else config.CHUNK_SIZE
        self.chunk_overlap = (
            chunk_overlap if chunk_overlap is not None else config.CHUNK_OVERLAP
        )
        self.min_tail = min_tail if min_tail is not None else config.CHUNK_MIN_TAIL

        if self.chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {self.chunk_size}")

        if self.chunk_overlap < 0 or self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"Overlap ({self.chunk_overlap}) must be between 0 and "
                f"chunk size ({self.chunk_size})"
            )

        logger.debug(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )

    def chunk_text(self, text: str) -> List[Chunk]:
        """Split text into overlapping chunks.

        Args:
            text: Text to chunk

        Returns:
            List of Chunk objects, in document order
        """
        if not text or not text.strip():
            return []

        text_length = len(text)
        chunks: List[Chunk] = []
        start = 0

        while start < text_length:
            end = min(start + self.chunk_size, text_length)

            # Only snap when the window edge falls inside the text
            if end < text_length:
                end = self._snap_to_sentence(text, start, end)

            content = text[start:end]
            if content.strip():
                chunks.append(
                    Chunk(
                        text=content,
                        index=len(chunks),
                        start_char=start,
                        end_char=end,
                    )
                )

            if end >= text_length:
                break

            start = max(start + 1, end - self.chunk_overlap)

            # Avoid a degenerate near-empty trailing chunk
            if text_length - start < self.min_tail:
                break

        for chunk in chunks:
            chunk.total_chunks = len(chunks)

        logger.debug(
            "text_chunked",
            text_length=text_length,
            chunk_count=len(chunks),
        )

        return chunks

    def _snap_to_sentence(self, text: str, start: int, end: int) -> int:
        """Move a window's end back to the nearest sentence terminator.

        The terminator must lie past the window midpoint, otherwise the
        window is cut hard at its original edge.

        Args:
            text: Full text being chunked
            start: Window start position
            end: Window end position (exclusive)

        Returns:
            Adjusted end position
        """
        midpoint = start + self.chunk_size // 2
        best = -1
        for marker in SENTENCE_BREAKS:
            # The whole marker must fit inside the window
            position = text.rfind(marker, start, end)
            if position > best:
                best = position

        if best > midpoint:
            return best + 2
        return end

    def get_chunk_stats(self, chunks: List[Chunk]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of Chunk objects

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
                "overlap": self.chunk_overlap,
            }

        chunk_sizes = [len(c.text) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.chunk_overlap,
        }


def chunk_text(text: str) -> List[Chunk]:
    """Chunk text using the configured defaults (convenience function).

    Args:
        text: Text to chunk

    Returns:
        List of Chunk objects
    """
    return TextChunker().chunk_text(text)
