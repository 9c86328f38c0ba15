"""
Smart Chunker

Splits cleaned text into size-bounded chunks along a hierarchy of separators
(paragraphs, lines, sentences, words, characters) and merges the pieces back
into chunks that share a fixed-size overlap with their predecessor.
"""

from collections import deque
from typing import Deque, List, Optional

from crawler_engine.core.base import ChunkOptions, TextChunk
from crawler_engine.core.logging import get_logger


class SmartChunker:
    """
    Recursive separator splitter with an overlap-preserving merger.

    Every chunk is at most ``chunk_size`` characters, and every chunk but the
    last holds at least ``chunk_size - overlap``. Chunk ``i + 1`` starts
    with the last ``overlap`` characters of chunk ``i``, so joining
    ``chunk.content[chunk.overlap:]`` over all chunks gives back the input.
    """

    def __init__(self, options: Optional[ChunkOptions] = None):
        self.options = options or ChunkOptions()
        if self.options.chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {self.options.chunk_size}")
        self.logger = get_logger(__name__)

    @property
    def overlap_size(self) -> int:
        return max(0, min(self.options.chunk_overlap, self.options.chunk_size - 1))

    def split_text(self, text: str) -> List[str]:
        """
        Split text into pieces no longer than ``chunk_size``.

        Args:
            text: Text to split

        Returns:
            Ordered pieces whose concatenation equals ``text``
        """
        return self._split(text, list(self.options.separators), self.options.chunk_size)

    def chunk(self, text: str) -> List[TextChunk]:
        """
        Split text into overlapping chunks.

        Args:
            text: Cleaned document text

        Returns:
            Chunks in document order, indexed from zero
        """
        if not text:
            return []

        size = self.options.chunk_size
        if len(text) <= size:
            return [TextChunk(content=text, index=0, start_char=0, end_char=len(text), overlap=0)]

        overlap_size = self.overlap_size
        pending: Deque[str] = deque(self.split_text(text))
        chunks: List[TextChunk] = []

        current = ""
        carried = 0
        start = 0

        while pending:
            piece = pending.popleft()

            if len(current) + len(piece) <= size:
                current += piece
                continue

            room = size - len(current)
            if room > overlap_size:
                # Chunk is under size - overlap; fill it from the front of the piece
                pending.extendleft(reversed(self._split(piece, list(self.options.separators), room)))
            elif len(current) > carried:
                chunks.append(self._make_chunk(current, len(chunks), start, carried))
                carry = current[-overlap_size:] if overlap_size else ""
                start += len(current) - len(carry)
                current = carry
                carried = len(carry)
                pending.appendleft(piece)
            else:
                # Only the carried overlap is buffered; shrink the piece to the room left
                room = size - len(current)
                pending.extendleft(reversed(self._split(piece, list(self.options.separators), room)))

        if len(current) > carried or not chunks:
            chunks.append(self._make_chunk(current, len(chunks), start, carried))

        self.logger.debug(f"Split {len(text)} characters into {len(chunks)} chunks")
        return chunks

    def _make_chunk(self, content: str, index: int, start: int, overlap: int) -> TextChunk:
        return TextChunk(
            content=content,
            index=index,
            start_char=start,
            end_char=start + len(content),
            overlap=overlap,
        )

    def _split(self, text: str, separators: List[str], limit: int) -> List[str]:
        if len(text) <= limit:
            return [text]

        for position, separator in enumerate(separators):
            if separator == "":
                break
            if separator not in text:
                continue

            remaining = separators[position + 1:]
            pieces: List[str] = []
            for part in self._split_keeping(text, separator):
                if len(part) <= limit:
                    pieces.append(part)
                else:
                    pieces.extend(self._split(part, remaining, limit))
            return pieces

        return self._hard_split(text, limit)

    def _split_keeping(self, text: str, separator: str) -> List[str]:
        """Split on a separator without dropping it"""
        parts = text.split(separator)
        if self.options.keep_separator:
            pieces = [part + separator for part in parts[:-1]] + [parts[-1]]
        else:
            pieces = [parts[0]] + [separator + part for part in parts[1:]]
        return [piece for piece in pieces if piece]

    @staticmethod
    def _hard_split(text: str, limit: int) -> List[str]:
        return [text[i:i + limit] for i in range(0, len(text), limit)]
