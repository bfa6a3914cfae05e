"""Split document text into bounded, overlapping chunks.

Two strategies:

- ``paragraph`` (plain text, markdown): paragraphs are packed into a buffer
  up to ``max_chunk_size``, keeping the blank-line run that separated them in
  the source. When the next paragraph would overflow a non-empty buffer, the
  buffer is emitted and the next one is seeded with up to
  ``overlap_size // 5`` trailing words of the emitted chunk, capped at
  ``overlap_size`` characters, so a chunk never exceeds
  ``max_chunk_size + overlap_size`` unless one paragraph alone does. Such a
  paragraph is emitted whole. Chunk edges are stripped of whitespace.
- ``text`` (everything else): fixed windows of ``max_chunk_size`` characters
  at every multiple of ``max_chunk_size - overlap_size``.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union
import structlog

from ..models import DocumentType

logger = structlog.get_logger("search_service.chunker")

PARAGRAPH_TYPES = frozenset({DocumentType.TEXT, DocumentType.MARKDOWN})

# Average characters per word used to turn the overlap size into a word count
CHARS_PER_WORD = 5

_BLANK_LINE = re.compile(r"(\n\s*\n)")


class ChunkStrategy(str, Enum):
    """Chunking strategy tag recorded on each chunk."""
    PARAGRAPH = "paragraph"
    TEXT = "text"


@dataclass(frozen=True)
class Chunk:
    """A contiguous (possibly overlap-seeded) segment of a document."""
    text: str
    chunk_index: int
    strategy: ChunkStrategy
    start_index: Optional[int] = None
    end_index: Optional[int] = None

    @property
    def length(self) -> int:
        return len(self.text)

    @property
    def metadata(self) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {
            "chunk_index": self.chunk_index,
            "type": self.strategy.value,
            "length": self.length,
        }
        if self.start_index is not None:
            metadata["start_index"] = self.start_index
            metadata["end_index"] = self.end_index
        return metadata


class DocumentChunker:
    """Chunker configured with a size limit and an overlap size.

    Parameters
    - max_chunk_size: Target upper bound on chunk length, in characters
    - overlap_size: Characters of context shared between adjacent chunks
    """

    def __init__(self, max_chunk_size: int = 1000, overlap_size: int = 200):
        if max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be positive")
        if overlap_size < 0 or overlap_size >= max_chunk_size:
            raise ValueError("overlap_size must be in [0, max_chunk_size)")
        self.max_chunk_size = max_chunk_size
        self.overlap_size = overlap_size

    @property
    def overlap_words(self) -> int:
        return self.overlap_size // CHARS_PER_WORD

    def chunk(self, text: str, document_type: Union[DocumentType, str] = DocumentType.TEXT) -> List[Chunk]:
        """Chunk ``text`` using the strategy for ``document_type``.

        Empty or whitespace-only text yields no chunks.
        """
        if not text or not text.strip():
            return []

        try:
            kind = DocumentType(document_type)
        except ValueError:
            kind = DocumentType.UNKNOWN

        if kind in PARAGRAPH_TYPES:
            chunks = self._chunk_paragraphs(text)
        else:
            chunks = self._chunk_fixed(text)

        logger.debug(
            "Document chunked",
            document_type=kind.value,
            text_length=len(text),
            chunk_count=len(chunks)
        )
        return chunks

    def _overlap_tail(self, chunk_text: str) -> str:
        """Trailing words of ``chunk_text`` that seed the next chunk.

        At most ``overlap_words`` words, and the seed plus its joining space
        never exceeds ``overlap_size`` characters.
        """
        if self.overlap_words <= 0:
            return ""

        tail: List[str] = []
        used = 0
        for word in reversed(chunk_text.split()[-self.overlap_words:]):
            cost = len(word) + 1
            if used + cost > self.overlap_size:
                break
            tail.append(word)
            used += cost
        return " ".join(reversed(tail))

    def _paragraphs(self, text: str) -> List[Tuple[str, str]]:
        """``(separator, paragraph)`` pairs; the separator is the blank-line
        run that preceded the paragraph in the source text."""
        parts = _BLANK_LINE.split(text)
        pairs: List[Tuple[str, str]] = []
        separator = ""
        for i, part in enumerate(parts):
            if i % 2:
                separator = part
                continue
            if part.strip():
                pairs.append((separator, part))
        return pairs

    def _chunk_paragraphs(self, text: str) -> List[Chunk]:
        chunks: List[Chunk] = []
        buffer = ""

        for separator, paragraph in self._paragraphs(text):
            joiner = separator or "\n\n"
            if buffer and len(buffer) + len(joiner) + len(paragraph) > self.max_chunk_size:
                emitted = buffer.strip()
                chunks.append(Chunk(emitted, len(chunks), ChunkStrategy.PARAGRAPH))
                overlap = self._overlap_tail(emitted)
                buffer = f"{overlap} {paragraph}" if overlap else paragraph
            else:
                buffer = f"{buffer}{joiner}{paragraph}" if buffer else paragraph

        if buffer.strip():
            chunks.append(Chunk(buffer.strip(), len(chunks), ChunkStrategy.PARAGRAPH))
        return chunks

    def _chunk_fixed(self, text: str) -> List[Chunk]:
        stride = self.max_chunk_size - self.overlap_size
        chunks: List[Chunk] = []

        # Every stride start gets a window, including trailing ones that fall
        # inside the previous window
        for start in range(0, len(text), stride):
            end = min(start + self.max_chunk_size, len(text))
            chunks.append(Chunk(
                text[start:end],
                len(chunks),
                ChunkStrategy.TEXT,
                start_index=start,
                end_index=end,
            ))
        return chunks
