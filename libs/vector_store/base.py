"""Base vector store interface.

Defines the abstract contract the search engine depends on, independent of
the backing implementation. The in-memory exhaustive scan is the reference
backend; an ANN backend (HNSW, IVF) can be slotted in behind the same
interface without touching scoring or filtering code.

All mutating and scanning methods are asynchronous so backends may offload
work or talk to a remote service.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import numpy as np


@dataclass(frozen=True)
class ChunkRecord:
    """A pre-embedded chunk handed to the store for insertion."""
    text: str
    vector: np.ndarray
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class IndexEntry:
    """One stored chunk: identity, owner, vector, text, metadata snapshot."""
    chunk_id: str
    document_id: str
    vector: np.ndarray
    text: str
    metadata: Mapping[str, Any]


@dataclass(frozen=True)
class SimilarityMatch:
    """A chunk returned by a similarity scan."""
    chunk_id: str
    document_id: str
    text: str
    score: float
    metadata: Mapping[str, Any]


@dataclass(frozen=True)
class StoreStats:
    """Point-in-time size of a store."""
    document_count: int
    chunk_count: int
    avg_chunks_per_document: float
    dimension: Optional[int] = None


class VectorStore(ABC):
    """Abstract base class for chunk vector stores.

    Implementations must keep these invariants:
    - every chunk id belongs to exactly one document id;
    - every document's chunk list matches the stored entries (no orphans);
    - a document is either fully visible to readers or not at all;
    - all stored vectors share one dimensionality.
    """

    @abstractmethod
    async def insert_document(
        self,
        document_id: str,
        chunks: Sequence[ChunkRecord]
    ) -> List[str]:
        """Store all chunks of a document atomically.

        Returns
        - The generated chunk ids, in input order
        """

    @abstractmethod
    async def replace_document(
        self,
        document_id: str,
        chunks: Sequence[ChunkRecord]
    ) -> List[str]:
        """Swap a document's chunk set for a new one in one step.

        Readers see either the old set or the new set, never a mix.
        """

    @abstractmethod
    async def remove_document(self, document_id: str) -> int:
        """Remove every chunk of a document.

        Returns the number of chunks removed; ``0`` if the document was never
        indexed (not an error).
        """

    @abstractmethod
    async def scan_similarity(
        self,
        query_vector: np.ndarray,
        threshold: float = 0.0,
        exclude_document_id: Optional[str] = None,
        timeout: Optional[float] = None,
        snapshot: Optional["StoreSnapshot"] = None
    ) -> List[SimilarityMatch]:
        """Score the query against stored vectors.

        ``snapshot`` pins the scan to a view taken earlier with ``snapshot()``
        so several scans of one query see the same contents.

        Returns
        - Matches with ``score >= threshold``, unordered

        Raises
        - ``DimensionMismatchError`` if the query length differs from the index
        - ``ScanTimeoutError`` if the scan exceeds ``timeout`` seconds
        """

    @abstractmethod
    async def get_document_vectors(self, document_id: str) -> List[np.ndarray]:
        """Vectors of a document's chunks in chunk order (empty if absent)."""

    @abstractmethod
    def snapshot(self) -> "StoreSnapshot":
        """Consistent read-only view of the current contents."""

    @abstractmethod
    def get_stats(self) -> StoreStats:
        """Get document/chunk counts."""

    @abstractmethod
    async def clear(self) -> None:
        """Drop all contents."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the vector store is healthy."""

    async def close(self) -> None:
        """Release resources held by the store."""


class StoreSnapshot(ABC):
    """Read-only, internally consistent view of a store's entries."""

    @abstractmethod
    def entries(self) -> Sequence[IndexEntry]:
        """All entries in insertion order."""

    @abstractmethod
    def document_chunks(self) -> Mapping[str, Tuple[str, ...]]:
        """``document_id -> chunk ids`` for every indexed document."""


class VectorStoreError(Exception):
    """Base exception for vector store operations."""
    pass


class DimensionMismatchError(VectorStoreError):
    """Vector lengths disagree with each other or with the index.

    This signals a configuration error (e.g. the embedding model changed
    under a live index) and must never be coerced away.
    """

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Vector dimension mismatch: expected {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


class ScanTimeoutError(VectorStoreError):
    """A similarity scan exceeded its deadline."""
    pass


class VectorStoreQueryError(VectorStoreError):
    """Malformed input to a store operation."""
    pass
