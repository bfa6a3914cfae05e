"""In-memory vector store with exhaustive cosine scan.

The store keeps its whole state in one immutable ``IndexSnapshot``. Writers
serialize on an ``asyncio.Lock``, build the next snapshot from the current
one, and publish it with a single reference assignment. Readers grab the
current reference without locking and keep using it for the whole query, so
they never observe a half-inserted or half-removed document and never block
writers or each other.

Scans are O(n·d) per query (n chunks, d dimensions). The snapshot stacks its
vectors into one matrix on first use so a scan is a single matrix-vector
product, but the cost still grows linearly with the corpus. Callers should
pass a deadline.
"""

import asyncio
import threading
import uuid
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple
import numpy as np
import structlog

from .base import (
    ChunkRecord,
    DimensionMismatchError,
    IndexEntry,
    ScanTimeoutError,
    SimilarityMatch,
    StoreSnapshot,
    StoreStats,
    VectorStore,
    VectorStoreQueryError,
)

logger = structlog.get_logger("vector_store.memory")


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity ``dot(a, b) / (|a| * |b|)``.

    Returns ``nan`` when either vector has zero norm (direction undefined).

    Raises
    - ``DimensionMismatchError`` if the vectors differ in length
    """
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    if a.shape[0] != b.shape[0]:
        raise DimensionMismatchError(a.shape[0], b.shape[0])

    denom = np.linalg.norm(a) * np.linalg.norm(b)
    if denom == 0.0:
        return float("nan")
    return float(np.dot(a, b) / denom)


class IndexSnapshot(StoreSnapshot):
    """Immutable version of the store contents.

    ``entries`` and ``documents`` are never mutated after construction. The
    stacked matrix is derived state, built lazily under a lock.
    """

    def __init__(
        self,
        entries: Dict[str, IndexEntry],
        documents: Dict[str, Tuple[str, ...]],
        dimension: Optional[int],
        version: int = 0
    ):
        self._entries = entries
        self._documents = documents
        self.dimension = dimension
        self.version = version
        self._matrix: Optional[np.ndarray] = None
        self._norms: Optional[np.ndarray] = None
        self._order: Tuple[IndexEntry, ...] = tuple(entries.values())
        self._matrix_lock = threading.Lock()

    def entries(self) -> Sequence[IndexEntry]:
        return self._order

    def document_chunks(self) -> Mapping[str, Tuple[str, ...]]:
        return MappingProxyType(self._documents)

    def get_entry(self, chunk_id: str) -> Optional[IndexEntry]:
        return self._entries.get(chunk_id)

    @property
    def chunk_count(self) -> int:
        return len(self._entries)

    @property
    def document_count(self) -> int:
        return len(self._documents)

    def _ensure_matrix(self) -> Tuple[np.ndarray, np.ndarray]:
        with self._matrix_lock:
            if self._matrix is None:
                if self._order:
                    matrix = np.vstack([entry.vector for entry in self._order]).astype(np.float64)
                else:
                    matrix = np.zeros((0, self.dimension or 0), dtype=np.float64)
                self._norms = np.linalg.norm(matrix, axis=1)
                self._matrix = matrix
            return self._matrix, self._norms

    def scan(
        self,
        query_vector: np.ndarray,
        threshold: float,
        exclude_document_id: Optional[str] = None
    ) -> List[SimilarityMatch]:
        """Synchronous exhaustive scan; safe to run on a worker thread."""
        if not self._order:
            return []

        matrix, norms = self._ensure_matrix()
        query = np.asarray(query_vector, dtype=np.float64).ravel()
        if query.shape[0] != matrix.shape[1]:
            raise DimensionMismatchError(matrix.shape[1], query.shape[0])

        with np.errstate(divide="ignore", invalid="ignore"):
            scores = (matrix @ query) / (norms * np.linalg.norm(query))

        matches: List[SimilarityMatch] = []
        # NaN (zero-norm) never satisfies >=, so such rows drop out here
        for idx in np.flatnonzero(scores >= threshold):
            entry = self._order[idx]
            if exclude_document_id is not None and entry.document_id == exclude_document_id:
                continue
            matches.append(SimilarityMatch(
                chunk_id=entry.chunk_id,
                document_id=entry.document_id,
                text=entry.text,
                score=float(scores[idx]),
                metadata=entry.metadata,
            ))
        return matches


class InMemoryVectorStore(VectorStore):
    """Process-local ``VectorStore`` backed by copy-on-write snapshots.

    Parameters
    - dimension: Expected vector length; ``None`` lets the first insert fix it
    """

    def __init__(self, dimension: Optional[int] = None):
        self._configured_dimension = dimension
        self._snapshot = IndexSnapshot({}, {}, dimension)
        self._write_lock = asyncio.Lock()

    @property
    def dimension(self) -> Optional[int]:
        return self._snapshot.dimension

    def snapshot(self) -> IndexSnapshot:
        return self._snapshot

    def _prepare_vectors(
        self,
        chunks: Sequence[ChunkRecord],
        dimension: Optional[int]
    ) -> Tuple[List[np.ndarray], Optional[int]]:
        vectors: List[np.ndarray] = []
        for chunk in chunks:
            vector = np.array(chunk.vector, dtype=np.float32).ravel()
            if vector.size == 0:
                raise VectorStoreQueryError("Embedding vectors must be non-empty")
            if dimension is None:
                dimension = vector.shape[0]
            elif vector.shape[0] != dimension:
                raise DimensionMismatchError(dimension, vector.shape[0])
            vector.setflags(write=False)
            vectors.append(vector)
        return vectors, dimension

    def _build_entries(
        self,
        document_id: str,
        chunks: Sequence[ChunkRecord],
        vectors: List[np.ndarray]
    ) -> List[IndexEntry]:
        return [
            IndexEntry(
                chunk_id=str(uuid.uuid4()),
                document_id=document_id,
                vector=vector,
                text=chunk.text,
                metadata=MappingProxyType(dict(chunk.metadata)),
            )
            for chunk, vector in zip(chunks, vectors)
        ]

    def _commit(
        self,
        entries: Dict[str, IndexEntry],
        documents: Dict[str, Tuple[str, ...]],
        dimension: Optional[int]
    ) -> None:
        self._snapshot = IndexSnapshot(
            entries, documents, dimension, version=self._snapshot.version + 1
        )

    async def insert_document(
        self,
        document_id: str,
        chunks: Sequence[ChunkRecord]
    ) -> List[str]:
        """Store all chunks of a new document.

        Raises ``VectorStoreQueryError`` if the document is already present;
        use ``replace_document`` for reindexing.
        """
        async with self._write_lock:
            current = self._snapshot
            if document_id in current.document_chunks():
                raise VectorStoreQueryError(
                    f"Document {document_id} is already indexed"
                )
            return self._swap_in(current, document_id, chunks)

    async def replace_document(
        self,
        document_id: str,
        chunks: Sequence[ChunkRecord]
    ) -> List[str]:
        """Install a document's chunk set, dropping any previous one."""
        async with self._write_lock:
            return self._swap_in(self._snapshot, document_id, chunks)

    def _swap_in(
        self,
        current: IndexSnapshot,
        document_id: str,
        chunks: Sequence[ChunkRecord]
    ) -> List[str]:
        # Validation happens before anything is built, so a bad vector
        # leaves the published snapshot untouched.
        vectors, dimension = self._prepare_vectors(chunks, current.dimension)
        new_entries = self._build_entries(document_id, chunks, vectors)

        entries = dict(current._entries)
        documents = dict(current._documents)
        for chunk_id in documents.pop(document_id, ()):
            entries.pop(chunk_id, None)
        for entry in new_entries:
            entries[entry.chunk_id] = entry
        chunk_ids = tuple(entry.chunk_id for entry in new_entries)
        documents[document_id] = chunk_ids

        self._commit(entries, documents, dimension)
        logger.debug(
            "Document chunks committed",
            document_id=document_id,
            chunk_count=len(chunk_ids),
            version=self._snapshot.version
        )
        return list(chunk_ids)

    async def remove_document(self, document_id: str) -> int:
        async with self._write_lock:
            current = self._snapshot
            chunk_ids = current._documents.get(document_id)
            if chunk_ids is None:
                return 0

            entries = dict(current._entries)
            documents = dict(current._documents)
            for chunk_id in chunk_ids:
                entries.pop(chunk_id, None)
            del documents[document_id]

            self._commit(entries, documents, current.dimension)
            return len(chunk_ids)

    async def scan_similarity(
        self,
        query_vector: np.ndarray,
        threshold: float = 0.0,
        exclude_document_id: Optional[str] = None,
        timeout: Optional[float] = None,
        snapshot: Optional[StoreSnapshot] = None
    ) -> List[SimilarityMatch]:
        if snapshot is None:
            snapshot = self._snapshot
        elif not isinstance(snapshot, IndexSnapshot):
            raise VectorStoreQueryError("Snapshot does not belong to an in-memory store")
        query = np.asarray(query_vector, dtype=np.float64).ravel()
        if snapshot.dimension is not None and query.shape[0] != snapshot.dimension:
            raise DimensionMismatchError(snapshot.dimension, query.shape[0])

        scan = asyncio.to_thread(snapshot.scan, query, threshold, exclude_document_id)
        if timeout is None:
            return await scan
        try:
            return await asyncio.wait_for(scan, timeout=timeout)
        except asyncio.TimeoutError as exc:
            logger.error(
                "Similarity scan exceeded deadline",
                timeout_seconds=timeout,
                chunk_count=snapshot.chunk_count
            )
            raise ScanTimeoutError(
                f"Similarity scan over {snapshot.chunk_count} chunks exceeded {timeout}s"
            ) from exc

    async def get_document_vectors(self, document_id: str) -> List[np.ndarray]:
        snapshot = self._snapshot
        chunk_ids = snapshot.document_chunks().get(document_id, ())
        return [snapshot.get_entry(chunk_id).vector for chunk_id in chunk_ids]

    def get_stats(self) -> StoreStats:
        snapshot = self._snapshot
        documents = snapshot.document_count
        chunks = snapshot.chunk_count
        return StoreStats(
            document_count=documents,
            chunk_count=chunks,
            avg_chunks_per_document=chunks / documents if documents else 0.0,
            dimension=snapshot.dimension,
        )

    async def clear(self) -> None:
        async with self._write_lock:
            self._snapshot = IndexSnapshot(
                {}, {}, self._configured_dimension, version=self._snapshot.version + 1
            )
        logger.info("Vector store cleared")

    async def health_check(self) -> bool:
        snapshot = self._snapshot
        return sum(len(ids) for ids in snapshot.document_chunks().values()) == snapshot.chunk_count
