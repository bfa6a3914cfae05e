"""Index manager for the knowledge search engine.

Owns the document lifecycle (``unindexed -> indexing -> indexed | failed``)
and the query pipeline:

    score(mode) -> filter -> stable sort by score desc -> truncate

Indexing chunks and embeds a document *before* touching the store, then
installs the whole chunk set in one swap. A failed attempt therefore never
removes or half-replaces a previously indexed chunk set.
"""

import asyncio
import time
import uuid
import weakref
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
import structlog
from pydantic import ValidationError

from libs.common.config import SearchConfig
from libs.common.events import (
    BaseEvent,
    DocumentIndexedEvent,
    DocumentIndexFailedEvent,
    DocumentRemovedEvent,
    EventPublisher,
    SearchPerformedEvent,
    create_event_publisher,
)
from libs.common.logging import log_context, log_performance
from libs.common.metrics import MetricsCollector
from libs.vector_store.base import ChunkRecord, VectorStore
from libs.vector_store.factory import create_vector_store_from_settings
from ..chunking.chunker import Chunk, DocumentChunker
from ..encoders.embedding_client import BatchEmbedder, create_embedding_client
from ..errors import InvalidQueryError
from ..models import (
    Document,
    IndexingReport,
    IndexingState,
    IndexStats,
    SearchMode,
    SearchQuery,
    SearchResponse,
    SearchResult,
)
from ..ranking.filters import ResultFilter
from ..ranking.fusion import create_fusion_algorithm, from_similarity
from .scorer import HybridScorer

logger = structlog.get_logger("search_service.index_manager")

# Events waiting for the publisher beyond this are dropped
MAX_PENDING_EVENTS = 1000
EVENT_DRAIN_TIMEOUT_SECONDS = 5.0


def build_query(
    text: str,
    mode: Any = SearchMode.HYBRID,
    max_results: int = 10,
    threshold: float = 0.7,
    filters: Optional[Any] = None
) -> SearchQuery:
    """Validate raw query parameters into a ``SearchQuery``.

    Raises
    - ``InvalidQueryError`` on empty text, non-positive ``max_results``, or a
      ``threshold`` outside ``[0, 1]``
    """
    try:
        return SearchQuery(
            text=text,
            mode=mode,
            max_results=max_results,
            threshold=threshold,
            filters=filters
        )
    except ValidationError as e:
        raise InvalidQueryError(str(e)) from e


def _check_limits(max_results: int, threshold: float) -> None:
    if max_results <= 0:
        raise InvalidQueryError("max_results must be positive")
    if not 0.0 <= threshold <= 1.0:
        raise InvalidQueryError("threshold must be within [0, 1]")


def _rank(results: Iterable[SearchResult], max_results: int) -> List[SearchResult]:
    # sorted() is stable under reverse=True, so ties keep candidate order
    return sorted(results, key=lambda r: r.score, reverse=True)[:max_results]


class IndexManager:
    """Coordinates chunking, embedding, storage, and search.

    Responsibilities
    - Track each document's ``IndexingState``
    - Index, reindex, and remove documents atomically with respect to search
    - Run the search pipeline and ``get_similar``
    - Publish domain events and record metrics
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: BatchEmbedder,
        chunker: Optional[DocumentChunker] = None,
        scorer: Optional[HybridScorer] = None,
        result_filter: Optional[ResultFilter] = None,
        publisher: Optional[EventPublisher] = None,
        metrics: Optional[MetricsCollector] = None,
        default_max_results: int = 10,
        default_threshold: float = 0.7
    ):
        self.store = store
        self.embedder = embedder
        self.chunker = chunker or DocumentChunker()
        self.scorer = scorer or HybridScorer(store, embedder)
        self.result_filter = result_filter or ResultFilter()
        self.publisher = publisher
        self.metrics = metrics
        self.default_max_results = default_max_results
        self.default_threshold = default_threshold

        self._states: Dict[str, IndexingState] = {}
        # Entries vanish once no operation holds or awaits the lock
        self._document_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._event_queue: Optional["asyncio.Queue[BaseEvent]"] = None
        self._event_worker: Optional[asyncio.Task] = None

    def _lock_for(self, document_id: str) -> asyncio.Lock:
        lock = self._document_locks.get(document_id)
        if lock is None:
            lock = asyncio.Lock()
            self._document_locks[document_id] = lock
        return lock

    def _is_indexed(self, document_id: str) -> bool:
        return document_id in self.store.snapshot().document_chunks()

    @staticmethod
    def _entry_metadata(document: Document, chunk: Chunk, indexed_at: str) -> Dict[str, Any]:
        metadata = dict(document.metadata)
        metadata.update({
            "title": document.title,
            "type": document.type.value,
            "organizationId": document.organization_id,
            "userId": document.user_id,
            "tags": list(document.tags),
            "createdAt": document.created_at.isoformat() if document.created_at else None,
            "source": document.source or document.title,
            "indexedAt": indexed_at,
            "chunkMetadata": chunk.metadata,
        })
        return metadata

    def _publish(self, event: BaseEvent) -> None:
        """Queue ``event`` for the background publisher; never blocks."""
        if self.publisher is None:
            return
        if self._event_worker is None or self._event_worker.done():
            self._event_queue = asyncio.Queue(maxsize=MAX_PENDING_EVENTS)
            self._event_worker = asyncio.create_task(self._event_publisher_loop(self._event_queue))
        try:
            self._event_queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Event backlog full, dropping event", event_type=event.event_type)

    async def _event_publisher_loop(self, queue: "asyncio.Queue[BaseEvent]") -> None:
        # The task inherits the log context of the operation that started it
        structlog.contextvars.unbind_contextvars("document_id", "search_id")
        # One event at a time, so subscribers see events in operation order
        while True:
            event = await queue.get()
            try:
                await asyncio.to_thread(self.publisher.publish, event)
            except Exception as e:
                logger.warning("Event publish failed", event_type=event.event_type, error=str(e))
            finally:
                queue.task_done()

    async def drain_events(self, timeout: Optional[float] = None) -> bool:
        """Wait until every queued event has been handed to the publisher.

        Returns ``False`` if ``timeout`` expired first.
        """
        if self._event_queue is None:
            return True
        try:
            await asyncio.wait_for(self._event_queue.join(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def _refresh_size_gauges(self) -> None:
        if self.metrics:
            stats = self.store.get_stats()
            self.metrics.set_index_size(stats.document_count, stats.chunk_count)

    async def index_document(self, document: Document) -> IndexingReport:
        """Chunk, embed, and store a document.

        Indexing an already indexed document replaces its chunk set.

        Raises
        - ``EmbeddingProviderError`` if the provider fails
        - ``DimensionMismatchError`` if vectors disagree with the index
        """
        with log_context(document_id=document.document_id):
            return await self._index_document(document)

    async def _index_document(self, document: Document) -> IndexingReport:
        start_time = time.time()
        document_id = document.document_id

        async with self._lock_for(document_id):
            previously_indexed = self._is_indexed(document_id)
            self._states[document_id] = IndexingState.INDEXING

            try:
                chunks = self.chunker.chunk(document.content, document.type)
                vectors = await self.embedder.embed_all([chunk.text for chunk in chunks]) if chunks else []

                indexed_at = datetime.now(timezone.utc).isoformat()
                records = [
                    ChunkRecord(
                        text=chunk.text,
                        vector=vector,
                        metadata=self._entry_metadata(document, chunk, indexed_at)
                    )
                    for chunk, vector in zip(chunks, vectors)
                ]
                await self.store.replace_document(document_id, records)

            except Exception as e:
                duration = time.time() - start_time
                # A live previous chunk set is still being served
                self._states[document_id] = (
                    IndexingState.INDEXED if previously_indexed else IndexingState.FAILED
                )
                if self.metrics:
                    self.metrics.record_indexing("index", "error", duration)
                logger.error(
                    "Document indexing failed",
                    document_id=document_id,
                    reindex=previously_indexed,
                    error=str(e)
                )
                self._publish(DocumentIndexFailedEvent(
                    document_id=document_id,
                    error=str(e),
                    organization_id=document.organization_id
                ))
                raise

            self._states[document_id] = IndexingState.INDEXED

        duration = time.time() - start_time
        if self.metrics:
            self.metrics.record_indexing("index", "success", duration)
        self._refresh_size_gauges()

        logger.info(
            "Document indexed",
            document_id=document_id,
            document_type=document.type.value,
            chunk_count=len(records),
            reindex=previously_indexed,
            duration_ms=duration * 1000
        )
        self._publish(DocumentIndexedEvent(
            document_id=document_id,
            chunk_count=len(records),
            organization_id=document.organization_id,
            duration_ms=duration * 1000
        ))

        return IndexingReport(
            document_id=document_id,
            state=IndexingState.INDEXED,
            chunk_count=len(records),
            duration_ms=duration * 1000,
            reindexed=previously_indexed
        )

    async def reindex_document(self, document: Document) -> IndexingReport:
        """Replace a document's chunk set from a fresh snapshot."""
        return await self.index_document(document)

    async def remove_document(self, document_id: str) -> int:
        """Remove every chunk of a document; unknown ids are a no-op.

        Returns the number of chunks removed.
        """
        async with self._lock_for(document_id):
            was_indexed = self._is_indexed(document_id)
            removed = await self.store.remove_document(document_id)
            self._states.pop(document_id, None)

        if not was_indexed:
            logger.debug("Remove requested for unindexed document", document_id=document_id)
            return 0

        if self.metrics:
            self.metrics.record_indexing("remove", "success")
        self._refresh_size_gauges()

        logger.info("Document removed from index", document_id=document_id, chunk_count=removed)
        self._publish(DocumentRemovedEvent(document_id=document_id, chunk_count=removed))
        return removed

    def make_query(
        self,
        text: str,
        mode: Any = SearchMode.HYBRID,
        max_results: Optional[int] = None,
        threshold: Optional[float] = None,
        filters: Optional[Any] = None
    ) -> SearchQuery:
        """``build_query`` with this manager's configured result limit and
        similarity threshold filling any omitted value."""
        return build_query(
            text,
            mode=mode,
            max_results=self.default_max_results if max_results is None else max_results,
            threshold=self.default_threshold if threshold is None else threshold,
            filters=filters
        )

    async def search(self, query: SearchQuery) -> SearchResponse:
        """Run the search pipeline for a validated query.

        Raises
        - ``InvalidQueryError`` before any index work for a bad query
        - ``EmbeddingProviderError`` in semantic/hybrid mode if embedding fails
        - ``SearchTimeoutError`` if the similarity scan misses its deadline
        """
        search_id = str(uuid.uuid4())
        with log_context(search_id=search_id):
            return await self._search(query, search_id)

    async def _search(self, query: SearchQuery, search_id: str) -> SearchResponse:
        if not query.text or not query.text.strip():
            raise InvalidQueryError("query text must not be empty")
        _check_limits(query.max_results, query.threshold)

        start_time = time.time()
        mode = SearchMode(query.mode)
        try:
            candidates = await self.scorer.score(query.text, mode, query.threshold)
            filtered = self.result_filter.apply(candidates, query.filters)
            results = _rank(filtered, query.max_results)
        except Exception as e:
            if self.metrics:
                self.metrics.record_search(mode.value, time.time() - start_time, "error")
            logger.error("Search failed", query=query.text, mode=mode.value, error=str(e))
            raise

        duration = time.time() - start_time
        if self.metrics:
            self.metrics.record_search(mode.value, duration, "success")

        response = SearchResponse(
            results=results,
            sources=list(dict.fromkeys(r.source for r in results if r.source)),
            total_results=len(results),
            search_id=search_id,
            mode=mode,
            latency_ms=duration * 1000
        )

        logger.info(
            "Search completed",
            mode=mode.value,
            candidate_count=len(candidates),
            results_count=response.total_results,
            latency_ms=response.latency_ms
        )
        self._publish(SearchPerformedEvent(
            search_id=response.search_id,
            query=query.text,
            mode=mode.value,
            result_count=response.total_results,
            execution_time_ms=response.latency_ms,
            organization_id=query.filters.organization_id if query.filters else None
        ))
        return response

    async def get_similar(
        self,
        document_id: str,
        max_results: int = 5,
        threshold: float = 0.7
    ) -> List[SearchResult]:
        """Chunks of other documents similar to ``document_id``.

        The query vector is the document's first chunk vector. An unindexed document
        has none and yields no results.
        """
        _check_limits(max_results, threshold)

        vectors = await self.store.get_document_vectors(document_id)
        if not vectors:
            logger.debug("Similar lookup for document without chunks", document_id=document_id)
            return []

        matches = await self.scorer.scan(vectors[0], threshold, exclude_document_id=document_id)
        return _rank((from_similarity(match) for match in matches), max_results)

    def get_document_state(self, document_id: str) -> IndexingState:
        return self._states.get(document_id, IndexingState.UNINDEXED)

    def get_index_stats(self) -> IndexStats:
        """Index size plus the number of documents in each lifecycle state."""
        stats = self.store.get_stats()
        by_state = Counter(state.value for state in self._states.values())
        return IndexStats(
            document_count=stats.document_count,
            chunk_count=stats.chunk_count,
            avg_chunks_per_document=stats.avg_chunks_per_document,
            dimension=stats.dimension,
            documents_by_state={state.value: by_state.get(state.value, 0) for state in IndexingState}
        )

    async def rebuild_index(self, documents: Iterable[Document]) -> List[IndexingReport]:
        """Drop the index and index ``documents`` again.

        A failing document is reported as ``failed`` and the rebuild goes on.
        """
        start_time = time.time()
        await self.store.clear()
        self._states.clear()
        self._refresh_size_gauges()
        logger.info("Index rebuild started")

        reports: List[IndexingReport] = []
        for document in documents:
            try:
                reports.append(await self.index_document(document))
            except Exception as e:
                reports.append(IndexingReport(
                    document_id=document.document_id,
                    state=IndexingState.FAILED,
                    chunk_count=0,
                    duration_ms=0.0
                ))
                logger.warning("Document skipped during rebuild", document_id=document.document_id, error=str(e))

        failed = sum(1 for report in reports if report.state is IndexingState.FAILED)
        duration = time.time() - start_time
        if self.metrics:
            self.metrics.record_indexing("rebuild", "error" if failed else "success", duration)

        log_performance(
            "index_rebuild",
            duration * 1000,
            document_count=len(reports),
            failed_count=failed
        )
        return reports

    async def health_check(self) -> bool:
        try:
            return await self.store.health_check()
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return False

    async def shutdown(self) -> None:
        """Flush queued events, drop the index, and release the provider
        client and publisher."""
        if not await self.drain_events(EVENT_DRAIN_TIMEOUT_SECONDS):
            logger.warning("Unpublished events dropped at shutdown", pending=self._event_queue.qsize())
        if self._event_worker is not None:
            self._event_worker.cancel()
            self._event_worker = None

        await self.store.clear()
        await self.store.close()
        self._states.clear()
        self._document_locks.clear()
        await self.embedder.close()
        if self.publisher is not None:
            await asyncio.to_thread(self.publisher.close)
        logger.info("Index manager shut down")


def create_index_manager(
    config: SearchConfig,
    metrics: Optional[MetricsCollector] = None,
    embedder: Optional[BatchEmbedder] = None,
    store: Optional[VectorStore] = None,
    publisher: Optional[EventPublisher] = None
) -> IndexManager:
    """Wire an ``IndexManager`` from settings; any component may be injected."""
    store = store or create_vector_store_from_settings(config)
    embedder = embedder or create_embedding_client(config, metrics=metrics)
    if publisher is None:
        publisher = create_event_publisher(config.ml_redis_url, config.ml_event_channel_prefix)

    fusion = create_fusion_algorithm(
        semantic_weight=config.ml_search_semantic_weight,
        keyword_weight=config.ml_search_keyword_weight,
        dedup_key=config.ml_search_dedup_key
    )
    scorer = HybridScorer(
        store,
        embedder,
        fusion=fusion,
        scan_timeout=config.ml_search_scan_timeout_seconds
    )
    return IndexManager(
        store=store,
        embedder=embedder,
        chunker=DocumentChunker(config.ml_chunk_max_size, config.ml_chunk_overlap_size),
        scorer=scorer,
        result_filter=ResultFilter(),
        publisher=publisher,
        metrics=metrics,
        default_max_results=config.ml_search_default_max_results,
        default_threshold=config.ml_search_default_threshold
    )
