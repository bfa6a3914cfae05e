"""Mode dispatch for semantic, keyword, and hybrid retrieval."""

from typing import List, Optional
import numpy as np
import structlog

from libs.vector_store.base import ScanTimeoutError, SimilarityMatch, StoreSnapshot, VectorStore
from ..encoders.embedding_client import BatchEmbedder
from ..errors import SearchTimeoutError
from ..models import SearchMode, SearchResult
from ..ranking.fusion import WeightedScoreFusion, from_keyword, from_similarity
from ..retrievers.keyword import KeywordIndex

logger = structlog.get_logger("search_service.hybrid_scorer")


class HybridScorer:
    """Produces unsorted, unfiltered candidates for one query.

    Every query pins a single store snapshot, so in hybrid mode the semantic
    and keyword scans agree on the corpus even while writers are active.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: BatchEmbedder,
        fusion: Optional[WeightedScoreFusion] = None,
        keyword_index: Optional[KeywordIndex] = None,
        scan_timeout: Optional[float] = None
    ):
        self.store = store
        self.embedder = embedder
        self.fusion = fusion or WeightedScoreFusion()
        self.keyword_index = keyword_index or KeywordIndex()
        self.scan_timeout = scan_timeout

    async def score(self, text: str, mode: SearchMode, threshold: float) -> List[SearchResult]:
        mode = SearchMode(mode)

        if mode is SearchMode.SEMANTIC:
            matches = await self.semantic_matches(text, threshold)
            return [from_similarity(match) for match in matches]

        if mode is SearchMode.KEYWORD:
            snapshot = self.store.snapshot()
            return [from_keyword(match) for match in self.keyword_index.scan(snapshot, text)]

        if mode is SearchMode.HYBRID:
            # Embed before pinning so the snapshot is as fresh as possible
            query_vector = await self.embedder.embed_one(text)
            snapshot = self.store.snapshot()
            semantic = await self.scan(query_vector, threshold, snapshot=snapshot)
            keyword = self.keyword_index.scan(snapshot, text)
            return self.fusion.fuse_results(semantic, keyword)

        raise ValueError(f"Unhandled search mode: {mode}")

    async def semantic_matches(
        self,
        text: str,
        threshold: float,
        snapshot: Optional[StoreSnapshot] = None
    ) -> List[SimilarityMatch]:
        query_vector = await self.embedder.embed_one(text)
        return await self.scan(query_vector, threshold, snapshot=snapshot)

    async def scan(
        self,
        query_vector: np.ndarray,
        threshold: float,
        exclude_document_id: Optional[str] = None,
        snapshot: Optional[StoreSnapshot] = None
    ) -> List[SimilarityMatch]:
        """Similarity scan with the configured deadline."""
        try:
            return await self.store.scan_similarity(
                query_vector,
                threshold=threshold,
                exclude_document_id=exclude_document_id,
                timeout=self.scan_timeout,
                snapshot=snapshot
            )
        except ScanTimeoutError as e:
            raise SearchTimeoutError(str(e)) from e
