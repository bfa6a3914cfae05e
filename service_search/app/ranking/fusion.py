"""Result fusion for hybrid search.

Semantic and keyword candidates are merged by a dedup key. Each side
contributes its raw score times its weight; a chunk found by both scans gets
the sum of both weighted parts and the union of their highlights. Weights are
used as given (not normalized), so keyword scores, which are unbounded, act
as a boost on top of the semantic signal.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union
import structlog

from libs.vector_store.base import SimilarityMatch
from ..models import SearchResult
from ..retrievers.keyword import KeywordMatch

logger = structlog.get_logger("search_fusion")

CONTENT_PREFIX_LENGTH = 50


class DedupKey(str, Enum):
    """How hybrid fusion decides two candidates are the same chunk."""
    CHUNK_ID = "chunk_id"
    CONTENT_PREFIX = "content_prefix"


def to_plain(value: Any) -> Any:
    """Recursively copy read-only mappings and tuples into dicts and lists."""
    if isinstance(value, Mapping):
        return {key: to_plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(item) for item in value]
    return value


def build_result(
    chunk_id: str,
    document_id: str,
    text: str,
    score: float,
    metadata: Mapping[str, Any],
    highlights: Sequence[str] = ()
) -> SearchResult:
    """Build a ``SearchResult`` from a stored chunk."""
    plain = to_plain(metadata)
    title = plain.get("title") or ""
    return SearchResult(
        document_id=document_id,
        chunk_id=chunk_id,
        title=title,
        chunk_text=text,
        score=score,
        source=plain.get("source") or title,
        metadata=plain,
        highlights=list(highlights),
    )


def from_similarity(match: SimilarityMatch) -> SearchResult:
    return build_result(match.chunk_id, match.document_id, match.text, match.score, match.metadata)


def from_keyword(match: KeywordMatch) -> SearchResult:
    return build_result(
        match.chunk_id, match.document_id, match.text, match.score, match.metadata, match.matched_terms
    )


@dataclass
class _FusedCandidate:
    chunk_id: str
    document_id: str
    text: str
    metadata: Mapping[str, Any]
    semantic_score: Optional[float] = None
    keyword_score: Optional[float] = None
    highlights: List[str] = field(default_factory=list)


class WeightedScoreFusion:
    """Weighted score fusion keyed by chunk identity.

    Parameters
    - semantic_weight: Multiplier for semantic scores
    - keyword_weight: Multiplier for keyword scores
    - dedup_key: ``chunk_id`` or ``content_prefix``
    """

    def __init__(
        self,
        semantic_weight: float = 0.7,
        keyword_weight: float = 0.3,
        dedup_key: Union[DedupKey, str] = DedupKey.CHUNK_ID
    ):
        if semantic_weight < 0 or keyword_weight < 0:
            raise ValueError("Fusion weights must be non-negative")
        self.semantic_weight = semantic_weight
        self.keyword_weight = keyword_weight
        self.dedup_key = DedupKey(dedup_key)

    def key_for(self, chunk_id: str, document_id: str, text: str) -> str:
        if self.dedup_key is DedupKey.CONTENT_PREFIX:
            return f"{document_id}:{text[:CONTENT_PREFIX_LENGTH]}"
        return chunk_id

    def fuse_results(
        self,
        semantic_results: Sequence[SimilarityMatch],
        keyword_results: Sequence[KeywordMatch]
    ) -> List[SearchResult]:
        """Merge both candidate lists.

        Output order is first-seen order: semantic candidates, then keyword-only
        ones. Callers sort afterwards.
        """
        candidates: Dict[str, _FusedCandidate] = {}

        for match in semantic_results:
            key = self.key_for(match.chunk_id, match.document_id, match.text)
            candidate = candidates.get(key)
            if candidate is None:
                candidate = _FusedCandidate(match.chunk_id, match.document_id, match.text, match.metadata)
                candidates[key] = candidate
            candidate.semantic_score = match.score

        for match in keyword_results:
            key = self.key_for(match.chunk_id, match.document_id, match.text)
            candidate = candidates.get(key)
            if candidate is None:
                candidate = _FusedCandidate(match.chunk_id, match.document_id, match.text, match.metadata)
                candidates[key] = candidate
            candidate.keyword_score = match.score
            for term in match.matched_terms:
                if term not in candidate.highlights:
                    candidate.highlights.append(term)

        fused_results = [self._to_result(candidate) for candidate in candidates.values()]

        logger.debug(
            "Weighted score fusion completed",
            semantic_count=len(semantic_results),
            keyword_count=len(keyword_results),
            fused_count=len(fused_results),
            dedup_key=self.dedup_key.value
        )
        return fused_results

    def _to_result(self, candidate: _FusedCandidate) -> SearchResult:
        score = 0.0
        if candidate.semantic_score is not None:
            score += self.semantic_weight * candidate.semantic_score
        if candidate.keyword_score is not None:
            score += self.keyword_weight * candidate.keyword_score

        result = build_result(
            candidate.chunk_id,
            candidate.document_id,
            candidate.text,
            score,
            candidate.metadata,
            candidate.highlights
        )
        result.metadata["fusion_details"] = {
            "semantic_score": candidate.semantic_score,
            "keyword_score": candidate.keyword_score,
            "semantic_weight": self.semantic_weight,
            "keyword_weight": self.keyword_weight,
            "dedup_key": self.dedup_key.value,
        }
        return result


def create_fusion_algorithm(
    semantic_weight: float = 0.7,
    keyword_weight: float = 0.3,
    dedup_key: str = "chunk_id"
) -> WeightedScoreFusion:
    """Create the hybrid fusion algorithm."""
    try:
        return WeightedScoreFusion(semantic_weight, keyword_weight, dedup_key)
    except ValueError:
        logger.error("Invalid fusion settings", dedup_key=dedup_key)
        raise
