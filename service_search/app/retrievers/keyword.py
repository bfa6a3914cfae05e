"""Length-normalized term-frequency keyword scoring.

Each query term longer than two characters contributes
``occurrences / len(chunk_text) * 1000`` to a chunk's score, so a short chunk
that mentions a term once outranks a long chunk that mentions it once.
Chunks that match no term are not returned.
"""

from dataclasses import dataclass
from typing import Any, List, Mapping, Sequence, Tuple
import structlog

from libs.vector_store.base import StoreSnapshot

logger = structlog.get_logger("search_service.keyword")

MIN_TERM_LENGTH = 3
SCORE_SCALE = 1000.0


@dataclass(frozen=True)
class KeywordMatch:
    """A chunk with at least one matched query term."""
    chunk_id: str
    document_id: str
    text: str
    score: float
    matched_terms: Tuple[str, ...]
    metadata: Mapping[str, Any]


def tokenize_query(query: str) -> List[str]:
    """Lower-cased whitespace tokens longer than two characters."""
    return [term for term in query.lower().split() if len(term) >= MIN_TERM_LENGTH]


def score_keyword(chunk_text: str, terms: Sequence[str]) -> Tuple[float, List[str]]:
    """Score ``chunk_text`` against pre-tokenized ``terms``.

    Returns ``(score, matched_terms)``. Occurrences are counted as
    case-insensitive, non-overlapping substrings.
    """
    if not chunk_text:
        return 0.0, []

    haystack = chunk_text.lower()
    length = len(chunk_text)
    score = 0.0
    matched: List[str] = []
    for term in terms:
        occurrences = haystack.count(term)
        if occurrences > 0:
            score += occurrences / length * SCORE_SCALE
            matched.append(term)
    return score, matched


class KeywordIndex:
    """Keyword scan over the entries of a store snapshot."""

    def scan(self, snapshot: StoreSnapshot, query: str) -> List[KeywordMatch]:
        """Score every chunk in ``snapshot``; return positive matches in index order."""
        terms = tokenize_query(query)
        if not terms:
            return []

        matches: List[KeywordMatch] = []
        for entry in snapshot.entries():
            score, matched = score_keyword(entry.text, terms)
            if matched:
                matches.append(KeywordMatch(
                    chunk_id=entry.chunk_id,
                    document_id=entry.document_id,
                    text=entry.text,
                    score=score,
                    matched_terms=tuple(matched),
                    metadata=entry.metadata,
                ))

        logger.debug("Keyword scan completed", terms=terms, match_count=len(matches))
        return matches
