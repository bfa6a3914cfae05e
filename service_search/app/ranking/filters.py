"""Post-retrieval result filtering.

Filters are plain predicates over result metadata combined with AND; the
first failing predicate rejects the result. Filtering runs before the final
sort and limit, so it never shrinks a page below ``max_results`` when enough
matching candidates exist.
"""

from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Sequence
import structlog

from ..models import DateRange, SearchFilters, SearchResult

logger = structlog.get_logger("search_service.filters")

Predicate = Callable[[SearchResult], bool]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string or datetime; ``None`` when unparseable."""
    if isinstance(value, datetime):
        return _as_utc(value)
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return _as_utc(parsed)


class ResultFilter:
    """Applies ``SearchFilters`` to a list of results."""

    def build_predicates(self, filters: SearchFilters) -> List[Predicate]:
        predicates: List[Predicate] = []

        if filters.document_types:
            allowed_types = {t.lower() for t in filters.document_types}
            predicates.append(lambda r: str(r.metadata.get("type", "")).lower() in allowed_types)

        if filters.tags:
            wanted_tags = set(filters.tags)
            predicates.append(lambda r: bool(wanted_tags.intersection(r.metadata.get("tags") or ())))

        if filters.organization_id is not None:
            organization_id = filters.organization_id
            predicates.append(lambda r: r.metadata.get("organizationId") == organization_id)

        if filters.user_id is not None:
            user_id = filters.user_id
            predicates.append(lambda r: r.metadata.get("userId") == user_id)

        if filters.date_range is not None and (
            filters.date_range.from_ is not None or filters.date_range.to is not None
        ):
            predicates.append(self._date_predicate(filters.date_range))

        return predicates

    @staticmethod
    def _date_predicate(date_range: DateRange) -> Predicate:
        lower = _as_utc(date_range.from_) if date_range.from_ else None
        upper = _as_utc(date_range.to) if date_range.to else None

        def within(result: SearchResult) -> bool:
            created_at = parse_timestamp(result.metadata.get("createdAt"))
            if created_at is None:
                return False
            if lower is not None and created_at < lower:
                return False
            if upper is not None and created_at > upper:
                return False
            return True

        return within

    def apply(
        self,
        results: Sequence[SearchResult],
        filters: Optional[SearchFilters]
    ) -> List[SearchResult]:
        """Keep results that satisfy every active filter; order is preserved."""
        if filters is None:
            return list(results)

        predicates = self.build_predicates(filters)
        if not predicates:
            return list(results)

        filtered = [r for r in results if all(predicate(r) for predicate in predicates)]
        logger.debug("Filters applied", original_count=len(results), filtered_count=len(filtered))
        return filtered
