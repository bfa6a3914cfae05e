"""Error kinds raised by the search engine.

``DimensionMismatchError`` originates in the vector store and is re-exported
here so callers can import every engine error from one place.
"""

from libs.vector_store.base import DimensionMismatchError, VectorStoreError

__all__ = [
    "DimensionMismatchError",
    "EmbeddingProviderError",
    "InvalidQueryError",
    "SearchEngineError",
    "SearchTimeoutError",
    "VectorStoreError",
]


class SearchEngineError(Exception):
    """Base exception for search engine operations."""
    pass


class InvalidQueryError(SearchEngineError, ValueError):
    """Query rejected before any index work (empty text, bad limits)."""
    pass


class EmbeddingProviderError(SearchEngineError):
    """The embedding provider failed or returned an unusable response."""
    pass


class SearchTimeoutError(SearchEngineError):
    """The similarity scan did not finish before its deadline."""
    pass
