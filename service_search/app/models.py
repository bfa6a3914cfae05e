"""Data model for documents, queries, and results.

Pydantic models cover everything that crosses the engine boundary (document
snapshots in, queries in, results out) so validation happens once at the
edge. Internal records (chunks, index entries) are plain dataclasses.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SearchMode(str, Enum):
    """Retrieval strategy for a query."""
    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    HYBRID = "hybrid"


class DocumentType(str, Enum):
    """Document kinds as supplied by the document store."""
    PDF = "pdf"
    DOCUMENT = "document"
    TEXT = "text"
    MARKDOWN = "markdown"
    HTML = "html"
    JSON = "json"
    CSV = "csv"
    UNKNOWN = "unknown"


class IndexingState(str, Enum):
    """Per-document indexing lifecycle."""
    UNINDEXED = "unindexed"
    INDEXING = "indexing"
    INDEXED = "indexed"
    FAILED = "failed"


class Document(BaseModel):
    """Read-only snapshot of a document handed over for indexing."""

    document_id: str = Field(..., min_length=1, description="Document ID")
    title: str = Field("", description="Document title")
    type: DocumentType = Field(DocumentType.TEXT, description="Document type")
    content: str = Field("", description="Extracted plain-text content")
    source: Optional[str] = Field(None, description="Source URL or label")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form metadata")
    organization_id: Optional[str] = Field(None, description="Owning organization")
    user_id: Optional[str] = Field(None, description="Owning user")
    tags: List[str] = Field(default_factory=list, description="Document tags")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> Any:
        # Unknown kinds are indexed with fixed-stride chunking rather than rejected
        if isinstance(value, str) and value.lower() not in {member.value for member in DocumentType}:
            return DocumentType.UNKNOWN
        if isinstance(value, str):
            return value.lower()
        return value


class DateRange(BaseModel):
    """Inclusive creation-time window; either bound may be open."""

    model_config = ConfigDict(populate_by_name=True)

    from_: Optional[datetime] = Field(None, alias="from")
    to: Optional[datetime] = None


class SearchFilters(BaseModel):
    """Caller-supplied result filters, combined with AND."""

    document_types: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    organization_id: Optional[str] = None
    user_id: Optional[str] = None
    date_range: Optional[DateRange] = None


class SearchQuery(BaseModel):
    """A validated search request."""

    text: str = Field(..., description="Query text")
    mode: SearchMode = Field(SearchMode.HYBRID, description="Retrieval mode")
    max_results: int = Field(10, gt=0, description="Maximum number of results")
    threshold: float = Field(0.7, ge=0.0, le=1.0, description="Minimum semantic similarity")
    filters: Optional[SearchFilters] = Field(None, description="Result filters")

    @field_validator("text")
    @classmethod
    def _non_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("query text must not be empty")
        return value


class SearchResult(BaseModel):
    """One ranked chunk."""

    document_id: str
    chunk_id: Optional[str] = None
    title: str = ""
    chunk_text: str
    score: float
    source: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    highlights: List[str] = Field(default_factory=list)


class SearchResponse(BaseModel):
    """Search envelope returned to callers."""

    results: List[SearchResult]
    sources: List[str]
    total_results: int
    search_id: str
    mode: SearchMode
    latency_ms: float


class IndexingReport(BaseModel):
    """Outcome of one ``index_document`` call."""

    document_id: str
    state: IndexingState
    chunk_count: int
    duration_ms: float
    reindexed: bool = False


class IndexStats(BaseModel):
    """Index size and lifecycle counters."""

    document_count: int
    chunk_count: int
    avg_chunks_per_document: float
    dimension: Optional[int] = None
    documents_by_state: Dict[str, int] = Field(default_factory=dict)
