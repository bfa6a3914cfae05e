"""API routes for the knowledge search service."""

from typing import Any, Dict, List, NoReturn, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
import structlog

from ..errors import (
    DimensionMismatchError,
    EmbeddingProviderError,
    InvalidQueryError,
    SearchTimeoutError,
)
from ..hybrid.index_manager import IndexManager
from ..models import (
    Document,
    IndexingReport,
    IndexingState,
    IndexStats,
    SearchFilters,
    SearchMode,
    SearchResponse,
    SearchResult,
)

logger = structlog.get_logger("search_service.api")

router = APIRouter()

ERROR_STATUS = (
    (InvalidQueryError, 422),
    (EmbeddingProviderError, 502),
    (SearchTimeoutError, 504),
    (DimensionMismatchError, 500),
)


class SearchRequest(BaseModel):
    """Request model for search endpoint."""
    query: str = Field(..., description="Search query")
    mode: SearchMode = Field(SearchMode.HYBRID, description="semantic, keyword, or hybrid")
    max_results: Optional[int] = Field(None, ge=1, le=100, description="Maximum number of results; service default if omitted")
    threshold: Optional[float] = Field(None, ge=0.0, le=1.0, description="Minimum semantic similarity; service default if omitted")
    filters: Optional[SearchFilters] = Field(None, description="Search filters")


class RemoveResponse(BaseModel):
    """Response model for document removal."""
    status: str = Field(..., description="Removal status")
    document_id: str = Field(..., description="Document ID")
    removed_chunks: int = Field(..., description="Number of chunks removed")


class SimilarResponse(BaseModel):
    """Response model for similar documents."""
    document_id: str = Field(..., description="Source document ID")
    results: List[SearchResult] = Field(..., description="Similar chunks")
    total: int = Field(..., description="Number of results")


class DocumentStateResponse(BaseModel):
    """Response model for a document's lifecycle state."""
    document_id: str
    state: IndexingState


class RebuildRequest(BaseModel):
    """Request model for index rebuild."""
    documents: List[Document] = Field(default_factory=list, description="Documents to index")


class RebuildResponse(BaseModel):
    """Response model for index rebuild."""
    status: str
    indexed: int
    failed: int
    reports: List[IndexingReport]


def get_index_manager(request: Request) -> IndexManager:
    """Get index manager from application state."""
    return request.app.state.index_manager


def _raise_http(error: Exception, operation: str, **context: Any) -> NoReturn:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            raise HTTPException(status_code=status_code, detail=str(error)) from error
    logger.error(f"{operation} failed", error=str(error), **context)
    raise HTTPException(status_code=500, detail=f"{operation} failed: {error}") from error


@router.post("/search", response_model=SearchResponse)
async def search(
    request: SearchRequest,
    index_manager: IndexManager = Depends(get_index_manager)
):
    """Search indexed chunks."""
    try:
        query = index_manager.make_query(
            request.query,
            mode=request.mode,
            max_results=request.max_results,
            threshold=request.threshold,
            filters=request.filters
        )
        return await index_manager.search(query)
    except Exception as e:
        _raise_http(e, "Search", query=request.query)


@router.post("/documents", response_model=IndexingReport)
async def index_document(
    document: Document,
    index_manager: IndexManager = Depends(get_index_manager)
):
    """Index (or reindex) a document."""
    try:
        return await index_manager.index_document(document)
    except Exception as e:
        _raise_http(e, "Indexing", document_id=document.document_id)


@router.delete("/documents/{document_id}", response_model=RemoveResponse)
async def remove_document(
    document_id: str,
    index_manager: IndexManager = Depends(get_index_manager)
):
    """Remove a document from the index; unknown ids succeed with zero chunks."""
    try:
        removed = await index_manager.remove_document(document_id)
    except Exception as e:
        _raise_http(e, "Removal", document_id=document_id)
    return RemoveResponse(status="success", document_id=document_id, removed_chunks=removed)


@router.get("/documents/{document_id}/similar", response_model=SimilarResponse)
async def similar_documents(
    document_id: str,
    max_results: int = Query(5, ge=1, le=100, description="Maximum number of results"),
    threshold: float = Query(0.7, ge=0.0, le=1.0, description="Minimum similarity"),
    index_manager: IndexManager = Depends(get_index_manager)
):
    """Chunks from other documents similar to this one."""
    try:
        results = await index_manager.get_similar(document_id, max_results=max_results, threshold=threshold)
    except Exception as e:
        _raise_http(e, "Similar lookup", document_id=document_id)
    return SimilarResponse(document_id=document_id, results=results, total=len(results))


@router.get("/documents/{document_id}/state", response_model=DocumentStateResponse)
async def document_state(
    document_id: str,
    index_manager: IndexManager = Depends(get_index_manager)
):
    """Lifecycle state of a document."""
    return DocumentStateResponse(
        document_id=document_id,
        state=index_manager.get_document_state(document_id)
    )


@router.get("/index/stats", response_model=IndexStats)
async def get_index_stats(
    index_manager: IndexManager = Depends(get_index_manager)
):
    """Get search index statistics."""
    return index_manager.get_index_stats()


@router.post("/index/rebuild", response_model=RebuildResponse)
async def rebuild_index(
    request: RebuildRequest,
    index_manager: IndexManager = Depends(get_index_manager)
):
    """Drop the index and rebuild it from the posted documents."""
    try:
        reports = await index_manager.rebuild_index(request.documents)
    except Exception as e:
        _raise_http(e, "Index rebuild")

    failed = sum(1 for report in reports if report.state is IndexingState.FAILED)
    stats: Dict[str, Any] = {"indexed": len(reports) - failed, "failed": failed}
    logger.info("Index rebuild finished", **stats)
    return RebuildResponse(
        status="success" if not failed else "partial",
        reports=reports,
        **stats
    )
