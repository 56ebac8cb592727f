"""Pydantic models for the HTTP surface (search and sync requests/responses)."""

from pydantic import BaseModel, Field

from shared.models.embedding import RankedResult, SourceType


class SearchRequest(BaseModel):
    """Similarity search for one query text inside one organization."""

    query: str
    organization_id: str
    top_k: int | None = Field(default=None, gt=0)
    min_score: float | None = None


class SearchBatchRequest(BaseModel):
    """Similarity search for many query texts, embedded in one batch call."""

    queries: list[str]
    organization_id: str
    top_k: int | None = Field(default=None, gt=0)
    min_score: float | None = None


class SearchResponse(BaseModel):
    """Response payload returned after a single search."""

    query: str
    results: list[RankedResult]
    total: int


class SearchBatchResponse(BaseModel):
    """Response payload returned after a batch search, one result list per query in input order."""

    results: list[list[RankedResult]]


class SyncRecordRequest(BaseModel):
    """Request to re-embed one newly created or edited record."""

    source_type: SourceType
    source_id: str
