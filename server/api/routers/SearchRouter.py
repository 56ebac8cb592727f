"""Search router: semantic search scoped to one organization."""

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from shared.dependencies.auth import verify_api_key
from shared.models.search import SearchBatchRequest, SearchBatchResponse, SearchRequest, SearchResponse

search_router = APIRouter(prefix="/search", tags=["Search"])


@search_router.post("", dependencies=[Depends(verify_api_key)])
async def handle_search(request: Request, body: SearchRequest) -> JSONResponse:
    """Find the stored chunks most similar to a query.

    Args:
        request (Request): The incoming FastAPI request (carries app state).
        body (SearchRequest): Query text, organization and optional top_k/min_score.

    Returns:
        JSONResponse: Results ranked by descending score.

    Raises:
        HTTPException: 502 if embedding or querying failed.
    """
    request.app.state.logging.info(
        "Search received for organization %s query=%r", body.organization_id, body.query[:80]
    )
    search = request.app.state.engine.search
    try:
        results = await search.find_similar(body.query, body.organization_id, body.top_k, body.min_score)
    except Exception as e:
        raise HTTPException(status_code=502, detail=f"Search failed: {e}")
    response = SearchResponse(query=body.query, results=results, total=len(results))
    return JSONResponse(content=response.model_dump(mode="json"))


@search_router.post("/batch", dependencies=[Depends(verify_api_key)])
async def handle_search_batch(request: Request, body: SearchBatchRequest) -> JSONResponse:
    """Batch search; one result list per query, in input order. Failed queries yield empty lists."""
    search = request.app.state.engine.search
    results = await search.find_similar_batch(body.queries, body.organization_id, body.top_k, body.min_score)
    return JSONResponse(content=SearchBatchResponse(results=results).model_dump(mode="json"))
