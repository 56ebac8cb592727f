"""Sync router: full organization syncs and single-record updates."""

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from shared.dependencies.auth import verify_api_key
from shared.errors import SourceNotFoundError
from shared.models.embedding import SourceType
from shared.models.search import SyncRecordRequest

sync_router = APIRouter(prefix="/sync", tags=["Sync"])


@sync_router.post("/{organization_id}", dependencies=[Depends(verify_api_key)])
async def handle_sync_organization(request: Request, organization_id: str) -> JSONResponse:
    """Run a full sync for an organization and return its statistics.

    Concurrent requests for the same organization share one sync run.

    Raises:
        HTTPException: 502 if the sync aborted (e.g. the source store could not be read).
    """
    request.app.state.logging.info("Sync requested for organization %s", organization_id)
    coordinator = request.app.state.engine.coordinator
    try:
        stats = await coordinator.sync_organization(organization_id)
    except Exception as e:
        raise HTTPException(status_code=502, detail=f"Sync failed: {e}")
    if stats is None:
        raise HTTPException(status_code=400, detail="Invalid organization id.")

    content = stats.model_dump(mode="json")
    content["totals"] = stats.totals.model_dump(mode="json")
    return JSONResponse(content=content)


@sync_router.post("/{organization_id}/records", dependencies=[Depends(verify_api_key)])
async def handle_sync_record(request: Request, organization_id: str, body: SyncRecordRequest) -> JSONResponse:
    """Embed one newly created or edited record right away.

    Raises:
        HTTPException: 404 if the record does not exist.
    """
    coordinator = request.app.state.engine.coordinator
    try:
        result = await coordinator.sync_single_record(body.source_type, body.source_id, organization_id)
    except SourceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return JSONResponse(content=result.model_dump(mode="json"))


@sync_router.delete("/{organization_id}/records/{source_type}/{source_id}", dependencies=[Depends(verify_api_key)])
async def handle_delete_record(request: Request, organization_id: str, source_type: SourceType, source_id: str) -> JSONResponse:
    """Delete all embeddings of one source record."""
    coordinator = request.app.state.engine.coordinator
    result = await coordinator.delete_source_embeddings(source_type, source_id, organization_id)
    return JSONResponse(content=result.model_dump(mode="json"))
