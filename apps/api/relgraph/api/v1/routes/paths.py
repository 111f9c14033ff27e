from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from relgraph.api.v1.deps import get_graph_store, get_settings_dep
from relgraph.api.v1.schemas import FindPathsRequest, FindPathsResponse
from relgraph.db.base import GraphStore
from relgraph.services.paths.finder import find_paths

router = APIRouter(prefix="/paths", tags=["paths"])


@router.post("/find", response_model=FindPathsResponse)
async def find_paths_route(
    payload: FindPathsRequest,
    store: GraphStore = Depends(get_graph_store),
    settings=Depends(get_settings_dep),
) -> FindPathsResponse:
    paths = await find_paths(
        payload.from_id,
        payload.to_id,
        store=store,
        max_hops=payload.max_hops,
        limit=payload.limit,
        min_confidence=payload.min_confidence,
        settings=settings,
    )
    return FindPathsResponse(from_id=payload.from_id, to_id=payload.to_id, paths=paths)


@router.get("/{from_id}/{to_id}", response_model=FindPathsResponse)
async def get_paths(
    from_id: str,
    to_id: str,
    max_hops: int | None = Query(default=None, ge=1, le=8),
    limit: int | None = Query(default=None, ge=1, le=500),
    min_confidence: float | None = Query(default=None, ge=0.0, le=1.0),
    store: GraphStore = Depends(get_graph_store),
    settings=Depends(get_settings_dep),
) -> FindPathsResponse:
    paths = await find_paths(
        from_id,
        to_id,
        store=store,
        max_hops=max_hops,
        limit=limit,
        min_confidence=min_confidence,
        settings=settings,
    )
    return FindPathsResponse(from_id=from_id, to_id=to_id, paths=paths)
