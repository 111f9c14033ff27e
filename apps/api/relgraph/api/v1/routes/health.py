from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from relgraph.api.v1.deps import get_settings_dep

router = APIRouter(tags=["health"])


@router.get("/health")
def health(settings=Depends(get_settings_dep)) -> dict:
    return {
        "status": "ok",
        "graph_store_backend": settings.graph_store_backend,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
