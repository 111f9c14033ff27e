from __future__ import annotations

from typing import Union

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from relgraph.api.v1.deps import get_db, get_graph_store, get_settings_dep
from relgraph.api.v1.schemas import (
    ConstructEnqueuedResponse,
    ConstructGraphRequest,
    ConstructionResult,
    ConstructionRunOut,
)
from relgraph.core.security import require_webhook_secret
from relgraph.db.base import GraphStore
from relgraph.db.pg.store import get_run
from relgraph.services.ingest.pipeline import run_construction
from relgraph.workers.queue import enqueue_job

router = APIRouter(prefix="/graph", tags=["graph"])


@router.post(
    "/construct",
    response_model=Union[ConstructEnqueuedResponse, ConstructionResult],
    dependencies=[Depends(require_webhook_secret)],
)
async def construct(
    payload: ConstructGraphRequest,
    background: bool = Query(default=False),
    db: Session = Depends(get_db),
    store: GraphStore = Depends(get_graph_store),
    settings=Depends(get_settings_dep),
) -> ConstructEnqueuedResponse | ConstructionResult:
    if background:
        # Inline queue mode runs the job on its own event loop.
        job_id = await run_in_threadpool(enqueue_job, "construct_graph_job", payload.model_dump(mode="json"))
        return ConstructEnqueuedResponse(job_id=job_id)

    _, result = await run_construction(db, store, payload, settings=settings)
    return result


@router.get("/runs/{run_id}", response_model=ConstructionRunOut)
def get_construction_run(run_id: str, db: Session = Depends(get_db)) -> ConstructionRunOut:
    run = get_run(db, run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Construction run not found")
    return ConstructionRunOut(
        run_id=run.run_id,
        status=run.status,
        report_json=run.report_json or {},
        started_at=run.started_at,
        finished_at=run.finished_at,
    )
