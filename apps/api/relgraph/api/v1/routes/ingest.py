from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from relgraph.api.v1.deps import get_db, get_graph_store, get_settings_dep
from relgraph.api.v1.schemas import ConstructGraphRequest, IngestRecordsRequest, IngestRecordsResponse
from relgraph.core.security import require_webhook_secret
from relgraph.db.base import GraphStore
from relgraph.db.pg.store import upsert_raw_batch
from relgraph.services.ingest.pipeline import contacts_from_raw, run_construction
from relgraph.workers.queue import enqueue_job

router = APIRouter(prefix="/ingest", tags=["ingest"])


@router.post("/records", response_model=IngestRecordsResponse, dependencies=[Depends(require_webhook_secret)])
async def ingest_records(
    payload: IngestRecordsRequest,
    background: bool = Query(default=False),
    db: Session = Depends(get_db),
    store: GraphStore = Depends(get_graph_store),
    settings=Depends(get_settings_dep),
) -> IngestRecordsResponse:
    # Audit writes are blocking; keep them off the event loop that serves path queries.
    batch, created = await run_in_threadpool(
        upsert_raw_batch,
        db,
        source_type=payload.source.type,
        filename=payload.source.filename,
        records=payload.records,
    )
    if not created:
        return IngestRecordsResponse(batch_id=batch.batch_id, status="duplicate")

    if background:
        job_id = await run_in_threadpool(
            enqueue_job,
            "ingest_batch_job",
            batch.batch_id,
            payload.options.model_dump(mode="json"),
        )
        return IngestRecordsResponse(batch_id=batch.batch_id, job_id=job_id, status="enqueued")

    request = ConstructGraphRequest(
        contacts=contacts_from_raw(payload.records, payload.source),
        options=payload.options,
    )
    run, result = await run_construction(db, store, request, batch_id=batch.batch_id, settings=settings)
    return IngestRecordsResponse(batch_id=batch.batch_id, run_id=run.run_id, status=run.status, result=result)
