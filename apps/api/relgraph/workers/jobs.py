from __future__ import annotations

import asyncio
import logging
from typing import Any

from sqlalchemy import select

from relgraph.api.v1.schemas import ConstructGraphRequest, ConstructOptions, SourceMetadata
from relgraph.db.factory import build_graph_store
from relgraph.db.pg.models import RawRecordBatch
from relgraph.db.pg.session import SessionLocal
from relgraph.services.ingest.pipeline import contacts_from_raw, run_construction

logger = logging.getLogger(__name__)


async def _construct(db, request: ConstructGraphRequest, batch_id: str | None) -> str:
    store = build_graph_store()
    try:
        run, _ = await run_construction(db, store, request, batch_id=batch_id)
    finally:
        await store.close()
    return run.run_id


def construct_graph_job(payload: dict[str, Any]) -> str:
    """Run one construction request outside the web process; returns the run id."""
    request = ConstructGraphRequest.model_validate(payload)
    db = SessionLocal()
    try:
        return asyncio.run(_construct(db, request, None))
    finally:
        db.close()


def ingest_batch_job(batch_id: str, options: dict[str, Any] | None = None) -> str | None:
    db = SessionLocal()
    try:
        batch = db.scalar(select(RawRecordBatch).where(RawRecordBatch.batch_id == batch_id))
        if batch is None:
            logger.warning("ingest_batch_missing", extra={"batch_id": batch_id})
            return None
        source = SourceMetadata(type=batch.source_type, filename=batch.filename)
        request = ConstructGraphRequest(
            contacts=contacts_from_raw(list(batch.payload_json or []), source),
            options=ConstructOptions.model_validate(options or {}),
        )
        return asyncio.run(_construct(db, request, batch.batch_id))
    finally:
        db.close()
