from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from relgraph.api.v1.schemas import (
    CanonicalContact,
    ConstructGraphRequest,
    ConstructionResult,
    SourceMetadata,
)
from relgraph.core.config import Settings
from relgraph.db.base import GraphStore
from relgraph.db.pg.models import ConstructionRun
from relgraph.db.pg.store import fail_run, finish_run, start_run
from relgraph.services.graph.construct import construct_graph
from relgraph.services.ingest.normalize import normalize_many

logger = logging.getLogger(__name__)


def contacts_from_raw(records: list[dict[str, Any]], source: SourceMetadata) -> list[CanonicalContact]:
    return [contact for contact, _ in normalize_many(records, source)]


async def run_construction(
    db: Session,
    store: GraphStore,
    request: ConstructGraphRequest,
    *,
    batch_id: str | None = None,
    settings: Settings | None = None,
) -> tuple[ConstructionRun, ConstructionResult]:
    """Construct the graph for one request and record the run outcome."""
    # Audit writes run in worker threads so the event loop keeps serving other requests.
    run = await run_in_threadpool(start_run, db, batch_id=batch_id, dry_run=request.options.dry_run)
    try:
        result = await construct_graph(
            request.contacts,
            request.job_histories,
            request.options,
            store=store,
            settings=settings,
        )
    except Exception as exc:
        logger.exception("construction_run_failed", extra={"run_id": run.run_id, "batch_id": batch_id})
        await run_in_threadpool(fail_run, db, run, str(exc) or type(exc).__name__)
        raise
    await run_in_threadpool(finish_run, db, run, result.report)
    logger.info(
        "construction_run_completed",
        extra={"run_id": run.run_id, "batch_id": batch_id, "skipped": len(result.report.skipped)},
    )
    return run, result
