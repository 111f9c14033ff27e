from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from relgraph.api.v1.schemas import ConstructionReport
from relgraph.db.pg.models import ConstructionRun, RawRecordBatch


def batch_fingerprint(source_type: str, filename: str | None, records: list[dict[str, Any]]) -> str:
    payload = json.dumps(
        {"source_type": source_type, "filename": filename, "records": records},
        sort_keys=True,
        default=str,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def upsert_raw_batch(
    db: Session,
    *,
    source_type: str,
    filename: str | None,
    records: list[dict[str, Any]],
) -> tuple[RawRecordBatch, bool]:
    fingerprint = batch_fingerprint(source_type, filename, records)
    existing = db.scalar(select(RawRecordBatch).where(RawRecordBatch.fingerprint == fingerprint))
    if existing:
        return existing, False

    batch = RawRecordBatch(
        source_type=source_type,
        filename=filename,
        fingerprint=fingerprint,
        record_count=len(records),
        payload_json=records,
    )
    db.add(batch)
    db.commit()
    db.refresh(batch)
    return batch, True


def start_run(db: Session, *, batch_id: str | None = None, dry_run: bool = False) -> ConstructionRun:
    run = ConstructionRun(batch_id=batch_id, status="running", dry_run=dry_run, report_json={})
    db.add(run)
    db.commit()
    db.refresh(run)
    return run


def finish_run(db: Session, run: ConstructionRun, report: ConstructionReport) -> ConstructionRun:
    run.status = "completed"
    run.nodes_created = report.nodes_created
    run.nodes_merged = report.nodes_merged
    run.relationships_created = report.relationships_created
    run.relationships_merged = report.relationships_merged
    run.skipped_count = len(report.skipped)
    run.conflict_count = len(report.conflicts)
    run.report_json = report.model_dump(mode="json")
    run.finished_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(run)
    return run


def fail_run(db: Session, run: ConstructionRun, error: str) -> ConstructionRun:
    run.status = "failed"
    run.error = error[:2000]
    run.finished_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(run)
    return run


def get_run(db: Session, run_id: str) -> ConstructionRun | None:
    return db.scalar(select(ConstructionRun).where(ConstructionRun.run_id == run_id))
