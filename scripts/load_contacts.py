from __future__ import annotations

import argparse
import asyncio
import csv
import json
from pathlib import Path
from typing import Any

from relgraph.api.v1.schemas import ConstructGraphRequest, ConstructOptions, SourceMetadata
from relgraph.core.logging import configure_logging
from relgraph.db.factory import build_graph_store
from relgraph.db.pg.base import Base
from relgraph.db.pg import models as _models  # noqa: F401
from relgraph.db.pg.session import SessionLocal, engine
from relgraph.db.pg.store import upsert_raw_batch
from relgraph.services.ingest.pipeline import contacts_from_raw, run_construction


def _read_records(path: Path) -> list[dict[str, Any]]:
    if path.suffix.lower() == ".csv":
        with path.open(newline="", encoding="utf-8-sig") as handle:
            return [dict(row) for row in csv.DictReader(handle)]
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("records") or payload.get("contacts") or []
    if not isinstance(payload, list):
        raise SystemExit(f"{path}: expected a JSON list of records")
    return [item for item in payload if isinstance(item, dict)]


async def _load(records: list[dict[str, Any]], source: SourceMetadata, options: ConstructOptions) -> dict[str, Any]:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    store = build_graph_store()
    try:
        batch, created = upsert_raw_batch(
            db,
            source_type=source.type,
            filename=source.filename,
            records=records,
        )
        if not created and not options.dry_run:
            return {"batch_id": batch.batch_id, "status": "duplicate"}
        request = ConstructGraphRequest(contacts=contacts_from_raw(records, source), options=options)
        run, result = await run_construction(db, store, request, batch_id=batch.batch_id)
        report = result.report
        return {
            "batch_id": batch.batch_id,
            "run_id": run.run_id,
            "status": run.status,
            "dry_run": report.dry_run,
            "nodes_created": report.nodes_created,
            "nodes_merged": report.nodes_merged,
            "relationships_created": report.relationships_created,
            "relationships_merged": report.relationships_merged,
            "skipped": len(report.skipped),
            "conflicts": len(report.conflicts),
            "warnings": len(report.warnings),
        }
    finally:
        await store.close()
        db.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Normalize a CSV/JSON contact export and merge it into the graph.")
    parser.add_argument("path", type=Path, help="CSV or JSON file with one record per row/object.")
    parser.add_argument("--source", default=None, help="Source type (linkedin, csv, airtable, firecrawl, manual).")
    parser.add_argument("--dry-run", action="store_true", help="Resolve the graph without writing to the store.")
    args = parser.parse_args()

    configure_logging()
    source_type = args.source or ("csv" if args.path.suffix.lower() == ".csv" else "manual")
    records = _read_records(args.path)
    summary = asyncio.run(
        _load(
            records,
            SourceMetadata(type=source_type, filename=args.path.name),
            ConstructOptions(dry_run=args.dry_run, default_source_type=source_type),
        )
    )
    print(summary)


if __name__ == "__main__":
    main()
