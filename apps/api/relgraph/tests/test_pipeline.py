from __future__ import annotations

import threading
from types import SimpleNamespace

import pytest

from relgraph.api.v1.schemas import CanonicalContact, ConstructGraphRequest
from relgraph.core.config import Settings
from relgraph.core.errors import StoreUnavailable
from relgraph.db.memory.store import InMemoryGraphStore
from relgraph.services.ingest import pipeline


class _AuditRecorder:
    def __init__(self) -> None:
        self.calls: list[tuple[str, int]] = []

    def install(self, monkeypatch) -> None:
        def _start_run(db, *, batch_id=None, dry_run=False):
            self.calls.append(("start", threading.get_ident()))
            return SimpleNamespace(run_id="run-1", batch_id=batch_id, status="running")

        def _finish_run(db, run, report):
            self.calls.append(("finish", threading.get_ident()))
            run.status = "completed"
            return run

        def _fail_run(db, run, error):
            self.calls.append(("fail", threading.get_ident()))
            run.status = "failed"
            return run

        monkeypatch.setattr(pipeline, "start_run", _start_run)
        monkeypatch.setattr(pipeline, "finish_run", _finish_run)
        monkeypatch.setattr(pipeline, "fail_run", _fail_run)


class _UnavailableStore(InMemoryGraphStore):
    def session(self):
        raise StoreUnavailable("connection refused")


def _request() -> ConstructGraphRequest:
    return ConstructGraphRequest(
        contacts=[CanonicalContact(name="Dana Fox", job_history=[{"company": "Northwind", "startYear": 2012}])]
    )


@pytest.mark.asyncio
async def test_run_audit_writes_leave_the_event_loop_thread(monkeypatch) -> None:
    recorder = _AuditRecorder()
    recorder.install(monkeypatch)
    loop_thread = threading.get_ident()

    run, result = await pipeline.run_construction(
        None,
        InMemoryGraphStore(),
        _request(),
        batch_id="batch-1",
        settings=Settings(graph_store_backend="memory"),
    )

    assert run.status == "completed"
    assert result.report.nodes_created == 2
    assert [name for name, _ in recorder.calls] == ["start", "finish"]
    assert all(thread != loop_thread for _, thread in recorder.calls)


@pytest.mark.asyncio
async def test_failed_run_is_recorded_off_the_event_loop_and_reraised(monkeypatch) -> None:
    recorder = _AuditRecorder()
    recorder.install(monkeypatch)
    loop_thread = threading.get_ident()

    with pytest.raises(StoreUnavailable):
        await pipeline.run_construction(
            None,
            _UnavailableStore(),
            _request(),
            settings=Settings(graph_store_backend="memory"),
        )

    assert [name for name, _ in recorder.calls] == ["start", "fail"]
    assert all(thread != loop_thread for _, thread in recorder.calls)
