from __future__ import annotations

import pytest
from neo4j.exceptions import ServiceUnavailable

from relgraph.core.config import Settings
from relgraph.core.errors import StoreTimeout, StoreUnavailable, ValidationError
from relgraph.db.neo4j import queries
from relgraph.db.neo4j.driver import Neo4jGraphSession, Neo4jGraphStore, translate_store_errors
from relgraph.db.neo4j.schema import SCHEMA_STATEMENTS


class _FakeDateTime:
    def iso_format(self) -> str:
        return "2026-10-18T09:00:00+00:00"


class _FakeResult:
    def __init__(self, record=None, rows=None) -> None:
        self._record = record
        self._rows = rows or []
        self.consumed = False

    async def single(self):
        return self._record

    async def data(self):
        return self._rows

    async def consume(self):
        self.consumed = True


class _FakeTx:
    def __init__(self, responses: list[_FakeResult]) -> None:
        self._responses = list(responses)
        self.calls: list[tuple[str, dict]] = []

    async def run(self, query, **params):
        self.calls.append((query, params))
        if self._responses:
            return self._responses.pop(0)
        return _FakeResult()


class _FakeSession:
    def __init__(self, tx: _FakeTx | None = None) -> None:
        self.tx = tx or _FakeTx([])
        self.closed = False
        self.statements: list[str] = []

    async def execute_write(self, fn, *args):
        return await fn(self.tx, *args)

    async def execute_read(self, fn, *args):
        return await fn(self.tx, *args)

    async def run(self, statement):
        self.statements.append(statement)
        return _FakeResult()

    async def close(self):
        self.closed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()


class _FakeDriver:
    def __init__(self, session: _FakeSession) -> None:
        self._session = session
        self.databases: list[str] = []
        self.closed = False

    def session(self, database=None):
        self.databases.append(database)
        return self._session

    async def close(self):
        self.closed = True


def _graph_session(tx: _FakeTx) -> Neo4jGraphSession:
    return Neo4jGraphSession(_FakeSession(tx), timeout_seconds=5.0, path_row_limit=100)


def test_path_templates_cover_each_hop_bound() -> None:
    assert "*1..3]" in queries.path_query(3)
    assert "LIMIT $row_limit" in queries.path_query(3)
    assert set(queries.PATH_QUERIES) == set(range(1, queries.MAX_SUPPORTED_HOPS + 1))
    with pytest.raises(ValueError):
        queries.path_query(0)
    with pytest.raises(ValueError):
        queries.path_query(queries.MAX_SUPPORTED_HOPS + 1)


def test_labels_come_only_from_closed_sets() -> None:
    assert "MERGE (n:Person {id: $id})" in queries.lock_node_query("Person")
    assert "MATCH (b:School {id: $to_id})" in queries.lock_relationship_query("ATTENDED_SCHOOL")
    with pytest.raises(ValueError):
        queries.lock_node_query("Person) DETACH DELETE (n")
    with pytest.raises(ValueError):
        queries.lock_relationship_query("KNOWS")


def test_property_helpers_strip_internal_keys() -> None:
    stored = queries.stored_properties(
        {"id": "person_a", "_lock": True, "sources": ("csv",), "created_at": _FakeDateTime()}
    )
    assert stored == {"id": "person_a", "sources": ["csv"], "created_at": "2026-10-18T09:00:00+00:00"}
    assert queries.writable_properties({"id": "x", "created_at": "t", "confidence": 0.5}) == {"confidence": 0.5}
    assert queries.stored_properties(None) == {}


@pytest.mark.asyncio
async def test_upsert_node_creates_then_writes_merged_properties() -> None:
    tx = _FakeTx([_FakeResult({"props": {"id": "person_jane_doe", "_lock": True, "created_at": _FakeDateTime()}})])

    outcome = await _graph_session(tx).upsert_node(
        "Person",
        "person_jane_doe",
        {"name": "Jane Doe", "confidence": 0.7, "source_type": "csv", "trust": 0.8, "email": "jane@fund.io"},
    )

    assert outcome.created is True
    lock_query, lock_params = tx.calls[0]
    assert lock_query == queries.LOCK_NODE["Person"]
    assert lock_params["id"] == "person_jane_doe"
    write_query, write_params = tx.calls[1]
    assert write_query == queries.WRITE_NODE["Person"]
    assert write_params["props"]["confidence"] == 0.7
    assert write_params["props"]["email"] == "jane@fund.io"
    assert "id" not in write_params["props"]


@pytest.mark.asyncio
async def test_upsert_node_merges_against_locked_properties() -> None:
    existing = {
        "id": "person_jane_doe",
        "variant": "Person",
        "name": "Jane Doe",
        "confidence": 0.9,
        "sources": ("linkedin",),
        "attr_trust": 0.95,
        "attr_source": "linkedin",
        "_lock": True,
    }
    tx = _FakeTx([_FakeResult({"props": existing})])

    outcome = await _graph_session(tx).upsert_node(
        "Person", "person_jane_doe", {"name": "Jane Doe", "confidence": 0.4, "source_type": "csv", "trust": 0.8}
    )

    assert outcome.created is False
    props = tx.calls[1][1]["props"]
    assert props["confidence"] == 0.9
    assert props["sources"] == ["csv", "linkedin"]


@pytest.mark.asyncio
async def test_upsert_relationship_with_missing_endpoint_is_a_validation_error() -> None:
    tx = _FakeTx([_FakeResult(None)])

    with pytest.raises(ValidationError):
        await _graph_session(tx).upsert_relationship(
            "WORKED_AT",
            "person_a",
            "company_missing",
            {"id": "person_a_company_missing_WORKED_AT", "source_type": "csv", "source_confidence": 0.5},
        )
    assert len(tx.calls) == 1


@pytest.mark.asyncio
async def test_query_paths_returns_cleaned_rows() -> None:
    rows = [
        {
            "nodes": [{"id": "person_a", "_lock": True}, {"id": "person_b"}],
            "relationships": [{"id": "r1", "type": "CONNECTED_VIA_MUTUAL", "from_id": "person_a", "to_id": "person_b"}],
        }
    ]
    tx = _FakeTx([_FakeResult(rows=rows)])

    paths = await _graph_session(tx).query_paths("person_a", "person_b", 2)

    assert paths == [
        {
            "nodes": [{"id": "person_a"}, {"id": "person_b"}],
            "relationships": [{"id": "r1", "type": "CONNECTED_VIA_MUTUAL", "from_id": "person_a", "to_id": "person_b"}],
        }
    ]
    query, params = tx.calls[0]
    assert query == queries.PATH_QUERIES[2]
    assert params == {"from_id": "person_a", "to_id": "person_b", "row_limit": 100}


def test_driver_errors_are_translated() -> None:
    with pytest.raises(StoreUnavailable) as unavailable:
        with translate_store_errors("query_paths"):
            raise ServiceUnavailable("connection refused")
    assert not isinstance(unavailable.value, StoreTimeout)

    with pytest.raises(StoreTimeout):
        with translate_store_errors("query_paths"):
            raise TimeoutError()


@pytest.mark.asyncio
async def test_store_session_is_released_on_error() -> None:
    fake_session = _FakeSession()
    driver = _FakeDriver(fake_session)
    store = Neo4jGraphStore(driver, Settings(neo4j_database="graph"))

    with pytest.raises(RuntimeError):
        async with store.session():
            raise RuntimeError("boom")

    assert fake_session.closed is True
    assert driver.databases == ["graph"]


@pytest.mark.asyncio
async def test_ensure_schema_and_close() -> None:
    fake_session = _FakeSession()
    driver = _FakeDriver(fake_session)
    store = Neo4jGraphStore(driver, Settings())

    await store.ensure_schema()
    await store.close()

    assert fake_session.statements == SCHEMA_STATEMENTS
    assert driver.closed is True


def test_store_requires_a_configured_uri() -> None:
    with pytest.raises(StoreUnavailable):
        Neo4jGraphStore.from_settings(Settings(neo4j_uri=""))
