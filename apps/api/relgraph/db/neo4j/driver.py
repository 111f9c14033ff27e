from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime, timezone
from typing import Any

from neo4j import AsyncDriver, AsyncGraphDatabase, unit_of_work
from neo4j.exceptions import Neo4jError, ServiceUnavailable, SessionExpired, TransientError

from relgraph.core.config import Settings, get_settings
from relgraph.core.errors import StoreTimeout, StoreUnavailable, ValidationError
from relgraph.db.base import RawPath
from relgraph.db.neo4j import queries
from relgraph.db.neo4j.schema import SCHEMA_STATEMENTS
from relgraph.services.graph.merge import (
    MergeOutcome,
    merge_node,
    merge_relationship,
    node_write_from_attrs,
    relationship_write_from_attrs,
)

logger = logging.getLogger(__name__)

_TIMEOUT_CODES = ("TransactionTimedOut", "TransactionTimedOutClientConfiguration")


def get_driver(settings: Settings | None = None) -> AsyncDriver | None:
    settings = settings or get_settings()
    if not settings.neo4j_uri:
        return None
    return AsyncGraphDatabase.driver(
        settings.neo4j_uri,
        auth=(settings.neo4j_user, settings.neo4j_password),
        max_connection_pool_size=settings.neo4j_max_connection_pool_size,
        connection_acquisition_timeout=settings.neo4j_connection_acquisition_timeout_seconds,
    )


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def translate_store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except (ServiceUnavailable, SessionExpired) as exc:
        logger.error("graph_store_unavailable", extra={"operation": operation, "error": str(exc)})
        raise StoreUnavailable(f"graph store unavailable during {operation}") from exc
    except TimeoutError as exc:
        logger.error("graph_store_timeout", extra={"operation": operation})
        raise StoreTimeout(f"graph store timed out during {operation}") from exc
    except TransientError as exc:
        if any(code in (exc.code or "") for code in _TIMEOUT_CODES):
            raise StoreTimeout(f"graph store timed out during {operation}") from exc
        logger.error("graph_store_transient_failure", extra={"operation": operation, "code": exc.code})
        raise StoreUnavailable(f"graph store failed transiently during {operation}") from exc
    except Neo4jError as exc:
        if any(code in (exc.code or "") for code in _TIMEOUT_CODES):
            logger.error("graph_store_timeout", extra={"operation": operation, "code": exc.code})
            raise StoreTimeout(f"graph store timed out during {operation}") from exc
        raise


async def _merge_node_tx(tx, variant: str, key: str, attrs: dict[str, Any], now: str) -> MergeOutcome:
    write = node_write_from_attrs(variant, key, attrs)
    result = await tx.run(queries.lock_node_query(variant), id=write.id, now=now)
    record = await result.single()
    existing = queries.stored_properties(record["props"] if record else None)
    # A freshly merged node only carries its key and creation time.
    outcome = merge_node(existing if "variant" in existing else None, write)
    await tx.run(
        queries.WRITE_NODE[variant],
        id=write.id,
        props=queries.writable_properties(outcome.properties),
        now=now,
    )
    return outcome


async def _merge_relationship_tx(tx, rel_type: str, from_id: str, to_id: str, attrs: dict[str, Any], now: str):
    write = relationship_write_from_attrs(rel_type, from_id, to_id, attrs)
    result = await tx.run(
        queries.lock_relationship_query(rel_type),
        id=write.id,
        from_id=from_id,
        to_id=to_id,
        now=now,
    )
    record = await result.single()
    if record is None:
        return None
    existing = queries.stored_properties(record["props"])
    outcome = merge_relationship(existing if "sources" in existing else None, write)
    await tx.run(
        queries.WRITE_RELATIONSHIP[rel_type],
        id=write.id,
        from_id=from_id,
        to_id=to_id,
        props=queries.writable_properties(outcome.properties),
        now=now,
    )
    return outcome


async def _get_node_tx(tx, key: str) -> dict[str, Any] | None:
    result = await tx.run(queries.GET_NODE, id=key)
    record = await result.single()
    if record is None:
        return None
    return queries.stored_properties(record["props"])


async def _query_paths_tx(tx, query: str, from_id: str, to_id: str, row_limit: int) -> list[RawPath]:
    result = await tx.run(query, from_id=from_id, to_id=to_id, row_limit=row_limit)
    rows = await result.data()
    return [
        {
            "nodes": [queries.stored_properties(node) for node in row.get("nodes") or []],
            "relationships": [queries.stored_properties(rel) for rel in row.get("relationships") or []],
        }
        for row in rows
    ]


class Neo4jGraphSession:
    def __init__(self, session, *, timeout_seconds: float, path_row_limit: int) -> None:
        self._session = session
        self._timeout = timeout_seconds
        self._path_row_limit = path_row_limit

    def _unit(self, fn):
        return unit_of_work(timeout=self._timeout)(fn)

    async def upsert_node(self, variant: str, key: str, attrs: dict[str, Any]) -> MergeOutcome:
        with translate_store_errors("upsert_node"):
            return await self._session.execute_write(
                self._unit(_merge_node_tx), variant, key, attrs, _now_iso()
            )

    async def upsert_relationship(
        self, variant: str, from_id: str, to_id: str, attrs: dict[str, Any]
    ) -> MergeOutcome:
        with translate_store_errors("upsert_relationship"):
            outcome = await self._session.execute_write(
                self._unit(_merge_relationship_tx), variant, from_id, to_id, attrs, _now_iso()
            )
        if outcome is None:
            raise ValidationError(
                "relationship endpoint missing",
                record_ref=str(attrs.get("id")),
                detail={"from_id": from_id, "to_id": to_id},
            )
        return outcome

    async def get_node(self, key: str) -> dict[str, Any] | None:
        with translate_store_errors("get_node"):
            return await self._session.execute_read(self._unit(_get_node_tx), key)

    async def query_paths(self, from_id: str, to_id: str, max_hops: int) -> list[RawPath]:
        query = queries.path_query(max_hops)
        with translate_store_errors("query_paths"):
            return await self._session.execute_read(
                self._unit(_query_paths_tx), query, from_id, to_id, self._path_row_limit
            )


class Neo4jGraphStore:
    """Graph store backed by one pooled ``AsyncDriver``.

    Every ``session()`` checks a connection out of the driver pool for one
    logical operation and returns it on exit, including error exits.
    """

    def __init__(self, driver: AsyncDriver, settings: Settings | None = None) -> None:
        self._driver = driver
        self._settings = settings or get_settings()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> Neo4jGraphStore:
        settings = settings or get_settings()
        driver = get_driver(settings)
        if driver is None:
            raise StoreUnavailable("neo4j_uri is not configured")
        return cls(driver, settings)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[Neo4jGraphSession]:
        with translate_store_errors("open_session"):
            session = self._driver.session(database=self._settings.neo4j_database)
        try:
            yield Neo4jGraphSession(
                session,
                timeout_seconds=self._settings.neo4j_query_timeout_seconds,
                path_row_limit=self._settings.path_query_row_limit,
            )
        finally:
            await session.close()

    async def ensure_schema(self) -> None:
        async with self._driver.session(database=self._settings.neo4j_database) as session:
            for statement in SCHEMA_STATEMENTS:
                with translate_store_errors("ensure_schema"):
                    result = await session.run(statement)
                    await result.consume()
                logger.info("neo4j_schema_statement_applied", extra={"statement": statement})

    async def close(self) -> None:
        await self._driver.close()
