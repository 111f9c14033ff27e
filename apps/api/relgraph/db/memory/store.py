from __future__ import annotations

import copy
import logging
import threading
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any

from relgraph.core.errors import ValidationError
from relgraph.db.base import RawPath
from relgraph.services.graph.merge import (
    MergeOutcome,
    merge_node,
    merge_relationship,
    node_write_from_attrs,
    relationship_write_from_attrs,
)

logger = logging.getLogger(__name__)


class InMemoryGraphStore:
    """Process-local graph store used for tests and for ``graph_store_backend=memory``.

    Merges run under one lock so concurrent construction runs
    cannot lose each other's confidence updates; path queries work on a copy
    taken under the same lock.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, dict[str, Any]] = {}
        self._relationships: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()
        self.sessions_opened = 0
        self.sessions_closed = 0

    @asynccontextmanager
    async def session(self) -> AsyncIterator[InMemoryGraphSession]:
        self.sessions_opened += 1
        try:
            yield InMemoryGraphSession(self)
        finally:
            self.sessions_closed += 1

    async def ensure_schema(self) -> None:
        return None

    async def close(self) -> None:
        return None

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def relationship_count(self) -> int:
        return len(self._relationships)

    def nodes(self) -> list[dict[str, Any]]:
        return [copy.deepcopy(self._nodes[key]) for key in sorted(self._nodes)]

    def relationships(self) -> list[dict[str, Any]]:
        return [copy.deepcopy(self._relationships[key]) for key in sorted(self._relationships)]


class InMemoryGraphSession:
    def __init__(self, store: InMemoryGraphStore) -> None:
        self._store = store

    async def upsert_node(self, variant: str, key: str, attrs: dict[str, Any]) -> MergeOutcome:
        write = node_write_from_attrs(variant, key, attrs)
        with self._store._lock:
            existing = self._store._nodes.get(key)
            if existing is not None and existing.get("variant") != variant:
                raise ValidationError(
                    "node key already used by another variant",
                    record_ref=key,
                    detail={"existing_variant": existing.get("variant"), "variant": variant},
                )
            outcome = merge_node(copy.deepcopy(existing) if existing else None, write)
            self._store._nodes[key] = copy.deepcopy(outcome.properties)
        return outcome

    async def upsert_relationship(
        self, variant: str, from_id: str, to_id: str, attrs: dict[str, Any]
    ) -> MergeOutcome:
        write = relationship_write_from_attrs(variant, from_id, to_id, attrs)
        with self._store._lock:
            missing = [node_id for node_id in (from_id, to_id) if node_id not in self._store._nodes]
            if missing:
                raise ValidationError(
                    "relationship endpoint missing",
                    record_ref=write.id,
                    detail={"missing": missing},
                )
            existing = self._store._relationships.get(write.id)
            outcome = merge_relationship(copy.deepcopy(existing) if existing else None, write)
            self._store._relationships[write.id] = copy.deepcopy(outcome.properties)
        return outcome

    async def get_node(self, key: str) -> dict[str, Any] | None:
        with self._store._lock:
            node = self._store._nodes.get(key)
            return copy.deepcopy(node) if node is not None else None

    async def query_paths(self, from_id: str, to_id: str, max_hops: int) -> list[RawPath]:
        with self._store._lock:
            nodes = copy.deepcopy(self._store._nodes)
            relationships = copy.deepcopy(self._store._relationships)

        if from_id not in nodes or to_id not in nodes or from_id == to_id:
            return []

        adjacency: dict[str, list[tuple[str, dict[str, Any]]]] = defaultdict(list)
        for rel_id in sorted(relationships):
            rel = relationships[rel_id]
            adjacency[rel["from_id"]].append((rel["to_id"], rel))
            adjacency[rel["to_id"]].append((rel["from_id"], rel))

        paths: list[RawPath] = []

        def _walk(current: str, node_trail: list[str], rel_trail: list[dict[str, Any]]) -> None:
            if current == to_id:
                paths.append(
                    {
                        "nodes": [copy.deepcopy(nodes[node_id]) for node_id in node_trail],
                        "relationships": [copy.deepcopy(rel) for rel in rel_trail],
                    }
                )
                return
            if len(rel_trail) >= max_hops:
                return
            for neighbor, rel in adjacency.get(current, []):
                if neighbor in node_trail:
                    continue
                node_trail.append(neighbor)
                rel_trail.append(rel)
                _walk(neighbor, node_trail, rel_trail)
                node_trail.pop()
                rel_trail.pop()

        _walk(from_id, [from_id], [])
        logger.debug(
            "memory_store_paths_queried",
            extra={"from_id": from_id, "to_id": to_id, "max_hops": max_hops, "path_count": len(paths)},
        )
        return paths


@lru_cache(maxsize=1)
def get_memory_store() -> InMemoryGraphStore:
    return InMemoryGraphStore()
