from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol, TypedDict

from relgraph.services.graph.merge import MergeOutcome


class RawPath(TypedDict):
    """One traversal as returned by a store, oriented from the query's start node.

    ``nodes`` holds ``hops + 1`` property dicts and ``relationships`` holds
    ``hops`` property dicts, each carrying at least ``id``/``type``/``from_id``/``to_id``.
    """

    nodes: list[dict[str, Any]]
    relationships: list[dict[str, Any]]


class GraphSession(Protocol):
    """Unit-of-work handle over the graph backend.

    One session serves one logical operation and is never shared across
    concurrent operations.
    """

    async def upsert_node(self, variant: str, key: str, attrs: dict[str, Any]) -> MergeOutcome: ...

    async def upsert_relationship(
        self, variant: str, from_id: str, to_id: str, attrs: dict[str, Any]
    ) -> MergeOutcome: ...

    async def get_node(self, key: str) -> dict[str, Any] | None: ...

    async def query_paths(self, from_id: str, to_id: str, max_hops: int) -> list[RawPath]: ...


class GraphStore(Protocol):
    """Abstraction for the backing property-graph database."""

    def session(self) -> AbstractAsyncContextManager[GraphSession]: ...

    async def ensure_schema(self) -> None: ...

    async def close(self) -> None: ...
