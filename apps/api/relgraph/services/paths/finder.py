from __future__ import annotations

import logging
from typing import Any

from relgraph.api.v1.schemas import PathResult
from relgraph.core.config import Settings, get_settings
from relgraph.core.errors import ValidationError
from relgraph.db.base import GraphStore, RawPath
from relgraph.services.graph.records import graph_node, graph_relationship
from relgraph.services.paths.scoring import (
    CONFIDENCE_PRECISION,
    path_confidence,
    path_sources,
    rank_score,
    recommended_action,
    strongest_link,
)

logger = logging.getLogger(__name__)

PATH_ID_SEPARATOR = "->"


def _oriented(raw: RawPath, from_id: str, to_id: str) -> tuple[list[dict[str, Any]], list[dict[str, Any]]] | None:
    """Return the traversal as (nodes, relationships) when it is a simple path from ``from_id`` to ``to_id``."""
    nodes = list(raw.get("nodes") or [])
    relationships = list(raw.get("relationships") or [])
    if not relationships or len(nodes) != len(relationships) + 1:
        return None
    if nodes[0].get("id") == to_id and nodes[-1].get("id") == from_id:
        nodes.reverse()
        relationships.reverse()
    if nodes[0].get("id") != from_id or nodes[-1].get("id") != to_id:
        return None

    node_ids = [node.get("id") for node in nodes]
    if len(set(node_ids)) != len(node_ids):
        return None
    for index, rel in enumerate(relationships):
        ends = {rel.get("from_id"), rel.get("to_id")}
        if ends != {node_ids[index], node_ids[index + 1]}:
            return None
    return nodes, relationships


def _path_id(nodes: list[dict[str, Any]], relationships: list[dict[str, Any]]) -> str:
    ids: list[str] = [str(nodes[0]["id"])]
    for rel, node in zip(relationships, nodes[1:]):
        ids.append(str(rel["id"]))
        ids.append(str(node["id"]))
    return PATH_ID_SEPARATOR.join(ids)


def _sort_key(item: tuple[float, PathResult]) -> tuple[Any, ...]:
    rank, result = item
    return (-rank, result.hops, result.path_id)


class PathFinder:
    def __init__(self, store: GraphStore, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    def _resolve_max_hops(self, max_hops: int | None) -> int:
        if max_hops is None:
            # A configured default never exceeds the configured limit.
            return min(self.settings.path_max_hops_default, self.settings.path_max_hops_limit)
        if max_hops < 1 or max_hops > self.settings.path_max_hops_limit:
            raise ValidationError(
                "max_hops outside allowed range",
                record_ref="max_hops",
                detail={"max_hops": max_hops, "limit": self.settings.path_max_hops_limit},
            )
        return max_hops

    async def find_paths(
        self,
        from_id: str,
        to_id: str,
        *,
        max_hops: int | None = None,
        limit: int | None = None,
        min_confidence: float | None = None,
    ) -> list[PathResult]:
        hops_bound = self._resolve_max_hops(max_hops)
        limit = limit if limit is not None else self.settings.path_result_limit
        if from_id == to_id:
            return []

        async with self.store.session() as session:
            if await session.get_node(from_id) is None or await session.get_node(to_id) is None:
                logger.info("path_endpoint_missing", extra={"from_id": from_id, "to_id": to_id})
                return []
            raw_paths = await session.query_paths(from_id, to_id, hops_bound)

        # Keep one canonical traversal per relationship set.
        canonical: dict[frozenset[str], tuple[str, list[dict[str, Any]], list[dict[str, Any]]]] = {}
        dropped = 0
        for raw in raw_paths:
            oriented = _oriented(raw, from_id, to_id)
            if oriented is None:
                dropped += 1
                continue
            nodes, relationships = oriented
            path_id = _path_id(nodes, relationships)
            key = frozenset(str(rel["id"]) for rel in relationships)
            current = canonical.get(key)
            if current is None or path_id < current[0]:
                canonical[key] = (path_id, nodes, relationships)

        ranked: list[tuple[float, PathResult]] = []
        below_threshold = 0
        for path_id, nodes, relationships in canonical.values():
            confidence = round(path_confidence(nodes, relationships), CONFIDENCE_PRECISION)
            if min_confidence is not None and confidence < min_confidence:
                below_threshold += 1
                continue
            sources = path_sources(relationships)
            elements: list[Any] = [graph_node(nodes[0])]
            for rel, node in zip(relationships, nodes[1:]):
                elements.append(graph_relationship(rel))
                elements.append(graph_node(node))
            result = PathResult(
                path=elements,
                path_id=path_id,
                hops=len(relationships),
                confidence=confidence,
                sources=sources,
                recommended_action=recommended_action(nodes, relationships),
                strongest_link=strongest_link(nodes, relationships),
            )
            ranked.append((rank_score(confidence, sources), result))

        ranked.sort(key=_sort_key)
        results = [result for _, result in ranked]
        if limit is not None:
            results = results[:limit]
        logger.info(
            "paths_found",
            extra={
                "from_id": from_id,
                "to_id": to_id,
                "max_hops": hops_bound,
                "raw_paths": len(raw_paths),
                "dropped": dropped,
                "below_threshold": below_threshold,
                "returned": len(results),
            },
        )
        return results


async def find_paths(
    from_id: str,
    to_id: str,
    *,
    store: GraphStore,
    max_hops: int | None = None,
    limit: int | None = None,
    min_confidence: float | None = None,
    settings: Settings | None = None,
) -> list[PathResult]:
    return await PathFinder(store, settings).find_paths(
        from_id, to_id, max_hops=max_hops, limit=limit, min_confidence=min_confidence
    )
