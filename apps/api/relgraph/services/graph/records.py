from __future__ import annotations

from typing import Any

from relgraph.api.v1.schemas import GraphNode, GraphRelationship
from relgraph.services.graph.merge import clamp_confidence

_NODE_KEYS = {"id", "variant", "name", "confidence", "sources"}
_RELATIONSHIP_KEYS = {
    "id",
    "type",
    "from_id",
    "to_id",
    "start_year",
    "end_year",
    "is_current",
    "source_type",
    "source_confidence",
    "sources",
}
# Merge bookkeeping and store timestamps stay out of caller-facing properties.
_INTERNAL_KEYS = {"attr_trust", "attr_source", "created_at", "updated_at"}


def _optional_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def graph_node(props: dict[str, Any]) -> GraphNode:
    return GraphNode(
        id=str(props["id"]),
        variant=props["variant"],
        name=str(props.get("name") or props["id"]),
        confidence=clamp_confidence(props.get("confidence")),
        sources=sorted(str(item) for item in props.get("sources") or []),
        properties={
            key: value
            for key, value in props.items()
            if key not in _NODE_KEYS and key not in _INTERNAL_KEYS and value is not None
        },
    )


def graph_relationship(props: dict[str, Any]) -> GraphRelationship:
    return GraphRelationship(
        id=str(props["id"]),
        type=props["type"],
        from_id=str(props["from_id"]),
        to_id=str(props["to_id"]),
        start_year=_optional_int(props.get("start_year")),
        end_year=_optional_int(props.get("end_year")),
        is_current=bool(props.get("is_current")),
        source_type=props.get("source_type"),
        source_confidence=clamp_confidence(props.get("source_confidence")),
        sources=sorted(str(item) for item in props.get("sources") or []),
        properties={
            key: value
            for key, value in props.items()
            if key not in _RELATIONSHIP_KEYS and key not in _INTERNAL_KEYS and value is not None
        },
    )
