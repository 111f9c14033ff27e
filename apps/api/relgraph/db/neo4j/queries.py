from __future__ import annotations

from typing import Any

from relgraph.api.v1.schemas import NODE_VARIANTS, RELATIONSHIP_TYPES

# Labels and relationship types cannot be passed as Cypher parameters, so every
# template below is rendered once from these closed sets; callers only choose a
# template by key and bind values through parameters.
RELATIONSHIP_ENDPOINTS: dict[str, tuple[str, str]] = {
    "WORKED_AT": ("Person", "Company"),
    "ATTENDED_SCHOOL": ("Person", "School"),
    "CONNECTED_VIA_MUTUAL": ("Person", "Person"),
}
MAX_SUPPORTED_HOPS = 8

_ANY_NODE_LABEL = "|".join(NODE_VARIANTS)
_ANY_REL_TYPE = "|".join(RELATIONSHIP_TYPES)

LOCK_NODE: dict[str, str] = {
    variant: f"""
    MERGE (n:{variant} {{id: $id}})
    ON CREATE SET n.created_at = datetime($now)
    SET n._lock = true
    RETURN properties(n) AS props
    """
    for variant in NODE_VARIANTS
}

WRITE_NODE: dict[str, str] = {
    variant: f"""
    MATCH (n:{variant} {{id: $id}})
    SET n += $props,
        n.updated_at = datetime($now)
    REMOVE n._lock
    """
    for variant in NODE_VARIANTS
}

LOCK_RELATIONSHIP: dict[str, str] = {
    rel_type: f"""
    MATCH (a:{start} {{id: $from_id}})
    MATCH (b:{end} {{id: $to_id}})
    MERGE (a)-[r:{rel_type} {{id: $id}}]->(b)
    ON CREATE SET r.created_at = datetime($now)
    SET r._lock = true
    RETURN properties(r) AS props
    """
    for rel_type, (start, end) in RELATIONSHIP_ENDPOINTS.items()
}

WRITE_RELATIONSHIP: dict[str, str] = {
    rel_type: f"""
    MATCH (:{start} {{id: $from_id}})-[r:{rel_type} {{id: $id}}]->(:{end} {{id: $to_id}})
    SET r += $props,
        r.updated_at = datetime($now)
    REMOVE r._lock
    """
    for rel_type, (start, end) in RELATIONSHIP_ENDPOINTS.items()
}

GET_NODE = f"""
MATCH (n:{_ANY_NODE_LABEL} {{id: $id}})
RETURN properties(n) AS props
LIMIT 1
"""

# Variable-length bounds cannot be parameterized either; one template per hop bound.
PATH_QUERIES: dict[int, str] = {
    hops: f"""
    MATCH (source:{_ANY_NODE_LABEL} {{id: $from_id}})
    MATCH (target:{_ANY_NODE_LABEL} {{id: $to_id}})
    MATCH p = (source)-[:{_ANY_REL_TYPE}*1..{hops}]-(target)
    WHERE ALL(i IN range(0, length(p) - 1)
              WHERE NONE(j IN range(i + 1, length(p)) WHERE nodes(p)[i] = nodes(p)[j]))
    RETURN [n IN nodes(p) | properties(n)] AS nodes,
           [r IN relationships(p) | properties(r)] AS relationships
    LIMIT $row_limit
    """
    for hops in range(1, MAX_SUPPORTED_HOPS + 1)
}


def path_query(max_hops: int) -> str:
    try:
        return PATH_QUERIES[int(max_hops)]
    except (KeyError, TypeError, ValueError):
        raise ValueError(f"max_hops must be between 1 and {MAX_SUPPORTED_HOPS}") from None


def lock_node_query(variant: str) -> str:
    try:
        return LOCK_NODE[variant]
    except KeyError:
        raise ValueError(f"unknown node variant: {variant}") from None


def lock_relationship_query(rel_type: str) -> str:
    try:
        return LOCK_RELATIONSHIP[rel_type]
    except KeyError:
        raise ValueError(f"unknown relationship type: {rel_type}") from None


_NEO4J_TEMPORAL_KEYS = {"created_at", "updated_at"}


def stored_properties(props: dict[str, Any] | None) -> dict[str, Any]:
    """Strip lock markers and driver temporal values from a returned property map."""
    if not props:
        return {}
    cleaned: dict[str, Any] = {}
    for key, value in props.items():
        if key.startswith("_"):
            continue
        if key in _NEO4J_TEMPORAL_KEYS:
            cleaned[key] = value.iso_format() if hasattr(value, "iso_format") else value
            continue
        cleaned[key] = list(value) if isinstance(value, tuple) else value
    return cleaned


def writable_properties(props: dict[str, Any]) -> dict[str, Any]:
    """Drop keys the write template manages itself; ``None`` values remove the property."""
    return {key: value for key, value in props.items() if key not in _NEO4J_TEMPORAL_KEYS and key != "id"}
