from __future__ import annotations

from collections import Counter
from typing import Any

from relgraph.services.graph.merge import clamp_confidence

TYPE_WEIGHTS: dict[str, float] = {
    "WORKED_AT": 1.0,
    "CONNECTED_VIA_MUTUAL": 0.9,
    "ATTENDED_SCHOOL": 0.7,
}
HOP_DECAY = 0.85
CONFIDENCE_PRECISION = 6
# Small enough to never reorder paths whose rounded confidences differ.
CORROBORATION_BONUS = 1e-7

AFFILIATION_TYPES = {"WORKED_AT", "ATTENDED_SCHOOL"}


def path_confidence(nodes: list[dict[str, Any]], relationships: list[dict[str, Any]]) -> float:
    """Score one traversal.

    The endpoint confidences are multiplied with every edge's source
    confidence scaled by its type weight, then decayed once per hop beyond
    the first. The result is clamped to [0, 1].
    """
    if not nodes or not relationships:
        return 0.0
    score = clamp_confidence(nodes[0].get("confidence")) * clamp_confidence(nodes[-1].get("confidence"))
    for rel in relationships:
        score *= link_score(rel)
    score *= HOP_DECAY ** (len(relationships) - 1)
    return clamp_confidence(score)


def path_sources(relationships: list[dict[str, Any]]) -> list[str]:
    return sorted({str(rel["source_type"]) for rel in relationships if rel.get("source_type")})


def rank_score(confidence: float, sources: list[str]) -> float:
    extra_sources = max(len(sources) - 1, 0)
    return round(confidence, CONFIDENCE_PRECISION) + CORROBORATION_BONUS * extra_sources


def dominant_type(relationships: list[dict[str, Any]]) -> str | None:
    if not relationships:
        return None
    counts = Counter(str(rel.get("type")) for rel in relationships)
    # Ties go to the type that carries more weight.
    return max(counts, key=lambda rel_type: (counts[rel_type], TYPE_WEIGHTS.get(rel_type, 0.0), rel_type))


def _tenure(rel: dict[str, Any]) -> tuple[int, int] | None:
    start = rel.get("start_year")
    if start is None:
        return None
    end = rel.get("end_year")
    if end is None:
        end = 9999 if rel.get("is_current") else start
    return int(start), int(end)


def tenures_overlap(first: dict[str, Any], second: dict[str, Any]) -> bool:
    a = _tenure(first)
    b = _tenure(second)
    if a is None or b is None:
        return False
    return max(a[0], b[0]) <= min(a[1], b[1])


def _name(node: dict[str, Any]) -> str:
    return str(node.get("name") or node.get("id") or "")


def recommended_action(nodes: list[dict[str, Any]], relationships: list[dict[str, Any]]) -> str:
    hops = len(relationships)
    if hops == 0 or len(nodes) != hops + 1:
        return "No actionable path"
    target = _name(nodes[-1])
    dominant = dominant_type(relationships)

    if dominant == "CONNECTED_VIA_MUTUAL":
        if hops == 1:
            mutual_count = relationships[0].get("mutual_count")
            if mutual_count:
                return f"Request a warm introduction to {target} through your {mutual_count} mutual connections"
            return f"Request a warm introduction to {target} through your mutual connections"
        return f"Ask {_name(nodes[1])} for a warm introduction to {target}"

    if hops == 1:
        org = nodes[1] if nodes[0].get("variant") == "Person" else nodes[0]
        return f"Reach out through {_name(org)}"

    if hops == 2 and all(rel.get("type") in AFFILIATION_TYPES for rel in relationships):
        org = _name(nodes[1])
        if tenures_overlap(relationships[0], relationships[1]):
            return f"Reach out to {target} directly and mention your overlapping time at {org}"
        return f"Reach out to {target} directly and reference your shared connection to {org}"

    intermediaries = [node for node in nodes[1:-1] if node.get("variant") == "Person"]
    introducer = _name(intermediaries[0]) if intermediaries else _name(nodes[1])
    return f"Ask {introducer} to introduce you to {target}"


def link_score(rel: dict[str, Any]) -> float:
    return clamp_confidence(rel.get("source_confidence")) * TYPE_WEIGHTS.get(str(rel.get("type")), 0.0)


def strongest_link(nodes: list[dict[str, Any]], relationships: list[dict[str, Any]]) -> str | None:
    """Describe the best-scoring hop as ``"<from> -> <TYPE> -> <to>"``; ``None`` when every hop scores zero."""
    best: str | None = None
    best_score = 0.0
    for index, rel in enumerate(relationships[: max(len(nodes) - 1, 0)]):
        score = link_score(rel)
        if score > best_score:
            best_score = score
            best = f"{_name(nodes[index])} -> {rel.get('type')} -> {_name(nodes[index + 1])}"
    return best
