from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from relgraph.core.errors import ConflictMerge


# Fields that identify a person outside the graph. Disagreement on one of them
# for the same identity key is recorded as a conflict rather than overwritten silently.
IDENTITY_FIELDS: dict[str, tuple[str, ...]] = {
    "Person": ("linkedin", "email"),
    "Company": (),
    "School": (),
}


def clamp_confidence(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:  # NaN
        return 0.0
    return max(0.0, min(1.0, number))


@dataclass
class NodeWrite:
    id: str
    variant: str
    name: str
    confidence: float
    source_type: str
    trust: float
    attrs: dict[str, Any] = field(default_factory=dict)


@dataclass
class RelationshipWrite:
    id: str
    type: str
    from_id: str
    to_id: str
    source_type: str
    source_confidence: float
    trust: float
    start_year: int | None = None
    end_year: int | None = None
    is_current: bool = False
    attrs: dict[str, Any] = field(default_factory=dict)


@dataclass
class MergeOutcome:
    properties: dict[str, Any]
    created: bool
    conflicts: list[ConflictMerge] = field(default_factory=list)


def _incoming_wins(existing_trust: Any, incoming_trust: float) -> bool:
    # Equal trust: the most recent write wins.
    return incoming_trust >= clamp_confidence(existing_trust)


def _union_sources(existing: Any, source_type: str) -> list[str]:
    current = {str(item) for item in (existing or []) if item}
    if source_type:
        current.add(source_type)
    return sorted(current)


def merge_node(existing: dict[str, Any] | None, write: NodeWrite) -> MergeOutcome:
    """Fold one node write into the stored properties of that node.

    Confidence only ever moves up: the stored value is the maximum observed
    across all writes, so replaying the same writes converges and a
    low-confidence source cannot drag an established node down. Attribute
    values follow source trust; a gap is always filled.
    """
    incoming_confidence = clamp_confidence(write.confidence)
    attrs = {key: value for key, value in write.attrs.items() if value is not None}
    if existing is None:
        properties = {
            "id": write.id,
            "variant": write.variant,
            "name": write.name,
            "confidence": incoming_confidence,
            "sources": _union_sources([], write.source_type),
            "attr_trust": clamp_confidence(write.trust),
            "attr_source": write.source_type,
        }
        properties.update(attrs)
        return MergeOutcome(properties=properties, created=True)

    properties = dict(existing)
    conflicts: list[ConflictMerge] = []
    existing_trust = clamp_confidence(existing.get("attr_trust"))
    existing_source = existing.get("attr_source")
    incoming_wins = _incoming_wins(existing_trust, write.trust)

    properties["confidence"] = max(clamp_confidence(existing.get("confidence")), incoming_confidence)
    properties["sources"] = _union_sources(existing.get("sources"), write.source_type)

    identity_fields = IDENTITY_FIELDS.get(write.variant, ())
    for key, value in attrs.items():
        current = existing.get(key)
        if current is None:
            properties[key] = value
            continue
        if current == value:
            continue
        if key in identity_fields:
            kept, rejected = (value, current) if incoming_wins else (current, value)
            conflicts.append(
                ConflictMerge(
                    entity_id=write.id,
                    field=key,
                    kept_value=kept,
                    kept_source=write.source_type if incoming_wins else existing_source,
                    rejected_value=rejected,
                    rejected_source=existing_source if incoming_wins else write.source_type,
                )
            )
        if incoming_wins:
            properties[key] = value

    if incoming_wins:
        if write.name:
            properties["name"] = write.name
        properties["attr_trust"] = max(existing_trust, clamp_confidence(write.trust))
        properties["attr_source"] = write.source_type
    return MergeOutcome(properties=properties, created=False, conflicts=conflicts)


def _has_temporal_info(properties: dict[str, Any]) -> bool:
    return bool(properties.get("is_current")) or properties.get("end_year") is not None


def merge_relationship(existing: dict[str, Any] | None, write: RelationshipWrite) -> MergeOutcome:
    incoming_confidence = clamp_confidence(write.source_confidence)
    attrs = {key: value for key, value in write.attrs.items() if value is not None}
    end_year = None if write.is_current else write.end_year
    if existing is None:
        properties = {
            "id": write.id,
            "type": write.type,
            "from_id": write.from_id,
            "to_id": write.to_id,
            "start_year": write.start_year,
            "end_year": end_year,
            "is_current": bool(write.is_current),
            "source_type": write.source_type,
            "source_confidence": incoming_confidence,
            "sources": _union_sources([], write.source_type),
            "attr_trust": clamp_confidence(write.trust),
        }
        properties.update(attrs)
        return MergeOutcome(properties=properties, created=True)

    properties = dict(existing)
    existing_trust = clamp_confidence(existing.get("attr_trust"))
    incoming_wins = _incoming_wins(existing_trust, write.trust)

    existing_confidence = clamp_confidence(existing.get("source_confidence"))
    if incoming_confidence > existing_confidence:
        properties["source_confidence"] = incoming_confidence
        properties["source_type"] = write.source_type
    properties["sources"] = _union_sources(existing.get("sources"), write.source_type)

    incoming_temporal = {"is_current": bool(write.is_current), "end_year": end_year}
    if _has_temporal_info(incoming_temporal) and (not _has_temporal_info(existing) or incoming_wins):
        properties.update(incoming_temporal)

    for key, value in attrs.items():
        current = existing.get(key)
        if key == "mutual_count" and current is not None:
            properties[key] = max(int(current), int(value))
        elif current is None or incoming_wins:
            properties[key] = value

    if incoming_wins:
        properties["attr_trust"] = max(existing_trust, clamp_confidence(write.trust))
    return MergeOutcome(properties=properties, created=False)


_NODE_CONTROL_KEYS = {"name", "confidence", "source_type", "trust"}
_RELATIONSHIP_CONTROL_KEYS = {
    "id",
    "source_type",
    "source_confidence",
    "trust",
    "start_year",
    "end_year",
    "is_current",
}


def node_write_from_attrs(variant: str, key: str, attrs: dict[str, Any]) -> NodeWrite:
    return NodeWrite(
        id=key,
        variant=variant,
        name=str(attrs.get("name") or key),
        confidence=clamp_confidence(attrs.get("confidence")),
        source_type=str(attrs.get("source_type") or "manual"),
        trust=clamp_confidence(attrs.get("trust")),
        attrs={k: v for k, v in attrs.items() if k not in _NODE_CONTROL_KEYS},
    )


def relationship_write_from_attrs(variant: str, from_id: str, to_id: str, attrs: dict[str, Any]) -> RelationshipWrite:
    return RelationshipWrite(
        id=str(attrs["id"]),
        type=variant,
        from_id=from_id,
        to_id=to_id,
        source_type=str(attrs.get("source_type") or "manual"),
        source_confidence=clamp_confidence(attrs.get("source_confidence")),
        trust=clamp_confidence(attrs.get("trust")),
        start_year=attrs.get("start_year"),
        end_year=attrs.get("end_year"),
        is_current=bool(attrs.get("is_current")),
        attrs={k: v for k, v in attrs.items() if k not in _RELATIONSHIP_CONTROL_KEYS},
    )
