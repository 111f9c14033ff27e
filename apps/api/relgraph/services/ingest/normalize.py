from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

from relgraph.api.v1.schemas import CanonicalContact, MutualConnection, SourceMetadata
from relgraph.core.config import get_settings
from relgraph.services.identity.keys import normalize_firm_name, normalize_person_name, normalize_text

logger = logging.getLogger(__name__)


CANONICAL_FIELDS = (
    "name",
    "firm",
    "role",
    "email",
    "linkedin",
    "location",
    "school",
    "job_history",
    "education",
    "connections",
)

# Header aliases shared by every tabular source. Keys are lowercased with
# punctuation and whitespace removed.
GENERIC_FIELD_MAP: dict[str, str] = {
    "name": "name",
    "fullname": "name",
    "contactname": "name",
    "person": "name",
    "firstname": "first_name",
    "lastname": "last_name",
    "firm": "firm",
    "company": "firm",
    "companyname": "firm",
    "organization": "firm",
    "org": "firm",
    "fund": "firm",
    "investmentfirm": "firm",
    "familyoffice": "firm",
    "role": "role",
    "title": "role",
    "jobtitle": "role",
    "position": "role",
    "email": "email",
    "emailaddress": "email",
    "contactemail": "email",
    "linkedin": "linkedin",
    "linkedinurl": "linkedin",
    "linkedinprofile": "linkedin",
    "location": "location",
    "city": "location",
    "hq": "location",
    "school": "school",
    "university": "school",
    "almamater": "school",
    "jobhistory": "job_history",
    "jobhistoryraw": "job_history",
    "experience": "job_history",
    "education": "education",
    "educationraw": "education",
    "connections": "connections",
    "personalconnections": "connections",
    "mutualconnections": "connections",
}

SOURCE_FIELD_MAPS: dict[str, dict[str, str]] = {
    "linkedin": {
        "profileurl": "linkedin",
        "publicprofileurl": "linkedin",
        "headline": "role",
        "occupation": "role",
        "positions": "job_history",
        "educations": "education",
        "geolocation": "location",
    },
    "airtable": {
        "lpname": "name",
        "lpfirm": "firm",
        "familyofficename": "firm",
        "linkedinlink": "linkedin",
    },
    "firecrawl": {
        "personname": "name",
        "profilename": "name",
        "teammember": "name",
        "profilelink": "linkedin",
        "sourceorganization": "firm",
    },
    "csv": {},
    "manual": {
        "jobhistory": "job_history",
    },
}

# Plausibility factor applied on top of the source trust weight.
FIELD_PLAUSIBILITY: dict[str, float] = {
    "name": 1.0,
    "firm": 0.9,
    "role": 0.8,
    "email": 1.0,
    "linkedin": 1.0,
    "location": 0.8,
    "school": 0.8,
    "job_history": 0.9,
    "education": 0.9,
    "connections": 0.8,
}
# Unparsed JSON payloads are less certain than structured lists.
RAW_PAYLOAD_PLAUSIBILITY = 0.7
SINGLE_TOKEN_NAME_PLAUSIBILITY = 0.8
OVERALL_WEIGHTS: dict[str, float] = {"name": 0.5, "firm": 0.3, "linkedin": 0.2}

_EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
_LINKEDIN_RE = re.compile(r"https?://(?:[a-z]{2,3}\.)?linkedin\.com/in/([A-Za-z0-9_%-]+)/?", re.IGNORECASE)
_LINKEDIN_HANDLE_RE = re.compile(r"^[A-Za-z0-9_-]{3,100}$")


def _header_key(value: Any) -> str:
    return re.sub(r"[^a-z0-9]+", "", str(value).lower())


def field_map_for_source(source_type: str | None) -> dict[str, str]:
    mapping = dict(GENERIC_FIELD_MAP)
    mapping.update(SOURCE_FIELD_MAPS.get((source_type or "").strip().lower(), {}))
    return mapping


def normalize_email(value: Any) -> str | None:
    text = normalize_text(value).lower()
    if text.startswith("mailto:"):
        text = text[len("mailto:"):]
    if not _EMAIL_RE.fullmatch(text):
        return None
    return text


def normalize_linkedin_url(value: Any) -> str | None:
    text = normalize_text(value)
    if not text:
        return None
    match = _LINKEDIN_RE.search(text)
    if match:
        return f"https://www.linkedin.com/in/{match.group(1).lower()}/"
    if "/" not in text and _LINKEDIN_HANDLE_RE.fullmatch(text):
        return f"https://www.linkedin.com/in/{text.lower()}/"
    return None


def _normalize_payload(value: Any) -> list[dict[str, Any]] | str | None:
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        return text or None
    if isinstance(value, Mapping):
        return [dict(value)]
    if isinstance(value, list):
        return [dict(item) if isinstance(item, Mapping) else {"value": item} for item in value]
    return str(value)


def _normalize_connections(value: Any, source_type: str) -> tuple[list[MutualConnection] | None, int]:
    if value is None:
        return None, 0
    items = value if isinstance(value, list) else [value]
    connections: list[MutualConnection] = []
    dropped = 0
    for item in items:
        if isinstance(item, str):
            name = normalize_person_name(item)
            if name:
                connections.append(MutualConnection(name=name, source=source_type))
            else:
                dropped += 1
            continue
        if not isinstance(item, Mapping):
            dropped += 1
            continue
        name = normalize_person_name(item.get("name") or item.get("fullName") or item.get("full_name"))
        if not name:
            dropped += 1
            continue
        mutual_count = item.get("mutual_count", item.get("mutualCount"))
        try:
            mutual_count = int(mutual_count) if mutual_count is not None else None
        except (TypeError, ValueError):
            mutual_count = None
        connections.append(
            MutualConnection(
                name=name,
                profile_url=normalize_linkedin_url(item.get("profile_url") or item.get("profileUrl")),
                headline=normalize_text(item.get("headline") or item.get("title")) or None,
                mutual_count=mutual_count,
                source=normalize_text(item.get("source")) or source_type,
            )
        )
    return (connections or None), dropped


def normalize(
    raw_record: Mapping[str, Any],
    source_metadata: SourceMetadata | Mapping[str, Any] | None = None,
    *,
    trust_weights: Mapping[str, float] | None = None,
) -> tuple[CanonicalContact, dict[str, float]]:
    """Map one raw record onto the canonical contact shape.

    Keys are matched through the explicit field map for the record's source
    type; anything the map does not name is dropped and listed in
    ``dropped_fields``. Returns the contact together with its per-field
    confidence (also stored on ``contact.confidence``). Never raises for a
    sparse record: missing fields come back as ``None``.
    """
    if source_metadata is None:
        source = SourceMetadata()
    elif isinstance(source_metadata, SourceMetadata):
        source = source_metadata
    else:
        source = SourceMetadata.model_validate(dict(source_metadata))
    source_type = normalize_text(source.type).lower() or "manual"

    if trust_weights is None:
        trust = get_settings().trust_weight(source_type)
    else:
        trust = float(trust_weights.get(source_type, trust_weights.get("default", 0.6)))

    field_map = field_map_for_source(source_type)
    values: dict[str, Any] = {}
    dropped_fields: list[str] = []
    for raw_key, raw_value in (raw_record or {}).items():
        target = field_map.get(_header_key(raw_key))
        if target is None:
            dropped_fields.append(str(raw_key))
            continue
        if raw_value is None or (isinstance(raw_value, str) and not raw_value.strip()):
            continue
        # First mapped header wins when a record carries aliases of one field.
        values.setdefault(target, raw_value)

    name = normalize_person_name(values.get("name"))
    if not name:
        joined = " ".join(
            part for part in (normalize_text(values.get("first_name")), normalize_text(values.get("last_name"))) if part
        )
        name = normalize_person_name(joined)

    email = normalize_email(values.get("email"))
    if values.get("email") is not None and email is None:
        dropped_fields.append("email")
    linkedin = normalize_linkedin_url(values.get("linkedin"))
    if values.get("linkedin") is not None and linkedin is None:
        dropped_fields.append("linkedin")

    connections, dropped_connections = _normalize_connections(values.get("connections"), source_type)
    if dropped_connections:
        dropped_fields.append(f"connections[{dropped_connections}]")

    fields: dict[str, Any] = {
        "name": name,
        "firm": normalize_firm_name(values.get("firm")),
        "role": normalize_text(values.get("role")) or None,
        "email": email,
        "linkedin": linkedin,
        "location": normalize_text(values.get("location")) or None,
        "school": normalize_text(values.get("school")) or None,
        "job_history": _normalize_payload(values.get("job_history")),
        "education": _normalize_payload(values.get("education")),
        "connections": connections,
    }

    confidence: dict[str, float] = {}
    for field in CANONICAL_FIELDS:
        value = fields[field]
        if value is None:
            confidence[field] = 0.0
            continue
        plausibility = FIELD_PLAUSIBILITY[field]
        if field == "name" and len(value.split()) < 2:
            plausibility = SINGLE_TOKEN_NAME_PLAUSIBILITY
        elif field in {"job_history", "education"} and isinstance(value, str):
            plausibility = RAW_PAYLOAD_PLAUSIBILITY
        confidence[field] = round(trust * plausibility, 4)
    confidence["overall"] = round(sum(confidence[key] * weight for key, weight in OVERALL_WEIGHTS.items()), 4)

    if dropped_fields:
        logger.debug(
            "normalize_dropped_fields",
            extra={"source_type": source_type, "dropped_fields": dropped_fields[:20]},
        )

    contact = CanonicalContact(
        **fields,
        source=SourceMetadata(type=source_type, filename=source.filename),
        confidence=confidence,
        dropped_fields=dropped_fields,
    )
    return contact, dict(confidence)


def normalize_many(
    raw_records: list[Mapping[str, Any]],
    source_metadata: SourceMetadata | Mapping[str, Any] | None = None,
    *,
    trust_weights: Mapping[str, float] | None = None,
) -> list[tuple[CanonicalContact, dict[str, float]]]:
    return [normalize(record, source_metadata, trust_weights=trust_weights) for record in raw_records]
