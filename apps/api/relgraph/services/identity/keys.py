from __future__ import annotations

import re
import unicodedata
from typing import Any


_HONORIFIC_RE = re.compile(r"^(?:mr|mrs|ms|mx|dr|prof)\.?\s+", re.IGNORECASE)
_LEGAL_SUFFIX_RE = re.compile(
    r"[,\s]+(?:llc|l\.l\.c\.|llp|lp|l\.p\.|inc\.?|incorporated|ltd\.?|limited|corp\.?|corporation|gmbh|plc)$",
    re.IGNORECASE,
)

# Explicit organization aliases. Only names listed here collapse onto one node;
# everything else keeps its own identity even when it looks similar.
ORG_ALIASES: dict[str, str] = {
    "a16z": "Andreessen Horowitz",
    "andreessen_horowitz": "Andreessen Horowitz",
    "hbs": "Harvard Business School",
    "harvard_business_school": "Harvard Business School",
    "mit": "Massachusetts Institute of Technology",
    "massachusetts_institute_of_technology": "Massachusetts Institute of Technology",
    "gsb": "Stanford Graduate School of Business",
    "stanford_gsb": "Stanford Graduate School of Business",
    "stanford_graduate_school_of_business": "Stanford Graduate School of Business",
    "upenn": "University of Pennsylvania",
    "university_of_pennsylvania": "University of Pennsylvania",
}

_ID_PREFIX = {
    "Person": "person",
    "Company": "company",
    "School": "school",
}


def normalize_text(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return " ".join(value.split()).strip()


def slugify(value: Any) -> str:
    text = normalize_text(value)
    if not text:
        return ""
    folded = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "_", folded.lower()).strip("_")


def normalize_person_name(value: Any) -> str | None:
    text = normalize_text(value)
    while True:
        stripped = _HONORIFIC_RE.sub("", text)
        if stripped == text:
            break
        text = stripped
    return text or None


def normalize_firm_name(value: Any) -> str | None:
    text = normalize_text(value)
    while True:
        stripped = _LEGAL_SUFFIX_RE.sub("", text).strip(" ,")
        if stripped == text:
            break
        text = stripped
    return text or None


def canonical_org_name(value: Any) -> str | None:
    name = normalize_firm_name(value)
    if not name:
        return None
    return ORG_ALIASES.get(slugify(name), name)


def person_id(name: Any, firm: Any = None) -> str:
    person_slug = slugify(normalize_person_name(name))
    if not person_slug:
        raise ValueError("person identity requires a name")
    firm_slug = slugify(canonical_org_name(firm))
    if firm_slug:
        return f"person_{person_slug}__{firm_slug}"
    return f"person_{person_slug}"


def org_id(variant: str, name: Any) -> str:
    prefix = _ID_PREFIX.get(variant)
    if prefix is None or variant == "Person":
        raise ValueError(f"unsupported organization variant: {variant}")
    org_slug = slugify(canonical_org_name(name))
    if not org_slug:
        raise ValueError(f"{variant.lower()} identity requires a name")
    return f"{prefix}_{org_slug}"


def relationship_id(from_id: str, to_id: str, rel_type: str, start_year: int | None = None) -> str:
    base = f"{from_id}_{to_id}_{rel_type}"
    if start_year is not None:
        return f"{base}_{int(start_year)}"
    return base
