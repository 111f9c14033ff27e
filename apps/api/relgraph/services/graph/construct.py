from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from relgraph.api.v1.schemas import (
    CanonicalContact,
    ConflictRecord,
    Connection,
    ConstructionReport,
    ConstructionResult,
    ConstructOptions,
    GraphSnapshot,
    JobHistoryRecord,
    MutualConnection,
    SkippedRecord,
)
from relgraph.core.config import Settings, get_settings
from relgraph.core.errors import ValidationError
from relgraph.db.base import GraphSession, GraphStore
from relgraph.services.graph.merge import MergeOutcome, clamp_confidence
from relgraph.services.graph.records import graph_node, graph_relationship
from relgraph.services.identity.keys import (
    canonical_org_name,
    normalize_person_name,
    org_id,
    person_id,
    relationship_id,
)
from relgraph.services.ingest.normalize import normalize_linkedin_url

logger = logging.getLogger(__name__)

_JOB_ORG_KEYS = ("company", "firm", "organization", "org", "employer", "companyName")
_SCHOOL_ORG_KEYS = ("school", "schoolName", "institution", "university", "organization")
_ROLE_KEYS = ("title", "role", "position", "jobTitle")
_DEGREE_KEYS = ("degree", "degreeName", "field", "fieldOfStudy", "program")
_START_KEYS = ("startYear", "start_year", "startDate", "start_date", "start", "from")
_END_KEYS = ("endYear", "end_year", "endDate", "end_date", "end", "to", "graduationYear", "graduation_year")
_CURRENT_KEYS = ("isCurrent", "is_current", "current")
_CURRENT_MARKERS = {"present", "current", "now", "ongoing", "today"}
_YEAR_RE = re.compile(r"(?<!\d)(19\d{2}|20\d{2}|2100)(?!\d)")


@dataclass
class AffiliationEntry:
    """One job or education line resolved to an organization and a tenure."""

    rel_type: str
    org_variant: str
    org_name: str
    start_year: int | None = None
    end_year: int | None = None
    is_current: bool = False
    role: str | None = None
    degree: str | None = None
    source_confidence: float | None = None


@dataclass
class _FallbackAffiliation:
    """A firm or school taken from the contact's flat fields, written only if no dated entry covers it."""

    entry: AffiliationEntry
    source_type: str
    trust: float
    record_ref: str


@dataclass
class _RunState:
    report: ConstructionReport
    nodes: dict[str, dict[str, Any]] = field(default_factory=dict)
    relationships: dict[str, dict[str, Any]] = field(default_factory=dict)
    connections: dict[tuple[str, str], Connection] = field(default_factory=dict)


def _first_value(entry: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = entry.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def _is_current_marker(value: Any) -> bool:
    return isinstance(value, str) and value.strip().lower() in _CURRENT_MARKERS


def parse_year(value: Any) -> int | None:
    """Pull a four digit year out of ``2015``, ``"2015-06"``, ``"Jan 2015"`` and similar."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 1900 <= value <= 2100 else None
    if isinstance(value, float):
        return parse_year(int(value)) if value.is_integer() else None
    if isinstance(value, dict):
        return parse_year(value.get("year"))
    match = _YEAR_RE.search(str(value))
    if not match:
        return None
    return int(match.group(1))


def parse_payload(value: Any, *, record_ref: str) -> list[dict[str, Any]]:
    """Decode a job history / education payload into a list of entry dicts."""
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        try:
            value = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValidationError(
                "unparseable payload",
                record_ref=record_ref,
                detail={"error": exc.msg, "position": exc.pos},
            ) from exc
    if isinstance(value, dict):
        value = [value]
    if not isinstance(value, list):
        raise ValidationError(
            "payload is not a list of entries",
            record_ref=record_ref,
            detail={"type": type(value).__name__},
        )
    entries: list[dict[str, Any]] = []
    for index, item in enumerate(value):
        if not isinstance(item, dict):
            raise ValidationError(
                "payload entry is not an object",
                record_ref=f"{record_ref}[{index}]",
                detail={"type": type(item).__name__},
            )
        entries.append(item)
    return entries


def resolve_entry(
    raw: dict[str, Any],
    *,
    rel_type: str,
    record_ref: str,
    warnings: list[str],
) -> AffiliationEntry:
    if rel_type == "WORKED_AT":
        org_variant, org_keys = "Company", _JOB_ORG_KEYS
    else:
        org_variant, org_keys = "School", _SCHOOL_ORG_KEYS

    org_name = _first_value(raw, org_keys)
    if not isinstance(org_name, str) or not canonical_org_name(org_name):
        raise ValidationError("entry has no organization name", record_ref=record_ref)

    start_raw = _first_value(raw, _START_KEYS)
    end_raw = _first_value(raw, _END_KEYS)
    start_year = parse_year(start_raw)
    end_year = None if _is_current_marker(end_raw) else parse_year(end_raw)
    current_flag = _first_value(raw, _CURRENT_KEYS)
    is_current = _is_current_marker(end_raw) or current_flag is True or _is_current_marker(current_flag)

    if start_raw is not None and start_year is None:
        warnings.append(f"{record_ref}: start date {start_raw!r} has no recognizable year")
    if end_raw is not None and end_year is None and not _is_current_marker(end_raw):
        warnings.append(f"{record_ref}: end date {end_raw!r} has no recognizable year")

    if is_current and end_year is not None:
        warnings.append(f"{record_ref}: current flag dropped because end year {end_year} was given")
        is_current = False
    if start_year is not None and end_year is not None and start_year > end_year:
        raise ValidationError(
            "start year after end year",
            record_ref=record_ref,
            detail={"start_year": start_year, "end_year": end_year},
        )

    confidence = raw.get("confidence", raw.get("source_confidence"))
    role = _first_value(raw, _ROLE_KEYS) if rel_type == "WORKED_AT" else None
    degree = _first_value(raw, _DEGREE_KEYS) if rel_type == "ATTENDED_SCHOOL" else None
    return AffiliationEntry(
        rel_type=rel_type,
        org_variant=org_variant,
        org_name=canonical_org_name(org_name) or org_name,
        start_year=start_year,
        end_year=end_year,
        is_current=is_current,
        role=str(role).strip() if role is not None else None,
        degree=str(degree).strip() if degree is not None else None,
        source_confidence=clamp_confidence(confidence) if confidence is not None else None,
    )


def _person_key(name: Any, firm: Any, *, record_ref: str) -> str:
    try:
        return person_id(name, firm)
    except ValueError as exc:
        raise ValidationError("record has no person name", record_ref=record_ref) from exc


def _org_key(variant: str, name: str, *, record_ref: str) -> str:
    try:
        return org_id(variant, name)
    except ValueError as exc:
        raise ValidationError(str(exc), record_ref=record_ref) from exc


def _job_history_key(record: JobHistoryRecord, index: int) -> str:
    if record.person_id and record.person_id.strip():
        return record.person_id.strip()
    return _person_key(record.person_name, record.firm, record_ref=f"job_histories[{index}]")


def _snapshot(state: _RunState) -> GraphSnapshot:
    return GraphSnapshot(
        nodes=[graph_node(props) for _, props in sorted(state.nodes.items())],
        relationships=[graph_relationship(props) for _, props in sorted(state.relationships.items())],
    )


class GraphConstructor:
    """Resolve contacts and job histories into graph upserts.

    Every call runs inside one store session. Per-record failures are caught
    and listed in ``report.skipped``; store failures propagate to the caller.
    """

    def __init__(self, store: GraphStore, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    def _default_confidence(self, options: ConstructOptions) -> float:
        if options.default_source_confidence is not None:
            return options.default_source_confidence
        return self.settings.default_source_confidence

    async def construct(
        self,
        contacts: list[CanonicalContact],
        job_histories: list[JobHistoryRecord] | None = None,
        options: ConstructOptions | None = None,
    ) -> ConstructionResult:
        options = options or ConstructOptions()
        job_histories = job_histories or []
        state = _RunState(report=ConstructionReport(contacts_seen=len(contacts), dry_run=options.dry_run))

        store = self.store
        if options.dry_run:
            from relgraph.db.memory.store import InMemoryGraphStore

            store = InMemoryGraphStore()

        histories_by_person: dict[str, list[tuple[int, JobHistoryRecord]]] = {}
        for index, record in enumerate(job_histories):
            try:
                key = _job_history_key(record, index)
            except ValidationError as exc:
                self._skip(state, exc)
                continue
            histories_by_person.setdefault(key, []).append((index, record))

        async with store.session() as session:
            for index, contact in enumerate(contacts):
                try:
                    pid, fallbacks = await self._write_contact(session, state, contact, options, index)
                except ValidationError as exc:
                    self._skip(state, exc)
                    continue
                for history_index, record in histories_by_person.pop(pid, []):
                    await self._write_job_history(session, state, pid, record, options, history_index)
                await self._write_fallbacks(session, state, pid, fallbacks, options)

            # Histories for people that no contact in this batch introduced.
            for pid, records in histories_by_person.items():
                for history_index, record in records:
                    await self._write_orphan_history(session, state, pid, record, options, history_index)

        result = ConstructionResult(
            graph=_snapshot(state),
            connections=sorted(state.connections.values(), key=lambda item: (item.via_person_id, item.person_id)),
            report=state.report,
        )
        report = state.report
        logger.info(
            "graph_construction_completed",
            extra={
                "contacts_seen": report.contacts_seen,
                "nodes_created": report.nodes_created,
                "nodes_merged": report.nodes_merged,
                "relationships_created": report.relationships_created,
                "relationships_merged": report.relationships_merged,
                "skipped": len(report.skipped),
                "conflicts": len(report.conflicts),
                "dry_run": options.dry_run,
            },
        )
        return result

    def _skip(self, state: _RunState, exc: ValidationError) -> None:
        record_ref = exc.record_ref or "unknown"
        state.report.skipped.append(SkippedRecord(record_ref=record_ref, reason=exc.reason, detail=exc.detail))
        logger.warning("construction_record_skipped", extra={"record_ref": record_ref, "reason": exc.reason})

    def _record_node(self, state: _RunState, outcome: MergeOutcome) -> None:
        if outcome.created:
            state.report.nodes_created += 1
        else:
            state.report.nodes_merged += 1
        for conflict in outcome.conflicts:
            state.report.conflicts.append(ConflictRecord(**conflict.as_dict()))
            logger.warning(
                "construction_identity_conflict",
                extra={"entity_id": conflict.entity_id, "field": conflict.field},
            )
        state.nodes[outcome.properties["id"]] = outcome.properties

    def _record_relationship(self, state: _RunState, outcome: MergeOutcome) -> None:
        if outcome.created:
            state.report.relationships_created += 1
        else:
            state.report.relationships_merged += 1
        state.relationships[outcome.properties["id"]] = outcome.properties

    async def _write_contact(
        self,
        session: GraphSession,
        state: _RunState,
        contact: CanonicalContact,
        options: ConstructOptions,
        index: int,
    ) -> tuple[str, list[_FallbackAffiliation]]:
        record_ref = f"contacts[{index}]"
        name = normalize_person_name(contact.name)
        pid = _person_key(name, contact.firm, record_ref=record_ref)
        source_type = (contact.source.type if contact.source else None) or options.default_source_type
        trust = self.settings.trust_weight(source_type)
        confidence = contact.confidence.get("overall")
        if confidence is None:
            confidence = self._default_confidence(options)

        outcome = await session.upsert_node(
            "Person",
            pid,
            {
                "name": name,
                "confidence": confidence,
                "source_type": source_type,
                "trust": trust,
                "firm": canonical_org_name(contact.firm),
                "role": contact.role,
                "linkedin": contact.linkedin,
                "email": contact.email,
                "location": contact.location,
            },
        )
        self._record_node(state, outcome)

        jobs = self._resolve_payload(
            state, contact.job_history, "WORKED_AT", f"{record_ref}.job_history"
        )
        schools = self._resolve_payload(
            state, contact.education, "ATTENDED_SCHOOL", f"{record_ref}.education"
        )
        entries = jobs + schools

        fallbacks: list[_FallbackAffiliation] = []
        firm_name = canonical_org_name(contact.firm)
        if firm_name:
            fallbacks.append(
                _FallbackAffiliation(
                    entry=AffiliationEntry(
                        rel_type="WORKED_AT",
                        org_variant="Company",
                        org_name=firm_name,
                        is_current=True,
                        role=contact.role,
                        source_confidence=contact.confidence.get("firm"),
                    ),
                    source_type=source_type,
                    trust=trust,
                    record_ref=f"{record_ref}.firm",
                )
            )
        school_name = canonical_org_name(contact.school)
        if school_name:
            fallbacks.append(
                _FallbackAffiliation(
                    entry=AffiliationEntry(
                        rel_type="ATTENDED_SCHOOL",
                        org_variant="School",
                        org_name=school_name,
                        source_confidence=contact.confidence.get("school"),
                    ),
                    source_type=source_type,
                    trust=trust,
                    record_ref=f"{record_ref}.school",
                )
            )

        for position, entry in enumerate(entries):
            await self._write_affiliation(
                session,
                state,
                pid,
                entry,
                source_type=source_type,
                trust=trust,
                default_confidence=self._default_confidence(options),
                record_ref=f"{record_ref}.affiliations[{position}]",
            )

        for position, connection in enumerate(contact.connections or []):
            try:
                await self._write_connection(
                    session,
                    state,
                    pid,
                    connection,
                    source_type=source_type,
                    default_confidence=self._default_confidence(options),
                    record_ref=f"{record_ref}.connections[{position}]",
                )
            except ValidationError as exc:
                self._skip(state, exc)
        return pid, fallbacks

    async def _write_fallbacks(
        self,
        session: GraphSession,
        state: _RunState,
        pid: str,
        fallbacks: list[_FallbackAffiliation],
        options: ConstructOptions,
    ) -> None:
        for fallback in fallbacks:
            entry = fallback.entry
            try:
                oid = _org_key(entry.org_variant, entry.org_name, record_ref=fallback.record_ref)
            except ValidationError as exc:
                self._skip(state, exc)
                continue
            # Any edge this run wrote from the person to the same organization already covers it.
            if any(
                rel.get("type") == entry.rel_type and rel.get("from_id") == pid and rel.get("to_id") == oid
                for rel in state.relationships.values()
            ):
                continue
            await self._write_affiliation(
                session,
                state,
                pid,
                entry,
                source_type=fallback.source_type,
                trust=fallback.trust,
                default_confidence=self._default_confidence(options),
                record_ref=fallback.record_ref,
            )

    def _resolve_payload(
        self, state: _RunState, payload: Any, rel_type: str, record_ref: str
    ) -> list[AffiliationEntry]:
        try:
            raw_entries = parse_payload(payload, record_ref=record_ref)
        except ValidationError as exc:
            self._skip(state, exc)
            return []
        entries: list[AffiliationEntry] = []
        for position, raw in enumerate(raw_entries):
            try:
                entries.append(
                    resolve_entry(
                        raw,
                        rel_type=rel_type,
                        record_ref=f"{record_ref}[{position}]",
                        warnings=state.report.warnings,
                    )
                )
            except ValidationError as exc:
                self._skip(state, exc)
        return entries

    async def _write_affiliation(
        self,
        session: GraphSession,
        state: _RunState,
        pid: str,
        entry: AffiliationEntry,
        *,
        source_type: str,
        trust: float,
        default_confidence: float,
        record_ref: str,
    ) -> None:
        try:
            oid = _org_key(entry.org_variant, entry.org_name, record_ref=record_ref)
            confidence = entry.source_confidence if entry.source_confidence is not None else default_confidence
            org_outcome = await session.upsert_node(
                entry.org_variant,
                oid,
                {
                    "name": entry.org_name,
                    "confidence": confidence,
                    "source_type": source_type,
                    "trust": trust,
                },
            )
            self._record_node(state, org_outcome)

            attrs: dict[str, Any] = {
                "id": relationship_id(pid, oid, entry.rel_type, entry.start_year),
                "source_type": source_type,
                "source_confidence": confidence,
                "trust": trust,
                "start_year": entry.start_year,
                "end_year": entry.end_year,
                "is_current": entry.is_current,
            }
            if entry.rel_type == "WORKED_AT":
                attrs["role"] = entry.role
            else:
                attrs["degree"] = entry.degree
            rel_outcome = await session.upsert_relationship(entry.rel_type, pid, oid, attrs)
            self._record_relationship(state, rel_outcome)
        except ValidationError as exc:
            self._skip(state, exc)

    async def _write_connection(
        self,
        session: GraphSession,
        state: _RunState,
        pid: str,
        connection: MutualConnection,
        *,
        source_type: str,
        default_confidence: float,
        record_ref: str,
    ) -> None:
        name = normalize_person_name(connection.name)
        cid = _person_key(name, None, record_ref=record_ref)
        if cid == pid:
            raise ValidationError("connection points back at its own contact", record_ref=record_ref)
        connection_source = connection.source or source_type
        trust = self.settings.trust_weight(connection_source)
        node_outcome = await session.upsert_node(
            "Person",
            cid,
            {
                "name": name,
                "confidence": default_confidence,
                "source_type": connection_source,
                "trust": trust,
                "linkedin": normalize_linkedin_url(connection.profile_url),
                "headline": connection.headline,
            },
        )
        self._record_node(state, node_outcome)

        rel_outcome = await session.upsert_relationship(
            "CONNECTED_VIA_MUTUAL",
            pid,
            cid,
            {
                "id": relationship_id(pid, cid, "CONNECTED_VIA_MUTUAL"),
                "source_type": connection_source,
                "source_confidence": default_confidence,
                "trust": trust,
                "mutual_count": connection.mutual_count,
            },
        )
        self._record_relationship(state, rel_outcome)
        state.connections[(pid, cid)] = Connection(
            person_id=cid,
            name=name or cid,
            via_person_id=pid,
            mutual_count=rel_outcome.properties.get("mutual_count"),
            source=connection_source,
        )

    def _history_source(self, record: JobHistoryRecord, options: ConstructOptions) -> tuple[str, float, float]:
        source_type = (record.source.type if record.source else None) or options.default_source_type
        confidence = record.source_confidence
        if confidence is None:
            confidence = self._default_confidence(options)
        return source_type, self.settings.trust_weight(source_type), confidence

    async def _write_job_history(
        self,
        session: GraphSession,
        state: _RunState,
        pid: str,
        record: JobHistoryRecord,
        options: ConstructOptions,
        index: int,
    ) -> None:
        record_ref = f"job_histories[{index}]"
        source_type, trust, confidence = self._history_source(record, options)
        entries = self._resolve_payload(state, record.jobs, "WORKED_AT", f"{record_ref}.jobs")
        entries += self._resolve_payload(
            state, record.education, "ATTENDED_SCHOOL", f"{record_ref}.education"
        )
        for position, entry in enumerate(entries):
            await self._write_affiliation(
                session,
                state,
                pid,
                entry,
                source_type=source_type,
                trust=trust,
                default_confidence=confidence,
                record_ref=f"{record_ref}.affiliations[{position}]",
            )

    async def _write_orphan_history(
        self,
        session: GraphSession,
        state: _RunState,
        pid: str,
        record: JobHistoryRecord,
        options: ConstructOptions,
        index: int,
    ) -> None:
        if record.person_name:
            source_type, trust, confidence = self._history_source(record, options)
            outcome = await session.upsert_node(
                "Person",
                pid,
                {
                    "name": normalize_person_name(record.person_name),
                    "confidence": confidence,
                    "source_type": source_type,
                    "trust": trust,
                    "firm": canonical_org_name(record.firm),
                },
            )
            self._record_node(state, outcome)
        elif await session.get_node(pid) is None:
            self._skip(
                state,
                ValidationError(
                    "job history references unknown person",
                    record_ref=f"job_histories[{index}]",
                    detail={"person_id": pid},
                ),
            )
            return
        await self._write_job_history(session, state, pid, record, options, index)


async def construct_graph(
    contacts: list[CanonicalContact],
    job_histories: list[JobHistoryRecord] | None = None,
    options: ConstructOptions | None = None,
    *,
    store: GraphStore,
    settings: Settings | None = None,
) -> ConstructionResult:
    return await GraphConstructor(store, settings).construct(contacts, job_histories, options)
