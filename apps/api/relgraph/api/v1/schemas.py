from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


NodeVariant = Literal["Person", "Company", "School"]
RelationshipType = Literal["WORKED_AT", "ATTENDED_SCHOOL", "CONNECTED_VIA_MUTUAL"]

NODE_VARIANTS: tuple[str, ...] = ("Person", "Company", "School")
RELATIONSHIP_TYPES: tuple[str, ...] = ("WORKED_AT", "ATTENDED_SCHOOL", "CONNECTED_VIA_MUTUAL")


class SourceMetadata(BaseModel):
    type: str = "manual"
    filename: str | None = None


class MutualConnection(BaseModel):
    name: str
    profile_url: str | None = None
    headline: str | None = None
    mutual_count: int | None = None
    source: str | None = None


class CanonicalContact(BaseModel):
    name: str | None = None
    firm: str | None = None
    role: str | None = None
    email: str | None = None
    linkedin: str | None = None
    location: str | None = None
    school: str | None = None
    job_history: list[dict[str, Any]] | str | None = None
    education: list[dict[str, Any]] | str | None = None
    connections: list[MutualConnection] | None = None
    source: SourceMetadata = Field(default_factory=SourceMetadata)
    confidence: dict[str, float] = Field(default_factory=dict)
    dropped_fields: list[str] = Field(default_factory=list)


class JobHistoryRecord(BaseModel):
    person_name: str | None = None
    person_id: str | None = None
    firm: str | None = None
    jobs: list[dict[str, Any]] | str = Field(default_factory=list)
    education: list[dict[str, Any]] | str | None = None
    source: SourceMetadata | None = None
    source_confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class GraphNode(BaseModel):
    kind: Literal["node"] = "node"
    id: str
    variant: NodeVariant
    name: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    sources: list[str] = Field(default_factory=list)
    properties: dict[str, Any] = Field(default_factory=dict)


class GraphRelationship(BaseModel):
    kind: Literal["relationship"] = "relationship"
    id: str
    type: RelationshipType
    from_id: str
    to_id: str
    start_year: int | None = None
    end_year: int | None = None
    is_current: bool = False
    source_type: str | None = None
    source_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    sources: list[str] = Field(default_factory=list)
    properties: dict[str, Any] = Field(default_factory=dict)


class GraphSnapshot(BaseModel):
    nodes: list[GraphNode] = Field(default_factory=list)
    relationships: list[GraphRelationship] = Field(default_factory=list)


class Connection(BaseModel):
    person_id: str
    name: str
    via_person_id: str
    mutual_count: int | None = None
    source: str | None = None


class SkippedRecord(BaseModel):
    record_ref: str
    reason: str
    detail: dict[str, Any] = Field(default_factory=dict)


class ConflictRecord(BaseModel):
    entity_id: str
    field: str
    kept_value: Any = None
    kept_source: str | None = None
    rejected_value: Any = None
    rejected_source: str | None = None


class ConstructionReport(BaseModel):
    contacts_seen: int = 0
    nodes_created: int = 0
    nodes_merged: int = 0
    relationships_created: int = 0
    relationships_merged: int = 0
    skipped: list[SkippedRecord] = Field(default_factory=list)
    conflicts: list[ConflictRecord] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    dry_run: bool = False


class ConstructionResult(BaseModel):
    graph: GraphSnapshot = Field(default_factory=GraphSnapshot)
    connections: list[Connection] = Field(default_factory=list)
    report: ConstructionReport = Field(default_factory=ConstructionReport)


class ConstructOptions(BaseModel):
    dry_run: bool = False
    default_source_type: str = "manual"
    default_source_confidence: float | None = Field(default=None, ge=0.0, le=1.0)


PathElement = Annotated[Union[GraphNode, GraphRelationship], Field(discriminator="kind")]


class PathResult(BaseModel):
    path: list[PathElement] = Field(default_factory=list)
    path_id: str
    hops: int
    confidence: float = Field(ge=0.0, le=1.0)
    sources: list[str] = Field(default_factory=list)
    recommended_action: str
    strongest_link: str | None = None


class NormalizeRequest(BaseModel):
    records: list[dict[str, Any]] = Field(default_factory=list)
    source: SourceMetadata = Field(default_factory=SourceMetadata)


class NormalizedRecord(BaseModel):
    contact: CanonicalContact
    field_confidence: dict[str, float] = Field(default_factory=dict)


class NormalizeResponse(BaseModel):
    contacts: list[NormalizedRecord] = Field(default_factory=list)


class ConstructGraphRequest(BaseModel):
    contacts: list[CanonicalContact] = Field(default_factory=list)
    job_histories: list[JobHistoryRecord] = Field(default_factory=list)
    options: ConstructOptions = Field(default_factory=ConstructOptions)


class ConstructEnqueuedResponse(BaseModel):
    job_id: str
    status: str = "enqueued"


class IngestRecordsRequest(BaseModel):
    records: list[dict[str, Any]] = Field(default_factory=list)
    source: SourceMetadata = Field(default_factory=SourceMetadata)
    options: ConstructOptions = Field(default_factory=ConstructOptions)


class IngestRecordsResponse(BaseModel):
    batch_id: str
    run_id: str | None = None
    job_id: str | None = None
    status: str
    result: ConstructionResult | None = None


class FindPathsRequest(BaseModel):
    from_id: str
    to_id: str
    max_hops: int | None = Field(default=None, ge=1, le=8)
    limit: int | None = Field(default=None, ge=1, le=500)
    min_confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class FindPathsResponse(BaseModel):
    from_id: str
    to_id: str
    paths: list[PathResult] = Field(default_factory=list)


class ConstructionRunOut(BaseModel):
    run_id: str
    status: str
    report_json: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime | None = None
    finished_at: datetime | None = None
