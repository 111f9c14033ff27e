from __future__ import annotations

from fastapi import APIRouter

from relgraph.api.v1.schemas import NormalizedRecord, NormalizeRequest, NormalizeResponse
from relgraph.services.ingest.normalize import normalize_many

router = APIRouter(tags=["normalize"])


@router.post("/normalize", response_model=NormalizeResponse)
def normalize_records(payload: NormalizeRequest) -> NormalizeResponse:
    normalized = normalize_many(payload.records, payload.source)
    return NormalizeResponse(
        contacts=[NormalizedRecord(contact=contact, field_confidence=confidence) for contact, confidence in normalized]
    )
