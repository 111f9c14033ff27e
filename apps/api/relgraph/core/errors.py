from __future__ import annotations

from typing import Any


class RelGraphError(Exception):
    """Base class for errors raised by the graph engine."""


class ValidationError(RelGraphError):
    """A single input record is malformed.

    Raised while resolving one record and caught by the graph constructor,
    which skips the record and lists it in the construction report.
    """

    def __init__(self, reason: str, *, record_ref: str | None = None, detail: dict[str, Any] | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.record_ref = record_ref
        self.detail = detail or {}


class StoreUnavailable(RelGraphError):
    """The graph backend cannot be reached; fatal for the current call."""


class StoreTimeout(StoreUnavailable):
    """The graph backend did not answer within the request timeout."""


class ConflictMerge(RelGraphError):
    """Two sources disagree on an identity-defining field of one entity."""

    def __init__(
        self,
        *,
        entity_id: str,
        field: str,
        kept_value: Any,
        kept_source: str | None,
        rejected_value: Any,
        rejected_source: str | None,
    ) -> None:
        super().__init__(f"conflicting {field} for {entity_id}")
        self.entity_id = entity_id
        self.field = field
        self.kept_value = kept_value
        self.kept_source = kept_source
        self.rejected_value = rejected_value
        self.rejected_source = rejected_source

    def as_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "field": self.field,
            "kept_value": self.kept_value,
            "kept_source": self.kept_source,
            "rejected_value": self.rejected_value,
            "rejected_source": self.rejected_source,
        }
