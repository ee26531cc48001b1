"""State rows, change objects and run logs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .records import NormalizedRecord, RecordType


class MatchMethod(StrEnum):
    CACHED = "cached"
    EXTERNAL_ID = "external_id"
    HEURISTIC = "heuristic"
    MANUAL = "manual"
    NONE = "none"


class MatchConfidence(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True, slots=True)
class TicketMatch:
    ticket_id: int
    method: MatchMethod
    confidence: MatchConfidence | None = None
    matched_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class PermitLinks:
    """External IDs resolved for a permit on its last successful push."""

    permit_id: int | None = None
    type_id: int | None = None
    subtype_id: int | None = None
    status_id: int | None = None


@dataclass(frozen=True, slots=True)
class StateRow:
    identity_key: str
    signature: str
    last_seen_at: datetime
    created_at: datetime
    ticket_match: TicketMatch | None = None
    permit_links: PermitLinks | None = None


@dataclass(frozen=True, slots=True)
class Observation:
    """A deduplicated record together with its computed signature."""

    record: NormalizedRecord
    signature: str

    @property
    def identity_key(self) -> str:
        return self.record.identity_key


@dataclass(frozen=True, slots=True)
class Change:
    identity_key: str
    record: NormalizedRecord
    previous_signature: str | None
    signature: str
    is_new: bool
    permit_links: PermitLinks | None = None


class RunStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(eq=False)
class RunLog:
    """Audit row for one reconciliation run of one record type."""

    record_type: RecordType
    started_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    status: RunStatus = RunStatus.RUNNING
    completed_at: datetime | None = None
    total_records: int = 0
    changed_records: int = 0
    errors: int = 0
    error_message: str | None = None
    id: int | None = None

    def complete(
        self,
        *,
        total: int,
        changed: int,
        errors: int,
        error_message: str | None = None,
        completed_at: datetime | None = None,
    ) -> None:
        self.total_records = total
        self.changed_records = changed
        self.errors = errors
        self.error_message = error_message
        self.status = RunStatus.FAILED if error_message else RunStatus.COMPLETED
        self.completed_at = completed_at or datetime.now(tz=UTC)
