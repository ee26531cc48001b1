"""Value objects shared by the matcher, the review queue and the match log."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from casesync.domain.state import MatchConfidence, MatchMethod

if TYPE_CHECKING:
    from collections.abc import Mapping


class ReviewReason(StrEnum):
    NO_CANDIDATES = "no_candidates"
    LOW_CONFIDENCE = "low_confidence"
    LLM_PARSE_ERROR = "llm_parse_error"
    API_ERROR = "api_error"


class ReviewStatus(StrEnum):
    PENDING = "pending"
    RESOLVED = "resolved"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class MatchResult:
    ticket_id: int | None
    method: MatchMethod
    confidence: MatchConfidence | None = None
    needs_review: bool = False

    @classmethod
    def unmatched(cls, *, needs_review: bool) -> MatchResult:
        return cls(ticket_id=None, method=MatchMethod.NONE, needs_review=needs_review)


@dataclass(eq=False)
class ReviewQueueItem:
    identity_key: str
    record_payload: Mapping[str, Any]
    reason: ReviewReason
    candidates: list[dict[str, Any]] | None = None
    status: ReviewStatus = ReviewStatus.PENDING
    resolved_ticket_id: int | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    id: int | None = None

    def resolve(self, *, ticket_id: int | None, resolved_by: str) -> None:
        self.status = ReviewStatus.RESOLVED if ticket_id is not None else ReviewStatus.SKIPPED
        self.resolved_ticket_id = ticket_id
        self.resolved_by = resolved_by
        self.resolved_at = datetime.now(tz=UTC)


@dataclass(eq=False)
class MatchLogEntry:
    identity_key: str
    method: MatchMethod
    candidate_count: int | None = 0
    selected_ticket_id: int | None = None
    confidence: MatchConfidence | None = None
    reasoning: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    duration_ms: int | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    id: int | None = None


@dataclass(frozen=True, slots=True)
class ReviewStats:
    pending: int = 0
    resolved: int = 0
    skipped: int = 0
