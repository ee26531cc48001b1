"""Ports for persisting reconciliation state."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Collection, Iterable, Mapping, Sequence

    from casesync.domain.matching.contracts import (
        MatchLogEntry,
        ReviewQueueItem,
        ReviewStats,
    )
    from casesync.domain.records import RecordType
    from casesync.domain.signatures import SignaturePolicy
    from casesync.domain.state import (
        MatchConfidence,
        MatchMethod,
        Observation,
        PermitLinks,
        RunLog,
        StateRow,
    )


@runtime_checkable
class StateRepository(Protocol):
    """Last observed signature and external linkage per identity key."""

    def is_empty(self, record_type: RecordType) -> bool: ...

    def fetch(
        self, record_type: RecordType, identity_keys: Collection[str]
    ) -> Mapping[str, StateRow]: ...

    def get(self, record_type: RecordType, identity_key: str) -> StateRow | None: ...

    def upsert(self, observations: Iterable[Observation], *, policy: SignaturePolicy) -> int: ...

    def record_ticket_match(
        self,
        identity_key: str,
        *,
        ticket_id: int,
        method: MatchMethod,
        confidence: MatchConfidence | None = None,
    ) -> None: ...

    def record_permit_links(self, identity_key: str, links: PermitLinks) -> None: ...


@runtime_checkable
class RunLogRepository(Protocol):
    def add(self, run_log: RunLog) -> None: ...

    def latest(self, record_type: RecordType, *, limit: int = 10) -> Sequence[RunLog]: ...


@runtime_checkable
class ReviewQueueRepository(Protocol):
    def enqueue(self, item: ReviewQueueItem) -> bool:
        """Add ``item`` unless its identity key already has a pending entry."""
        ...

    def has_pending(self, identity_key: str) -> bool: ...

    def get(self, item_id: int) -> ReviewQueueItem | None: ...

    def pending(self, *, limit: int = 50) -> Sequence[ReviewQueueItem]: ...

    def stats(self) -> ReviewStats: ...


@runtime_checkable
class MatchLogRepository(Protocol):
    def add(self, entry: MatchLogEntry) -> None: ...
