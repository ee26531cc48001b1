"""Run one reconciliation of a report snapshot against stored state.

A run opens a run log, then takes one of two paths:

* initial sync, when no state exists yet for the record type: all records are
  stored at once and, for permits, bulk-created externally;
* incremental sync: records are diffed against stored state and every change is
  handed to the record type's handler one at a time.

Both paths end with a single upsert of the whole deduplicated batch so that
``last_seen_at`` advances for unchanged records too.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, ClassVar

from casesync.domain.diff import deduplicate, diff_records, observe
from casesync.domain.state import RunLog

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping, Sequence

    from casesync.domain.ports.unit_of_work import SyncUnitOfWork
    from casesync.domain.records import NormalizedRecord, RecordType
    from casesync.domain.signatures import SignaturePolicy
    from casesync.domain.state import Change, Observation, PermitLinks

log = logging.getLogger(__name__)

SUMMARY_EXAMPLES = 10


class SyncMode(StrEnum):
    INITIAL = "initial"
    INCREMENTAL = "incremental"


@dataclass(frozen=True, slots=True)
class InitialSyncResult:
    changed: int
    errors: int = 0
    permit_links: Mapping[str, PermitLinks] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class RunSummary:
    record_type: RecordType
    mode: SyncMode
    dry_run: bool
    total: int
    changed: int
    errors: int
    run_id: int | None = None


class ChangeHandler(ABC):
    """Business rules applied to the changes of one record type."""

    record_type: ClassVar[RecordType]

    @abstractmethod
    async def apply(self, change: Change) -> PermitLinks | None:
        """Perform the external action for one change.

        Permit handlers return the IDs the ticketing system assigned. They are
        written once the state rows exist.
        """

    async def initial_sync(self, observations: Sequence[Observation]) -> InitialSyncResult | None:
        """Push a first full snapshot externally. ``None`` means state-only."""

        _ = observations
        return None

    def describe(self, change: Change) -> str:
        previous = change.previous_signature if change.previous_signature is not None else "new"
        return f"{change.identity_key}: {previous} -> {change.signature}"


@dataclass(slots=True)
class _Counts:
    total: int
    changed: int = 0
    errors: int = 0


class ReconciliationDriver:
    def __init__(
        self,
        *,
        uow: SyncUnitOfWork,
        handler: ChangeHandler,
        policy: SignaturePolicy,
        dry_run: bool,
    ) -> None:
        if handler.record_type != policy.record_type:
            raise ValueError(
                f"Handler for {handler.record_type} cannot use a {policy.record_type} policy"
            )
        self._uow = uow
        self._handler = handler
        self._policy = policy
        self.dry_run = dry_run

    @property
    def record_type(self) -> RecordType:
        return self._policy.record_type

    async def run(self, records: Sequence[NormalizedRecord]) -> RunSummary:
        repositories = self._uow.repositories
        run_log = RunLog(record_type=self.record_type)
        repositories.run_logs.add(run_log)
        self._uow.commit()

        counts = _Counts(total=len(records))
        log.info(
            "Reconciling %d %s records%s",
            counts.total,
            self.record_type,
            " (dry run)" if self.dry_run else "",
        )
        try:
            if repositories.states.is_empty(self.record_type):
                mode = SyncMode.INITIAL
                await self._initial_sync(records, counts)
            else:
                mode = SyncMode.INCREMENTAL
                await self._incremental_sync(records, counts)
        except Exception as exc:
            self._record_failure(run_log, counts, exc)
            raise

        run_log.complete(total=counts.total, changed=counts.changed, errors=counts.errors)
        self._uow.commit()
        log.info(
            "Finished %s %s sync: %d records, %d changed, %d errors",
            mode,
            self.record_type,
            counts.total,
            counts.changed,
            counts.errors,
        )
        return RunSummary(
            record_type=self.record_type,
            mode=mode,
            dry_run=self.dry_run,
            total=counts.total,
            changed=counts.changed,
            errors=counts.errors,
            run_id=run_log.id,
        )

    async def _initial_sync(self, records: Sequence[NormalizedRecord], counts: _Counts) -> None:
        observations = deduplicate(observe(records, self._policy), self._policy)
        log.info(
            "No stored %s state, populating %d records without diffing",
            self.record_type,
            len(observations),
        )
        result = await self._dispatch(
            lambda: self._handler.initial_sync(observations),
            f"initial {self.record_type} export of {len(observations)} records",
        )

        states = self._uow.repositories.states
        states.upsert(observations, policy=self._policy)
        if result is not None:
            for identity_key, links in result.permit_links.items():
                states.record_permit_links(identity_key, links)
        self._uow.commit()

        if result is None:
            counts.changed = counts.total
        else:
            counts.changed = result.changed
            counts.errors = result.errors

    async def _incremental_sync(self, records: Sequence[NormalizedRecord], counts: _Counts) -> None:
        states = self._uow.repositories.states
        diff = diff_records(records, policy=self._policy, states=states)
        if diff.changes:
            self._log_summary(diff.changes, new=diff.new_count, updated=diff.updated_count)
        else:
            log.info("No %s changes detected", self.record_type)

        links: dict[str, PermitLinks] = {}
        for change in diff.changes:
            try:
                resolved = await self._dispatch(
                    lambda change=change: self._handler.apply(change),
                    self._handler.describe(change),
                )
            except Exception:  # noqa: BLE001
                counts.errors += 1
                log.exception("Failed to reconcile %s", change.identity_key)
                self._uow.rollback()
            else:
                counts.changed += 1
                if resolved is not None:
                    links[change.identity_key] = resolved

        states.upsert(diff.observations, policy=self._policy)
        for identity_key, permit_links in links.items():
            states.record_permit_links(identity_key, permit_links)
        self._uow.commit()

    async def _dispatch[T](self, action: Callable[[], Awaitable[T]], description: str) -> T | None:
        """Run an external action unless this is a dry run."""

        if self.dry_run:
            log.info("[dry run] skipping %s", description)
            return None
        return await action()

    def _log_summary(self, changes: Sequence[Change], *, new: int, updated: int) -> None:
        log.info("%s changes: %d new, %d updated", self.record_type, new, updated)
        for change in changes[:SUMMARY_EXAMPLES]:
            log.info("  %s", self._handler.describe(change))
        if len(changes) > SUMMARY_EXAMPLES:
            log.info("  ... and %d more", len(changes) - SUMMARY_EXAMPLES)

    def _record_failure(self, run_log: RunLog, counts: _Counts, exc: Exception) -> None:
        log.error("%s sync failed: %s", self.record_type, exc)
        try:
            self._uow.rollback()
            run_log.complete(
                total=counts.total,
                changed=counts.changed,
                errors=counts.errors,
                error_message=str(exc) or type(exc).__name__,
            )
            self._uow.commit()
        except Exception:  # noqa: BLE001
            log.exception("Could not record failure of %s run", self.record_type)
