"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from itertools import batched
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite

from casesync.adapters.sqlalchemy.mappings import (
    STATE_TABLES,
    permit_state_table,
    review_queue_table,
    sync_run_table,
    violation_state_table,
)
from casesync.domain.diff import deduplicate
from casesync.domain.matching.contracts import (
    MatchLogEntry,
    ReviewQueueItem,
    ReviewStats,
    ReviewStatus,
)
from casesync.domain.records import InspectionRecord, PermitRecord, RecordType, ViolationRecord
from casesync.domain.state import PermitLinks, RunLog, StateRow, TicketMatch

if TYPE_CHECKING:
    from collections.abc import Callable, Collection, Iterable, Mapping, Sequence

    from sqlalchemy import Row, Table
    from sqlalchemy.orm import Session

    from casesync.domain.records import NormalizedRecord
    from casesync.domain.signatures import SignaturePolicy
    from casesync.domain.state import MatchConfidence, MatchMethod, Observation

log = logging.getLogger(__name__)

STATE_CHUNK_SIZE = 1000

# Columns an upsert never overwrites on conflict.
_PRESERVED_ON_CONFLICT = frozenset({"identity_key", "created_at"})

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def _semantic_columns(record: NormalizedRecord) -> dict[str, Any]:
    match record:
        case ViolationRecord():
            return {
                "case_no": record.case_no,
                "violation_type": record.violation_type,
                "status": record.status,
                "observed_on": record.observed_on,
                "site_address": record.full_address or None,
            }
        case InspectionRecord():
            return {
                "case_no": record.case_no or None,
                "inspection_type": record.inspection_type or None,
                "result": record.result or None,
                "inspector": record.inspector or None,
                "scheduled_on": record.scheduled_on,
                "completed_on": record.completed_on,
            }
        case PermitRecord():
            return {
                "permit_no": record.permit_no,
                "status": record.status or None,
                "permit_type": record.permit_type or None,
                "permit_subtype": record.permit_subtype or None,
                "site_address": record.site_address or None,
                "job_value": record.job_value,
            }
        case _:
            raise TypeError(f"Unsupported record: {type(record).__name__}")


def _ticket_match(row: Row[Any]) -> TicketMatch | None:
    mapping = row._mapping  # noqa: SLF001
    ticket_id = mapping.get("matched_ticket_id")
    if ticket_id is None or mapping.get("match_method") is None:
        return None
    return TicketMatch(
        ticket_id=ticket_id,
        method=mapping["match_method"],
        confidence=mapping.get("match_confidence"),
        matched_at=mapping.get("matched_at"),
    )


def _permit_links(row: Row[Any]) -> PermitLinks | None:
    mapping = row._mapping  # noqa: SLF001
    links = PermitLinks(
        permit_id=mapping.get("external_permit_id"),
        type_id=mapping.get("external_type_id"),
        subtype_id=mapping.get("external_subtype_id"),
        status_id=mapping.get("external_status_id"),
    )
    if links == PermitLinks():
        return None
    return links


def _state_row(record_type: RecordType, row: Row[Any]) -> StateRow:
    return StateRow(
        identity_key=row.identity_key,
        signature=row.signature,
        last_seen_at=row.last_seen_at,
        created_at=row.created_at,
        ticket_match=_ticket_match(row) if record_type is RecordType.VIOLATION else None,
        permit_links=_permit_links(row) if record_type is RecordType.PERMIT else None,
    )


class SqlAlchemyStateRepository:
    """Per-type state tables keyed by identity key.

    Upserts only touch the signature, the semantic columns, the raw payload and
    ``last_seen_at``. Ticket and permit linkage columns are written exclusively
    through :meth:`record_ticket_match` and :meth:`record_permit_links`.
    """

    def __init__(
        self,
        session: Session,
        *,
        chunk_size: int = STATE_CHUNK_SIZE,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.session = session
        self._chunk_size = chunk_size
        self._clock = clock

    def is_empty(self, record_type: RecordType) -> bool:
        table = STATE_TABLES[record_type]
        stmt = select(table.c.identity_key).limit(1)
        return self.session.execute(stmt).first() is None

    def fetch(
        self, record_type: RecordType, identity_keys: Collection[str]
    ) -> Mapping[str, StateRow]:
        table = STATE_TABLES[record_type]
        rows: dict[str, StateRow] = {}
        for chunk in batched(sorted(set(identity_keys)), self._chunk_size):
            stmt = select(table).where(table.c.identity_key.in_(chunk))
            for row in self.session.execute(stmt):
                rows[row.identity_key] = _state_row(record_type, row)
        return rows

    def get(self, record_type: RecordType, identity_key: str) -> StateRow | None:
        table = STATE_TABLES[record_type]
        stmt = select(table).where(table.c.identity_key == identity_key)
        row = self.session.execute(stmt).first()
        return None if row is None else _state_row(record_type, row)

    def upsert(self, observations: Iterable[Observation], *, policy: SignaturePolicy) -> int:
        unique = deduplicate(observations, policy)
        if not unique:
            return 0
        table = STATE_TABLES[policy.record_type]
        now = self._clock()
        values = [
            {
                "identity_key": item.identity_key,
                "signature": item.signature,
                "raw_data": dict(item.record.raw) or None,
                "last_seen_at": now,
                "created_at": now,
                **_semantic_columns(item.record),
            }
            for item in unique
        ]
        for chunk in batched(values, self._chunk_size):
            self.session.execute(self._upsert_statement(table, chunk[0].keys()), list(chunk))
        log.debug("Upserted %d %s state rows", len(values), policy.record_type)
        return len(values)

    def record_ticket_match(
        self,
        identity_key: str,
        *,
        ticket_id: int,
        method: MatchMethod,
        confidence: MatchConfidence | None = None,
    ) -> None:
        stmt = (
            update(violation_state_table)
            .where(violation_state_table.c.identity_key == identity_key)
            .values(
                matched_ticket_id=ticket_id,
                match_method=method,
                match_confidence=confidence,
                matched_at=self._clock(),
            )
        )
        if self.session.execute(stmt).rowcount == 0:
            log.debug("No violation state row for %s yet, ticket match not cached", identity_key)

    def record_permit_links(self, identity_key: str, links: PermitLinks) -> None:
        stmt = (
            update(permit_state_table)
            .where(permit_state_table.c.identity_key == identity_key)
            .values(
                external_permit_id=links.permit_id,
                external_type_id=links.type_id,
                external_subtype_id=links.subtype_id,
                external_status_id=links.status_id,
            )
        )
        if self.session.execute(stmt).rowcount == 0:
            log.warning("No permit state row for %s, external links not stored", identity_key)

    def _upsert_statement(self, table: Table, columns: Iterable[str]) -> Any:
        dialect = self.session.get_bind().dialect.name
        try:
            insert = _INSERT_BY_DIALECT[dialect]
        except KeyError as exc:
            raise NotImplementedError(f"State upserts are not supported on {dialect}") from exc
        stmt = insert(table)
        return stmt.on_conflict_do_update(
            index_elements=[table.c.identity_key],
            set_={
                name: stmt.excluded[name] for name in columns if name not in _PRESERVED_ON_CONFLICT
            },
        )


class SqlAlchemyRunLogRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, run_log: RunLog) -> None:
        self.session.add(run_log)
        self.session.flush()

    def latest(self, record_type: RecordType, *, limit: int = 10) -> Sequence[RunLog]:
        stmt = (
            select(RunLog)
            .where(sync_run_table.c.record_type == record_type)
            .order_by(sync_run_table.c.started_at.desc(), sync_run_table.c.id.desc())
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars())


class SqlAlchemyReviewQueueRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def enqueue(self, item: ReviewQueueItem) -> bool:
        if self.has_pending(item.identity_key):
            log.debug("Review item for %s already pending", item.identity_key)
            return False
        self.session.add(item)
        self.session.flush()
        return True

    def has_pending(self, identity_key: str) -> bool:
        stmt = (
            select(review_queue_table.c.id)
            .where(review_queue_table.c.identity_key == identity_key)
            .where(review_queue_table.c.status == ReviewStatus.PENDING)
            .limit(1)
        )
        return self.session.execute(stmt).first() is not None

    def get(self, item_id: int) -> ReviewQueueItem | None:
        return self.session.get(ReviewQueueItem, item_id)

    def pending(self, *, limit: int = 50) -> Sequence[ReviewQueueItem]:
        stmt = (
            select(ReviewQueueItem)
            .where(review_queue_table.c.status == ReviewStatus.PENDING)
            .order_by(review_queue_table.c.created_at, review_queue_table.c.id)
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars())

    def stats(self) -> ReviewStats:
        status = review_queue_table.c.status
        stmt = select(status, func.count()).group_by(status)
        counts = {status: count for status, count in self.session.execute(stmt)}
        return ReviewStats(
            pending=counts.get(ReviewStatus.PENDING, 0),
            resolved=counts.get(ReviewStatus.RESOLVED, 0),
            skipped=counts.get(ReviewStatus.SKIPPED, 0),
        )


class SqlAlchemyMatchLogRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entry: MatchLogEntry) -> None:
        self.session.add(entry)
