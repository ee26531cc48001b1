"""SQLAlchemy table metadata and mappers for reconciliation state."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from enum import StrEnum
from functools import cache
from typing import TYPE_CHECKING, Final

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Dialect,
    Enum,
    Float,
    Integer,
    String,
    Table,
    Text,
    TypeDecorator,
    orm,
)
from sqlalchemy.orm import configure_mappers

from casesync.domain.matching.contracts import (
    MatchLogEntry,
    ReviewQueueItem,
    ReviewReason,
    ReviewStatus,
)
from casesync.domain.records import RecordType
from casesync.domain.state import MatchConfidence, MatchMethod, RunLog, RunStatus

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


def _enum_values(enum_cls: type[StrEnum]) -> list[str]:
    return [member.value for member in enum_cls]


def _str_enum(enum_cls: type[StrEnum], **kwargs: object) -> Enum:
    return Enum(enum_cls, native_enum=False, values_callable=_enum_values, length=32, **kwargs)


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# State tables ----------------------------------------------------------------


def _state_columns() -> list[Column[object]]:
    return [
        Column("identity_key", String, primary_key=True),
        Column("signature", Text, nullable=False),
        Column("raw_data", JSON, nullable=True),
        Column("last_seen_at", UTCDateTime, nullable=False),
        Column("created_at", UTCDateTime, nullable=False),
    ]


violation_state_table = Table(
    "violation_state",
    mapper_registry.metadata,
    *_state_columns(),
    Column("case_no", String, nullable=False, index=True),
    Column("violation_type", String, nullable=False),
    Column("status", String, nullable=True),
    Column("observed_on", Date, nullable=True),
    Column("site_address", String, nullable=True),
    Column("matched_ticket_id", Integer, nullable=True),
    Column("match_method", _str_enum(MatchMethod), nullable=True),
    Column("match_confidence", _str_enum(MatchConfidence), nullable=True),
    Column("matched_at", UTCDateTime, nullable=True),
)

inspection_state_table = Table(
    "inspection_state",
    mapper_registry.metadata,
    *_state_columns(),
    Column("case_no", String, nullable=True, index=True),
    Column("inspection_type", String, nullable=True),
    Column("result", String, nullable=True),
    Column("inspector", String, nullable=True),
    Column("scheduled_on", Date, nullable=True),
    Column("completed_on", Date, nullable=True),
)

permit_state_table = Table(
    "permit_state",
    mapper_registry.metadata,
    *_state_columns(),
    Column("permit_no", String, nullable=False),
    Column("status", String, nullable=True),
    Column("permit_type", String, nullable=True),
    Column("permit_subtype", String, nullable=True),
    Column("site_address", String, nullable=True),
    Column("job_value", Float, nullable=True),
    Column("external_permit_id", Integer, nullable=True),
    Column("external_type_id", Integer, nullable=True),
    Column("external_subtype_id", Integer, nullable=True),
    Column("external_status_id", Integer, nullable=True),
)

STATE_TABLES: Final[dict[RecordType, Table]] = {
    RecordType.VIOLATION: violation_state_table,
    RecordType.INSPECTION: inspection_state_table,
    RecordType.PERMIT: permit_state_table,
}

# Audit tables ----------------------------------------------------------------

sync_run_table = Table(
    "sync_run",
    mapper_registry.metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("record_type", _str_enum(RecordType), nullable=False, index=True),
    Column("status", _str_enum(RunStatus), nullable=False),
    Column("started_at", UTCDateTime, nullable=False),
    Column("completed_at", UTCDateTime, nullable=True),
    Column("total_records", Integer, nullable=False, default=0),
    Column("changed_records", Integer, nullable=False, default=0),
    Column("errors", Integer, nullable=False, default=0),
    Column("error_message", Text, nullable=True),
)

review_queue_table = Table(
    "review_queue",
    mapper_registry.metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("identity_key", String, nullable=False, index=True),
    Column("record_payload", JSON, nullable=False),
    Column("candidates", JSON, nullable=True),
    Column("reason", _str_enum(ReviewReason), nullable=False),
    Column("status", _str_enum(ReviewStatus), nullable=False, default=ReviewStatus.PENDING),
    Column("resolved_ticket_id", Integer, nullable=True),
    Column("resolved_by", String, nullable=True),
    Column("resolved_at", UTCDateTime, nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
    CheckConstraint("status IN ('pending', 'resolved', 'skipped')", name="review_status"),
)

match_log_table = Table(
    "match_log",
    mapper_registry.metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("identity_key", String, nullable=False, index=True),
    Column("method", _str_enum(MatchMethod), nullable=False),
    Column("candidate_count", Integer, nullable=True),
    Column("selected_ticket_id", Integer, nullable=True),
    Column("confidence", _str_enum(MatchConfidence), nullable=True),
    Column("reasoning", Text, nullable=True),
    Column("prompt_tokens", Integer, nullable=True),
    Column("completion_tokens", Integer, nullable=True),
    Column("duration_ms", Integer, nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
)


@cache
def start_mappers() -> orm.registry:
    """Configure SQLAlchemy mappers for the persisted domain objects."""

    log.info("Starting SQLAlchemy mappers")

    mapper_registry.map_imperatively(RunLog, sync_run_table)
    mapper_registry.map_imperatively(ReviewQueueItem, review_queue_table)
    mapper_registry.map_imperatively(MatchLogEntry, match_log_table)

    configure_mappers()
    return mapper_registry


def create_all_tables(engine: Engine) -> None:
    """Create database tables for the mapped metadata."""

    log.info("Creating all tables")
    mapper_registry.metadata.create_all(engine)
