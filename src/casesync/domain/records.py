"""Normalized records produced from report rows."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .identity import InspectionKey, PermitKey, ViolationKey


class RecordType(StrEnum):
    VIOLATION = "violation"
    INSPECTION = "inspection"
    PERMIT = "permit"


# Violation statuses that close the linked ticket.
CLOSING_VIOLATION_STATUSES = frozenset({"COMPLIED", "UNFOUNDED"})


@dataclass(frozen=True, slots=True)
class ViolationRecord:
    record_type: ClassVar[RecordType] = RecordType.VIOLATION

    key: ViolationKey
    case_no: str
    violation_type: str
    status: str
    observed_on: date | None = None
    corrected_on: date | None = None
    activity_id: str = ""
    site_address: str = ""
    site_city: str = ""
    site_state: str = ""
    site_zip: str = ""
    case_started_on: date | None = None
    case_closed_on: date | None = None
    case_type: str = ""
    case_subtype: str = ""
    raw: Mapping[str, str] = field(default_factory=dict, compare=False)

    @property
    def identity_key(self) -> str:
        return self.key.serialize()

    @property
    def full_address(self) -> str:
        parts = (self.site_address, self.site_city, self.site_state, self.site_zip)
        return ", ".join(part for part in parts if part)


@dataclass(frozen=True, slots=True)
class InspectionRecord:
    record_type: ClassVar[RecordType] = RecordType.INSPECTION

    key: InspectionKey
    case_no: str
    inspection_type: str = ""
    result: str = ""
    inspector: str = ""
    scheduled_on: date | None = None
    completed_on: date | None = None
    created_by: str = ""
    created_on: date | None = None
    notes: str = ""
    remarks: str = ""
    raw: Mapping[str, str] = field(default_factory=dict, compare=False)

    @property
    def identity_key(self) -> str:
        return self.key.serialize()


@dataclass(frozen=True, slots=True)
class PermitRecord:
    record_type: ClassVar[RecordType] = RecordType.PERMIT

    key: PermitKey
    permit_no: str
    permit_type: str = ""
    permit_subtype: str = ""
    status: str = ""
    applied_at: datetime | None = None
    approved_at: datetime | None = None
    issued_at: datetime | None = None
    finaled_at: datetime | None = None
    expired_at: datetime | None = None
    site_address: str = ""
    description: str = ""
    notes: str = ""
    job_value: float | None = None
    apn: str = ""
    raw: Mapping[str, str] = field(default_factory=dict, compare=False)

    @property
    def identity_key(self) -> str:
        return self.key.serialize()


type NormalizedRecord = ViolationRecord | InspectionRecord | PermitRecord


def field_text(value: object) -> str:
    """Render a record attribute as stable text for signatures and comments."""

    if value is None:
        return ""
    if isinstance(value, datetime | date):
        return value.isoformat()
    return str(value)


def record_payload(record: NormalizedRecord) -> dict[str, object]:
    """JSON-compatible snapshot of a record for the review queue."""

    payload: dict[str, object] = {
        "record_type": record.record_type.value,
        "identity_key": record.identity_key,
    }
    for item in fields(record):
        if item.name in {"key", "raw"}:
            continue
        value = getattr(record, item.name)
        payload[item.name] = value.isoformat() if isinstance(value, datetime | date) else value
    return payload
