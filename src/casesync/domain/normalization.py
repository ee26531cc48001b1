"""Turn raw report rows into normalized records."""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import TYPE_CHECKING, Final

from .identity import IdentityKeyError, InspectionKey, PermitKey, ViolationKey
from .records import InspectionRecord, PermitRecord, RecordType, ViolationRecord

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from .records import NormalizedRecord

type RawRow = Mapping[str, str | None]

_CONTROL_CHARACTERS: Final = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F]")
_REPORT_DATE: Final = re.compile(
    r"^(?P<month>\d{1,2})/(?P<day>\d{1,2})/(?P<year>\d{4})"
    r"(?:\s+\d{1,2}:\d{2}(?::\d{2})?(?:\s*[AaPp][Mm])?)?$"
)
_ISO_DATE: Final = re.compile(r"^(?P<year>\d{4})-(?P<month>\d{2})-(?P<day>\d{2})(?:[T ].*)?$")


class RecordRejectedError(ValueError):
    """Raised when a row lacks a mandatory identity field."""

    def __init__(self, record_type: RecordType, missing: str) -> None:
        super().__init__(f"{record_type} row rejected: missing {missing}")
        self.record_type = record_type
        self.missing = missing


def sanitize(value: str | None) -> str:
    """Strip null bytes, control characters and surrounding whitespace."""

    if value is None:
        return ""
    return _CONTROL_CHARACTERS.sub("", value).strip()


def parse_report_date(value: str | None) -> date | None:
    """Parse ``M/D/YYYY[ H:MM:SS AM|PM]`` (or ISO) into a date.

    The time of day is discarded. Empty or unparseable input gives ``None``.
    """

    text = sanitize(value)
    if not text:
        return None
    match = _REPORT_DATE.match(text) or _ISO_DATE.match(text)
    if match is None:
        return None
    try:
        return date(int(match["year"]), int(match["month"]), int(match["day"]))
    except ValueError:
        return None


def parse_report_datetime(value: str | None) -> datetime | None:
    """Like :func:`parse_report_date` but as a midnight ``datetime``."""

    parsed = parse_report_date(value)
    if parsed is None:
        return None
    return datetime(parsed.year, parsed.month, parsed.day)


def parse_amount(value: str | None) -> float | None:
    text = sanitize(value).replace(",", "").replace("$", "")
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _clean_row(row: RawRow) -> dict[str, str]:
    return {sanitize(column): sanitize(value) for column, value in row.items() if column}


def normalize_violation(row: RawRow) -> ViolationRecord:
    values = _clean_row(row)
    case_no = values.get("CASE_NO", "")
    violation_type = values.get("Violation_Type", "")
    if not case_no:
        raise RecordRejectedError(RecordType.VIOLATION, "CASE_NO")
    if not violation_type:
        raise RecordRejectedError(RecordType.VIOLATION, "Violation_Type")

    observed_on = parse_report_date(values.get("DATE_OBSERVED"))
    return ViolationRecord(
        key=ViolationKey(case_no=case_no, violation_type=violation_type, observed_on=observed_on),
        case_no=case_no,
        violation_type=violation_type,
        status=values.get("Violation_Status", ""),
        observed_on=observed_on,
        corrected_on=parse_report_date(values.get("DATE_CORRECTED")),
        activity_id=values.get("ActivityID", ""),
        site_address=values.get("SITE_ADDR", ""),
        site_city=values.get("SITE_CITY", ""),
        site_state=values.get("SITE_STATE", ""),
        site_zip=values.get("SITE_ZIP", ""),
        case_started_on=parse_report_date(values.get("STARTED")),
        case_closed_on=parse_report_date(values.get("CLOSED")),
        case_type=values.get("CaseType", ""),
        case_subtype=values.get("CaseSubType", ""),
        raw=values,
    )


def normalize_inspection(row: RawRow) -> InspectionRecord:
    values = _clean_row(row)
    unique_key = values.get("Unique_Key", "")
    if not unique_key:
        raise RecordRejectedError(RecordType.INSPECTION, "Unique_Key")

    return InspectionRecord(
        key=InspectionKey(unique_key=unique_key),
        case_no=values.get("CASE_NO", ""),
        inspection_type=values.get("InspectionType", ""),
        result=values.get("RESULT", ""),
        inspector=values.get("INSPECTOR", ""),
        scheduled_on=parse_report_date(values.get("SCHEDULED_DATE")),
        completed_on=parse_report_date(values.get("COMPLETED_DATE")),
        created_by=values.get("CREATED_BY", ""),
        created_on=parse_report_date(values.get("CREATED_DATE")),
        notes=values.get("NOTES", ""),
        remarks=values.get("REMARKS", ""),
        raw=values,
    )


def _permit_address(values: Mapping[str, str]) -> str:
    if values.get("SITE_ADDR"):
        return values["SITE_ADDR"]
    street = " ".join(
        part
        for part in (
            values.get("SITE_NUMBER", ""),
            values.get("SITE_STREETNAME", ""),
            values.get("SITE_UNIT_NO", ""),
        )
        if part
    )
    state_zip = " ".join(
        part for part in (values.get("SITE_STATE", ""), values.get("SITE_ZIP", "")) if part
    )
    return ", ".join(part for part in (street, values.get("SITE_CITY", ""), state_zip) if part)


def normalize_permit(row: RawRow) -> PermitRecord:
    values = _clean_row(row)
    permit_no = values.get("PERMIT_NO", "")
    if not permit_no:
        raise RecordRejectedError(RecordType.PERMIT, "PERMIT_NO")

    return PermitRecord(
        key=PermitKey(permit_no=permit_no),
        permit_no=permit_no,
        permit_type=values.get("PermitType", ""),
        permit_subtype=values.get("PermitSubType", ""),
        status=values.get("STATUS", ""),
        applied_at=parse_report_datetime(values.get("APPLIED")),
        approved_at=parse_report_datetime(values.get("APPROVED")),
        issued_at=parse_report_datetime(values.get("ISSUED")),
        finaled_at=parse_report_datetime(values.get("FINALED")),
        expired_at=parse_report_datetime(values.get("EXPIRED")),
        site_address=_permit_address(values),
        description=values.get("DESCRIPTION", ""),
        notes=values.get("NOTES", ""),
        job_value=parse_amount(values.get("JOBVALUE")),
        apn=values.get("APN", ""),
        raw=values,
    )


_NORMALIZERS: Final[dict[RecordType, Callable[[RawRow], NormalizedRecord]]] = {
    RecordType.VIOLATION: normalize_violation,
    RecordType.INSPECTION: normalize_inspection,
    RecordType.PERMIT: normalize_permit,
}


def normalize_row(record_type: RecordType, row: RawRow) -> NormalizedRecord:
    """Normalize one raw row, raising :class:`RecordRejectedError` for unusable rows."""

    try:
        return _NORMALIZERS[record_type](row)
    except IdentityKeyError as exc:
        raise RecordRejectedError(record_type, str(exc)) from exc
