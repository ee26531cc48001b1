"""Change signatures: which record fields count as "this record changed"."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Final

from .records import (
    CLOSING_VIOLATION_STATUSES,
    InspectionRecord,
    PermitRecord,
    RecordType,
    ViolationRecord,
    field_text,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from .records import NormalizedRecord

_RECORD_CLASSES: Final = {
    RecordType.VIOLATION: ViolationRecord,
    RecordType.INSPECTION: InspectionRecord,
    RecordType.PERMIT: PermitRecord,
}

# Only status transitions are actionable for violations and inspections, while
# any content change on a permit has to be pushed to the external system.
DEFAULT_TRACKED_FIELDS: Final[Mapping[RecordType, tuple[str, ...]]] = {
    RecordType.VIOLATION: ("status",),
    RecordType.INSPECTION: ("result",),
    RecordType.PERMIT: (
        "status",
        "applied_at",
        "approved_at",
        "issued_at",
        "finaled_at",
        "expired_at",
        "permit_type",
        "permit_subtype",
        "site_address",
        "description",
        "notes",
        "job_value",
        "apn",
    ),
}


@dataclass(frozen=True, slots=True)
class SignaturePolicy:
    """Computes the tracked signature of a record and its dedup ordering.

    A single tracked field is stored verbatim so it stays readable in the state
    table. Several fields are reduced to a SHA-256 digest. ``preferred`` values of
    a single tracked field sort after all others, which lets a closing status win
    over a stale duplicate row of the same record.
    """

    record_type: RecordType
    tracked_fields: tuple[str, ...]
    preferred: frozenset[str] = frozenset()

    def signature(self, record: NormalizedRecord) -> str:
        values = [field_text(getattr(record, name)) for name in self.tracked_fields]
        if len(values) == 1:
            return values[0]
        return hashlib.sha256("|".join(values).encode("utf-8")).hexdigest()

    def sort_key(self, record: NormalizedRecord, signature: str) -> tuple[str, int, str]:
        rank = 1 if signature in self.preferred else 0
        return (record.identity_key, rank, signature)


def signature_policy_for(
    record_type: RecordType,
    tracked_fields: Sequence[str] | None = None,
) -> SignaturePolicy:
    chosen = tuple(tracked_fields) if tracked_fields else DEFAULT_TRACKED_FIELDS[record_type]
    known = {item.name for item in fields(_RECORD_CLASSES[record_type])} - {"key", "raw"}
    unknown = sorted(set(chosen) - known)
    if unknown:
        raise ValueError(f"Unknown {record_type} fields for signature: {', '.join(unknown)}")

    preferred: frozenset[str] = frozenset()
    if record_type is RecordType.VIOLATION and chosen == ("status",):
        preferred = CLOSING_VIOLATION_STATUSES
    return SignaturePolicy(record_type=record_type, tracked_fields=chosen, preferred=preferred)
