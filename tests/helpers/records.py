"""Builders for normalized records used across tests."""

from __future__ import annotations

from datetime import date, datetime

from casesync.domain.identity import InspectionKey, PermitKey, ViolationKey
from casesync.domain.records import InspectionRecord, PermitRecord, ViolationRecord


def make_violation(
    case_no: str = "CE24-0001",
    *,
    violation_type: str = "OVERGROWN VEGETATION",
    status: str = "OPEN",
    observed_on: date | None = date(2024, 3, 1),
    site_address: str = "100 MAIN ST",
    site_city: str = "SPRINGFIELD",
) -> ViolationRecord:
    return ViolationRecord(
        key=ViolationKey(case_no=case_no, violation_type=violation_type, observed_on=observed_on),
        case_no=case_no,
        violation_type=violation_type,
        status=status,
        observed_on=observed_on,
        site_address=site_address,
        site_city=site_city,
        site_state="IL",
        site_zip="62701",
        raw={"CASE_NO": case_no, "Violation_Status": status},
    )


def make_inspection(
    unique_key: str = "INSP-1",
    *,
    case_no: str = "CE24-0001",
    result: str = "PASSED",
    inspection_type: str = "FOLLOW UP",
    inspector: str = "J. DOE",
    completed_on: date | None = date(2024, 3, 5),
) -> InspectionRecord:
    return InspectionRecord(
        key=InspectionKey(unique_key=unique_key),
        case_no=case_no,
        inspection_type=inspection_type,
        result=result,
        inspector=inspector,
        scheduled_on=date(2024, 3, 4),
        completed_on=completed_on,
        raw={"Unique_Key": unique_key, "RESULT": result},
    )


def make_permit(
    permit_no: str = "BP24-0001",
    *,
    permit_type: str = "Building",
    permit_subtype: str = "Residential",
    status: str = "ISSUED",
    description: str = "Replace roof",
    job_value: float | None = 12500.0,
) -> PermitRecord:
    return PermitRecord(
        key=PermitKey(permit_no=permit_no),
        permit_no=permit_no,
        permit_type=permit_type,
        permit_subtype=permit_subtype,
        status=status,
        applied_at=datetime(2024, 2, 1),
        issued_at=datetime(2024, 2, 20),
        site_address="100 MAIN ST, SPRINGFIELD, IL 62701",
        description=description,
        job_value=job_value,
        apn="123-456-789",
        raw={"PERMIT_NO": permit_no, "STATUS": status},
    )
