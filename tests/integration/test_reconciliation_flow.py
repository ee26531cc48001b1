from __future__ import annotations

from functools import partial
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import select

from casesync import app
from casesync.config import MatchingConfig, SyncConfig
from casesync.domain.matching.contracts import MatchLogEntry, ReviewReason
from casesync.domain.reconciliation import SyncMode
from casesync.domain.records import RecordType
from casesync.domain.state import RunStatus
from tests.helpers.fakes import FakeClassifier, FakeTicketGateway

if TYPE_CHECKING:
    from collections.abc import Callable

    from casesync.adapters.sqlalchemy.unit_of_work import SqlAlchemySyncUnitOfWork

    UowFactory = Callable[[], SqlAlchemySyncUnitOfWork]

pytestmark = pytest.mark.integration

LIVE = SyncConfig(ticket_updates_enabled=True, permit_updates_enabled=True)
KEY_A = "violation|CC24-1|WEEDS|2024-01-01"


def _violation(status: str, case_no: str = "CC24-1") -> dict[str, str]:
    return {
        "CASE_NO": case_no,
        "Violation_Type": "WEEDS",
        "Violation_Status": status,
        "DATE_OBSERVED": "1/1/2024",
        "SITE_ADDR": "12 ELM ST",
        "SITE_CITY": "SPRINGFIELD",
        "SITE_STATE": "IL",
        "SITE_ZIP": "62701",
    }


def _inspection(result: str) -> dict[str, str]:
    return {
        "Unique_Key": "INSP-77",
        "CASE_NO": "CC24-1",
        "InspectionType": "FOLLOW UP",
        "RESULT": result,
        "INSPECTOR": "J. DOE",
        "COMPLETED_DATE": "1/15/2024",
    }


@pytest.mark.parametrize("order", [("OPEN", "COMPLIED"), ("COMPLIED", "OPEN")])
def test_duplicate_rows_resolve_to_closing_status(
    uow_factory: UowFactory, order: tuple[str, str]
) -> None:
    gateway = FakeTicketGateway(references={KEY_A: 900})
    ingest = partial(
        app.ingest_rows,
        RecordType.VIOLATION,
        unit_of_work_factory=uow_factory,
        gateway=gateway,
        sync_config=LIVE,
        matching_config=MatchingConfig(),
    )
    ingest([_violation("OPEN")])

    result = ingest([_violation(status) for status in order])

    assert result.summary.total == 2
    assert result.summary.changed == 1
    assert gateway.closed == [(900, "Violation marked as COMPLIED in source (was: OPEN)")]
    assert gateway.comments == []
    with uow_factory() as uow:
        row = uow.repositories.states.get(RecordType.VIOLATION, KEY_A)
        assert row is not None
        assert row.signature == "COMPLIED"


def test_first_permit_export_takes_bulk_path(uow_factory: UowFactory) -> None:
    gateway = FakeTicketGateway(failing_bulk_permits={"BP-0042"})
    rows = [
        {"PERMIT_NO": f"BP-{number:04d}", "PermitType": "Building", "STATUS": "ISSUED"}
        for number in range(500)
    ]

    result = app.ingest_rows(
        RecordType.PERMIT,
        rows,
        unit_of_work_factory=uow_factory,
        gateway=gateway,
        sync_config=LIVE,
        matching_config=MatchingConfig(),
    )

    summary = result.summary
    assert summary.mode is SyncMode.INITIAL
    assert (summary.total, summary.changed, summary.errors) == (500, 499, 1)
    assert gateway.created_permits == []
    assert gateway.updated_permits == []
    assert sum(len(request) for request in gateway.bulk_requests) == 500
    assert gateway.created_types == [("Building", None)]
    assert gateway.created_statuses == [("ISSUED", "issued")]
    with uow_factory() as uow:
        [run_log] = uow.repositories.run_logs.latest(RecordType.PERMIT)
        assert run_log.status is RunStatus.COMPLETED
        assert (run_log.total_records, run_log.changed_records, run_log.errors) == (500, 499, 1)


def test_unmatched_violation_without_candidates_is_queued(uow_factory: UowFactory) -> None:
    gateway = FakeTicketGateway()
    classifier = FakeClassifier()
    ingest = partial(
        app.ingest_rows,
        RecordType.VIOLATION,
        unit_of_work_factory=uow_factory,
        gateway=gateway,
        classifier=classifier,
        sync_config=LIVE,
        matching_config=MatchingConfig(radius_meters=150),
    )
    ingest([_violation("OPEN")])

    result = ingest([_violation("IN PROGRESS")])

    assert result.summary.errors == 0
    assert gateway.comments == []
    assert classifier.prompts == []
    [query] = gateway.location_queries
    assert query.address == "12 ELM ST, SPRINGFIELD, IL, 62701"
    assert query.radius_meters == 150
    with uow_factory() as uow:
        [item] = uow.repositories.review_queue.pending()
        assert item.identity_key == KEY_A
        assert item.reason is ReviewReason.NO_CANDIDATES
        [entry] = uow.session.execute(select(MatchLogEntry)).scalars()
        assert entry.candidate_count == 0
        assert entry.identity_key == KEY_A
        row = uow.repositories.states.get(RecordType.VIOLATION, KEY_A)
        assert row is not None
        assert row.ticket_match is None


def test_inspection_result_comments_on_every_case_ticket(uow_factory: UowFactory) -> None:
    gateway = FakeTicketGateway(case_tickets={"CC24-1": [31, 32]})
    ingest = partial(
        app.ingest_rows,
        RecordType.INSPECTION,
        unit_of_work_factory=uow_factory,
        gateway=gateway,
        sync_config=LIVE,
        matching_config=MatchingConfig(),
    )
    ingest([_inspection("SCHEDULED")])

    result = ingest([_inspection("PASSED")])

    assert result.summary.changed == 1
    assert [ticket_id for ticket_id, _ in gateway.comments] == [31, 32]
    assert all("PASSED" in content for _, content in gateway.comments)
    with uow_factory() as uow:
        row = uow.repositories.states.get(RecordType.INSPECTION, "inspection|INSP-77")
        assert row is not None
        assert row.signature == "PASSED"


def test_identical_batch_twice_changes_nothing(uow_factory: UowFactory) -> None:
    gateway = FakeTicketGateway(references={KEY_A: 900})
    ingest = partial(
        app.ingest_rows,
        RecordType.VIOLATION,
        unit_of_work_factory=uow_factory,
        gateway=gateway,
        sync_config=LIVE,
        matching_config=MatchingConfig(),
    )
    rows = [_violation("OPEN"), _violation("OPEN", case_no="CC24-2")]
    ingest(rows)
    with uow_factory() as uow:
        before = uow.repositories.states.get(RecordType.VIOLATION, KEY_A)

    result = ingest(rows)

    assert result.summary.changed == 0
    assert gateway.closed == []
    assert gateway.comments == []
    with uow_factory() as uow:
        after = uow.repositories.states.get(RecordType.VIOLATION, KEY_A)
    assert before is not None
    assert after is not None
    assert after.signature == before.signature
    assert after.last_seen_at >= before.last_seen_at
    assert after.created_at == before.created_at
