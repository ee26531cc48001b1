from __future__ import annotations

import asyncio

import pytest

from casesync.domain.reconciliation import ActionError, InspectionChangeHandler
from casesync.domain.reconciliation.inspections import inspection_comment
from casesync.domain.records import RecordType
from casesync.domain.signatures import signature_policy_for
from casesync.domain.state import Change
from tests.helpers.fakes import FakeTicketGateway
from tests.helpers.records import make_inspection

POLICY = signature_policy_for(RecordType.INSPECTION)


def _change(previous: str | None, *, case_no: str = "CE24-0001") -> Change:
    record = make_inspection(case_no=case_no)
    return Change(
        identity_key=record.identity_key,
        record=record,
        previous_signature=previous,
        signature=POLICY.signature(record),
        is_new=previous is None,
    )


def test_every_linked_ticket_gets_one_comment() -> None:
    gateway = FakeTicketGateway(
        references={
            "violation|CE24-0001|WEEDS|2024-01-01": 11,
            "violation|CE24-0001|TRASH|2024-01-01": 12,
            "violation|CE24-0002|WEEDS|2024-01-01": 13,
        }
    )
    handler = InspectionChangeHandler(gateway=gateway, policy=POLICY)

    asyncio.run(handler.apply(_change("SCHEDULED")))

    assert gateway.pattern_queries == ["violation|CE24-0001|%"]
    assert [ticket_id for ticket_id, _ in gateway.comments] == [11, 12]
    assert "**Result:** PASSED (was: SCHEDULED)" in gateway.comments[0][1]


def test_wildcards_in_case_numbers_do_not_reach_other_cases() -> None:
    gateway = FakeTicketGateway(
        references={
            "violation|CE_24|WEEDS|2024-01-01": 11,
            "violation|CEX24|WEEDS|2024-01-01": 12,
        }
    )
    handler = InspectionChangeHandler(gateway=gateway, policy=POLICY)

    asyncio.run(handler.apply(_change("SCHEDULED", case_no="CE_24")))

    assert gateway.pattern_queries == ["violation|CE\\_24|%"]
    assert [ticket_id for ticket_id, _ in gateway.comments] == [11]


def test_duplicate_ticket_ids_are_commented_once() -> None:
    gateway = FakeTicketGateway(case_tickets={"CE24-0001": [11, 11, 12]})
    handler = InspectionChangeHandler(gateway=gateway, policy=POLICY)

    asyncio.run(handler.apply(_change("SCHEDULED")))

    assert [ticket_id for ticket_id, _ in gateway.comments] == [11, 12]


def test_new_inspections_are_reported_as_recorded() -> None:
    gateway = FakeTicketGateway(case_tickets={"CE24-0001": [11]})
    handler = InspectionChangeHandler(gateway=gateway, policy=POLICY)

    asyncio.run(handler.apply(_change(None)))

    ((_, content),) = gateway.comments
    assert content.startswith("**Inspection Recorded**")
    assert "(was:" not in content


def test_inspection_without_case_is_ignored() -> None:
    gateway = FakeTicketGateway(case_tickets={"": [11]})
    handler = InspectionChangeHandler(gateway=gateway, policy=POLICY)

    asyncio.run(handler.apply(_change("SCHEDULED", case_no="")))

    assert gateway.pattern_queries == []
    assert gateway.comments == []


def test_partial_comment_failure_raises_after_trying_all() -> None:
    gateway = FakeTicketGateway(
        case_tickets={"CE24-0001": [11, 12, 13]}, failing_comment_tickets={12}
    )
    handler = InspectionChangeHandler(gateway=gateway, policy=POLICY)

    with pytest.raises(ActionError, match="1 of 3"):
        asyncio.run(handler.apply(_change("SCHEDULED")))

    assert [ticket_id for ticket_id, _ in gateway.comments] == [11, 13]


def test_comment_layout() -> None:
    record = make_inspection(result="FAILED", completed_on=None)

    content = inspection_comment(record, previous_result="")

    assert content.splitlines() == [
        "**Inspection Updated**",
        "",
        "**Type:** FOLLOW UP",
        "**Result:** FAILED (was: (none))",
        "**Inspector:** J. DOE",
        "**Scheduled:** 2024-03-04",
        "**Completed:** Pending",
    ]
