"""Ticket comments for inspection results."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, ClassVar, cast

from casesync.domain.identity import ViolationKey
from casesync.domain.ports.ticketing import TicketingAPIError
from casesync.domain.records import RecordType

from .driver import ChangeHandler

if TYPE_CHECKING:
    from casesync.domain.ports.ticketing import TicketGateway
    from casesync.domain.records import InspectionRecord
    from casesync.domain.signatures import SignaturePolicy
    from casesync.domain.state import Change

log = logging.getLogger(__name__)


class ActionError(RuntimeError):
    """Raised when some of the external calls for one change failed."""


def inspection_comment(record: InspectionRecord, *, previous_result: str | None) -> str:
    heading = "Inspection Recorded" if previous_result is None else "Inspection Updated"
    result = record.result or "(none)"
    if previous_result is not None:
        result = f"{result} (was: {previous_result or '(none)'})"
    completed = record.completed_on.isoformat() if record.completed_on else "Pending"
    scheduled = record.scheduled_on.isoformat() if record.scheduled_on else "Not scheduled"

    lines = [
        f"**{heading}**",
        "",
        f"**Type:** {record.inspection_type or 'Unknown'}",
        f"**Result:** {result}",
        f"**Inspector:** {record.inspector or 'Unassigned'}",
        f"**Scheduled:** {scheduled}",
        f"**Completed:** {completed}",
    ]
    if record.remarks:
        lines.append(f"**Remarks:** {record.remarks}")
    if record.notes:
        lines.append(f"**Notes:** {record.notes}")
    return "\n".join(lines)


class InspectionChangeHandler(ChangeHandler):
    """Comment on every ticket linked to the inspection's case."""

    record_type: ClassVar[RecordType] = RecordType.INSPECTION

    def __init__(self, *, gateway: TicketGateway, policy: SignaturePolicy) -> None:
        self._gateway = gateway
        self._tracks_result = policy.tracked_fields == ("result",)

    async def apply(self, change: Change) -> None:
        record = cast("InspectionRecord", change.record)
        if not record.case_no:
            log.info("Inspection %s has no case number, nothing to link", change.identity_key)
            return

        references = await self._gateway.find_tickets_by_reference_pattern(
            ViolationKey.case_pattern(record.case_no)
        )
        ticket_ids = list(dict.fromkeys(reference.ticket_id for reference in references))
        if not ticket_ids:
            log.info("No tickets linked to case %s for %s", record.case_no, change.identity_key)
            return

        comment = inspection_comment(record, previous_result=self._previous_result(change))
        failed: list[int] = []
        for ticket_id in ticket_ids:
            try:
                await self._gateway.add_comment(ticket_id, comment)
            except TicketingAPIError as exc:
                log.warning(
                    "Comment on ticket %s for %s failed: %s", ticket_id, change.identity_key, exc
                )
                failed.append(ticket_id)

        if failed:
            raise ActionError(
                f"{len(failed)} of {len(ticket_ids)} comments failed for {change.identity_key}: "
                f"tickets {failed}"
            )
        log.info("Commented on %d tickets for %s", len(ticket_ids), change.identity_key)

    def _previous_result(self, change: Change) -> str | None:
        if change.is_new:
            return None
        if self._tracks_result:
            return change.previous_signature
        return "unknown"
