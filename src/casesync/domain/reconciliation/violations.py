"""Ticket actions for violation status changes."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, ClassVar, cast

from casesync.domain.records import CLOSING_VIOLATION_STATUSES, RecordType

from .driver import ChangeHandler

if TYPE_CHECKING:
    from casesync.domain.matching import TicketMatcher
    from casesync.domain.ports.ticketing import TicketGateway
    from casesync.domain.records import ViolationRecord
    from casesync.domain.signatures import SignaturePolicy
    from casesync.domain.state import Change

log = logging.getLogger(__name__)


def is_closing_status(status: str) -> bool:
    return status.strip().upper() in CLOSING_VIOLATION_STATUSES


def close_reason(record: ViolationRecord, previous_status: str) -> str:
    return f"Violation marked as {record.status} in source (was: {previous_status})"


def status_comment(record: ViolationRecord, previous_status: str) -> str:
    return (
        f"status update: {previous_status} → {record.status}\n"
        f"Violation: {record.violation_type}\n"
        f"Address: {record.full_address}"
    )


class ViolationChangeHandler(ChangeHandler):
    """Close or comment on the ticket linked to a violation whose status moved.

    New violations are only recorded. A move into a closing status closes the
    ticket and any other move adds a comment describing the transition.
    """

    record_type: ClassVar[RecordType] = RecordType.VIOLATION

    def __init__(
        self,
        *,
        matcher: TicketMatcher,
        gateway: TicketGateway,
        policy: SignaturePolicy,
    ) -> None:
        self._matcher = matcher
        self._gateway = gateway
        self._tracks_status = policy.tracked_fields == ("status",)

    async def apply(self, change: Change) -> None:
        if change.is_new:
            log.debug("New violation %s recorded without ticket action", change.identity_key)
            return

        record = cast("ViolationRecord", change.record)
        match = await self._matcher.match(record)
        if match.ticket_id is None:
            log.info(
                "No ticket for %s (needs review: %s), skipping action",
                change.identity_key,
                match.needs_review,
            )
            return

        previous = self._previous_status(change)
        if is_closing_status(record.status):
            await self._gateway.close_ticket(match.ticket_id, close_reason(record, previous))
            log.info("Closed ticket %s for %s", match.ticket_id, change.identity_key)
        else:
            await self._gateway.add_comment(match.ticket_id, status_comment(record, previous))
            log.info("Commented on ticket %s for %s", match.ticket_id, change.identity_key)

    def describe(self, change: Change) -> str:
        record = cast("ViolationRecord", change.record)
        if change.is_new:
            return f"{change.identity_key}: new ({record.status})"
        return f"{change.identity_key}: {self._previous_status(change)} -> {record.status}"

    def _previous_status(self, change: Change) -> str:
        if self._tracks_status and change.previous_signature is not None:
            return change.previous_signature or "(blank)"
        return "unknown"
