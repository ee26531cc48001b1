"""Manual handling of the review queue."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from casesync.domain.ports.ticketing import TicketingAPIError
from casesync.domain.state import MatchMethod

from .contracts import ReviewStatus

if TYPE_CHECKING:
    from collections.abc import Sequence

    from casesync.domain.ports.ticketing import TicketGateway
    from casesync.domain.ports.unit_of_work import SyncUnitOfWork

    from .contracts import ReviewQueueItem, ReviewStats

log = logging.getLogger(__name__)


class ReviewItemNotFoundError(LookupError):
    """Raised when a review queue item does not exist."""


class ReviewItemClosedError(ValueError):
    """Raised when resolving an item that is no longer pending."""


def pending_reviews(uow: SyncUnitOfWork, *, limit: int = 50) -> Sequence[ReviewQueueItem]:
    return uow.repositories.review_queue.pending(limit=limit)


def review_stats(uow: SyncUnitOfWork) -> ReviewStats:
    return uow.repositories.review_queue.stats()


async def resolve_review_item(
    uow: SyncUnitOfWork,
    item_id: int,
    *,
    ticket_id: int | None,
    resolved_by: str,
    gateway: TicketGateway | None = None,
) -> ReviewQueueItem:
    """Close a pending review item.

    With a ``ticket_id`` the item becomes ``resolved`` and the ticket is cached as
    a manual match for the record. Without one the item is ``skipped``. When a
    gateway is given the ticket is also stamped with the identity key.
    """

    repositories = uow.repositories
    item = repositories.review_queue.get(item_id)
    if item is None:
        raise ReviewItemNotFoundError(f"Review item {item_id} does not exist")
    if item.status != ReviewStatus.PENDING:
        raise ReviewItemClosedError(f"Review item {item_id} is already {item.status}")

    item.resolve(ticket_id=ticket_id, resolved_by=resolved_by)
    if ticket_id is not None:
        repositories.states.record_ticket_match(
            item.identity_key, ticket_id=ticket_id, method=MatchMethod.MANUAL
        )
    uow.commit()
    log.info("Review item %s %s by %s", item_id, item.status, resolved_by)

    if ticket_id is not None and gateway is not None:
        try:
            await gateway.set_ticket_reference(ticket_id, item.identity_key)
        except TicketingAPIError as exc:
            log.warning("Could not stamp ticket %s with %s: %s", ticket_id, item.identity_key, exc)
    return item
