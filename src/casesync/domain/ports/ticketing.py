"""Port for the external ticketing system."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


class TicketingAPIError(RuntimeError):
    """Raised when the ticketing API rejects a request."""

    def __init__(
        self, message: str, *, status_code: int | None = None, body: str | None = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class StaleReferenceError(TicketingAPIError):
    """Raised when a request referenced taxonomy IDs the API no longer accepts."""


@dataclass(frozen=True, slots=True)
class TicketReference:
    ticket_id: int
    external_id: str | None = None


@dataclass(frozen=True, slots=True)
class CandidateTicket:
    ticket_id: int
    title: str = ""
    description: str = ""
    address: str = ""
    latitude: float | None = None
    longitude: float | None = None
    status: str = ""
    ticket_type: str = ""
    created_at: datetime | None = None
    external_id: str | None = None


@dataclass(frozen=True, slots=True)
class LocationQuery:
    address: str
    radius_meters: int
    from_date: datetime
    include_resolved: bool = False
    limit: int = 10


@dataclass(frozen=True, slots=True)
class PermitTypeEntry:
    type_id: int
    name: str
    parent_id: int | None = None
    children: tuple[PermitTypeEntry, ...] = ()


@dataclass(frozen=True, slots=True)
class PermitStatusEntry:
    status_id: int
    name: str
    status_type: str = ""


@dataclass(frozen=True, slots=True)
class ExternalPermit:
    permit_id: int
    permit_no: str
    status_id: int | None = None


@dataclass(frozen=True, slots=True)
class PermitPayload:
    """Fields sent when creating or updating a permit. Empty values are omitted."""

    permit_no: str
    values: Mapping[str, Any] = field(default_factory=dict)

    def as_request(self) -> dict[str, Any]:
        body: dict[str, Any] = {"permit_no": self.permit_no}
        body.update({name: value for name, value in self.values.items() if value not in (None, "")})
        return body


@dataclass(frozen=True, slots=True)
class BulkCreateError:
    index: int
    message: str
    permit_no: str | None = None


@dataclass(frozen=True, slots=True)
class BulkCreateResult:
    created: int
    failed: int
    created_ids: tuple[int, ...] = ()
    errors: tuple[BulkCreateError, ...] = ()


@runtime_checkable
class TicketGateway(Protocol):
    """Calls issued against the ticketing system during reconciliation."""

    async def find_ticket_by_reference(self, identity_key: str) -> TicketReference | None: ...

    async def find_tickets_by_reference_pattern(
        self, pattern: str
    ) -> Sequence[TicketReference]: ...

    async def change_ticket_status(self, ticket_id: int, status_id: int) -> None: ...

    async def move_ticket_to_step(self, ticket_id: int, step_id: int) -> None: ...

    async def add_comment(self, ticket_id: int, content: str) -> None: ...

    async def close_ticket(self, ticket_id: int, reason: str) -> None: ...

    async def set_ticket_reference(
        self, ticket_id: int, identity_key: str | None
    ) -> str | None: ...

    async def find_tickets_near(self, query: LocationQuery) -> Sequence[CandidateTicket]: ...


@runtime_checkable
class PermitGateway(Protocol):
    """Permit CRUD and taxonomy calls."""

    async def get_permit(self, permit_no: str) -> ExternalPermit | None: ...

    async def create_permit(self, payload: PermitPayload) -> ExternalPermit: ...

    async def update_permit(
        self, permit_ref: int | str, payload: PermitPayload
    ) -> ExternalPermit: ...

    async def bulk_create_permits(self, payloads: Sequence[PermitPayload]) -> BulkCreateResult: ...

    async def list_permit_types(self) -> Sequence[PermitTypeEntry]: ...

    async def create_permit_type(
        self, name: str, *, parent_id: int | None = None
    ) -> PermitTypeEntry: ...

    async def list_permit_statuses(self) -> Sequence[PermitStatusEntry]: ...

    async def create_permit_status(self, name: str, status_type: str) -> PermitStatusEntry: ...


@runtime_checkable
class ExternalGateway(TicketGateway, PermitGateway, Protocol):
    """Single client serving tickets and permits under one rate limit."""
