"""Async HTTP client for the ticketing system's external API."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING, Any, Final
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from casesync.adapters.http_resilience import ResilientClient
from casesync.domain.ports.ticketing import (
    BulkCreateError,
    BulkCreateResult,
    CandidateTicket,
    ExternalPermit,
    PermitStatusEntry,
    PermitTypeEntry,
    StaleReferenceError,
    TicketingAPIError,
    TicketReference,
)

from .schema import (
    BulkCreateResponse,
    CandidateTicketPayload,
    PermitResponse,
    PermitStatusesResponse,
    PermitStatusPayload,
    PermitStatusResponse,
    PermitTypePayload,
    PermitTypeResponse,
    PermitTypesResponse,
    TicketReferencePayload,
    TicketsByLocationResponse,
    TicketsByPatternResponse,
    UpdateReferenceResponse,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from types import TracebackType

    from pydantic import BaseModel

    from casesync.config.http_resilience import ResilienceConfig
    from casesync.config.ticketing import TicketingConfig
    from casesync.domain.ports.ticketing import LocationQuery, PermitPayload

log = getLogger(__name__)

# Fields whose rejection means the cached taxonomy IDs are out of date.
TAXONOMY_FIELDS: Final = ("permit_type_id", "permit_subtype_id", "status_id")
_ERROR_BODY_LIMIT: Final = 500


def _translate_permit_type(payload: PermitTypePayload) -> PermitTypeEntry:
    return PermitTypeEntry(
        type_id=payload.id,
        name=payload.name,
        parent_id=payload.parent_id,
        children=tuple(_translate_permit_type(child) for child in payload.children),
    )


def _translate_permit_status(payload: PermitStatusPayload) -> PermitStatusEntry:
    return PermitStatusEntry(
        status_id=payload.id, name=payload.status_name, status_type=payload.status_type or ""
    )


def _translate_candidate(payload: CandidateTicketPayload) -> CandidateTicket:
    return CandidateTicket(
        ticket_id=payload.ticket_id,
        title=payload.title or "",
        description=payload.description or "",
        address=payload.address or "",
        latitude=payload.lat,
        longitude=payload.lng,
        status=payload.status or "",
        ticket_type=payload.ticket_type or "",
        created_at=payload.created_at,
        external_id=payload.external_id,
    )


class TicketingClient:
    """Gateway to the ticketing API, shared by all calls of one run.

    Use it as an async context manager so every request goes through the same
    rate limiter. Transport failures and unexpected responses surface as
    :class:`TicketingAPIError`.
    """

    def __init__(
        self,
        *,
        config: TicketingConfig,
        client_factory: Callable[[ResilienceConfig], ResilientClient] | None = None,
    ) -> None:
        self._config = config
        self._client_factory = client_factory or ResilientClient
        self._client: ResilientClient | None = None

    async def __aenter__(self) -> TicketingClient:
        self._client = self._client_factory(self._config.resilience)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # Tickets --------------------------------------------------------------

    async def find_ticket_by_reference(self, identity_key: str) -> TicketReference | None:
        response = await self._request(
            "GET",
            "/api/external/ticket-by-reference",
            params={"external_id": identity_key, "source": self._config.reference_source},
        )
        if response.status_code == httpx.codes.NOT_FOUND:
            return None
        payload = self._parse(response, TicketReferencePayload, "find ticket by reference")
        return TicketReference(ticket_id=payload.ticket_id, external_id=payload.external_id)

    async def find_tickets_by_reference_pattern(self, pattern: str) -> list[TicketReference]:
        response = await self._request(
            "GET",
            "/api/external/tickets-by-reference-pattern",
            params={"pattern": pattern, "source": self._config.reference_source},
        )
        if response.status_code == httpx.codes.NOT_FOUND:
            return []
        payload = self._parse(response, TicketsByPatternResponse, "find tickets by pattern")
        return [
            TicketReference(ticket_id=item.ticket_id, external_id=item.external_id)
            for item in payload.tickets
        ]

    async def change_ticket_status(self, ticket_id: int, status_id: int) -> None:
        await self._post_form(
            "/api/change-status/external",
            {"ticket_id": str(ticket_id), "status_id": str(status_id)},
            "change ticket status",
        )

    async def move_ticket_to_step(self, ticket_id: int, step_id: int) -> None:
        await self._post_form(
            "/api/change-step/external",
            {"ticket_id": str(ticket_id), "step_id": str(step_id)},
            "change ticket step",
        )

    async def add_comment(self, ticket_id: int, content: str) -> None:
        await self._post_form(
            "/api/comments/external",
            {"ticket_id": str(ticket_id), "content": content},
            "add comment",
        )

    async def close_ticket(self, ticket_id: int, reason: str) -> None:
        await self.move_ticket_to_step(ticket_id, self._config.close_step_id)
        await self.add_comment(ticket_id, f"Automatically closed: {reason}")

    async def set_ticket_reference(self, ticket_id: int, identity_key: str | None) -> str | None:
        """Stamp a ticket with an identity key. ``None`` clears the stamp."""

        response = await self._post_form(
            "/api/update-external-reference/external",
            {
                "ticket_id": str(ticket_id),
                "source": self._config.reference_source,
                "external_id": identity_key or "",
                "org_id": str(self._config.org_id),
            },
            "update external reference",
        )
        payload = self._parse(response, UpdateReferenceResponse, "update external reference")
        log.debug("Reference on ticket %s: %s", ticket_id, payload.action)
        return payload.action

    async def find_tickets_near(self, query: LocationQuery) -> list[CandidateTicket]:
        body: dict[str, Any] = {
            "address": query.address,
            "radius": query.radius_meters,
            "org_id": self._config.org_id,
            "from_date": query.from_date.isoformat(),
            "include_resolved": query.include_resolved,
            "limit": query.limit,
        }
        response = await self._request("POST", "/api/external/tickets/by-location", json=body)
        if response.status_code == httpx.codes.NOT_FOUND:
            return []
        payload = self._parse(response, TicketsByLocationResponse, "find tickets by location")
        return [_translate_candidate(item) for item in payload.tickets]

    # Permits --------------------------------------------------------------

    async def get_permit(self, permit_no: str) -> ExternalPermit | None:
        response = await self._request("GET", f"/api/external/permits/{quote(permit_no, safe='')}")
        if response.status_code == httpx.codes.NOT_FOUND:
            return None
        return self._permit(self._parse(response, PermitResponse, "get permit"))

    async def create_permit(self, payload: PermitPayload) -> ExternalPermit:
        response = await self._request("POST", "/api/external/permits", json=payload.as_request())
        return self._permit(self._parse(response, PermitResponse, "create permit"))

    async def update_permit(self, permit_ref: int | str, payload: PermitPayload) -> ExternalPermit:
        response = await self._request(
            "PATCH",
            f"/api/external/permits/{quote(str(permit_ref), safe='')}",
            json=payload.as_request(),
        )
        return self._permit(self._parse(response, PermitResponse, "update permit"))

    async def bulk_create_permits(self, payloads: Sequence[PermitPayload]) -> BulkCreateResult:
        response = await self._request(
            "POST",
            "/api/external/permits",
            json={"mode": "bulk", "permits": [payload.as_request() for payload in payloads]},
        )
        data = self._parse(response, BulkCreateResponse, "bulk create permits").data
        return BulkCreateResult(
            created=data.created,
            failed=data.failed,
            created_ids=tuple(data.created_ids),
            errors=tuple(
                BulkCreateError(index=error.index, message=error.error, permit_no=error.permit_no)
                for error in data.errors
            ),
        )

    async def list_permit_types(self) -> list[PermitTypeEntry]:
        response = await self._request(
            "GET", "/api/external/permits/types", params={"include_subtypes": "true"}
        )
        payload = self._parse(response, PermitTypesResponse, "list permit types")
        return [_translate_permit_type(item) for item in payload.data]

    async def create_permit_type(
        self, name: str, *, parent_id: int | None = None
    ) -> PermitTypeEntry:
        body: dict[str, Any] = {"name": name, "enabled": True}
        if parent_id is not None:
            body["parent_id"] = parent_id
        response = await self._request("POST", "/api/external/permits/types", json=body)
        payload = self._parse(response, PermitTypeResponse, f"create permit type {name!r}")
        return _translate_permit_type(payload.data)

    async def list_permit_statuses(self) -> list[PermitStatusEntry]:
        response = await self._request("GET", "/api/external/permits/statuses")
        payload = self._parse(response, PermitStatusesResponse, "list permit statuses")
        return [_translate_permit_status(item) for item in payload.data]

    async def create_permit_status(self, name: str, status_type: str) -> PermitStatusEntry:
        response = await self._request(
            "POST",
            "/api/external/permits/statuses",
            json={"status_name": name, "status_type": status_type},
        )
        item = self._parse(response, PermitStatusResponse, f"create permit status {name!r}").data
        return _translate_permit_status(item)

    # Plumbing -------------------------------------------------------------

    @property
    def _http(self) -> ResilientClient:
        if self._client is None:
            raise RuntimeError("TicketingClient must be used as an async context manager")
        return self._client

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._http.request(method, path, **kwargs)
        except httpx.HTTPStatusError as exc:
            raise TicketingAPIError(
                str(exc), status_code=exc.response.status_code, body=exc.response.text
            ) from exc
        except httpx.HTTPError as exc:
            raise TicketingAPIError(f"{method} {path} failed: {exc}") from exc

    async def _post_form(self, path: str, data: dict[str, str], action: str) -> httpx.Response:
        response = await self._request("POST", path, data=data)
        self._raise_for_status(response, action)
        return response

    def _parse[TModel: BaseModel](
        self,
        response: httpx.Response,
        model: type[TModel],
        action: str,
    ) -> TModel:
        self._raise_for_status(response, action)
        try:
            return model.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise TicketingAPIError(
                f"Unexpected response to {action}: {exc}",
                status_code=response.status_code,
                body=response.text[:_ERROR_BODY_LIMIT],
            ) from exc

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        body = response.text[:_ERROR_BODY_LIMIT]
        message = f"Failed to {action}: {response.status_code} {body}"
        if response.status_code == httpx.codes.UNPROCESSABLE_ENTITY and any(
            name in body for name in TAXONOMY_FIELDS
        ):
            raise StaleReferenceError(message, status_code=response.status_code, body=body)
        log.error(message)
        raise TicketingAPIError(message, status_code=response.status_code, body=body)

    @staticmethod
    def _permit(response: PermitResponse) -> ExternalPermit:
        return ExternalPermit(
            permit_id=response.data.id,
            permit_no=response.data.permit_no,
            status_id=response.data.status_id,
        )

