"""Pydantic models describing the ticketing API payloads."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


class TicketingBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class TicketReferencePayload(TicketingBaseModel):
    ticket_id: int
    external_id: str | None = None


class TicketsByPatternResponse(TicketingBaseModel):
    tickets: list[TicketReferencePayload] = Field(default_factory=list)


class CandidateTicketPayload(TicketingBaseModel):
    ticket_id: int
    title: str | None = None
    description: str | None = None
    address: str | None = None
    lat: float | None = None
    lng: float | None = None
    status: str | None = None
    created_at: datetime | None = None
    ticket_type: str | None = None
    external_id: str | None = None

    _normalize_created = field_validator("created_at", mode="before")(_blank_to_none)


class TicketsByLocationResponse(TicketingBaseModel):
    tickets: list[CandidateTicketPayload] = Field(default_factory=list)


class UpdateReferenceResponse(TicketingBaseModel):
    action: str | None = None


class PermitTypePayload(TicketingBaseModel):
    id: int
    name: str
    parent_id: int | None = None
    children: list[PermitTypePayload] = Field(default_factory=list)

    @field_validator("children", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return [] if value is None else value


class PermitTypesResponse(TicketingBaseModel):
    data: list[PermitTypePayload] = Field(default_factory=list)


class PermitTypeResponse(TicketingBaseModel):
    data: PermitTypePayload


class PermitStatusPayload(TicketingBaseModel):
    id: int
    status_name: str
    status_type: str | None = None


class PermitStatusesResponse(TicketingBaseModel):
    data: list[PermitStatusPayload] = Field(default_factory=list)


class PermitStatusResponse(TicketingBaseModel):
    data: PermitStatusPayload


class PermitPayloadModel(TicketingBaseModel):
    id: int
    permit_no: str
    status_id: int | None = None


class PermitResponse(TicketingBaseModel):
    data: PermitPayloadModel


class BulkErrorPayload(TicketingBaseModel):
    index: int
    error: str
    permit_no: str | None = None


class BulkCreatePayload(TicketingBaseModel):
    created: int = 0
    failed: int = 0
    created_ids: list[int] = Field(default_factory=list)
    errors: list[BulkErrorPayload] = Field(default_factory=list)


class BulkCreateResponse(TicketingBaseModel):
    data: BulkCreatePayload

