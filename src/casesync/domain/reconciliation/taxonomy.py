"""Per-run cache of the ticketing system's permit types and statuses."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from casesync.domain.ports.ticketing import PermitGateway
    from casesync.domain.records import PermitRecord

log = logging.getLogger(__name__)

DEFAULT_PERMIT_TYPE: Final = "Other"

_STATUS_TYPE_RULES: Final[tuple[tuple[tuple[str, ...], str], ...]] = (
    (("FINAL", "C OF O", "COMPLETE"), "finaled"),
    (("ISSUED", "CORRECTIONS READY"), "issued"),
    (("APPROVED",), "approved"),
    (("EXPIRED", "CANCEL", "VOID"), "expired"),
)


def infer_status_type(status_name: str) -> str:
    """Map a report status name to the ticketing system's status lifecycle bucket."""

    upper = status_name.upper()
    for needles, status_type in _STATUS_TYPE_RULES:
        if any(needle in upper for needle in needles):
            return status_type
    return "applied"


def _normalize(name: str) -> str:
    return name.strip().upper()


@dataclass(frozen=True, slots=True)
class ResolvedTaxonomy:
    type_id: int
    subtype_id: int | None = None
    status_id: int | None = None


class PermitTaxonomy:
    """Name to ID lookups for permit types, subtypes and statuses.

    One instance lives for one reconciliation run. Entries are fetched on first
    use, missing names are created on the fly and :meth:`invalidate` drops
    everything so the next lookup refetches.
    """

    def __init__(self, gateway: PermitGateway) -> None:
        self._gateway = gateway
        self._types: dict[str, int] | None = None
        self._subtypes: dict[tuple[int, str], int] = {}
        self._statuses: dict[str, int] | None = None

    def invalidate(self) -> None:
        self._types = None
        self._subtypes = {}
        self._statuses = None

    async def refresh(self) -> None:
        self.invalidate()
        await self._load_types()
        await self._load_statuses()

    async def resolve(self, record: PermitRecord) -> ResolvedTaxonomy:
        type_id = await self.type_id(record.permit_type)
        subtype_id = (
            await self.subtype_id(type_id, record.permit_subtype) if record.permit_subtype else None
        )
        status_id = await self.status_id(record.status) if record.status else None
        return ResolvedTaxonomy(type_id=type_id, subtype_id=subtype_id, status_id=status_id)

    async def type_id(self, name: str) -> int:
        effective = name.strip() or DEFAULT_PERMIT_TYPE
        types = self._types if self._types is not None else await self._load_types()
        key = _normalize(effective)
        if key not in types:
            created = await self._gateway.create_permit_type(effective)
            log.info("Created permit type %r (id %s)", effective, created.type_id)
            types[key] = created.type_id
        return types[key]

    async def subtype_id(self, parent_id: int, name: str) -> int:
        if self._types is None:
            await self._load_types()
        key = (parent_id, _normalize(name))
        if key not in self._subtypes:
            created = await self._gateway.create_permit_type(name.strip(), parent_id=parent_id)
            log.info("Created permit subtype %r under %s (id %s)", name, parent_id, created.type_id)
            self._subtypes[key] = created.type_id
        return self._subtypes[key]

    async def status_id(self, name: str) -> int:
        statuses = self._statuses if self._statuses is not None else await self._load_statuses()
        key = _normalize(name)
        if key not in statuses:
            created = await self._gateway.create_permit_status(
                name.strip(), infer_status_type(name)
            )
            log.info("Created permit status %r (id %s)", name, created.status_id)
            statuses[key] = created.status_id
        return statuses[key]

    async def _load_types(self) -> dict[str, int]:
        entries = await self._gateway.list_permit_types()
        types: dict[str, int] = {}
        subtypes: dict[tuple[int, str], int] = {}
        for entry in entries:
            types[_normalize(entry.name)] = entry.type_id
            for child in entry.children:
                subtypes[(entry.type_id, _normalize(child.name))] = child.type_id
        self._types = types
        self._subtypes = subtypes
        log.info("Cached %d permit types and %d subtypes", len(types), len(subtypes))
        return types

    async def _load_statuses(self) -> dict[str, int]:
        entries = await self._gateway.list_permit_statuses()
        statuses = {_normalize(entry.name): entry.status_id for entry in entries}
        self._statuses = statuses
        log.info("Cached %d permit statuses", len(statuses))
        return statuses
