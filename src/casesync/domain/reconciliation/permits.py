"""Push permit changes into the ticketing system's permit registry."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from itertools import batched
from typing import TYPE_CHECKING, ClassVar, cast

from casesync.domain.ports.ticketing import PermitPayload, StaleReferenceError, TicketingAPIError
from casesync.domain.records import RecordType
from casesync.domain.state import PermitLinks

from .driver import ChangeHandler, InitialSyncResult

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence
    from datetime import datetime

    from casesync.domain.ports.ticketing import ExternalPermit, PermitGateway
    from casesync.domain.records import PermitRecord
    from casesync.domain.state import Change, Observation

    from .taxonomy import PermitTaxonomy, ResolvedTaxonomy

log = logging.getLogger(__name__)

# One try with the cached taxonomy and one after refreshing it.
PUSH_ATTEMPTS = 2
DEFAULT_PROCESSING_BATCH_SIZE = 1000
DEFAULT_REQUEST_SIZE = 100
DEFAULT_BATCH_DELAY_SECONDS = 1.0


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def build_permit_payload(record: PermitRecord, taxonomy: ResolvedTaxonomy) -> PermitPayload:
    return PermitPayload(
        permit_no=record.permit_no,
        values={
            "permit_type_id": taxonomy.type_id,
            "permit_subtype_id": taxonomy.subtype_id,
            "status_id": taxonomy.status_id,
            "description": record.description,
            "notes": record.notes,
            "job_value": record.job_value,
            "address": record.site_address,
            "apn": record.apn,
            "applied_at": _iso(record.applied_at),
            "approved_at": _iso(record.approved_at),
            "issued_at": _iso(record.issued_at),
            "finaled_at": _iso(record.finaled_at),
            "expired_at": _iso(record.expired_at),
        },
    )


def _links(permit_id: int | None, taxonomy: ResolvedTaxonomy) -> PermitLinks:
    return PermitLinks(
        permit_id=permit_id,
        type_id=taxonomy.type_id,
        subtype_id=taxonomy.subtype_id,
        status_id=taxonomy.status_id,
    )


@dataclass(frozen=True, slots=True)
class _Prepared:
    record: PermitRecord
    taxonomy: ResolvedTaxonomy
    payload: PermitPayload


@dataclass(slots=True)
class _ChunkOutcome:
    created: int = 0
    failed: int = 0
    links: dict[str, PermitLinks] = field(default_factory=dict)


class PermitChangeHandler(ChangeHandler):
    """Create or update permits, resolving taxonomy names through a per-run cache."""

    record_type: ClassVar[RecordType] = RecordType.PERMIT

    def __init__(
        self,
        *,
        gateway: PermitGateway,
        taxonomy: PermitTaxonomy,
        processing_batch_size: int = DEFAULT_PROCESSING_BATCH_SIZE,
        request_size: int = DEFAULT_REQUEST_SIZE,
        batch_delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._gateway = gateway
        self._taxonomy = taxonomy
        self._processing_batch_size = processing_batch_size
        self._request_size = request_size
        self._batch_delay_seconds = batch_delay_seconds
        self._sleep = sleep

    async def apply(self, change: Change) -> PermitLinks:
        record = cast("PermitRecord", change.record)
        attempt = 1
        while True:
            taxonomy = await self._taxonomy.resolve(record)
            payload = build_permit_payload(record, taxonomy)
            try:
                permit = await self._push(change, payload)
            except StaleReferenceError as exc:
                if attempt >= PUSH_ATTEMPTS:
                    raise
                log.warning(
                    "Stale permit taxonomy for %s (%s), refreshing and retrying",
                    change.identity_key,
                    exc,
                )
                attempt += 1
                await self._taxonomy.refresh()
                continue
            return _links(permit.permit_id, taxonomy)

    async def _push(self, change: Change, payload: PermitPayload) -> ExternalPermit:
        record = cast("PermitRecord", change.record)
        if change.is_new:
            existing = await self._gateway.get_permit(record.permit_no)
            if existing is not None:
                log.info("Permit %s already exists externally, updating", record.permit_no)
                return await self._gateway.update_permit(existing.permit_id, payload)
            log.info("Creating permit %s", record.permit_no)
            return await self._gateway.create_permit(payload)

        links = change.permit_links
        reference: int | str = (
            links.permit_id if links is not None and links.permit_id else record.permit_no
        )
        log.info("Updating permit %s", record.permit_no)
        return await self._gateway.update_permit(reference, payload)

    async def initial_sync(self, observations: Sequence[Observation]) -> InitialSyncResult:
        created = 0
        errors = 0
        links: dict[str, PermitLinks] = {}
        batches = list(batched(observations, self._processing_batch_size))

        for number, batch in enumerate(batches, start=1):
            prepared: list[_Prepared] = []
            for observation in batch:
                record = cast("PermitRecord", observation.record)
                try:
                    taxonomy = await self._taxonomy.resolve(record)
                except TicketingAPIError as exc:
                    errors += 1
                    log.warning("Could not resolve taxonomy for %s: %s", record.permit_no, exc)
                    continue
                prepared.append(
                    _Prepared(record, taxonomy, build_permit_payload(record, taxonomy))
                )

            outcomes = await asyncio.gather(
                *(self._create_chunk(chunk) for chunk in batched(prepared, self._request_size))
            )
            batch_created = sum(outcome.created for outcome in outcomes)
            batch_failed = sum(outcome.failed for outcome in outcomes)
            created += batch_created
            errors += batch_failed
            for outcome in outcomes:
                links.update(outcome.links)
            log.info(
                "Permit batch %d/%d: %d created, %d failed",
                number,
                len(batches),
                batch_created,
                batch_failed,
            )

            if number < len(batches):
                await self._sleep(self._batch_delay_seconds)

        return InitialSyncResult(changed=created, errors=errors, permit_links=links)

    async def _create_chunk(self, chunk: Sequence[_Prepared]) -> _ChunkOutcome:
        try:
            result = await self._gateway.bulk_create_permits([item.payload for item in chunk])
        except TicketingAPIError as exc:
            log.error("Bulk create of %d permits failed: %s", len(chunk), exc)
            return _ChunkOutcome(failed=len(chunk))

        failed_indexes: set[int] = set()
        for error in result.errors:
            failed_indexes.add(error.index)
            log.warning(
                "Bulk create failed for %s: %s",
                error.permit_no or f"index {error.index}",
                error.message,
            )

        succeeded = [item for index, item in enumerate(chunk) if index not in failed_indexes]
        outcome = _ChunkOutcome(created=result.created, failed=result.failed)
        if len(succeeded) == len(result.created_ids):
            for item, permit_id in zip(succeeded, result.created_ids, strict=True):
                outcome.links[item.record.identity_key] = _links(permit_id, item.taxonomy)
        else:
            log.warning(
                "Bulk create returned %d ids for %d accepted permits, not linking IDs",
                len(result.created_ids),
                len(succeeded),
            )
        return outcome
