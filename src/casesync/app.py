"""Application orchestration entry points."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import AsyncExitStack
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from casesync.adapters.csv_source import read_csv_file, read_csv_rows
from casesync.adapters.openai import OpenAIMatchClassifier
from casesync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemySyncUnitOfWork,
    is_started,
    startup,
)
from casesync.adapters.ticketing import TicketingClient
from casesync.config import (
    MatchingConfig,
    MissingConfigurationError,
    SyncConfig,
    get_matching_config,
    get_sync_config,
    get_ticketing_config,
)
from casesync.domain.matching import (
    MatcherSettings,
    TicketMatcher,
    pending_reviews,
    resolve_review_item,
    review_stats,
)
from casesync.domain.normalization import RecordRejectedError, normalize_row
from casesync.domain.ports.unit_of_work import SyncUnitOfWork
from casesync.domain.reconciliation import (
    ChangeHandler,
    InspectionChangeHandler,
    PermitChangeHandler,
    PermitTaxonomy,
    ReconciliationDriver,
    ViolationChangeHandler,
)
from casesync.domain.records import RecordType
from casesync.domain.signatures import signature_policy_for

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence
    from pathlib import Path

    from casesync.domain.matching import ReviewQueueItem, ReviewStats
    from casesync.domain.ports.classifier import MatchClassifier
    from casesync.domain.ports.ticketing import ExternalGateway, TicketGateway
    from casesync.domain.reconciliation import RunSummary
    from casesync.domain.records import NormalizedRecord
    from casesync.domain.signatures import SignaturePolicy

UnitOfWorkFactory = Callable[[], SyncUnitOfWork]

log = getLogger(__name__)

_FILENAME_KEYWORDS: tuple[tuple[str, RecordType], ...] = (
    ("violation", RecordType.VIOLATION),
    ("inspection", RecordType.INSPECTION),
)


@dataclass(frozen=True, slots=True)
class Attachment:
    """A decoded CSV attachment of one report delivery."""

    filename: str
    content: str


@dataclass(frozen=True, slots=True)
class IngestResult:
    record_type: RecordType
    rejected: int
    summary: RunSummary


def detect_report_type(filename: str, subject: str | None = None) -> RecordType | None:
    """Classify an attachment by the delivery subject or its filename.

    Permit reports are only recognisable by subject. Anything that is not a CSV
    file yields ``None``.
    """

    name = filename.lower()
    if not name.endswith(".csv"):
        return None
    if subject and "permit" in subject.lower():
        return RecordType.PERMIT
    for keyword, record_type in _FILENAME_KEYWORDS:
        if keyword in name:
            return record_type
    return None


def normalize_rows(
    record_type: RecordType, rows: Iterable[Mapping[str, str | None]]
) -> tuple[list[NormalizedRecord], int]:
    """Normalize ``rows`` and return the records plus the number rejected."""

    records: list[NormalizedRecord] = []
    rejected = 0
    for line_no, row in enumerate(rows, start=2):
        try:
            records.append(normalize_row(record_type, row))
        except RecordRejectedError as exc:
            rejected += 1
            log.warning("Skipping %s row on line %d: %s", record_type, line_no, exc)
    if rejected:
        log.warning("Rejected %d of %d %s rows", rejected, rejected + len(records), record_type)
    return records, rejected


def build_change_handler(
    record_type: RecordType,
    *,
    uow: SyncUnitOfWork,
    gateway: ExternalGateway,
    policy: SignaturePolicy,
    classifier: MatchClassifier | None = None,
    sync_config: SyncConfig | None = None,
    matching_config: MatchingConfig | None = None,
) -> ChangeHandler:
    effective_sync = sync_config or SyncConfig()
    match record_type:
        case RecordType.VIOLATION:
            settings = matching_config or MatchingConfig()
            matcher = TicketMatcher(
                uow=uow,
                gateway=gateway,
                classifier=classifier,
                settings=MatcherSettings(
                    radius_meters=settings.radius_meters,
                    lookback_days=settings.lookback_days,
                    candidate_limit=settings.candidate_limit,
                ),
            )
            return ViolationChangeHandler(matcher=matcher, gateway=gateway, policy=policy)
        case RecordType.INSPECTION:
            return InspectionChangeHandler(gateway=gateway, policy=policy)
        case RecordType.PERMIT:
            return PermitChangeHandler(
                gateway=gateway,
                taxonomy=PermitTaxonomy(gateway),
                processing_batch_size=effective_sync.bulk_processing_batch_size,
                request_size=effective_sync.bulk_request_size,
                batch_delay_seconds=effective_sync.bulk_batch_delay_seconds,
            )


async def reconcile_records(
    record_type: RecordType,
    records: Sequence[NormalizedRecord],
    *,
    unit_of_work_factory: UnitOfWorkFactory,
    gateway: ExternalGateway | None = None,
    classifier: MatchClassifier | None = None,
    sync_config: SyncConfig | None = None,
    matching_config: MatchingConfig | None = None,
) -> RunSummary:
    """Run one reconciliation of ``records`` against stored state.

    Missing collaborators are built from the environment and closed when the run
    ends. A classifier is only created for violations with heuristic matching on.
    """

    effective_sync = sync_config or get_sync_config()
    effective_matching = matching_config or get_matching_config()
    policy = signature_policy_for(record_type, effective_sync.tracked_fields.get(record_type))

    async with AsyncExitStack() as stack:
        if gateway is None:
            gateway = await stack.enter_async_context(
                TicketingClient(config=get_ticketing_config())
            )
        if (
            classifier is None
            and record_type is RecordType.VIOLATION
            and effective_matching.classifier is not None
        ):
            classifier = await stack.enter_async_context(
                OpenAIMatchClassifier(config=effective_matching.classifier)
            )

        with unit_of_work_factory() as uow:
            handler = build_change_handler(
                record_type,
                uow=uow,
                gateway=gateway,
                policy=policy,
                classifier=classifier,
                sync_config=effective_sync,
                matching_config=effective_matching,
            )
            driver = ReconciliationDriver(
                uow=uow,
                handler=handler,
                policy=policy,
                dry_run=effective_sync.dry_run_for(record_type),
            )
            return await driver.run(records)


def _resolve_uow_factory(unit_of_work_factory: UnitOfWorkFactory | None) -> UnitOfWorkFactory:
    if unit_of_work_factory is not None:
        return unit_of_work_factory
    if not is_started():
        startup()
    return SqlAlchemySyncUnitOfWork


def ingest_rows(
    record_type: RecordType,
    rows: Iterable[Mapping[str, str | None]],
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    gateway: ExternalGateway | None = None,
    classifier: MatchClassifier | None = None,
    sync_config: SyncConfig | None = None,
    matching_config: MatchingConfig | None = None,
) -> IngestResult:
    """Normalize decoded CSV rows and reconcile them in one run."""

    records, rejected = normalize_rows(record_type, rows)
    summary = asyncio.run(
        reconcile_records(
            record_type,
            records,
            unit_of_work_factory=_resolve_uow_factory(unit_of_work_factory),
            gateway=gateway,
            classifier=classifier,
            sync_config=sync_config,
            matching_config=matching_config,
        )
    )
    return IngestResult(record_type=record_type, rejected=rejected, summary=summary)


def ingest_delivery(
    subject: str | None,
    attachments: Iterable[Attachment],
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    gateway: ExternalGateway | None = None,
    classifier: MatchClassifier | None = None,
    sync_config: SyncConfig | None = None,
    matching_config: MatchingConfig | None = None,
) -> list[IngestResult]:
    """Process the CSV attachments of one delivery, one after the other.

    The first failing attachment aborts the delivery so the sender can retry it.
    """

    results: list[IngestResult] = []
    for attachment in attachments:
        record_type = detect_report_type(attachment.filename, subject)
        if record_type is None:
            log.info("Ignoring attachment %s", attachment.filename)
            continue
        log.info("Processing %s as %s report", attachment.filename, record_type)
        rows = read_csv_rows(attachment.content)
        results.append(
            ingest_rows(
                record_type,
                rows,
                unit_of_work_factory=unit_of_work_factory,
                gateway=gateway,
                classifier=classifier,
                sync_config=sync_config,
                matching_config=matching_config,
            )
        )
    return results


def ingest_file(
    path: Path,
    *,
    record_type: RecordType | None = None,
    subject: str | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> IngestResult | None:
    """Ingest a CSV export from disk, detecting its type unless given."""

    effective_type = record_type or detect_report_type(path.name, subject)
    if effective_type is None:
        log.warning("Cannot tell the report type of %s, skipping", path)
        return None
    return ingest_rows(
        effective_type, read_csv_file(path), unit_of_work_factory=unit_of_work_factory
    )


# Review queue ----------------------------------------------------------------


def list_review_items(
    *, limit: int = 50, unit_of_work_factory: UnitOfWorkFactory | None = None
) -> Sequence[ReviewQueueItem]:
    with _resolve_uow_factory(unit_of_work_factory)() as uow:
        return pending_reviews(uow, limit=limit)


def get_review_stats(*, unit_of_work_factory: UnitOfWorkFactory | None = None) -> ReviewStats:
    with _resolve_uow_factory(unit_of_work_factory)() as uow:
        return review_stats(uow)


def resolve_review(
    item_id: int,
    *,
    ticket_id: int | None,
    resolved_by: str,
    gateway: TicketGateway | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> ReviewQueueItem:
    """Resolve or skip a review item, stamping the ticket when the API is configured."""

    factory = _resolve_uow_factory(unit_of_work_factory)

    async def _resolve() -> ReviewQueueItem:
        async with AsyncExitStack() as stack:
            effective_gateway = gateway
            if effective_gateway is None and ticket_id is not None:
                try:
                    config = get_ticketing_config()
                except MissingConfigurationError as exc:
                    log.warning("Ticket %s will not be stamped: %s", ticket_id, exc)
                else:
                    effective_gateway = await stack.enter_async_context(
                        TicketingClient(config=config)
                    )
            with factory() as uow:
                return await resolve_review_item(
                    uow,
                    item_id,
                    ticket_id=ticket_id,
                    resolved_by=resolved_by,
                    gateway=effective_gateway,
                )

    return asyncio.run(_resolve())
