"""Resolve violation records to external tickets.

Resolution tiers are tried in order and the first one that yields a ticket wins:

1. the ticket already cached on the record's state row,
2. a ticket stamped with the record's identity key in the ticketing system,
3. a classifier decision among tickets reported near the record's address.

Anything the classifier cannot settle with at least medium confidence is queued
for manual review instead of being applied.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime, time as day_time, timedelta
from typing import TYPE_CHECKING

from casesync.domain.ports.classifier import ClassifierError
from casesync.domain.ports.ticketing import LocationQuery, TicketingAPIError
from casesync.domain.records import RecordType, record_payload
from casesync.domain.state import MatchConfidence, MatchMethod

from .contracts import MatchLogEntry, MatchResult, ReviewQueueItem, ReviewReason
from .prompt import (
    SYSTEM_PROMPT,
    ClassifierReplyError,
    build_user_prompt,
    candidate_summary,
    parse_classifier_reply,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from casesync.domain.ports.classifier import ClassifierReply, MatchClassifier
    from casesync.domain.ports.ticketing import CandidateTicket, TicketGateway
    from casesync.domain.ports.unit_of_work import SyncUnitOfWork
    from casesync.domain.records import ViolationRecord

    from .prompt import ClassifiedMatch

log = logging.getLogger(__name__)

_ACCEPTED_CONFIDENCE = frozenset({MatchConfidence.HIGH, MatchConfidence.MEDIUM})


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class MatcherSettings:
    radius_meters: int = 100
    lookback_days: int = 90
    candidate_limit: int = 10


class TicketMatcher:
    """Layered ticket resolution for violation records.

    The matcher owns the review queue and the match log. Every write is committed
    immediately.
    """

    def __init__(
        self,
        *,
        uow: SyncUnitOfWork,
        gateway: TicketGateway,
        classifier: MatchClassifier | None = None,
        settings: MatcherSettings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._uow = uow
        self._gateway = gateway
        self._classifier = classifier
        self._settings = settings or MatcherSettings()
        self._clock = clock

    async def match(self, record: ViolationRecord) -> MatchResult:
        key = record.identity_key

        cached = self._uow.repositories.states.get(RecordType.VIOLATION, key)
        if cached is not None and cached.ticket_match is not None:
            log.debug("Cache hit for %s: ticket %s", key, cached.ticket_match.ticket_id)
            return MatchResult(
                ticket_id=cached.ticket_match.ticket_id,
                method=MatchMethod.CACHED,
                confidence=cached.ticket_match.confidence,
            )

        stamped = await self._find_stamped_ticket(key)
        if stamped is not None:
            log.info("Found ticket %s stamped with %s", stamped, key)
            self._cache_match(key, stamped, MatchMethod.EXTERNAL_ID, None)
            return MatchResult(ticket_id=stamped, method=MatchMethod.EXTERNAL_ID)

        if self._classifier is None:
            log.info("No ticket linked to %s and heuristic matching is disabled", key)
            return MatchResult.unmatched(needs_review=True)

        return await self._match_heuristically(record, self._classifier)

    async def _find_stamped_ticket(self, identity_key: str) -> int | None:
        try:
            reference = await self._gateway.find_ticket_by_reference(identity_key)
        except TicketingAPIError as exc:
            log.warning("Reference lookup for %s failed, continuing: %s", identity_key, exc)
            return None
        return reference.ticket_id if reference is not None else None

    async def _match_heuristically(
        self,
        record: ViolationRecord,
        classifier: MatchClassifier,
    ) -> MatchResult:
        key = record.identity_key
        started = time.perf_counter()

        try:
            candidates = await self._gateway.find_tickets_near(self._location_query(record))
        except TicketingAPIError as exc:
            log.warning("Location search for %s failed, will retry next run: %s", key, exc)
            self._log_attempt(
                key, started, candidate_count=None, reasoning=f"location_search_error: {exc}"
            )
            return MatchResult.unmatched(needs_review=False)

        if not candidates:
            log.info("No candidate tickets near %r for %s", record.full_address, key)
            self._enqueue(record, ReviewReason.NO_CANDIDATES, candidates)
            self._log_attempt(key, started, reasoning=ReviewReason.NO_CANDIDATES.value)
            return MatchResult.unmatched(needs_review=True)

        try:
            reply = await classifier.classify(
                system_prompt=SYSTEM_PROMPT,
                user_prompt=build_user_prompt(record, candidates),
            )
        except ClassifierError as exc:
            log.warning("Classifier call for %s failed: %s", key, exc)
            self._enqueue(record, ReviewReason.API_ERROR, candidates)
            self._log_attempt(
                key, started, candidate_count=len(candidates), reasoning=f"api_error: {exc}"
            )
            return MatchResult.unmatched(needs_review=True)

        try:
            verdict = parse_classifier_reply(
                reply.content, {candidate.ticket_id for candidate in candidates}
            )
        except ClassifierReplyError as exc:
            log.warning("Unusable classifier reply for %s: %s", key, exc)
            self._enqueue(record, ReviewReason.LLM_PARSE_ERROR, candidates)
            self._log_attempt(
                key,
                started,
                candidate_count=len(candidates),
                reasoning=f"parse_error: {exc}",
                reply=reply,
            )
            return MatchResult.unmatched(needs_review=True)

        self._log_attempt(
            key, started, candidate_count=len(candidates), reply=reply, verdict=verdict
        )

        if verdict.ticket_id is None or verdict.confidence not in _ACCEPTED_CONFIDENCE:
            log.info(
                "Classifier verdict for %s needs review (ticket=%s, confidence=%s)",
                key,
                verdict.ticket_id,
                verdict.confidence,
            )
            self._enqueue(record, ReviewReason.LOW_CONFIDENCE, candidates)
            return MatchResult(
                ticket_id=None,
                method=MatchMethod.NONE,
                confidence=verdict.confidence,
                needs_review=True,
            )

        self._cache_match(key, verdict.ticket_id, MatchMethod.HEURISTIC, verdict.confidence)
        await self._stamp(verdict.ticket_id, key)
        log.info(
            "Matched %s to ticket %s (%s confidence)", key, verdict.ticket_id, verdict.confidence
        )
        return MatchResult(
            ticket_id=verdict.ticket_id,
            method=MatchMethod.HEURISTIC,
            confidence=verdict.confidence,
        )

    def _location_query(self, record: ViolationRecord) -> LocationQuery:
        if record.observed_on is not None:
            anchor = datetime.combine(record.observed_on, day_time.min, tzinfo=UTC)
        else:
            anchor = self._clock()
        return LocationQuery(
            address=record.full_address,
            radius_meters=self._settings.radius_meters,
            from_date=anchor - timedelta(days=self._settings.lookback_days),
            include_resolved=False,
            limit=self._settings.candidate_limit,
        )

    async def _stamp(self, ticket_id: int, identity_key: str) -> None:
        try:
            await self._gateway.set_ticket_reference(ticket_id, identity_key)
        except TicketingAPIError as exc:
            log.warning("Could not stamp ticket %s with %s: %s", ticket_id, identity_key, exc)

    def _cache_match(
        self,
        identity_key: str,
        ticket_id: int,
        method: MatchMethod,
        confidence: MatchConfidence | None,
    ) -> None:
        self._uow.repositories.states.record_ticket_match(
            identity_key, ticket_id=ticket_id, method=method, confidence=confidence
        )
        self._uow.commit()

    def _enqueue(
        self,
        record: ViolationRecord,
        reason: ReviewReason,
        candidates: Sequence[CandidateTicket],
    ) -> None:
        item = ReviewQueueItem(
            identity_key=record.identity_key,
            record_payload=record_payload(record),
            reason=reason,
            candidates=[candidate_summary(candidate) for candidate in candidates],
        )
        if self._uow.repositories.review_queue.enqueue(item):
            log.info("Queued %s for review (%s)", record.identity_key, reason)
        else:
            log.debug("%s already pending review", record.identity_key)
        self._uow.commit()

    def _log_attempt(
        self,
        identity_key: str,
        started: float,
        *,
        candidate_count: int | None = 0,
        reasoning: str | None = None,
        reply: ClassifierReply | None = None,
        verdict: ClassifiedMatch | None = None,
    ) -> None:
        entry = MatchLogEntry(
            identity_key=identity_key,
            method=MatchMethod.HEURISTIC,
            candidate_count=candidate_count,
            selected_ticket_id=verdict.ticket_id if verdict else None,
            confidence=verdict.confidence if verdict else None,
            reasoning=verdict.reasoning if verdict else reasoning,
            prompt_tokens=reply.prompt_tokens if reply else None,
            completion_tokens=reply.completion_tokens if reply else None,
            duration_ms=round((time.perf_counter() - started) * 1000),
        )
        self._uow.repositories.match_log.add(entry)
        self._uow.commit()
