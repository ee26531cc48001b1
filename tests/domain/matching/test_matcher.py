from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from casesync.adapters.sqlalchemy.mappings import match_log_table, review_queue_table
from casesync.domain.matching import MatcherSettings, TicketMatcher
from casesync.domain.matching.contracts import ReviewReason
from casesync.domain.ports.classifier import ClassifierError
from casesync.domain.ports.ticketing import CandidateTicket, TicketingAPIError
from casesync.domain.records import RecordType
from casesync.domain.signatures import signature_policy_for
from casesync.domain.state import MatchConfidence, MatchMethod, Observation
from tests.helpers.fakes import FakeClassifier, FakeTicketGateway
from tests.helpers.records import make_violation

if TYPE_CHECKING:
    from casesync.adapters.sqlalchemy.unit_of_work import SqlAlchemySyncUnitOfWork
    from casesync.domain.records import ViolationRecord

POLICY = signature_policy_for(RecordType.VIOLATION)


def _store(uow: SqlAlchemySyncUnitOfWork, record: ViolationRecord) -> None:
    uow.repositories.states.upsert([Observation(record, POLICY.signature(record))], policy=POLICY)
    uow.commit()


def _count(uow: SqlAlchemySyncUnitOfWork, table_name: str) -> int:
    table = {"review_queue": review_queue_table, "match_log": match_log_table}[table_name]
    return uow.session.execute(select(func.count()).select_from(table)).scalar_one()


def _candidates() -> list[CandidateTicket]:
    return [
        CandidateTicket(ticket_id=7, title="Tall grass", address="100 Main St"),
        CandidateTicket(ticket_id=8, title="Pothole", address="104 Main St"),
    ]


def _matcher(
    uow: SqlAlchemySyncUnitOfWork,
    gateway: FakeTicketGateway,
    classifier: FakeClassifier | None = None,
) -> TicketMatcher:
    return TicketMatcher(
        uow=uow,
        gateway=gateway,
        classifier=classifier,
        settings=MatcherSettings(radius_meters=150, lookback_days=30),
    )


def test_cached_match_skips_external_calls(uow: SqlAlchemySyncUnitOfWork) -> None:
    record = make_violation()
    _store(uow, record)
    uow.repositories.states.record_ticket_match(
        record.identity_key,
        ticket_id=42,
        method=MatchMethod.HEURISTIC,
        confidence=MatchConfidence.HIGH,
    )
    uow.commit()
    gateway = FakeTicketGateway(reference_error=TicketingAPIError("must not be called"))

    result = asyncio.run(_matcher(uow, gateway, FakeClassifier()).match(record))

    assert result.ticket_id == 42
    assert result.method is MatchMethod.CACHED
    assert result.confidence is MatchConfidence.HIGH
    assert gateway.location_queries == []


def test_stamped_ticket_is_found_and_cached(uow: SqlAlchemySyncUnitOfWork) -> None:
    record = make_violation()
    _store(uow, record)
    gateway = FakeTicketGateway(references={record.identity_key: 11})

    result = asyncio.run(_matcher(uow, gateway).match(record))

    assert result.ticket_id == 11
    assert result.method is MatchMethod.EXTERNAL_ID
    cached = uow.repositories.states.get(RecordType.VIOLATION, record.identity_key)
    assert cached is not None
    assert cached.ticket_match is not None
    assert cached.ticket_match.ticket_id == 11
    assert cached.ticket_match.method is MatchMethod.EXTERNAL_ID


def test_reference_lookup_failure_falls_through(uow: SqlAlchemySyncUnitOfWork) -> None:
    record = make_violation()
    gateway = FakeTicketGateway(reference_error=TicketingAPIError("boom", status_code=500))

    result = asyncio.run(_matcher(uow, gateway).match(record))

    assert result.ticket_id is None
    assert result.needs_review is True


def test_without_classifier_nothing_is_queued(uow: SqlAlchemySyncUnitOfWork) -> None:
    record = make_violation()

    result = asyncio.run(_matcher(uow, FakeTicketGateway()).match(record))

    assert result.ticket_id is None
    assert result.method is MatchMethod.NONE
    assert result.needs_review is True
    assert _count(uow, "review_queue") == 0
    assert _count(uow, "match_log") == 0


def test_no_candidates_queues_review_and_logs_attempt(uow: SqlAlchemySyncUnitOfWork) -> None:
    record = make_violation()
    gateway = FakeTicketGateway()
    classifier = FakeClassifier()

    result = asyncio.run(_matcher(uow, gateway, classifier).match(record))

    assert result.ticket_id is None
    assert result.needs_review is True
    assert classifier.prompts == []
    pending = uow.repositories.review_queue.pending()
    assert len(pending) == 1
    assert pending[0].reason is ReviewReason.NO_CANDIDATES
    assert pending[0].identity_key == record.identity_key
    log_row = uow.session.execute(select(match_log_table)).one()
    assert log_row.candidate_count == 0
    assert log_row.identity_key == record.identity_key


def test_location_query_uses_settings_and_observed_date(uow: SqlAlchemySyncUnitOfWork) -> None:
    record = make_violation()
    gateway = FakeTicketGateway()

    asyncio.run(_matcher(uow, gateway, FakeClassifier()).match(record))

    (query,) = gateway.location_queries
    assert query.address == record.full_address
    assert query.radius_meters == 150
    assert query.include_resolved is False
    assert query.from_date.date().isoformat() == "2024-01-31"


def test_confident_match_is_cached_and_stamped(uow: SqlAlchemySyncUnitOfWork) -> None:
    record = make_violation()
    _store(uow, record)
    gateway = FakeTicketGateway(nearby=_candidates())
    classifier = FakeClassifier(
        content='{"ticketId": 7, "confidence": "medium", "reasoning": "same address"}'
    )

    result = asyncio.run(_matcher(uow, gateway, classifier).match(record))

    assert result.ticket_id == 7
    assert result.method is MatchMethod.HEURISTIC
    assert result.confidence is MatchConfidence.MEDIUM
    assert gateway.stamps == [(7, record.identity_key)]
    cached = uow.repositories.states.get(RecordType.VIOLATION, record.identity_key)
    assert cached is not None
    assert cached.ticket_match is not None
    assert cached.ticket_match.ticket_id == 7
    log_row = uow.session.execute(select(match_log_table)).one()
    assert log_row.selected_ticket_id == 7
    assert log_row.candidate_count == 2
    assert log_row.prompt_tokens == 120
    assert log_row.reasoning == "same address"


def test_failed_stamp_keeps_the_match(uow: SqlAlchemySyncUnitOfWork) -> None:
    record = make_violation()
    _store(uow, record)
    gateway = FakeTicketGateway(nearby=_candidates(), failing_stamps=True)
    classifier = FakeClassifier(content='{"ticketId": 8, "confidence": "high"}')

    result = asyncio.run(_matcher(uow, gateway, classifier).match(record))

    assert result.ticket_id == 8
    cached = uow.repositories.states.get(RecordType.VIOLATION, record.identity_key)
    assert cached is not None
    assert cached.ticket_match is not None


def test_low_confidence_is_never_applied(uow: SqlAlchemySyncUnitOfWork) -> None:
    record = make_violation()
    _store(uow, record)
    gateway = FakeTicketGateway(nearby=_candidates())
    classifier = FakeClassifier(
        content='{"ticketId": 7, "confidence": "low", "reasoning": "maybe"}'
    )

    result = asyncio.run(_matcher(uow, gateway, classifier).match(record))

    assert result.ticket_id is None
    assert result.needs_review is True
    assert result.confidence is MatchConfidence.LOW
    assert gateway.stamps == []
    cached = uow.repositories.states.get(RecordType.VIOLATION, record.identity_key)
    assert cached is not None
    assert cached.ticket_match is None
    (item,) = uow.repositories.review_queue.pending()
    assert item.reason is ReviewReason.LOW_CONFIDENCE
    assert item.candidates is not None
    assert [candidate["id"] for candidate in item.candidates] == [7, 8]


def test_out_of_set_ticket_is_a_parse_error(uow: SqlAlchemySyncUnitOfWork) -> None:
    record = make_violation()
    gateway = FakeTicketGateway(nearby=_candidates())
    classifier = FakeClassifier(content='{"ticketId": 99, "confidence": "high"}')

    result = asyncio.run(_matcher(uow, gateway, classifier).match(record))

    assert result.ticket_id is None
    (item,) = uow.repositories.review_queue.pending()
    assert item.reason is ReviewReason.LLM_PARSE_ERROR


def test_classifier_failure_is_queued_not_raised(uow: SqlAlchemySyncUnitOfWork) -> None:
    record = make_violation()
    gateway = FakeTicketGateway(nearby=_candidates())
    classifier = FakeClassifier(error=ClassifierError("rate limited"))

    result = asyncio.run(_matcher(uow, gateway, classifier).match(record))

    assert result.ticket_id is None
    assert result.needs_review is True
    (item,) = uow.repositories.review_queue.pending()
    assert item.reason is ReviewReason.API_ERROR
    assert _count(uow, "match_log") == 1


def test_location_search_failure_retries_next_cycle(uow: SqlAlchemySyncUnitOfWork) -> None:
    record = make_violation()
    gateway = FakeTicketGateway(location_error=TicketingAPIError("timeout"))

    result = asyncio.run(_matcher(uow, gateway, FakeClassifier()).match(record))

    assert result.ticket_id is None
    assert result.needs_review is False
    assert _count(uow, "review_queue") == 0
    log_row = uow.session.execute(select(match_log_table)).one()
    assert log_row.candidate_count is None
    assert log_row.selected_ticket_id is None
    assert log_row.reasoning.startswith("location_search_error")


def test_repeated_failures_keep_one_pending_item(uow: SqlAlchemySyncUnitOfWork) -> None:
    record = make_violation()
    matcher = _matcher(uow, FakeTicketGateway(), FakeClassifier())

    asyncio.run(matcher.match(record))
    asyncio.run(matcher.match(record))

    assert _count(uow, "review_queue") == 1
    assert _count(uow, "match_log") == 2
