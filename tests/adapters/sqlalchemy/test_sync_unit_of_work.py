from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine

from casesync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemySyncUnitOfWork,
    StartupError,
    configured_engine,
    is_started,
    shutdown,
    startup,
)
from casesync.domain.diff import observe
from casesync.domain.matching.contracts import ReviewQueueItem, ReviewReason, ReviewStatus
from casesync.domain.records import RecordType
from casesync.domain.signatures import signature_policy_for
from casesync.domain.state import RunLog, RunStatus
from tests.helpers.records import make_violation

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sqlalchemy.engine import Engine

VIOLATIONS = signature_policy_for(RecordType.VIOLATION)


@pytest.fixture(autouse=True)
def reset_unit_of_work_state() -> Iterator[None]:
    shutdown()
    yield
    shutdown()


def test_unit_of_work_requires_startup() -> None:
    assert not is_started()
    with pytest.raises(StartupError):
        SqlAlchemySyncUnitOfWork()


def test_startup_requires_force_for_reconfiguration() -> None:
    engine_a = create_engine("sqlite+pysqlite:///:memory:")
    engine_b = create_engine("sqlite+pysqlite:///:memory:")

    startup(engine=engine_a, force=True)

    with pytest.raises(StartupError):
        startup(engine=engine_b)

    startup(engine=engine_b, force=True)
    assert configured_engine() is engine_b


def test_repositories_need_an_open_session(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)
    uow = SqlAlchemySyncUnitOfWork()

    with pytest.raises(StartupError):
        _ = uow.repositories


def test_committed_work_is_visible_to_next_unit(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)
    record = make_violation()

    with SqlAlchemySyncUnitOfWork() as uow:
        uow.repositories.states.upsert(observe([record], VIOLATIONS), policy=VIOLATIONS)
        run_log = RunLog(record_type=RecordType.VIOLATION)
        uow.repositories.run_logs.add(run_log)
        run_log.complete(total=1, changed=1, errors=0)
        uow.commit()

    with SqlAlchemySyncUnitOfWork() as uow:
        assert uow.repositories.states.get(RecordType.VIOLATION, record.identity_key) is not None
        [stored] = uow.repositories.run_logs.latest(RecordType.VIOLATION)
        assert stored.status is RunStatus.COMPLETED
        assert stored.record_type is RecordType.VIOLATION


def test_uncommitted_work_is_rolled_back_on_error(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)

    with pytest.raises(RuntimeError), SqlAlchemySyncUnitOfWork() as uow:
        uow.repositories.review_queue.enqueue(
            ReviewQueueItem(
                identity_key="violation|CE24-1|WEEDS|",
                record_payload={"case_no": "CE24-1"},
                reason=ReviewReason.NO_CANDIDATES,
            )
        )
        raise RuntimeError("boom")

    with SqlAlchemySyncUnitOfWork() as uow:
        assert uow.repositories.review_queue.stats().pending == 0


def test_review_queue_round_trip(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)

    with SqlAlchemySyncUnitOfWork() as uow:
        item = ReviewQueueItem(
            identity_key="violation|CE24-1|WEEDS|",
            record_payload={"case_no": "CE24-1"},
            reason=ReviewReason.LOW_CONFIDENCE,
            candidates=[{"ticket_id": 4, "title": "Weeds"}],
        )
        assert uow.repositories.review_queue.enqueue(item)
        uow.commit()
        item_id = item.id

    with SqlAlchemySyncUnitOfWork() as uow:
        assert item_id is not None
        stored = uow.repositories.review_queue.get(item_id)
        assert stored is not None
        assert stored.reason is ReviewReason.LOW_CONFIDENCE
        assert stored.status is ReviewStatus.PENDING
        assert stored.candidates == [{"ticket_id": 4, "title": "Weeds"}]
        assert [pending.id for pending in uow.repositories.review_queue.pending()] == [item_id]
