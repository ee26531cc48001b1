from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TC002

from casesync.adapters.sqlalchemy import start_mappers
from casesync.adapters.sqlalchemy.migrations import upgrade_head
from casesync.adapters.sqlalchemy.unit_of_work import SqlAlchemySyncUnitOfWork, shutdown, startup

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_engine("sqlite+pysqlite:///:memory:")
    start_mappers()
    upgrade_head(engine=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def uow_factory(sqlite_engine: Engine) -> Iterator[Callable[[], SqlAlchemySyncUnitOfWork]]:
    startup(engine=sqlite_engine, force=True)

    def factory() -> SqlAlchemySyncUnitOfWork:
        return SqlAlchemySyncUnitOfWork()

    try:
        yield factory
    finally:
        shutdown()


@pytest.fixture
def uow(
    uow_factory: Callable[[], SqlAlchemySyncUnitOfWork],
) -> Iterator[SqlAlchemySyncUnitOfWork]:
    with uow_factory() as unit_of_work:
        yield unit_of_work
