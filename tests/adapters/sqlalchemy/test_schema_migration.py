from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import create_engine, inspect

from casesync.adapters.sqlalchemy import create_all_tables, mapper_registry, start_mappers
from casesync.adapters.sqlalchemy.migrations import upgrade_head

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine


def _columns(engine: Engine) -> dict[str, set[str]]:
    inspector = inspect(engine)
    return {
        name: {column["name"] for column in inspector.get_columns(name)}
        for name in inspector.get_table_names()
        if name != "alembic_version"
    }


def _indexes(engine: Engine) -> dict[str, set[str | None]]:
    inspector = inspect(engine)
    return {
        name: {index["name"] for index in inspector.get_indexes(name)}
        for name in inspector.get_table_names()
        if name != "alembic_version"
    }


def test_start_mappers_is_idempotent() -> None:
    start_mappers()
    start_mappers()


def test_migration_matches_mapped_tables(sqlite_engine: Engine) -> None:
    reference = create_engine("sqlite+pysqlite:///:memory:")
    create_all_tables(reference)

    assert _columns(sqlite_engine) == _columns(reference)
    assert _indexes(sqlite_engine) == _indexes(reference)
    assert set(_columns(sqlite_engine)) == set(mapper_registry.metadata.tables)


def test_upgrade_is_repeatable(sqlite_engine: Engine) -> None:
    upgrade_head(engine=sqlite_engine)

    assert "alembic_version" in inspect(sqlite_engine).get_table_names()
