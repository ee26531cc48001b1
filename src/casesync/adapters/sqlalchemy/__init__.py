"""SQLAlchemy adapter package for casesync."""

from __future__ import annotations

from .mappings import STATE_TABLES, create_all_tables, mapper_registry, start_mappers
from .repositories import (
    SqlAlchemyMatchLogRepository,
    SqlAlchemyReviewQueueRepository,
    SqlAlchemyRunLogRepository,
    SqlAlchemyStateRepository,
)
from .unit_of_work import (
    SqlAlchemySyncUnitOfWork,
    StartupError,
    shutdown,
    startup,
)

__all__ = [
    "STATE_TABLES",
    "SqlAlchemyMatchLogRepository",
    "SqlAlchemyReviewQueueRepository",
    "SqlAlchemyRunLogRepository",
    "SqlAlchemyStateRepository",
    "SqlAlchemySyncUnitOfWork",
    "StartupError",
    "create_all_tables",
    "mapper_registry",
    "shutdown",
    "startup",
]
