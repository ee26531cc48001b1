"""Shared logging helpers for casesync."""

from __future__ import annotations

import logging


def configure_logging(*, level: int = logging.INFO, force: bool = False) -> None:
    """Initialise the root logger once with sensible defaults.

    Parameters mirror ``logging.basicConfig`` with a simplified contract: INFO
    level and a terse format suitable for scheduled runs. Pass ``force=True`` to
    reconfigure from the CLI or from tests.
    """

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=force,
    )
    # Request lines from the HTTP stack drown out the run summaries.
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
