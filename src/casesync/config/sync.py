"""Synchronization defaults for reconciliation runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .env import env_flag, env_list

if TYPE_CHECKING:
    from collections.abc import Mapping

DEFAULT_BULK_PROCESSING_BATCH_SIZE = 1000
DEFAULT_BULK_REQUEST_SIZE = 100
DEFAULT_BULK_BATCH_DELAY_SECONDS = 1.0

_TRACKED_FIELD_VARIABLES = {
    "violation": "VIOLATION_TRACKED_FIELDS",
    "inspection": "INSPECTION_TRACKED_FIELDS",
    "permit": "PERMIT_TRACKED_FIELDS",
}


@dataclass(frozen=True, slots=True)
class SyncConfig:
    """Operating mode for reconciliation runs.

    With ``ticket_updates_enabled`` off, violations and inspections run in
    dry-run mode. ``permit_updates_enabled`` does the same for permits.
    ``tracked_fields`` overrides the signature fields per record type.
    """

    ticket_updates_enabled: bool = False
    permit_updates_enabled: bool = False
    tracked_fields: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    bulk_processing_batch_size: int = DEFAULT_BULK_PROCESSING_BATCH_SIZE
    bulk_request_size: int = DEFAULT_BULK_REQUEST_SIZE
    bulk_batch_delay_seconds: float = DEFAULT_BULK_BATCH_DELAY_SECONDS

    def dry_run_for(self, record_type: str) -> bool:
        if record_type == "permit":
            return not self.permit_updates_enabled
        return not self.ticket_updates_enabled


def get_sync_config() -> SyncConfig:
    tracked: dict[str, tuple[str, ...]] = {}
    for record_type, variable in _TRACKED_FIELD_VARIABLES.items():
        fields = env_list(variable)
        if fields is not None:
            tracked[record_type] = fields

    return SyncConfig(
        ticket_updates_enabled=env_flag("TICKET_UPDATES_ENABLED", default=False),
        permit_updates_enabled=env_flag("PERMIT_UPDATES_ENABLED", default=False),
        tracked_fields=tracked,
    )
