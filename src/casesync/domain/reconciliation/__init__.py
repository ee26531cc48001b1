"""Reconciliation of report snapshots with the ticketing system."""

from __future__ import annotations

from .driver import (
    ChangeHandler,
    InitialSyncResult,
    ReconciliationDriver,
    RunSummary,
    SyncMode,
)
from .inspections import ActionError, InspectionChangeHandler
from .permits import PermitChangeHandler, build_permit_payload
from .taxonomy import PermitTaxonomy, ResolvedTaxonomy, infer_status_type
from .violations import ViolationChangeHandler

__all__ = [
    "ActionError",
    "ChangeHandler",
    "InitialSyncResult",
    "InspectionChangeHandler",
    "PermitChangeHandler",
    "PermitTaxonomy",
    "ReconciliationDriver",
    "ResolvedTaxonomy",
    "RunSummary",
    "SyncMode",
    "ViolationChangeHandler",
    "build_permit_payload",
    "infer_status_type",
]
