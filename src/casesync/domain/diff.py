"""Deterministic deduplication and change detection for report snapshots."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .state import Change, Observation

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from .ports.persistence import StateRepository
    from .records import NormalizedRecord
    from .signatures import SignaturePolicy
    from .state import StateRow

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DiffResult:
    observations: Sequence[Observation]
    changes: Sequence[Change] = field(default_factory=tuple)

    @property
    def new_count(self) -> int:
        return sum(1 for change in self.changes if change.is_new)

    @property
    def updated_count(self) -> int:
        return sum(1 for change in self.changes if not change.is_new)


def observe(records: Iterable[NormalizedRecord], policy: SignaturePolicy) -> list[Observation]:
    return [Observation(record=record, signature=policy.signature(record)) for record in records]


def deduplicate(
    observations: Iterable[Observation],
    policy: SignaturePolicy,
) -> list[Observation]:
    """Keep one observation per identity key, independent of input order.

    Observations are sorted by ``policy.sort_key`` and the last one per key wins.
    The result is ordered by identity key.
    """

    ordered = sorted(observations, key=lambda item: policy.sort_key(item.record, item.signature))
    survivors: dict[str, Observation] = {}
    for observation in ordered:
        survivors[observation.identity_key] = observation
    return list(survivors.values())


def classify_changes(
    observations: Iterable[Observation],
    existing: Mapping[str, StateRow],
) -> list[Change]:
    changes: list[Change] = []
    for observation in observations:
        row = existing.get(observation.identity_key)
        if row is None:
            changes.append(
                Change(
                    identity_key=observation.identity_key,
                    record=observation.record,
                    previous_signature=None,
                    signature=observation.signature,
                    is_new=True,
                )
            )
            continue
        if row.signature == observation.signature:
            continue
        changes.append(
            Change(
                identity_key=observation.identity_key,
                record=observation.record,
                previous_signature=row.signature,
                signature=observation.signature,
                is_new=False,
                permit_links=row.permit_links,
            )
        )
    return changes


def diff_records(
    records: Iterable[NormalizedRecord],
    *,
    policy: SignaturePolicy,
    states: StateRepository,
) -> DiffResult:
    """Deduplicate ``records`` and compare them against stored state in one query."""

    observations = deduplicate(observe(records, policy), policy)
    existing = states.fetch(policy.record_type, [item.identity_key for item in observations])
    changes = classify_changes(observations, existing)
    log.debug(
        "Diffed %d %s records against %d stored rows: %d changes",
        len(observations),
        policy.record_type,
        len(existing),
        len(changes),
    )
    return DiffResult(observations=observations, changes=changes)
