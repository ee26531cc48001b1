"""Prompt construction and reply parsing for heuristic ticket matching."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

from casesync.domain.state import MatchConfidence

if TYPE_CHECKING:
    from collections.abc import Collection, Sequence

    from casesync.domain.ports.ticketing import CandidateTicket
    from casesync.domain.records import ViolationRecord

DESCRIPTION_LIMIT: Final = 200

SYSTEM_PROMPT: Final = """\
You match code enforcement violations to existing service tickets.

You receive one violation from the city's case management export and a list of
candidate tickets that were reported near the violation's address.

Rules:
- Pick the single candidate that describes the same problem at the same property.
- The address must refer to the same property. Nearby or neighbouring addresses do not match.
- The issue described in the ticket must be consistent with the violation type.
- The ticket must have been created around or before the violation was observed.
- If no candidate clearly fits, answer with a null ticketId.
- Use "high" confidence only when address and issue both clearly agree, "medium" when
  one of them is slightly ambiguous, and "low" otherwise.

Reply with JSON only, in exactly this shape:
{"ticketId": <candidate id or null>, "confidence": "high" | "medium" | "low", "reasoning": "<one or two sentences>"}
"""

_FENCE: Final = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class ClassifierReplyError(ValueError):
    """Raised when a classifier reply cannot be used."""


@dataclass(frozen=True, slots=True)
class ClassifiedMatch:
    ticket_id: int | None
    confidence: MatchConfidence
    reasoning: str


def candidate_summary(candidate: CandidateTicket) -> dict[str, Any]:
    return {
        "id": candidate.ticket_id,
        "title": candidate.title,
        "description": candidate.description[:DESCRIPTION_LIMIT],
        "address": candidate.address,
        "type": candidate.ticket_type,
        "status": candidate.status,
        "created": candidate.created_at.date().isoformat() if candidate.created_at else None,
    }


def build_user_prompt(record: ViolationRecord, candidates: Sequence[CandidateTicket]) -> str:
    observed = record.observed_on.isoformat() if record.observed_on else "unknown"
    lines = [
        "Violation:",
        f"- Case number: {record.case_no}",
        f"- Violation type: {record.violation_type}",
        f"- Status: {record.status}",
        f"- Address: {record.full_address or 'unknown'}",
        f"- Date observed: {observed}",
    ]
    if record.case_type:
        lines.append(f"- Case type: {record.case_type} {record.case_subtype}".rstrip())
    lines.extend(
        [
            "",
            f"Candidate tickets ({len(candidates)}):",
            json.dumps([candidate_summary(candidate) for candidate in candidates], indent=2),
        ]
    )
    return "\n".join(lines)


def _ticket_id(value: object) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ClassifierReplyError("ticketId must be an integer or null")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ClassifierReplyError(f"ticketId must be an integer or null, got {value!r}")


def parse_classifier_reply(content: str, candidate_ids: Collection[int]) -> ClassifiedMatch:
    """Validate a classifier reply against the candidates it was shown.

    Code fences are tolerated. A ticket outside ``candidate_ids`` makes the reply
    unusable. An unknown confidence label counts as low.
    """

    text = _FENCE.sub("", content.strip()).strip()
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ClassifierReplyError(f"Reply is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ClassifierReplyError("Reply must be a JSON object")

    ticket_id = _ticket_id(payload.get("ticketId"))
    if ticket_id is not None and ticket_id not in candidate_ids:
        raise ClassifierReplyError(f"Ticket {ticket_id} was not among the candidates")

    raw_confidence = str(payload.get("confidence", "")).strip().lower()
    try:
        confidence = MatchConfidence(raw_confidence)
    except ValueError:
        confidence = MatchConfidence.LOW

    reasoning = payload.get("reasoning")
    return ClassifiedMatch(
        ticket_id=ticket_id,
        confidence=confidence,
        reasoning=reasoning if isinstance(reasoning, str) else "",
    )
