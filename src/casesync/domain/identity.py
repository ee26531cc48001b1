"""Structured identity keys and their string form.

Identity keys are persisted and stamped onto external tickets as strings such as
``violation|CC24-1|WEEDS|2024-01-01``. Inside the application they are kept as
typed values; conversion happens only at the store and gateway boundary.

Components are joined with ``|``. A literal ``|`` or ``\\`` inside a component is
escaped with a backslash, so ``parse_identity_key(key.serialize()) == key`` holds
for every key whose text components are non-empty.

Key prefixes used as SQL ``LIKE`` patterns escape ``\\``, ``%`` and ``_`` with a
backslash, the default ``LIKE`` escape character of PostgreSQL and MySQL.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import ClassVar, Final

DELIMITER: Final[str] = "|"
ESCAPE: Final[str] = "\\"
LIKE_ESCAPE: Final[str] = "\\"
_LIKE_SPECIALS: Final = (LIKE_ESCAPE, "%", "_")


class IdentityKeyError(ValueError):
    """Raised when a string cannot be parsed into an identity key."""


def _escape(component: str) -> str:
    return component.replace(ESCAPE, ESCAPE * 2).replace(DELIMITER, ESCAPE + DELIMITER)


def like_escape(text: str) -> str:
    """Make ``text`` match itself literally inside a ``LIKE`` pattern."""

    for char in _LIKE_SPECIALS:
        text = text.replace(char, LIKE_ESCAPE + char)
    return text


def _split(value: str) -> list[str]:
    parts: list[str] = []
    current: list[str] = []
    chars = iter(value)
    for char in chars:
        if char == ESCAPE:
            escaped = next(chars, None)
            if escaped is None:
                raise IdentityKeyError(f"Dangling escape in identity key {value!r}")
            current.append(escaped)
        elif char == DELIMITER:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return parts


def _require(component: str, name: str) -> None:
    if not component:
        raise IdentityKeyError(f"Identity component {name!r} must not be empty")


@dataclass(frozen=True, slots=True)
class ViolationKey:
    prefix: ClassVar[str] = "violation"

    case_no: str
    violation_type: str
    observed_on: date | None = None

    def __post_init__(self) -> None:
        _require(self.case_no, "case_no")
        _require(self.violation_type, "violation_type")

    def serialize(self) -> str:
        observed = self.observed_on.isoformat() if self.observed_on else ""
        return DELIMITER.join(
            (self.prefix, _escape(self.case_no), _escape(self.violation_type), observed)
        )

    @classmethod
    def case_pattern(cls, case_no: str) -> str:
        """SQL ``LIKE`` pattern matching every violation key of one case."""

        prefix = f"{cls.prefix}{DELIMITER}{_escape(case_no)}{DELIMITER}"
        return like_escape(prefix) + "%"


@dataclass(frozen=True, slots=True)
class InspectionKey:
    prefix: ClassVar[str] = "inspection"

    unique_key: str

    def __post_init__(self) -> None:
        _require(self.unique_key, "unique_key")

    def serialize(self) -> str:
        return DELIMITER.join((self.prefix, _escape(self.unique_key)))


@dataclass(frozen=True, slots=True)
class PermitKey:
    prefix: ClassVar[str] = "permit"

    permit_no: str

    def __post_init__(self) -> None:
        _require(self.permit_no, "permit_no")

    def serialize(self) -> str:
        return DELIMITER.join((self.prefix, _escape(self.permit_no)))


type IdentityKey = ViolationKey | InspectionKey | PermitKey


def parse_identity_key(value: str) -> IdentityKey:
    parts = _split(value)
    prefix, *components = parts
    try:
        if prefix == ViolationKey.prefix and len(components) == 3:
            case_no, violation_type, observed = components
            return ViolationKey(
                case_no=case_no,
                violation_type=violation_type,
                observed_on=date.fromisoformat(observed) if observed else None,
            )
        if prefix == InspectionKey.prefix and len(components) == 1:
            return InspectionKey(unique_key=components[0])
        if prefix == PermitKey.prefix and len(components) == 1:
            return PermitKey(permit_no=components[0])
    except ValueError as exc:
        raise IdentityKeyError(f"Malformed identity key {value!r}: {exc}") from exc
    raise IdentityKeyError(f"Unrecognised identity key {value!r}")
