from __future__ import annotations

from datetime import date

import pytest

from casesync.domain.identity import (
    IdentityKeyError,
    InspectionKey,
    PermitKey,
    ViolationKey,
    parse_identity_key,
)
from tests.helpers.fakes import like


def test_violation_key_serializes_components_in_order() -> None:
    key = ViolationKey(case_no="CE24-1", violation_type="WEEDS", observed_on=date(2024, 1, 2))

    assert key.serialize() == "violation|CE24-1|WEEDS|2024-01-02"


def test_violation_key_without_observed_date_keeps_trailing_slot() -> None:
    key = ViolationKey(case_no="CE24-1", violation_type="WEEDS")

    assert key.serialize() == "violation|CE24-1|WEEDS|"
    assert parse_identity_key(key.serialize()) == key


@pytest.mark.parametrize(
    "key",
    [
        ViolationKey(
            case_no="CE|24", violation_type="TRASH \\ DEBRIS", observed_on=date(2023, 12, 31)
        ),
        InspectionKey(unique_key="A|B|C"),
        PermitKey(permit_no="BP\\24|7"),
    ],
)
def test_delimiters_inside_components_survive_parsing(
    key: ViolationKey | InspectionKey | PermitKey,
) -> None:
    assert parse_identity_key(key.serialize()) == key


def test_distinct_keys_never_share_a_serialization() -> None:
    first = ViolationKey(case_no="A|B", violation_type="C")
    second = ViolationKey(case_no="A", violation_type="B|C")

    assert first.serialize() != second.serialize()


def test_empty_components_are_rejected() -> None:
    with pytest.raises(IdentityKeyError):
        ViolationKey(case_no="", violation_type="WEEDS")
    with pytest.raises(IdentityKeyError):
        PermitKey(permit_no="")


@pytest.mark.parametrize(
    "value",
    [
        "",
        "ticket|1",
        "violation|only-two",
        "inspection|a|b",
        "violation|A|B|not-a-date",
        "permit|x\\",
    ],
)
def test_malformed_strings_raise(value: str) -> None:
    with pytest.raises(IdentityKeyError):
        parse_identity_key(value)


def test_case_pattern_matches_every_violation_of_a_case() -> None:
    key = ViolationKey(case_no="CE24-1", violation_type="WEEDS", observed_on=date(2024, 1, 2))
    pattern = ViolationKey.case_pattern("CE24-1")

    assert pattern == "violation|CE24-1|%"
    assert key.serialize().startswith(pattern.removesuffix("%"))


@pytest.mark.parametrize(
    ("case_no", "expected"),
    [
        ("CE_24%1", "violation|CE\\_24\\%1|%"),
        ("CE|24", "violation|CE\\\\|24|%"),
    ],
)
def test_case_pattern_escapes_like_wildcards(case_no: str, expected: str) -> None:
    key = ViolationKey(case_no=case_no, violation_type="WEEDS")

    assert ViolationKey.case_pattern(case_no) == expected
    assert like(expected, key.serialize())


def test_case_pattern_does_not_match_lookalike_cases() -> None:
    pattern = ViolationKey.case_pattern("CE_1")

    assert like(pattern, ViolationKey(case_no="CE_1", violation_type="WEEDS").serialize())
    assert not like(pattern, ViolationKey(case_no="CEX1", violation_type="WEEDS").serialize())
    assert not like(pattern, ViolationKey(case_no="CE_12", violation_type="WEEDS").serialize())
