from __future__ import annotations

import pytest

from casesync.domain.records import RecordType
from casesync.domain.signatures import DEFAULT_TRACKED_FIELDS, signature_policy_for
from tests.helpers.records import make_permit, make_violation


def test_single_tracked_field_is_stored_verbatim() -> None:
    policy = signature_policy_for(RecordType.VIOLATION)

    assert policy.signature(make_violation(status="COMPLIED")) == "COMPLIED"


def test_multi_field_signature_is_a_stable_digest() -> None:
    policy = signature_policy_for(RecordType.PERMIT)
    permit = make_permit()

    signature = policy.signature(permit)

    assert len(signature) == 64
    assert signature == policy.signature(make_permit())
    assert signature != policy.signature(make_permit(description="Replace roof and gutters"))


def test_untracked_fields_do_not_change_the_signature() -> None:
    policy = signature_policy_for(RecordType.VIOLATION)

    assert policy.signature(make_violation(site_city="ELSEWHERE")) == policy.signature(
        make_violation()
    )


def test_tracked_fields_can_be_overridden() -> None:
    policy = signature_policy_for(RecordType.VIOLATION, ["status", "site_address"])

    assert policy.tracked_fields == ("status", "site_address")
    assert policy.preferred == frozenset()
    assert policy.signature(make_violation(site_address="1 ELM ST")) != policy.signature(
        make_violation()
    )


def test_unknown_tracked_fields_are_rejected() -> None:
    with pytest.raises(ValueError, match="colour"):
        signature_policy_for(RecordType.PERMIT, ["status", "colour"])


def test_defaults_cover_every_record_type() -> None:
    assert set(DEFAULT_TRACKED_FIELDS) == set(RecordType)


def test_closing_statuses_sort_after_open_ones() -> None:
    policy = signature_policy_for(RecordType.VIOLATION)
    record = make_violation()

    assert policy.sort_key(record, "COMPLIED") > policy.sort_key(record, "OPEN")
    assert policy.sort_key(record, "UNFOUNDED") > policy.sort_key(record, "PENDING")
