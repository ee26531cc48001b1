from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest

from casesync.app import IngestResult
from casesync.config import MissingConfigurationError
from casesync.domain.matching import ReviewItemNotFoundError
from casesync.domain.matching.contracts import (
    ReviewQueueItem,
    ReviewReason,
    ReviewStats,
    ReviewStatus,
)
from casesync.domain.reconciliation import RunSummary, SyncMode
from casesync.domain.records import RecordType
from casesync.ui import cli

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture(autouse=True)
def quiet_process_hooks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "signal", lambda *_: None)
    monkeypatch.setattr(cli, "load_dotenv", lambda *_, **__: False)


def _summary(record_type: RecordType) -> RunSummary:
    return RunSummary(
        record_type=record_type,
        mode=SyncMode.INCREMENTAL,
        dry_run=True,
        total=3,
        changed=1,
        errors=0,
    )


def test_ingest_passes_type_and_subject(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    path = tmp_path / "export.csv"
    path.write_text("PERMIT_NO\nBP-1\n", encoding="utf-8")
    captured: dict[str, object] = {}

    def fake_ingest(file: Path, **kwargs: object) -> IngestResult:
        captured["file"] = file
        captured.update(kwargs)
        return IngestResult(
            record_type=RecordType.PERMIT, rejected=2, summary=_summary(RecordType.PERMIT)
        )

    monkeypatch.setattr(cli, "ingest_file", fake_ingest)

    cli.main(["ingest", str(path), "--type", "permit", "--subject", "Permit export"])

    assert captured == {"file": path, "record_type": RecordType.PERMIT, "subject": "Permit export"}
    assert capsys.readouterr().out.strip() == (
        "export.csv: permit incremental sync (dry run), 3 records, 1 changed, 0 errors, 2 rejected"
    )


def test_missing_file_is_a_usage_error(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    calls: list[Path] = []
    monkeypatch.setattr(cli, "ingest_file", lambda path, **_: calls.append(path))

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["ingest", str(tmp_path / "missing.csv")])

    assert excinfo.value.code == cli.EXIT_USAGE
    assert calls == []


def test_missing_configuration_is_a_usage_error(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    path = tmp_path / "violations.csv"
    path.write_text("CASE_NO\n", encoding="utf-8")

    def fake_ingest(*_: object, **__: object) -> None:
        raise MissingConfigurationError(["TICKETING_API_URL"])

    monkeypatch.setattr(cli, "ingest_file", fake_ingest)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["ingest", str(path)])

    assert excinfo.value.code == cli.EXIT_USAGE


def test_unexpected_failure_exits_with_failure(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    path = tmp_path / "violations.csv"
    path.write_text("CASE_NO\n", encoding="utf-8")

    def fake_ingest(*_: object, **__: object) -> None:
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(cli, "ingest_file", fake_ingest)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["ingest", str(path)])

    assert excinfo.value.code == cli.EXIT_FAILURE


def test_resolve_requires_a_decision() -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["review", "resolve", "4", "--by", "clerk"])

    assert excinfo.value.code == 2


def test_resolve_with_ticket(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    captured: dict[str, object] = {}

    def fake_resolve(item_id: int, **kwargs: object) -> ReviewQueueItem:
        captured["item_id"] = item_id
        captured.update(kwargs)
        return ReviewQueueItem(
            identity_key="violation|CE24-1|WEEDS|",
            record_payload={},
            reason=ReviewReason.NO_CANDIDATES,
            status=ReviewStatus.RESOLVED,
            id=item_id,
        )

    monkeypatch.setattr(cli, "resolve_review", fake_resolve)

    cli.main(["review", "resolve", "4", "--ticket", "77", "--by", "clerk"])

    assert captured == {"item_id": 4, "ticket_id": 77, "resolved_by": "clerk"}
    assert capsys.readouterr().out.strip() == "Review item #4 resolved"


def test_skip_passes_no_ticket(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    def fake_resolve(item_id: int, **kwargs: object) -> ReviewQueueItem:
        captured.update(kwargs)
        return ReviewQueueItem(
            identity_key="k",
            record_payload={},
            reason=ReviewReason.NO_CANDIDATES,
            status=ReviewStatus.SKIPPED,
            id=item_id,
        )

    monkeypatch.setattr(cli, "resolve_review", fake_resolve)

    cli.main(["review", "resolve", "4", "--skip", "--by", "clerk"])

    assert captured["ticket_id"] is None


def test_unknown_review_item_is_a_usage_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_resolve(item_id: int, **_: object) -> ReviewQueueItem:
        raise ReviewItemNotFoundError(f"Review item {item_id} does not exist")

    monkeypatch.setattr(cli, "resolve_review", fake_resolve)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["review", "resolve", "4", "--skip", "--by", "clerk"])

    assert excinfo.value.code == cli.EXIT_USAGE


def test_review_list_and_stats(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    item = ReviewQueueItem(
        identity_key="violation|CE24-1|WEEDS|",
        record_payload={},
        reason=ReviewReason.LOW_CONFIDENCE,
        candidates=[{"ticket_id": 1}, {"ticket_id": 2}],
        created_at=datetime(2024, 3, 1, 9, 30, tzinfo=UTC),
        id=3,
    )
    limits: list[int] = []

    def fake_list(*, limit: int) -> list[ReviewQueueItem]:
        limits.append(limit)
        return [item]

    monkeypatch.setattr(cli, "list_review_items", fake_list)
    stats = ReviewStats(pending=1, resolved=4, skipped=2)
    monkeypatch.setattr(cli, "get_review_stats", lambda: stats)

    cli.main(["review", "list", "--limit", "5"])
    cli.main(["review", "stats"])

    assert limits == [5]
    assert capsys.readouterr().out.splitlines() == [
        "#3 violation|CE24-1|WEEDS| reason=low_confidence candidates=2 created=2024-03-01 09:30",
        "pending=1 resolved=4 skipped=2",
    ]
