"""Decode CSV report attachments into raw rows."""

from __future__ import annotations

import csv
import io
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

_BOM = "\ufeff"


def read_csv_rows(text: str) -> list[dict[str, str]]:
    """Parse CSV text with a header row. Blank lines are skipped."""

    return list(iter_csv_rows(text))


def iter_csv_rows(text: str) -> Iterator[dict[str, str]]:
    reader = csv.DictReader(io.StringIO(text.removeprefix(_BOM)))
    for row in reader:
        cleaned = {
            (column or "").strip(): (value or "").strip()
            for column, value in row.items()
            if column is not None
        }
        if any(cleaned.values()):
            yield cleaned


def read_csv_file(path: Path, *, encoding: str = "utf-8-sig") -> list[dict[str, str]]:
    return read_csv_rows(path.read_text(encoding=encoding, errors="replace"))
