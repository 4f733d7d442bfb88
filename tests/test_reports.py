from __future__ import annotations

import csv
import sqlite3
from pathlib import Path

import pytest

from music_organizer.errors import ErrorKind
from music_organizer.exporters import REPORT_COLUMNS, export_report_csv, export_report_sqlite
from music_organizer.metrics import human_size, summarize
from music_organizer.models import FileOutcome, OrganizeResult


@pytest.fixture
def result(tmp_path: Path) -> OrganizeResult:
    landed = tmp_path / "lib" / "a.mp3"
    landed.parent.mkdir(parents=True)
    landed.write_bytes(b"x" * 1500)
    return OrganizeResult(
        outcomes=(
            FileOutcome.copied(tmp_path / "in" / "a.mp3", landed),
            FileOutcome.skipped(tmp_path / "in" / "b.mp3", "already organized", destination=landed),
            FileOutcome.skipped(
                tmp_path / "in" / "c.mp3",
                "destination taken",
                error_kind=ErrorKind.DESTINATION_CONFLICT_UNRESOLVED,
            ),
            FileOutcome.failed(tmp_path / "in" / "d.mp3", ErrorKind.UNREADABLE_FILE, "bad header"),
            FileOutcome.failed(tmp_path / "in" / "e.mp3", ErrorKind.UNREADABLE_FILE, "truncated"),
        ),
        dry_run=False,
    )


def test_summarize_counts_and_groups(result):
    summary = summarize(result)
    assert summary.total_files == 5
    assert summary.copied == 1
    assert summary.moved == 0
    assert summary.skipped == 2
    assert summary.failed == 2
    assert summary.relocated_bytes == 1500
    assert summary.failures_by_kind == {"unreadable_file": 2}
    assert summary.skips_by_reason == {
        "already organized": 1,
        "destination_conflict_unresolved": 1,
    }


def test_summarize_dry_run_uses_source_sizes(tmp_path):
    song = tmp_path / "a.mp3"
    song.write_bytes(b"y" * 10)
    result = OrganizeResult(outcomes=(FileOutcome.moved(song, tmp_path / "lib" / "a.mp3"),), dry_run=True)
    assert summarize(result).relocated_bytes == 10


@pytest.mark.parametrize(
    "num_bytes, expected",
    [(0, "0.00 B"), (512, "512.00 B"), (2048, "2.00 KB"), (5 * 1024**3, "5.00 GB"), (3 * 1024**5, "3072.00 TB")],
)
def test_human_size(num_bytes, expected):
    assert human_size(num_bytes) == expected


def test_csv_report_has_one_row_per_outcome(tmp_path, result):
    path = tmp_path / "reports" / "report.csv"
    export_report_csv(path, result)

    with path.open(encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        rows = list(reader)
    assert reader.fieldnames == REPORT_COLUMNS
    assert [row["outcome"] for row in rows] == ["copied", "skipped", "skipped", "failed", "failed"]
    assert rows[2]["destination"] == ""
    assert rows[3]["error_kind"] == "unreadable_file"


def test_sqlite_report_is_rewritten_on_each_export(tmp_path, result):
    path = tmp_path / "report.db"
    summary = summarize(result)
    export_report_sqlite(path, result, summary)
    export_report_sqlite(path, result, summary)

    conn = sqlite3.connect(path)
    try:
        (rows,) = conn.execute("SELECT COUNT(*) FROM outcomes").fetchone()
        failed = conn.execute("SELECT source FROM outcomes WHERE outcome = 'failed' ORDER BY id").fetchall()
        summary_rows = conn.execute("SELECT dry_run, failed, relocated_bytes FROM run_summary").fetchall()
    finally:
        conn.close()
    assert rows == 5
    assert [Path(source).name for (source,) in failed] == ["d.mp3", "e.mp3"]
    assert summary_rows == [(0, 2, 1500)]
