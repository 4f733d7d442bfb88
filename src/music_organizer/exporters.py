from __future__ import annotations

import csv
import sqlite3
from pathlib import Path

from .metrics import RunSummary
from .models import FileOutcome, OrganizeResult


REPORT_COLUMNS = [
    "source",
    "outcome",
    "destination",
    "error_kind",
    "reason",
]


def _row(outcome: FileOutcome) -> dict[str, str]:
    return {
        "source": str(outcome.source),
        "outcome": outcome.kind.value,
        "destination": str(outcome.destination) if outcome.destination is not None else "",
        "error_kind": outcome.error_kind.value if outcome.error_kind is not None else "",
        "reason": outcome.reason,
    }


def export_report_csv(path: Path, result: OrganizeResult) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=REPORT_COLUMNS)
        writer.writeheader()
        for outcome in result.outcomes:
            writer.writerow(_row(outcome))


def export_report_sqlite(path: Path, result: OrganizeResult, summary: RunSummary) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    try:
        cur = conn.cursor()
        cur.execute("DROP TABLE IF EXISTS outcomes")
        cur.execute("DROP TABLE IF EXISTS run_summary")

        cur.execute(
            """
            CREATE TABLE outcomes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                source TEXT NOT NULL,
                outcome TEXT NOT NULL,
                destination TEXT,
                error_kind TEXT,
                reason TEXT
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE run_summary (
                dry_run INTEGER NOT NULL,
                cancelled INTEGER NOT NULL,
                total_files INTEGER NOT NULL,
                moved INTEGER NOT NULL,
                copied INTEGER NOT NULL,
                skipped INTEGER NOT NULL,
                failed INTEGER NOT NULL,
                relocated_bytes INTEGER NOT NULL
            )
            """
        )

        cur.executemany(
            """
            INSERT INTO outcomes (source, outcome, destination, error_kind, reason)
            VALUES (:source, :outcome, :destination, :error_kind, :reason)
            """,
            [_row(outcome) for outcome in result.outcomes],
        )

        cur.execute(
            "INSERT INTO run_summary VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                int(result.dry_run),
                int(result.cancelled),
                summary.total_files,
                summary.moved,
                summary.copied,
                summary.skipped,
                summary.failed,
                summary.relocated_bytes,
            ),
        )

        conn.commit()
    finally:
        conn.close()
