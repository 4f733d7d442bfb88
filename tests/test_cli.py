from __future__ import annotations

import csv
import sqlite3

import pytest

from conftest import write_song
from music_organizer import cli, organizer
from music_organizer.config import ConflictPolicy, TransferMode


@pytest.fixture(autouse=True)
def stub_tags(monkeypatch, registry):
    monkeypatch.setattr(organizer, "default_registry", lambda: registry)


def test_parser_defaults_to_dry_run_move(tmp_path):
    args = cli.build_parser().parse_args([str(tmp_path)])
    config = cli.config_from_args(args)
    assert config.dry_run is True
    assert config.mode is TransferMode.MOVE
    assert config.conflict_policy is ConflictPolicy.RENAME
    assert config.destination_root == tmp_path.resolve() / "output"


def test_parser_maps_flags(tmp_path):
    args = cli.build_parser().parse_args(
        [str(tmp_path), str(tmp_path / "lib"), "--apply", "--copy", "--on-conflict", "skip", "--workers", "3"]
    )
    config = cli.config_from_args(args)
    assert config.dry_run is False
    assert config.mode is TransferMode.COPY
    assert config.conflict_policy is ConflictPolicy.SKIP
    assert config.workers == 3


def test_dry_run_prints_plan_and_moves_nothing(source, dest, tmp_path, capsys):
    song = write_song(source / "a.mp3", artist="A", title="T")

    cli.main([str(source), str(dest), "--output-dir", str(tmp_path / "reports")])

    out = capsys.readouterr().out
    assert "dry-run mode enabled" in out
    assert "[done] moved: 1" in out
    assert song.exists()
    assert not dest.exists()


def test_apply_copies_and_exports_reports(source, dest, tmp_path, capsys):
    write_song(source / "a.mp3", artist="A", album="B", title="T", track_number=2)
    reports = tmp_path / "reports"

    cli.main([str(source), str(dest), "--apply", "--copy", "--export", "both", "--output-dir", str(reports)])

    assert (dest / "A" / "B" / "02 - T.mp3").exists()
    with (reports / "organize_report.csv").open(encoding="utf-8", newline="") as f:
        rows = list(csv.DictReader(f))
    assert rows[0]["outcome"] == "copied"
    assert rows[0]["destination"].endswith("02 - T.mp3")

    conn = sqlite3.connect(reports / "organize_report.db")
    try:
        (copied,) = conn.execute("SELECT copied FROM run_summary").fetchone()
        (count,) = conn.execute("SELECT COUNT(*) FROM outcomes").fetchone()
    finally:
        conn.close()
    assert copied == 1
    assert count == 1
    assert "[write] CSV report" in capsys.readouterr().out


def test_failures_exit_non_zero_and_are_logged(source, dest, tmp_path):
    (source / "broken.mp3").write_bytes(b"\xff not json")
    reports = tmp_path / "reports"

    with pytest.raises(SystemExit) as excinfo:
        cli.main([str(source), str(dest), "--apply", "--output-dir", str(reports)])

    assert excinfo.value.code == 1
    log = (reports / "organize_warnings.log").read_text(encoding="utf-8")
    assert "unreadable_file" in log


def test_missing_source_exits_with_message(tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        cli.main([str(tmp_path / "missing"), str(tmp_path / "lib")])
    assert "Source root does not exist" in str(excinfo.value.code)


def test_shuffle_flag(source, dest, tmp_path, capsys):
    for name in ("a", "b"):
        write_song(source / f"{name}.mp3")

    cli.main([str(source), str(dest), "--shuffle", "--seed", "1", "--apply", "--copy", "--output-dir", str(tmp_path / "r")])

    assert sorted(p.name[:4] for p in dest.iterdir()) == ["0 - ", "1 - "]
    assert "[shuffle]" in capsys.readouterr().out
