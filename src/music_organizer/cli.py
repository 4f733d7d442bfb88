from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, Optional, Sequence

from .config import DEFAULT_SUFFIX_FORMAT, DEFAULT_TEMPLATE, ConflictPolicy, OrganizeConfig, TransferMode
from .errors import OrganizeError
from .exporters import export_report_csv, export_report_sqlite
from .metrics import RunSummary, human_size, summarize
from .models import OrganizeResult
from .organizer import organize, shuffle

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(filename)s:%(lineno)d - %(funcName)s] %(message)s"


def _make_progress_printer(stage: str) -> Callable[[int, int], None]:
    is_tty = sys.stdout.isatty()
    last_percent = -1

    def _report(current: int, total: int) -> None:
        nonlocal last_percent
        percent = 100 if total <= 0 else int((current / total) * 100)
        percent = max(0, min(100, percent))

        if is_tty:
            if percent == last_percent and current < total:
                return
            end = "\n" if current >= total else ""
            print(f"\r[{stage}] {percent:3d}% ({current}/{total})", end=end, flush=True)
            last_percent = percent
            return

        should_print = (
            last_percent < 0
            or current >= total
            or percent >= last_percent + 10
        )
        if should_print:
            print(f"[{stage}] {percent:3d}% ({current}/{total})")
            last_percent = percent

    return _report


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="music-organizer",
        description="Organize audio files into folders built from their tags.",
    )
    parser.add_argument("source", type=Path, help="Directory containing the audio files to organize")
    parser.add_argument(
        "dest_root",
        type=Path,
        nargs="?",
        default=None,
        help="Destination root for the organized library (defaults to SOURCE/output)",
    )
    parser.add_argument(
        "--template",
        default=DEFAULT_TEMPLATE,
        help=f"Path template built from artist, album, title, track_number and year (default: {DEFAULT_TEMPLATE!r})",
    )
    parser.add_argument(
        "--on-conflict",
        choices=[policy.value for policy in ConflictPolicy],
        default=ConflictPolicy.RENAME.value,
        help="What to do when two files map to the same destination",
    )
    parser.add_argument(
        "--suffix-format",
        default=DEFAULT_SUFFIX_FORMAT,
        help="Suffix inserted before the extension when renaming, must contain {n}",
    )
    parser.add_argument(
        "--replacement",
        default="",
        help="Text substituted for characters that are illegal in file names (default: remove them)",
    )
    parser.add_argument(
        "--apply",
        action="store_true",
        help="Apply file operations. Without this flag, organize runs in dry-run mode.",
    )
    parser.add_argument(
        "--copy",
        action="store_true",
        help="Copy files instead of moving them",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of files processed in parallel",
    )
    parser.add_argument(
        "--report-unsupported",
        action="store_true",
        help="List files with unsupported extensions as skipped instead of ignoring them",
    )
    parser.add_argument(
        "--organize-unreadable",
        action="store_true",
        help="Organize files whose tags cannot be read under the fallback names instead of failing them",
    )
    parser.add_argument(
        "--shuffle",
        action="store_true",
        help="Place files flat in the destination, prefixed with a random play position",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for --shuffle",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("./output"),
        help="Directory for the run report and warning log",
    )
    parser.add_argument(
        "--export",
        choices=["none", "csv", "sqlite", "both"],
        default="none",
        help="Export format for the per-file report",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log per-file details",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> OrganizeConfig:
    source: Path = args.source.expanduser().resolve()
    dest_root: Path = (args.dest_root or source / "output").expanduser().resolve()
    return OrganizeConfig(
        source_root=source,
        destination_root=dest_root,
        template=args.template,
        conflict_policy=ConflictPolicy(args.on_conflict),
        mode=TransferMode.COPY if args.copy else TransferMode.MOVE,
        replacement=args.replacement,
        suffix_format=args.suffix_format,
        report_unsupported=args.report_unsupported,
        organize_unreadable=args.organize_unreadable,
        dry_run=not args.apply,
        workers=args.workers,
    )


def _write_report(result: OrganizeResult, summary: RunSummary, output_dir: Path, export: str) -> None:
    problems = [
        f"{o.kind.value}: {o.source}: {o.error_kind.value if o.error_kind else ''}: {o.reason}"
        for o in result.failed
    ] + list(result.warnings)
    if problems:
        output_dir.mkdir(parents=True, exist_ok=True)
        warnings_path = output_dir / "organize_warnings.log"
        warnings_path.write_text("\n".join(problems) + "\n", encoding="utf-8")
        print(f"[warn] organize warnings: {len(problems)}")
        print(f"[warn] details written: {warnings_path}")

    if export in {"csv", "both"}:
        report_csv = output_dir / "organize_report.csv"
        export_report_csv(report_csv, result)
        print(f"[write] CSV report: {report_csv}")

    if export in {"sqlite", "both"}:
        db_path = output_dir / "organize_report.db"
        export_report_sqlite(db_path, result, summary)
        print(f"[write] SQLite report: {db_path}")


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    config = config_from_args(args)
    output_dir: Path = args.output_dir.expanduser().resolve()

    stage = "shuffle" if args.shuffle else "organize"
    print(f"[{stage}] source root: {config.source_root}")
    print(f"[{stage}] destination root: {config.destination_root}")
    if config.dry_run:
        print(f"[{stage}] dry-run mode enabled (pass --apply to execute)")

    try:
        if args.shuffle:
            result = shuffle(config, seed=args.seed, progress_callback=_make_progress_printer(stage))
        else:
            result = organize(config, progress_callback=_make_progress_printer(stage))
    except OrganizeError as exc:
        raise SystemExit(str(exc))

    summary = summarize(result)
    print(f"[done] files discovered: {summary.total_files}")
    print(f"[done] moved: {summary.moved}")
    print(f"[done] copied: {summary.copied}")
    print(f"[done] skipped: {summary.skipped}")
    for reason, count in summary.skips_by_reason.items():
        print(f"  - {reason}: {count}")
    print(f"[done] failed: {summary.failed}")
    for kind, count in summary.failures_by_kind.items():
        print(f"  - {kind}: {count}")
    print(f"[done] data relocated: {human_size(summary.relocated_bytes)}")

    _write_report(result, summary, output_dir, args.export)

    if result.failed:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
