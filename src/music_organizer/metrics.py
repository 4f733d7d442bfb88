from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .models import FileOutcome, OrganizeResult


@dataclass
class RunSummary:
    total_files: int
    moved: int
    copied: int
    skipped: int
    failed: int
    relocated_bytes: int
    failures_by_kind: dict[str, int] = field(default_factory=dict)
    skips_by_reason: dict[str, int] = field(default_factory=dict)


def _size_of(path: Optional[Path]) -> int:
    if path is None:
        return 0
    try:
        return path.stat().st_size
    except OSError:
        return 0


def _relocated_size(outcome: FileOutcome) -> int:
    # Dry runs never create the destination; fall back to the source.
    return _size_of(outcome.destination) or _size_of(outcome.source)


def summarize(result: OrganizeResult) -> RunSummary:
    failures = Counter(o.error_kind.value for o in result.failed if o.error_kind is not None)
    skips = Counter(o.error_kind.value if o.error_kind is not None else o.reason for o in result.skipped)

    return RunSummary(
        total_files=len(result.outcomes),
        moved=len(result.moved),
        copied=len(result.copied),
        skipped=len(result.skipped),
        failed=len(result.failed),
        relocated_bytes=sum(_relocated_size(o) for o in result.outcomes if o.relocated),
        failures_by_kind=dict(sorted(failures.items())),
        skips_by_reason=dict(sorted(skips.items())),
    )


def human_size(num_bytes: int) -> str:
    units = ["B", "KB", "MB", "GB", "TB"]
    size = float(num_bytes)
    unit = units[0]
    for unit in units:
        if size < 1024 or unit == units[-1]:
            break
        size /= 1024
    return f"{size:.2f} {unit}"
