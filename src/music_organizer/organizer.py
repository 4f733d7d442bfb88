from __future__ import annotations

import logging
import os
import random
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .config import OrganizeConfig
from .conflicts import ClaimRegistry, find_existing_copy, is_case_insensitive, resolve_destination
from .errors import ErrorKind, OrganizeError
from .metadata import ExtractorRegistry, default_registry
from .models import DestinationPlan, FileOutcome, OrganizeResult, SongMetadata, SourceEntry
from .paths import build_destination, fit_filename, path_length_ok, sanitize_segment
from .relocator import relocate
from .scanner import ScanResult, discover_audio_files

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

ALREADY_ORGANIZED = "already organized"
CANCELLED = "cancelled"


class RunState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    PROCESSING = "processing"
    COMPLETED = "completed"


class FileStage(str, Enum):
    EXTRACTING = "extracting"
    PATH_BUILDING = "path_building"
    CONFLICT_RESOLVING = "conflict_resolving"
    RELOCATING = "relocating"
    RECORDED = "recorded"


@dataclass
class RunContext:
    """State owned by a single run; nothing here outlives :func:`organize`."""

    config: OrganizeConfig
    extractors: ExtractorRegistry
    claims: ClaimRegistry = field(default_factory=ClaimRegistry)
    cancel_event: threading.Event = field(default_factory=threading.Event)
    state: RunState = RunState.IDLE

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def advance(self, state: RunState) -> None:
        logger.debug("run %s -> %s", self.state.value, state.value)
        self.state = state


def _stage(stage: FileStage, path: Path) -> None:
    logger.debug("[%s] %s", stage.value, path)


def _absolute(config: OrganizeConfig) -> OrganizeConfig:
    return config.with_overrides(
        source_root=Path(config.source_root).expanduser().resolve(),
        destination_root=Path(config.destination_root).expanduser().resolve(),
    )


def check_preconditions(config: OrganizeConfig) -> None:
    """Raise :class:`OrganizeError` when the run must not start."""
    source = config.source_root
    if not source.is_dir():
        raise OrganizeError(f"Source root does not exist or is not a directory: {source}")

    destination = config.destination_root
    if destination.exists():
        if not destination.is_dir():
            raise OrganizeError(f"Destination root is not a directory: {destination}")
        if not os.access(destination, os.W_OK | os.X_OK):
            raise OrganizeError(f"Destination root is not writable: {destination}")
    elif not config.dry_run:
        try:
            destination.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OrganizeError(f"Destination root cannot be created: {destination}: {exc}") from exc


def _prepare(
    config: OrganizeConfig,
    registry: Optional[ExtractorRegistry],
    cancel_event: Optional[threading.Event],
) -> tuple[RunContext, ScanResult]:
    try:
        config.validate()
    except ValueError as exc:
        raise OrganizeError(str(exc)) from exc
    config = _absolute(config)
    check_preconditions(config)

    context = RunContext(
        config=config,
        extractors=registry if registry is not None else default_registry(),
        claims=ClaimRegistry(case_insensitive=is_case_insensitive(config.destination_root)),
    )
    if cancel_event is not None:
        context.cancel_event = cancel_event

    context.advance(RunState.SCANNING)
    source, destination = config.source_root, config.destination_root
    exclude = destination if source in destination.parents else None
    return context, discover_audio_files(source, context.extractors, exclude=exclude)


def _place(
    context: RunContext,
    source: Path,
    plan: DestinationPlan,
    extension: str,
    detect_existing: bool = True,
) -> FileOutcome:
    config = context.config
    root = config.destination_root

    candidate = plan.under(root)
    if not path_length_ok(candidate, config.max_path_length):
        return FileOutcome.failed(source, ErrorKind.PATH_TOO_LONG, f"destination path too long: {candidate}")

    if detect_existing:
        existing = find_existing_copy(
            source, plan, root, extension, config.suffix_format, config.max_segment_bytes, claims=context.claims
        )
        if existing is not None and context.claims.claim(existing):
            return FileOutcome.skipped(source, ALREADY_ORGANIZED, destination=existing)

    _stage(FileStage.CONFLICT_RESOLVING, source)
    resolution = resolve_destination(
        plan,
        root,
        config.conflict_policy,
        context.claims,
        extension,
        config.suffix_format,
        config.max_segment_bytes,
    )
    if not resolution.accepted:
        return FileOutcome.skipped(
            source,
            resolution.skipped_reason,
            error_kind=ErrorKind.DESTINATION_CONFLICT_UNRESOLVED,
        )

    destination = resolution.destination
    if not path_length_ok(destination, config.max_path_length):
        return FileOutcome.failed(source, ErrorKind.PATH_TOO_LONG, f"destination path too long: {destination}")

    _stage(FileStage.RELOCATING, source)
    return relocate(source, destination, config.mode, overwrite=resolution.overwrite, dry_run=config.dry_run)


def process_file(context: RunContext, path: Path) -> FileOutcome:
    """Run one discovered file through extraction, planning, resolution and relocation."""
    config = context.config
    try:
        _stage(FileStage.EXTRACTING, path)
        entry = SourceEntry(source_path=path, metadata=context.extractors.extract(path))
        if entry.extraction_failed:
            failure = entry.metadata
            if failure.kind is not ErrorKind.UNREADABLE_FILE or not config.organize_unreadable:
                return FileOutcome.failed(path, failure.kind, failure.reason)
            metadata = SongMetadata(file_extension=path.suffix)
        else:
            metadata = entry.metadata
        if metadata.is_empty():
            logger.debug("no usable tags in %s, using fallback names", path)

        _stage(FileStage.PATH_BUILDING, path)
        plan = build_destination(metadata, config)
        outcome = _place(context, entry.source_path, plan, metadata.file_extension)
    except OSError as exc:
        logger.warning("organize skipped: %s: %s", path, exc)
        outcome = FileOutcome.failed(path, ErrorKind.IO_FAILURE, f"{type(exc).__name__}: {exc}")
    except Exception as exc:
        # Recorded on this file only; the run goes on.
        logger.exception("unexpected error while organizing %s", path)
        outcome = FileOutcome.failed(path, ErrorKind.IO_FAILURE, f"{type(exc).__name__}: {exc}")

    _stage(FileStage.RECORDED, path)
    return outcome


def _run_pipeline(
    context: RunContext,
    paths: list[Path],
    handler: Callable[[RunContext, Path], FileOutcome],
    progress_callback: Optional[ProgressCallback],
) -> list[FileOutcome]:
    total = len(paths)
    outcomes: list[Optional[FileOutcome]] = [None] * total
    if progress_callback:
        progress_callback(0, total)

    def _one(path: Path) -> FileOutcome:
        # Checked between files only; a started relocation always finishes.
        if context.cancelled:
            return FileOutcome.skipped(path, CANCELLED)
        return handler(context, path)

    if context.config.workers == 1 or total <= 1:
        for idx, path in enumerate(paths):
            outcomes[idx] = _one(path)
            if progress_callback:
                progress_callback(idx + 1, total)
    else:
        with ThreadPoolExecutor(max_workers=context.config.workers, thread_name_prefix="organize") as pool:
            futures = {pool.submit(_one, path): idx for idx, path in enumerate(paths)}
            for done, future in enumerate(as_completed(futures), start=1):
                outcomes[futures[future]] = future.result()
                if progress_callback:
                    progress_callback(done, total)

    return [outcome for outcome in outcomes if outcome is not None]


def _finish(context: RunContext, outcomes: list[FileOutcome], scan: ScanResult) -> OrganizeResult:
    context.advance(RunState.COMPLETED)
    result = OrganizeResult(
        outcomes=tuple(outcomes),
        dry_run=context.config.dry_run,
        cancelled=context.cancelled,
        warnings=tuple(scan.warnings),
    )
    logger.info(
        "run complete: %d moved, %d copied, %d skipped, %d failed",
        len(result.moved),
        len(result.copied),
        len(result.skipped),
        len(result.failed),
    )
    return result


def _unsupported_outcomes(context: RunContext, scan: ScanResult) -> list[FileOutcome]:
    if not context.config.report_unsupported:
        return []
    return [
        FileOutcome.skipped(
            path,
            f"unsupported extension: {path.suffix or '(none)'}",
            error_kind=ErrorKind.UNSUPPORTED_FORMAT,
        )
        for path in scan.unsupported_files
    ]


def organize(
    config: OrganizeConfig,
    registry: Optional[ExtractorRegistry] = None,
    progress_callback: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
) -> OrganizeResult:
    """Organize every supported file under the source root.

    Raises :class:`OrganizeError` before touching anything when the roots
    are unusable. Per-file problems end up in the returned result and never
    stop the run. Setting ``cancel_event`` stops the run between files;
    files that were not started are reported as skipped.
    """
    context, scan = _prepare(config, registry, cancel_event)
    context.advance(RunState.PROCESSING)
    outcomes = _run_pipeline(context, scan.audio_files, process_file, progress_callback)
    return _finish(context, outcomes + _unsupported_outcomes(context, scan), scan)


def shuffle(
    config: OrganizeConfig,
    seed: Optional[int] = None,
    registry: Optional[ExtractorRegistry] = None,
    progress_callback: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
) -> OrganizeResult:
    """Place every supported file flat under the destination in random order.

    Files are named ``"<position> - <original name>"`` so that players which
    sort by name play them shuffled. Metadata is not read.
    """
    context, scan = _prepare(config, registry, cancel_event)
    paths = list(scan.audio_files)
    random.Random(seed).shuffle(paths)
    width = len(str(max(len(paths) - 1, 0)))
    positions = {path: idx for idx, path in enumerate(paths)}

    def _shuffled(ctx: RunContext, path: Path) -> FileOutcome:
        stem = sanitize_segment(
            f"{positions[path]:0{width}d} - {path.stem}",
            ctx.config.illegal_characters,
            ctx.config.replacement,
        )
        name = fit_filename(stem, path.suffix, ctx.config.max_segment_bytes)
        try:
            return _place(ctx, path, DestinationPlan(segments=(name,)), path.suffix, detect_existing=False)
        except OSError as exc:
            return FileOutcome.failed(path, ErrorKind.IO_FAILURE, f"{type(exc).__name__}: {exc}")

    context.advance(RunState.PROCESSING)
    outcomes = _run_pipeline(context, paths, _shuffled, progress_callback)
    return _finish(context, outcomes + _unsupported_outcomes(context, scan), scan)
