"""Physical move/copy of a single file.

A destination is only ever published whole: copies land in a hidden
temporary file next to the destination, are size-checked against the
source and then renamed into place. Moves use a plain rename when source
and destination share a volume and otherwise copy, verify, publish and
only then delete the source.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
import uuid
from pathlib import Path

from .config import TransferMode
from .errors import ErrorKind, RelocationError
from .models import FileOutcome

logger = logging.getLogger(__name__)


def _same_volume(source: Path, destination_dir: Path) -> bool:
    return os.stat(source).st_dev == os.stat(destination_dir).st_dev


def _remove_source(source: Path) -> None:
    source.unlink()


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("could not remove temporary file %s: %s", path, exc)


def _refuse_existing(destination: Path, overwrite: bool) -> None:
    if not overwrite and os.path.lexists(destination):
        raise RelocationError(ErrorKind.IO_FAILURE, f"destination already exists: {destination}")


def _copy_verified(source: Path, destination: Path, overwrite: bool, mismatch_kind: ErrorKind) -> None:
    expected = source.stat().st_size
    temporary = destination.parent / f".{uuid.uuid4().hex[:12]}.partial"
    published = False
    try:
        shutil.copy2(source, temporary)
        actual = temporary.stat().st_size
        if actual != expected:
            raise RelocationError(
                mismatch_kind,
                f"size mismatch after copy to {destination}: expected {expected} bytes, got {actual}",
            )
        _refuse_existing(destination, overwrite)
        os.replace(temporary, destination)
        published = True
    finally:
        if not published:
            _discard(temporary)


def _rename(source: Path, destination: Path, overwrite: bool) -> None:
    if overwrite:
        os.replace(source, destination)
    else:
        _refuse_existing(destination, overwrite)
        os.rename(source, destination)


def _move(source: Path, destination: Path, overwrite: bool) -> None:
    if _same_volume(source, destination.parent):
        try:
            _rename(source, destination, overwrite)
            return
        except OSError as exc:
            if exc.errno != errno.EXDEV:
                raise
            logger.debug("rename crossed devices, copying instead: %s", source)

    _copy_verified(source, destination, overwrite, ErrorKind.PARTIAL_MOVE_FAILURE)
    try:
        _remove_source(source)
    except OSError as exc:
        raise RelocationError(
            ErrorKind.PARTIAL_MOVE_FAILURE,
            f"copied to {destination} but could not remove source: {exc}",
            destination_written=True,
        ) from exc


def relocate(
    source: Path,
    destination: Path,
    mode: TransferMode,
    overwrite: bool = False,
    dry_run: bool = False,
) -> FileOutcome:
    """Move or copy ``source`` to ``destination`` and report what happened.

    Failures are returned as failed outcomes, never raised. An existing
    destination is replaced only when ``overwrite`` is set.
    """
    if not dry_run:
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            _refuse_existing(destination, overwrite)
            if mode is TransferMode.MOVE:
                _move(source, destination, overwrite)
            else:
                _copy_verified(source, destination, overwrite, ErrorKind.IO_FAILURE)
        except RelocationError as exc:
            logger.warning("%s: %s", exc.kind.value, exc)
            return FileOutcome.failed(
                source,
                exc.kind,
                str(exc),
                destination=destination if exc.destination_written else None,
            )
        except OSError as exc:
            logger.warning("relocation of %s failed: %s", source, exc)
            return FileOutcome.failed(source, ErrorKind.IO_FAILURE, f"{type(exc).__name__}: {exc}")

    action = "would " + mode.value if dry_run else mode.value
    logger.info("[%s] %s -> %s", action, source, destination)
    if mode is TransferMode.MOVE:
        return FileOutcome.moved(source, destination)
    return FileOutcome.copied(source, destination)
