from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .metadata import ExtractorRegistry, is_audio_file

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    audio_files: list[Path] = field(default_factory=list)
    unsupported_files: list[Path] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _is_within(path: Path, root: Path) -> bool:
    return path == root or root in path.parents


def discover_audio_files(
    root: Path,
    registry: ExtractorRegistry,
    exclude: Optional[Path] = None,
) -> ScanResult:
    """Walk ``root`` and split regular files into supported and unsupported.

    Ordering is deterministic (sorted walk). ``exclude`` is skipped entirely,
    which keeps an in-place destination tree nested under the source from
    being fed back into the run.
    """
    result = ScanResult()

    def _on_walk_error(err: OSError) -> None:
        target = getattr(err, "filename", None) or str(root)
        result.warnings.append(f"walk error: {target}: {err.strerror or str(err)}")
        logger.warning("walk error: %s: %s", target, err.strerror or err)

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_walk_error):
        base = Path(dirpath)
        dirnames.sort()
        if exclude is not None:
            dirnames[:] = [name for name in dirnames if not _is_within(base / name, exclude)]
        for name in sorted(filenames):
            path = base / name
            try:
                if is_audio_file(path, registry):
                    result.audio_files.append(path)
                elif path.is_file() and not name.startswith("._"):
                    result.unsupported_files.append(path)
            except OSError as exc:
                result.warnings.append(f"file skipped: {path}: {exc}")
                logger.warning("file skipped: %s: %s", path, exc)

    logger.debug(
        "scan of %s found %d audio and %d unsupported files",
        root,
        len(result.audio_files),
        len(result.unsupported_files),
    )
    return result
