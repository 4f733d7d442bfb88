from __future__ import annotations

import filecmp
import itertools
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

from .config import ConflictPolicy
from .models import DestinationPlan
from .paths import fit_filename

logger = logging.getLogger(__name__)


class ClaimRegistry:
    """Destinations handed out during one run.

    Owned by a single run and shared by its workers. Checking a path and
    claiming it happen under one lock, so two files can never be given the
    same destination. With ``case_insensitive`` set, paths that differ only
    in letter case count as the same destination.
    """

    def __init__(self, case_insensitive: bool = False) -> None:
        self._claimed: set[str] = set()
        self._lock = threading.Lock()
        self.case_insensitive = case_insensitive

    def _key(self, path: Path) -> str:
        key = os.path.normcase(os.path.abspath(path))
        return key.casefold() if self.case_insensitive else key

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, os.PathLike)):
            return False
        key = self._key(Path(path))
        with self._lock:
            return key in self._claimed

    def __len__(self) -> int:
        with self._lock:
            return len(self._claimed)

    def claim(self, path: Path) -> bool:
        key = self._key(path)
        with self._lock:
            if key in self._claimed:
                return False
            self._claimed.add(key)
            return True

    def claim_first_free(
        self,
        candidates: Iterable[Path],
        is_free: Callable[[Path], bool],
    ) -> Optional[Path]:
        """Claim the first candidate that is unclaimed and passes ``is_free``.

        ``is_free`` runs outside the lock; only the membership test and the
        insert are atomic.
        """
        for candidate in candidates:
            if not is_free(candidate):
                continue
            if self.claim(candidate):
                return candidate
        return None


def is_case_insensitive(path: Path) -> bool:
    """Guess whether the filesystem holding ``path`` ignores letter case.

    Looks at the nearest existing ancestor whose name has letters and checks
    whether the case-swapped name resolves to the same entry.
    """
    anchor = Path(path)
    while not anchor.exists() and anchor != anchor.parent:
        anchor = anchor.parent
    for candidate in (anchor, *anchor.parents):
        name = candidate.name
        if name.swapcase() == name:
            continue
        try:
            return os.path.samefile(candidate, candidate.with_name(name.swapcase()))
        except OSError:
            return False
    return os.name == "nt"


@dataclass(frozen=True)
class Resolution:
    plan: DestinationPlan
    destination: Optional[Path]
    overwrite: bool = False
    skipped_reason: str = ""

    @property
    def accepted(self) -> bool:
        return self.destination is not None


def _split_filename(filename: str, extension: str) -> str:
    if extension and filename.endswith(extension):
        return filename[: -len(extension)]
    return filename


def suffixed_candidates(
    plan: DestinationPlan,
    extension: str,
    suffix_format: str = " ({n})",
    max_segment_bytes: int = 255,
    start: int = 2,
) -> Iterator[DestinationPlan]:
    """Yield ``name (2).ext``, ``name (3).ext``, ... for a plan, forever."""
    stem = _split_filename(plan.filename, extension)
    for n in itertools.count(start):
        name = fit_filename(stem, extension, max_segment_bytes, suffix=suffix_format.format(n=n))
        yield plan.with_filename(name)


def _absent_on_disk(path: Path) -> bool:
    return not os.path.lexists(path)


def resolve_destination(
    plan: DestinationPlan,
    root: Path,
    policy: ConflictPolicy,
    registry: ClaimRegistry,
    extension: str,
    suffix_format: str = " ({n})",
    max_segment_bytes: int = 255,
) -> Resolution:
    candidate = plan.under(root)
    if registry.claim_first_free([candidate], _absent_on_disk) is not None:
        return Resolution(plan=plan, destination=candidate)

    if policy is ConflictPolicy.SKIP:
        return Resolution(plan=plan, destination=None, skipped_reason=f"destination already taken: {candidate}")

    # Overwrite only ever replaces a file that predates this run.
    if policy is ConflictPolicy.OVERWRITE and registry.claim(candidate):
        logger.debug("overwriting existing %s", candidate)
        return Resolution(plan=plan.resolved(), destination=candidate, overwrite=True)

    by_path: dict[Path, DestinationPlan] = {}

    def _paths() -> Iterator[Path]:
        for option in suffixed_candidates(plan, extension, suffix_format, max_segment_bytes):
            path = option.under(root)
            by_path[path] = option
            yield path

    destination = registry.claim_first_free(_paths(), _absent_on_disk)
    if destination is None:  # pragma: no cover - the candidate stream is unbounded
        return Resolution(plan=plan, destination=None, skipped_reason=f"no free name for {candidate}")
    logger.debug("renamed %s -> %s", candidate, destination)
    return Resolution(plan=by_path[destination].resolved(), destination=destination)


def is_already_organized(source: Path, destination: Path) -> bool:
    """True when ``destination`` is the source itself or holds identical bytes."""
    try:
        if source.resolve() == destination.resolve():
            return True
        if not destination.is_file():
            return False
        return filecmp.cmp(source, destination, shallow=False)
    except OSError:
        return False


def find_existing_copy(
    source: Path,
    plan: DestinationPlan,
    root: Path,
    extension: str,
    suffix_format: str = " ({n})",
    max_segment_bytes: int = 255,
    claims: Optional[ClaimRegistry] = None,
) -> Optional[Path]:
    """Look for the source's bytes at the plan or one of its numbered siblings.

    Names already in ``claims`` were written by the current run and never
    count as an earlier copy. Stops at the first name that does not exist,
    which is where a previous run would have stopped as well.
    """
    options = itertools.chain(
        [plan],
        suffixed_candidates(plan, extension, suffix_format, max_segment_bytes),
    )
    for option in options:
        path = option.under(root)
        if claims is not None and path in claims:
            continue
        if not os.path.lexists(path):
            return None
        if is_already_organized(source, path):
            return path
    return None  # pragma: no cover
