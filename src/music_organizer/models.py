from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from .errors import ErrorKind


_LEADING_INT = re.compile(r"^\s*(\d+)")


def _clean_text(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    # Some tag wrappers stringify missing values as "None".
    if not text or text.lower() == "none":
        return None
    return text


def _leading_int(value: object) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    match = _LEADING_INT.match(str(value))
    if not match:
        return None
    return int(match.group(1))


@dataclass(frozen=True)
class SongMetadata:
    file_extension: str
    artist: Optional[str] = None
    album: Optional[str] = None
    title: Optional[str] = None
    track_number: Optional[int] = None
    year: Optional[int] = None

    @classmethod
    def from_raw(
        cls,
        file_extension: str,
        artist: object = None,
        album: object = None,
        title: object = None,
        track_number: object = None,
        year: object = None,
    ) -> SongMetadata:
        """Build a record from loosely typed tag values.

        Text is trimmed and blank values become ``None``. Track numbers such as
        ``"3/12"`` keep the leading number; dates such as ``"2001-05-03"`` keep
        the year.
        """
        track = _leading_int(track_number)
        if track is not None and track < 0:
            track = None
        return cls(
            file_extension=file_extension,
            artist=_clean_text(artist),
            album=_clean_text(album),
            title=_clean_text(title),
            track_number=track,
            year=_leading_int(year),
        )

    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (self.artist, self.album, self.title, self.track_number, self.year)
        )


@dataclass(frozen=True)
class ExtractionFailure:
    kind: ErrorKind
    reason: str


ExtractionOutcome = Union[SongMetadata, ExtractionFailure]


@dataclass(frozen=True)
class SourceEntry:
    source_path: Path
    metadata: ExtractionOutcome

    @property
    def extraction_failed(self) -> bool:
        return isinstance(self.metadata, ExtractionFailure)


@dataclass(frozen=True)
class DestinationPlan:
    segments: tuple[str, ...]
    is_conflict_resolved: bool = False

    @property
    def relative_path(self) -> Path:
        return Path(*self.segments)

    @property
    def filename(self) -> str:
        return self.segments[-1]

    def under(self, root: Path) -> Path:
        return root.joinpath(*self.segments)

    def with_filename(self, name: str) -> DestinationPlan:
        return replace(self, segments=self.segments[:-1] + (name,))

    def resolved(self) -> DestinationPlan:
        return replace(self, is_conflict_resolved=True)


class OutcomeKind(str, Enum):
    MOVED = "moved"
    COPIED = "copied"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class FileOutcome:
    source: Path
    kind: OutcomeKind
    destination: Optional[Path] = None
    error_kind: Optional[ErrorKind] = None
    reason: str = ""

    @classmethod
    def moved(cls, source: Path, destination: Path) -> FileOutcome:
        return cls(source=source, kind=OutcomeKind.MOVED, destination=destination)

    @classmethod
    def copied(cls, source: Path, destination: Path) -> FileOutcome:
        return cls(source=source, kind=OutcomeKind.COPIED, destination=destination)

    @classmethod
    def skipped(
        cls,
        source: Path,
        reason: str,
        error_kind: Optional[ErrorKind] = None,
        destination: Optional[Path] = None,
    ) -> FileOutcome:
        return cls(
            source=source,
            kind=OutcomeKind.SKIPPED,
            destination=destination,
            error_kind=error_kind,
            reason=reason,
        )

    @classmethod
    def failed(
        cls,
        source: Path,
        error_kind: ErrorKind,
        reason: str,
        destination: Optional[Path] = None,
    ) -> FileOutcome:
        return cls(
            source=source,
            kind=OutcomeKind.FAILED,
            destination=destination,
            error_kind=error_kind,
            reason=reason,
        )

    @property
    def relocated(self) -> bool:
        return self.kind in (OutcomeKind.MOVED, OutcomeKind.COPIED)


@dataclass(frozen=True)
class OrganizeResult:
    outcomes: tuple[FileOutcome, ...]
    dry_run: bool = False
    cancelled: bool = False
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def _of_kind(self, kind: OutcomeKind) -> list[FileOutcome]:
        return [outcome for outcome in self.outcomes if outcome.kind is kind]

    @property
    def moved(self) -> list[FileOutcome]:
        return self._of_kind(OutcomeKind.MOVED)

    @property
    def copied(self) -> list[FileOutcome]:
        return self._of_kind(OutcomeKind.COPIED)

    @property
    def skipped(self) -> list[FileOutcome]:
        return self._of_kind(OutcomeKind.SKIPPED)

    @property
    def failed(self) -> list[FileOutcome]:
        return self._of_kind(OutcomeKind.FAILED)

    def destinations(self) -> list[Path]:
        """Final paths of every relocated file, in discovery order."""
        return [
            outcome.destination
            for outcome in self.outcomes
            if outcome.relocated and outcome.destination is not None
        ]
