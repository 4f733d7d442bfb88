from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    UNREADABLE_FILE = "unreadable_file"
    UNSUPPORTED_FORMAT = "unsupported_format"
    PATH_TOO_LONG = "path_too_long"
    DESTINATION_CONFLICT_UNRESOLVED = "destination_conflict_unresolved"
    IO_FAILURE = "io_failure"
    # Copy landed but the source could not be removed (or the copy did not verify).
    PARTIAL_MOVE_FAILURE = "partial_move_failure"


class OrganizeError(RuntimeError):
    """Raised when a run cannot start at all (missing source root, unwritable destination)."""


class RelocationError(RuntimeError):
    """Raised inside the relocator; converted to a failed outcome at its boundary."""

    def __init__(self, kind: ErrorKind, message: str, destination_written: bool = False):
        super().__init__(message)
        self.kind = kind
        self.destination_written = destination_written
