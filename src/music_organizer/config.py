from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from .paths import parse_template


DEFAULT_TEMPLATE = "artist/album/track_number - title"
DEFAULT_ILLEGAL_CHARACTERS = '<>:"/\\|?*'
DEFAULT_SUFFIX_FORMAT = " ({n})"
DEFAULT_MAX_SEGMENT_BYTES = 255
DEFAULT_FALLBACKS: Mapping[str, str] = MappingProxyType(
    {
        "artist": "Unknown Artist",
        "album": "Unknown Album",
        "title": "Unknown Title",
        "track_number": "",
        "year": "",
    }
)


def default_max_path_length() -> int:
    return 260 if os.name == "nt" else 4096


class ConflictPolicy(str, Enum):
    SKIP = "skip"
    RENAME = "rename"
    OVERWRITE = "overwrite"


class TransferMode(str, Enum):
    MOVE = "move"
    COPY = "copy"


@dataclass(frozen=True)
class OrganizeConfig:
    source_root: Path
    destination_root: Path
    template: str = DEFAULT_TEMPLATE
    conflict_policy: ConflictPolicy = ConflictPolicy.RENAME
    mode: TransferMode = TransferMode.MOVE
    fallbacks: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_FALLBACKS))
    illegal_characters: str = DEFAULT_ILLEGAL_CHARACTERS
    replacement: str = ""
    suffix_format: str = DEFAULT_SUFFIX_FORMAT
    max_segment_bytes: int = DEFAULT_MAX_SEGMENT_BYTES
    max_path_length: int = field(default_factory=default_max_path_length)
    track_number_width: int = 2
    report_unsupported: bool = False
    organize_unreadable: bool = False
    dry_run: bool = False
    workers: int = 1

    def fallback_for(self, name: str) -> str:
        if name in self.fallbacks:
            return self.fallbacks[name]
        return DEFAULT_FALLBACKS.get(name, "")

    def with_overrides(self, **changes: object) -> OrganizeConfig:
        return replace(self, **changes)

    def validate(self) -> None:
        """Raise ``ValueError`` for settings the pipeline cannot honour."""
        parse_template(self.template)
        if self.workers < 1:
            raise ValueError(f"workers must be at least 1, got {self.workers}")
        if "{n}" not in self.suffix_format:
            raise ValueError(f"suffix format must contain '{{n}}': {self.suffix_format!r}")
        if self.max_segment_bytes < 16:
            raise ValueError(f"max_segment_bytes is too small: {self.max_segment_bytes}")
        if self.track_number_width < 0:
            raise ValueError(f"track_number_width must not be negative: {self.track_number_width}")
        if any(ch in self.replacement for ch in self.illegal_characters + "/\\"):
            raise ValueError(f"replacement contains an illegal character: {self.replacement!r}")
