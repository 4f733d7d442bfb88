from __future__ import annotations

import json
from pathlib import Path

import pytest

from music_organizer.config import OrganizeConfig, TransferMode
from music_organizer.errors import ErrorKind
from music_organizer.metadata import ExtractorRegistry, TagExtractor
from music_organizer.models import ExtractionFailure, ExtractionOutcome, SongMetadata


class JsonTagExtractor(TagExtractor):
    """Test extractor: the "audio" file is a JSON document holding its tags."""

    def __init__(self, extensions=(".mp3", ".flac")):
        self.extensions = frozenset(extensions)

    def extract(self, path: Path) -> ExtractionOutcome:
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            return ExtractionFailure(ErrorKind.UNREADABLE_FILE, str(exc))
        return SongMetadata.from_raw(path.suffix, **document.get("tags", {}))


def write_song(path: Path, **tags) -> Path:
    """Create a fake audio file; the path is embedded so every file has distinct bytes."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"tags": tags, "origin": str(path)}), encoding="utf-8")
    return path


def make_config(source: Path, destination: Path, **overrides) -> OrganizeConfig:
    overrides.setdefault("mode", TransferMode.COPY)
    return OrganizeConfig(source_root=source, destination_root=destination, **overrides)


@pytest.fixture
def registry() -> ExtractorRegistry:
    return ExtractorRegistry([JsonTagExtractor()])


@pytest.fixture
def source(tmp_path: Path) -> Path:
    path = tmp_path / "inbox"
    path.mkdir()
    return path


@pytest.fixture
def dest(tmp_path: Path) -> Path:
    return tmp_path / "library"
