from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

import mutagen
from mutagen.easyid3 import EasyID3
from mutagen.easymp4 import EasyMP4
from mutagen.flac import FLAC
from mutagen.id3 import ID3NoHeaderError
from mutagen.oggopus import OggOpus
from mutagen.oggvorbis import OggVorbis

from .errors import ErrorKind
from .models import ExtractionFailure, ExtractionOutcome, SongMetadata

logger = logging.getLogger(__name__)


AUDIO_EXTENSIONS = {
    ".mp3",
    ".flac",
    ".wav",
    ".m4a",
    ".mp4",
    ".aac",
    ".ogg",
    ".opus",
    ".wma",
    ".aiff",
    ".aif",
    ".alac",
    ".ape",
    ".wv",
}

ARTIST_KEYS = ("artist", "albumartist", "ARTIST", "TPE1", "©ART")
ALBUM_KEYS = ("album", "ALBUM", "TALB", "©alb")
TITLE_KEYS = ("title", "TITLE", "TIT2", "©nam")
TRACK_KEYS = ("tracknumber", "TRACKNUMBER", "TRCK", "trkn")
YEAR_KEYS = ("date", "year", "originaldate", "DATE", "TDRC", "©day")


def _first(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        if not value:
            return ""
        value = value[0]
        # MP4 "trkn" atoms are (number, total) pairs.
        if isinstance(value, tuple):
            return str(value[0]).strip() if value else ""
    return str(value).strip()


def _tag_value(tags: Any, *keys: str) -> str:
    if tags is None:
        return ""

    for key in keys:
        try:
            value = tags.get(key)
        except (KeyError, ValueError):
            value = None
        if value:
            return _first(value)

    return ""


def _easy_file(path: Path) -> Any:
    return mutagen.File(path, easy=True)


class TagExtractor(ABC):
    """Reads the tag header of one family of audio containers."""

    extensions: frozenset[str] = frozenset()

    @abstractmethod
    def extract(self, path: Path) -> ExtractionOutcome:
        """Return normalized metadata, or an :class:`ExtractionFailure`. Never raises."""


class MutagenExtractor(TagExtractor):
    def __init__(
        self,
        extensions: Iterable[str],
        loader: Callable[[Path], Any] = _easy_file,
        no_tag_errors: tuple[type[BaseException], ...] = (),
    ):
        self.extensions = frozenset(ext.lower() for ext in extensions)
        self._loader = loader
        self._no_tag_errors = no_tag_errors

    def __repr__(self) -> str:
        return f"{type(self).__name__}({sorted(self.extensions)})"

    def extract(self, path: Path) -> ExtractionOutcome:
        extension = path.suffix
        try:
            audio = self._loader(path)
        except self._no_tag_errors:
            return SongMetadata(file_extension=extension)
        except Exception as exc:
            # mutagen parsers raise more than MutagenError on corrupt headers (IndexError, struct.error).
            logger.debug("unreadable tags in %s: %s", path, exc)
            return ExtractionFailure(ErrorKind.UNREADABLE_FILE, f"{type(exc).__name__}: {exc}")

        if audio is None:
            return SongMetadata(file_extension=extension)

        # Container objects expose tags via .tags; EasyID3 is itself the tag mapping.
        tags = audio if isinstance(audio, EasyID3) else getattr(audio, "tags", None)
        return SongMetadata.from_raw(
            file_extension=extension,
            artist=_tag_value(tags, *ARTIST_KEYS),
            album=_tag_value(tags, *ALBUM_KEYS),
            title=_tag_value(tags, *TITLE_KEYS),
            track_number=_tag_value(tags, *TRACK_KEYS),
            year=_tag_value(tags, *YEAR_KEYS),
        )


class ExtractorRegistry:
    """Maps file extensions to the extractor responsible for them."""

    def __init__(self, extractors: Iterable[TagExtractor] = ()):
        self._by_extension: dict[str, TagExtractor] = {}
        for extractor in extractors:
            self.register(extractor)

    def register(self, extractor: TagExtractor) -> None:
        for extension in extractor.extensions:
            self._by_extension[extension.lower()] = extractor

    @property
    def extensions(self) -> frozenset[str]:
        return frozenset(self._by_extension)

    def for_path(self, path: Path) -> Optional[TagExtractor]:
        return self._by_extension.get(path.suffix.lower())

    def supports(self, path: Path) -> bool:
        return self.for_path(path) is not None

    def extract(self, path: Path) -> ExtractionOutcome:
        extractor = self.for_path(path)
        if extractor is None:
            return ExtractionFailure(ErrorKind.UNSUPPORTED_FORMAT, f"unsupported extension: {path.suffix or '(none)'}")
        return extractor.extract(path)


def default_registry() -> ExtractorRegistry:
    specific = [
        MutagenExtractor({".mp3"}, loader=EasyID3, no_tag_errors=(ID3NoHeaderError,)),
        MutagenExtractor({".flac"}, loader=FLAC),
        MutagenExtractor({".m4a", ".mp4", ".alac"}, loader=EasyMP4),
        MutagenExtractor({".ogg"}, loader=OggVorbis),
        MutagenExtractor({".opus"}, loader=OggOpus),
    ]
    covered = set().union(*(extractor.extensions for extractor in specific))
    generic = MutagenExtractor(AUDIO_EXTENSIONS - covered)
    return ExtractorRegistry([*specific, generic])


def is_audio_file(path: Path, registry: Optional[ExtractorRegistry] = None) -> bool:
    # macOS AppleDouble sidecar files (._*) are metadata blobs, not audio.
    if path.name.startswith("._"):
        return False
    if registry is None:
        supported = path.suffix.lower() in AUDIO_EXTENSIONS
    else:
        supported = registry.supports(path)
    return supported and path.is_file()
