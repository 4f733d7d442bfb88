"""Destination path construction.

Maps a :class:`SongMetadata` record and the run configuration onto a
relative destination such as ``Artist/Album/01 - Song.mp3``. Everything in
this module is pure: the same metadata and configuration always give the
same segments, and nothing here touches the filesystem.
"""

from __future__ import annotations

import os
import re
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, NamedTuple

from .models import DestinationPlan, SongMetadata

if TYPE_CHECKING:
    from .config import OrganizeConfig


TEMPLATE_FIELDS = ("artist", "album", "title", "track_number", "year")
FALLBACK_SEGMENT = "Unknown"

_FIELD_PATTERN = re.compile(r"\{(\w*)\}|\b(" + "|".join(TEMPLATE_FIELDS) + r")\b")
_CONTROL_CHARS = re.compile(r"[\x00-\x1F\x7F]")
_WHITESPACE = re.compile(r"\s+")
_SEPARATOR_ONLY = re.compile(r"^[\s\-_.,]*$")
_EMPTY_BRACKETS = re.compile(r"\(\s*\)|\[\s*\]|\{\s*\}")
# Path separators can never survive inside a single segment.
_ALWAYS_ILLEGAL = "/\\"


class TemplatePart(NamedTuple):
    text: str
    is_field: bool


@lru_cache(maxsize=64)
def parse_template(template: str) -> tuple[tuple[TemplatePart, ...], ...]:
    """Split a template into segments of literal text and field references.

    Fields may be written bare (``artist/album/track_number - title``) or
    braced (``{artist}/{album}/{track_number} - {title}``).
    """
    if not template or not template.strip():
        raise ValueError("path template is empty")

    segments: list[tuple[TemplatePart, ...]] = []
    seen_field = False
    for raw_segment in template.strip().strip("/").split("/"):
        if not raw_segment.strip():
            raise ValueError(f"path template has an empty segment: {template!r}")

        parts: list[TemplatePart] = []
        position = 0
        for match in _FIELD_PATTERN.finditer(raw_segment):
            name = match.group(1) if match.group(1) is not None else match.group(2)
            if name not in TEMPLATE_FIELDS:
                raise ValueError(f"unknown template field {name!r} in {template!r}")
            if match.start() > position:
                parts.append(TemplatePart(raw_segment[position:match.start()], False))
            parts.append(TemplatePart(name, True))
            position = match.end()
            seen_field = True
        if position < len(raw_segment):
            parts.append(TemplatePart(raw_segment[position:], False))
        segments.append(tuple(parts))

    if not seen_field:
        raise ValueError(f"path template references no metadata field: {template!r}")
    return tuple(segments)


def truncate_utf8(value: str, max_bytes: int) -> str:
    encoded = value.encode("utf-8")
    if len(encoded) <= max_bytes:
        return value
    # Cutting mid-character leaves a partial sequence; drop it.
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


def sanitize_segment(
    value: str,
    illegal_characters: str = '<>:"/\\|?*',
    replacement: str = "",
) -> str:
    """Make a single path segment safe for common filesystems.

    Returns an empty string when nothing usable is left; callers decide on
    the fallback.
    """
    banned = set(illegal_characters) | set(_ALWAYS_ILLEGAL)
    value = _CONTROL_CHARS.sub(replacement, value)
    value = "".join(replacement if ch in banned else ch for ch in value)
    value = _WHITESPACE.sub(" ", value).strip()
    # Windows refuses names ending in a dot or space.
    value = value.rstrip(". ")
    if value in ("", ".", ".."):
        return ""
    return value


def fit_segment(value: str, max_bytes: int) -> str:
    value = truncate_utf8(value, max_bytes).rstrip(". ")
    return value or FALLBACK_SEGMENT


def fit_filename(stem: str, extension: str, max_bytes: int, suffix: str = "") -> str:
    """Join stem, suffix and extension within ``max_bytes``, truncating only the stem."""
    budget = max(max_bytes - len(suffix.encode("utf-8")) - len(extension.encode("utf-8")), 1)
    stem = truncate_utf8(stem, budget).rstrip(". ")
    return (stem or truncate_utf8(FALLBACK_SEGMENT, budget)) + suffix + extension


def _field_values(metadata: SongMetadata, config: OrganizeConfig) -> dict[str, str]:
    raw = {
        "artist": metadata.artist,
        "album": metadata.album,
        "title": metadata.title,
        "track_number": None,
        "year": None,
    }
    if metadata.track_number is not None:
        raw["track_number"] = str(metadata.track_number).zfill(config.track_number_width)
    if metadata.year is not None:
        raw["year"] = str(metadata.year)

    values: dict[str, str] = {}
    for name, value in raw.items():
        cleaned = sanitize_segment(value, config.illegal_characters, config.replacement) if value else ""
        values[name] = cleaned or config.fallback_for(name)
    return values


def _render_segment(parts: tuple[TemplatePart, ...], values: dict[str, str]) -> str:
    rendered = [(values[part.text] if part.is_field else part.text, part.is_field) for part in parts]

    # An empty field takes one neighbouring separator with it,
    # so "track_number - title" without a track renders as "title".
    index = 0
    while index < len(rendered):
        text, is_field = rendered[index]
        if not is_field or text:
            index += 1
            continue
        del rendered[index]
        if index < len(rendered) and not rendered[index][1] and _SEPARATOR_ONLY.match(rendered[index][0]):
            del rendered[index]
        elif index > 0 and not rendered[index - 1][1] and _SEPARATOR_ONLY.match(rendered[index - 1][0]):
            del rendered[index - 1]
            index -= 1

    text = "".join(chunk for chunk, _ in rendered)
    return _EMPTY_BRACKETS.sub("", text)


def build_destination(metadata: SongMetadata, config: OrganizeConfig) -> DestinationPlan:
    """Compute the candidate relative destination for one file."""
    template = parse_template(config.template)
    values = _field_values(metadata, config)

    segments: list[str] = []
    last = len(template) - 1
    for index, parts in enumerate(template):
        text = sanitize_segment(_render_segment(parts, values), config.illegal_characters, config.replacement)
        if index == last:
            segments.append(fit_filename(text, metadata.file_extension, config.max_segment_bytes))
        else:
            segments.append(fit_segment(text, config.max_segment_bytes))
    return DestinationPlan(segments=tuple(segments))


def path_length_ok(path: Path, limit: int) -> bool:
    return len(os.fsencode(str(path))) <= limit
