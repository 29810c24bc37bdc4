"""Track metadata: tag reading and the title/artist fallback chain.

Tag reading is the only impure step. It never raises; it reports an explicit
`TagReadResult` which the resolvers below consume as plain data.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from loguru import logger
from mutagen import File as MutagenFile

from .models import UNKNOWN_ARTIST


# Spaced forms come first so "A - B-side" splits on the spaced hyphen.
ARTIST_TITLE_SEPARATORS: Tuple[str, ...] = (
    " - ",
    " – ",  # en dash
    " — ",  # em dash
    " ― ",  # horizontal bar
    "-",
    "–",
    "—",
    "―",
)


@dataclass(frozen=True)
class TrackTags:
    title: Optional[str] = None
    artist: Optional[str] = None
    albumartist: Optional[str] = None
    artists: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TagReadResult:
    tags: Optional[TrackTags] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.tags is not None


@dataclass(frozen=True)
class ResolvedMetadata:
    title: str
    artist: str


def _first_text(values) -> Optional[str]:
    if values is None:
        return None
    if isinstance(values, str):
        values = [values]
    for v in values:
        s = str(v).strip()
        if s:
            return s
    return None


def _all_text(values) -> Tuple[str, ...]:
    if values is None:
        return ()
    if isinstance(values, str):
        values = [values]
    return tuple(str(v) for v in values)


def read_tags(path: str) -> TagReadResult:
    """Read title/artist tags with mutagen's easy interface."""
    try:
        mf = MutagenFile(path, easy=True)
    except Exception as e:
        return TagReadResult(error=f"{type(e).__name__}: {e}")
    if mf is None:
        return TagReadResult(error="unsupported or unrecognized audio format")
    tags = getattr(mf, "tags", None)
    if tags is None:
        return TagReadResult(tags=TrackTags())

    def get(key: str):
        try:
            return tags.get(key)
        except (KeyError, ValueError):
            return None

    artist_values = get("artist")
    artists = _all_text(get("artists")) or _all_text(artist_values)
    return TagReadResult(
        tags=TrackTags(
            title=_first_text(get("title")),
            artist=_first_text(artist_values),
            albumartist=_first_text(get("albumartist")),
            artists=artists,
        )
    )


def split_artist_title(stem: str, separators: Sequence[str] = ARTIST_TITLE_SEPARATORS) -> Optional[Tuple[str, str]]:
    """Split "Artist - Title" style stems into (artist, title).

    The first separator (in preference order) that yields at least two
    non-empty segments wins. Everything after the first segment is the title,
    rejoined with " - " for spaced separators and the bare separator otherwise.
    """
    for sep in separators:
        if sep not in stem:
            continue
        segments = [s.strip() for s in stem.split(sep)]
        segments = [s for s in segments if s]
        if len(segments) < 2:
            continue
        joiner = " - " if sep != sep.strip() else sep
        return segments[0], joiner.join(segments[1:])
    return None


def resolve_title(tags: Optional[TrackTags], filename: str) -> str:
    if tags is not None and tags.title:
        return tags.title
    stem = os.path.splitext(filename)[0]
    parsed = split_artist_title(stem)
    if parsed is not None:
        return parsed[1]
    return stem


def resolve_artist(
    tags: Optional[TrackTags],
    filename: str,
    parent_name: str = "",
    root_name: str = "",
) -> str:
    if tags is not None:
        if tags.artist:
            return tags.artist
        if tags.albumartist:
            return tags.albumartist
        first = _first_text(tags.artists)
        if first:
            return first
    parsed = split_artist_title(os.path.splitext(filename)[0])
    if parsed is not None:
        return parsed[0]
    parent = (parent_name or "").strip()
    if parent and parent != (root_name or "").strip():
        return parent
    return UNKNOWN_ARTIST


def resolve_metadata(
    result: Optional[TagReadResult],
    filename: str,
    parent_name: str = "",
    root_name: str = "",
) -> ResolvedMetadata:
    tags = result.tags if result is not None else None
    if result is not None and result.error:
        logger.debug(f"No tags for {filename}: {result.error}")
    return ResolvedMetadata(
        title=resolve_title(tags, filename),
        artist=resolve_artist(tags, filename, parent_name, root_name),
    )
