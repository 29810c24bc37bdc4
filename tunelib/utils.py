from __future__ import annotations

import mimetypes
import os
from pathlib import Path
from typing import Iterable, List, Optional, Union


AUDIO_EXTENSIONS = frozenset({".mp3", ".flac", ".m4a", ".aac", ".wav", ".ogg"})

# mimetypes has no entry for some of these on every platform.
AUDIO_MIME_TYPES = {
    ".mp3": "audio/mpeg",
    ".flac": "audio/flac",
    ".m4a": "audio/mp4",
    ".aac": "audio/aac",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
}

PathLike = Union[str, Path]


def normalize_extensions(extensions: Iterable[str]) -> frozenset:
    """Lowercase and dot-prefix an extension allow-list (".MP3", "flac" -> ".mp3", ".flac")."""
    out = set()
    for ext in extensions:
        e = str(ext or "").strip().lower()
        if not e:
            continue
        if not e.startswith("."):
            e = "." + e
        out.add(e)
    return frozenset(out)


def has_allowed_extension(name: PathLike, allowed: Iterable[str] = AUDIO_EXTENSIONS) -> bool:
    ext = os.path.splitext(str(name))[1].lower()
    if not ext:
        return False
    return ext in allowed


def normalize_path(path: PathLike) -> str:
    # abspath also normalizes; symlinks are left alone on purpose so stored
    # paths match what the user pointed the library at.
    return os.path.abspath(os.path.normpath(str(path)))


def candidate_paths(root: PathLike, filename: str, directory: Optional[PathLike] = None) -> List[str]:
    """Return path strings that should match a stored record for `filename`.

    The first entry is always the canonical absolute path. Records saved under
    a relative directory argument or with odd separators still match through
    the other entries.
    """
    canonical = normalize_path(os.path.join(str(root), filename))
    out = [canonical]
    for extra in (
        os.path.normpath(os.path.join(str(root), filename)),
        os.path.normpath(os.path.join(str(directory), filename)) if directory else None,
    ):
        if extra and extra not in out:
            out.append(extra)
    return out


def is_within(path: PathLike, root: PathLike) -> bool:
    """True when `path` is `root` or below it, compared per path component."""
    p = normalize_path(path)
    r = normalize_path(root)
    if p == r:
        return True
    prefix = r if r.endswith(os.sep) else r + os.sep
    return p.startswith(prefix)


def resolve_target_directory(directory: Optional[PathLike], default_root: PathLike) -> str:
    if not directory or not str(directory).strip():
        return normalize_path(default_root)
    d = str(directory).strip()
    if os.path.isabs(d):
        return normalize_path(d)
    return normalize_path(os.path.join(normalize_path(default_root), d))


def guess_mime(path: PathLike) -> str:
    ext = os.path.splitext(str(path))[1].lower()
    if ext in AUDIO_MIME_TYPES:
        return AUDIO_MIME_TYPES[ext]
    mime, _ = mimetypes.guess_type(str(path))
    return mime or "application/octet-stream"
