from __future__ import annotations

import os
import stat
import threading
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set

from loguru import logger

from .metadata import TagReadResult, read_tags, resolve_metadata
from .models import UNKNOWN_ARTIST, Track
from .store import TrackStore
from .utils import (
    AUDIO_EXTENSIONS,
    PathLike,
    candidate_paths,
    has_allowed_extension,
    is_within,
    normalize_extensions,
    normalize_path,
)


TagReader = Callable[[str], TagReadResult]


@dataclass
class SyncSummary:
    created: int = 0
    updated: int = 0
    deduplicated: int = 0
    removed: int = 0
    skipped: int = 0
    failed: int = 0
    scanned_paths: Set[str] = field(default_factory=set, repr=False)

    def as_dict(self) -> Dict[str, int]:
        d = asdict(self)
        d.pop("scanned_paths", None)
        return d

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.deduplicated or self.removed)


class _DirectoryLocks:
    """One lock per canonical directory so overlapping passes run one at a time."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def get(self, directory: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(directory)
            if lock is None:
                lock = threading.Lock()
                self._locks[directory] = lock
            return lock


def _check_directory(directory: str) -> None:
    if not os.path.exists(directory):
        raise FileNotFoundError(f"Directory not found: {directory}")
    if not os.path.isdir(directory):
        raise NotADirectoryError(f"Not a directory: {directory}")


class LibrarySynchronizer:
    """Reconcile one directory of audio files against a track store.

    `library_root` is the top of the music library. Files directly inside a
    sub-directory of it (e.g. Music/Radiohead/song.mp3) can take the folder
    name as their artist; files directly inside the root never do.
    """

    def __init__(
        self,
        store: TrackStore,
        allowed_extensions: Iterable[str] = AUDIO_EXTENSIONS,
        tag_reader: TagReader = read_tags,
        library_root: Optional[PathLike] = None,
    ) -> None:
        self.store = store
        self.allowed_extensions = normalize_extensions(allowed_extensions)
        self.tag_reader = tag_reader
        self.library_root = normalize_path(library_root) if library_root else None
        self._locks = _DirectoryLocks()

    def synchronize(self, directory: PathLike, requested: Optional[PathLike] = None) -> SyncSummary:
        """Import, update and prune tracks for the files directly in `directory`.

        `requested` is the directory argument as the caller gave it (possibly
        relative); records stored under that spelling still match.
        Raises FileNotFoundError / NotADirectoryError before touching the store.
        """
        target = normalize_path(directory)
        _check_directory(target)

        with self._locks.get(target):
            filenames = sorted(os.listdir(target))
            summary = SyncSummary()
            # Captured once so scan and prune agree even if the attribute is swapped mid-pass.
            allowed = self.allowed_extensions
            respelled = self._respelled_paths(target)

            for filename in filenames:
                self._sync_file(target, filename, requested, allowed, respelled, summary)

            self._prune(target, allowed, summary)

        logger.info(
            f"Synchronized {target}: created={summary.created} updated={summary.updated} "
            f"deduplicated={summary.deduplicated} removed={summary.removed} "
            f"skipped={summary.skipped} failed={summary.failed}"
        )
        return summary

    def _root_name(self, target: str) -> str:
        root = self.library_root or target
        return os.path.basename(root)

    def _respelled_paths(self, target: str) -> Dict[str, List[str]]:
        """Map canonical paths to ids of records stored under another spelling.

        Only absolute, non-normalized paths directly in `target` are indexed
        (e.g. /Music//song.mp3 or /Music/./song.mp3); exact and relative
        spellings are already covered by the candidate lookup.
        """
        index: Dict[str, List[str]] = {}
        for track in self.store.find_all():
            if not os.path.isabs(track.path):
                continue
            key = os.path.normpath(track.path)
            if key == track.path or os.path.dirname(key) != target:
                continue
            index.setdefault(key, []).append(track.id)
        return index

    def _read_tags(self, path: str) -> TagReadResult:
        try:
            return self.tag_reader(path)
        except Exception as e:
            return TagReadResult(error=f"{type(e).__name__}: {e}")

    def _sync_file(
        self,
        target: str,
        filename: str,
        requested: Optional[PathLike],
        allowed: frozenset,
        respelled: Dict[str, List[str]],
        summary: SyncSummary,
    ) -> None:
        if not has_allowed_extension(filename, allowed):
            summary.skipped += 1
            return

        candidates = candidate_paths(target, filename, requested)
        full_path = candidates[0]

        try:
            st = os.stat(full_path)
            if not stat.S_ISREG(st.st_mode):
                summary.skipped += 1
                return
            summary.scanned_paths.add(full_path)

            existing = self.store.find_by_paths(candidates)
            seen = {t.id for t in existing}
            for tid in respelled.get(full_path, ()):
                track = self.store.get(tid)
                if track is not None and tid not in seen:
                    existing.append(track)

            parent = os.path.dirname(full_path)
            meta = resolve_metadata(
                self._read_tags(full_path),
                filename,
                parent_name=os.path.basename(parent),
                root_name=self._root_name(target),
            )

            if not existing:
                created = self.store.insert(Track(title=meta.title, artist=meta.artist, path=full_path))
                summary.created += 1
                logger.info(f"Imported: {created.title}")
                return

            self._reconcile(existing, full_path, filename, meta.title, meta.artist, summary)
        except Exception:
            summary.failed += 1
            logger.exception(f"Error importing {filename}")

    def _reconcile(
        self,
        existing: List[Track],
        full_path: str,
        filename: str,
        title: str,
        artist: str,
        summary: SyncSummary,
    ) -> None:
        canonical = next((t for t in existing if t.path == full_path), None) or next(
            (t for t in existing if os.path.normpath(t.path) == full_path), existing[0]
        )

        changes: Dict[str, str] = {}
        if canonical.path != full_path:
            changes["path"] = full_path
        if (not canonical.title or canonical.title == filename) and canonical.title != title:
            changes["title"] = title
        if (not canonical.artist or canonical.artist == UNKNOWN_ARTIST) and canonical.artist != artist:
            changes["artist"] = artist

        if changes:
            canonical = self.store.save(canonical.model_copy(update=changes))
            summary.updated += 1
            logger.info(f"Updated metadata for: {canonical.title}")

        duplicates = [t.id for t in existing if t.id != canonical.id]
        if duplicates:
            summary.deduplicated += self.store.delete_many(duplicates)
            logger.info(f"Removed duplicate entries for: {canonical.title}")

    def _is_stale(self, track: Track, allowed: frozenset, scanned: Set[str]) -> bool:
        path = normalize_path(track.path)
        if not has_allowed_extension(path, allowed):
            return True
        try:
            st = os.stat(path)
        except OSError:
            return True
        if not stat.S_ISREG(st.st_mode):
            return True
        return path not in scanned

    def _prune(self, target: str, allowed: frozenset, summary: SyncSummary) -> None:
        stale: List[str] = []
        for track in self.store.find_all(prefix=target):
            # A bare prefix match would also pick up /music2 for /music.
            if not is_within(track.path, target):
                continue
            # The listing is not recursive; records in sub-directories belong
            # to their own library and are pruned when that directory is synced.
            if os.path.dirname(normalize_path(track.path)) != target:
                continue
            if self._is_stale(track, allowed, summary.scanned_paths):
                stale.append(track.id)

        if not stale:
            return
        summary.removed += self.store.delete_many(stale)
        logger.info(f"Removed {len(stale)} stale tracks under {target}")
