"""Track record stores.

The synchronizer only needs exact-path lookups, prefix listing, single inserts
and saves, and batch deletes. `MemoryTrackStore` keeps records in a dict;
`JsonTrackStore` persists the same records to a catalog JSON file.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set
from uuid import uuid4

from loguru import logger
from pydantic import ValidationError

from .models import Catalog, Track, utc_now_iso


class StoreError(Exception):
    """Catalog storage is unreadable or could not be written."""


class TrackNotFound(StoreError):
    pass


def new_track_id() -> str:
    return uuid4().hex


class TrackStore:
    """Interface shared by all stores. Returned tracks are copies."""

    def find_by_paths(self, paths: Iterable[str]) -> List[Track]:
        raise NotImplementedError

    def find_all(self, prefix: Optional[str] = None) -> List[Track]:
        raise NotImplementedError

    def get(self, track_id: str) -> Optional[Track]:
        raise NotImplementedError

    def insert(self, track: Track) -> Track:
        raise NotImplementedError

    def save(self, track: Track) -> Track:
        raise NotImplementedError

    def delete_many(self, track_ids: Iterable[str]) -> int:
        raise NotImplementedError


class MemoryTrackStore(TrackStore):
    """Insertion-ordered in-memory store.

    Lookups return records in insertion order, which keeps the synchronizer's
    "first match" tie-break deterministic.
    """

    def __init__(self, tracks: Optional[Iterable[Track]] = None) -> None:
        self._lock = threading.RLock()
        self._tracks: Dict[str, Track] = {}
        for t in tracks or []:
            self._put_new(t)

    def _put_new(self, track: Track) -> Track:
        tid = track.id or new_track_id()
        while tid in self._tracks:
            tid = new_track_id()
        stored = track.model_copy(update={"id": tid})
        self._tracks[tid] = stored
        return stored.model_copy()

    def _changed(self) -> None:
        """Hook for persistent subclasses."""

    def _commit(self, previous: Dict[str, Track]) -> None:
        # A failed write must not leave the change visible in memory.
        try:
            self._changed()
        except Exception:
            self._tracks = previous
            raise

    def find_by_paths(self, paths: Iterable[str]) -> List[Track]:
        wanted: Set[str] = {p for p in paths if p}
        with self._lock:
            return [t.model_copy() for t in self._tracks.values() if t.path in wanted]

    def find_all(self, prefix: Optional[str] = None) -> List[Track]:
        with self._lock:
            return [
                t.model_copy()
                for t in self._tracks.values()
                if prefix is None or t.path.startswith(prefix)
            ]

    def get(self, track_id: str) -> Optional[Track]:
        with self._lock:
            t = self._tracks.get(track_id)
            return t.model_copy() if t is not None else None

    def insert(self, track: Track) -> Track:
        with self._lock:
            previous = dict(self._tracks)
            stored = self._put_new(track)
            self._commit(previous)
            return stored

    def save(self, track: Track) -> Track:
        with self._lock:
            if track.id not in self._tracks:
                raise TrackNotFound(f"Track not found: {track.id}")
            previous = dict(self._tracks)
            self._tracks[track.id] = track.model_copy()
            self._commit(previous)
            return track.model_copy()

    def delete_many(self, track_ids: Iterable[str]) -> int:
        with self._lock:
            previous = dict(self._tracks)
            removed = 0
            for tid in set(track_ids):
                if self._tracks.pop(tid, None) is not None:
                    removed += 1
            if removed:
                self._commit(previous)
            return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._tracks)


class JsonTrackStore(MemoryTrackStore):
    """Catalog JSON file backed store.

    Every mutation rewrites the file atomically. If the file changes on disk
    (another process, a restored backup) the next call reloads it.
    """

    def __init__(self, catalog_path: Path) -> None:
        super().__init__()
        self.catalog_path = Path(catalog_path).expanduser().resolve()
        self._catalog = Catalog()
        self._catalog_stat: Optional[tuple] = None  # (mtime_ns, size)
        self._load()

    def _read_stat(self) -> Optional[tuple]:
        try:
            st = self.catalog_path.stat()
        except OSError:
            return None
        return (st.st_mtime_ns, st.st_size)

    def _load(self) -> None:
        with self._lock:
            if not self.catalog_path.exists():
                self._catalog = Catalog(created_at=utc_now_iso(), updated_at=utc_now_iso())
                self._tracks = {}
                self._catalog_stat = None
                return
            try:
                data = json.loads(self.catalog_path.read_text(encoding="utf-8"))
                catalog = Catalog.model_validate(data)
            except (OSError, ValueError, ValidationError) as e:
                raise StoreError(f"Cannot read catalog {self.catalog_path}: {e}") from e
            self._catalog = catalog
            self._tracks = {}
            for t in catalog.tracks:
                if not t.id or t.id in self._tracks:
                    # Older or hand-edited files may lack ids.
                    t = t.model_copy(update={"id": new_track_id()})
                self._tracks[t.id] = t
            self._catalog_stat = self._read_stat()
            logger.debug(f"Loaded {len(self._tracks)} tracks from {self.catalog_path}")

    def reload_if_changed(self) -> None:
        with self._lock:
            cur = self._read_stat()
            if cur is None or cur == self._catalog_stat:
                return
            logger.info(f"Catalog changed on disk, reloading {self.catalog_path}")
            self._load()

    def _changed(self) -> None:
        self._catalog.tracks = list(self._tracks.values())
        self._catalog.updated_at = utc_now_iso()
        tmp_path = self.catalog_path.with_suffix(self.catalog_path.suffix + ".tmp")
        payload = self._catalog.model_dump(mode="json")
        try:
            self.catalog_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
            tmp_path.replace(self.catalog_path)
        except OSError as e:
            raise StoreError(f"Cannot write catalog {self.catalog_path}: {e}") from e
        self._catalog_stat = self._read_stat()

    def find_by_paths(self, paths: Iterable[str]) -> List[Track]:
        self.reload_if_changed()
        return super().find_by_paths(paths)

    def find_all(self, prefix: Optional[str] = None) -> List[Track]:
        self.reload_if_changed()
        return super().find_all(prefix)

    def get(self, track_id: str) -> Optional[Track]:
        self.reload_if_changed()
        return super().get(track_id)
