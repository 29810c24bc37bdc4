"""Shared pytest fixtures."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Dict, Optional

import pytest

from tunelib.catalog import LibrarySynchronizer
from tunelib.metadata import TagReadResult, TrackTags
from tunelib.store import MemoryTrackStore


class FakeTagReader:
    """Tag reader keyed by file name; unknown files behave like untagged audio."""

    def __init__(self, tags: Optional[Dict[str, TrackTags]] = None) -> None:
        self.tags: Dict[str, TrackTags] = dict(tags or {})
        self.calls = []

    def __call__(self, path: str) -> TagReadResult:
        self.calls.append(path)
        name = os.path.basename(path)
        if name in self.tags:
            return TagReadResult(tags=self.tags[name])
        return TagReadResult(error="no tags")


@pytest.fixture
def music_dir(tmp_path: Path) -> Path:
    root = tmp_path / "Music"
    root.mkdir()
    return root


@pytest.fixture
def write_audio() -> Callable[..., Path]:
    def _write(path: Path, data: bytes = b"ID3fake-audio-bytes") -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path

    return _write


@pytest.fixture
def tag_reader() -> FakeTagReader:
    return FakeTagReader()


@pytest.fixture
def store() -> MemoryTrackStore:
    return MemoryTrackStore()


@pytest.fixture
def synchronizer(store: MemoryTrackStore, tag_reader: FakeTagReader, music_dir: Path) -> LibrarySynchronizer:
    return LibrarySynchronizer(store, tag_reader=tag_reader, library_root=music_dir)
