from __future__ import annotations

import os

import pytest

from tunelib.catalog import LibrarySynchronizer
from tunelib.metadata import TrackTags
from tunelib.models import UNKNOWN_ARTIST, Track
from tunelib.store import MemoryTrackStore, StoreError
from tunelib.utils import normalize_path


def test_new_file_is_imported_with_tag_metadata(synchronizer, store, tag_reader, music_dir, write_audio) -> None:
    song = write_audio(music_dir / "song.mp3")
    tag_reader.tags["song.mp3"] = TrackTags(title="Foo", artist="Bar")

    summary = synchronizer.synchronize(music_dir)

    tracks = store.find_all()
    assert len(tracks) == 1
    assert (tracks[0].title, tracks[0].artist) == ("Foo", "Bar")
    assert tracks[0].path == normalize_path(song)
    assert os.path.isabs(tracks[0].path)
    assert summary.created == 1 and not summary.failed


def test_untagged_file_falls_back_to_filename(synchronizer, store, tag_reader, music_dir, write_audio) -> None:
    write_audio(music_dir / "Artist - Song Title.mp3")
    write_audio(music_dir / "Other - Tune.flac")
    tag_reader.tags["Other - Tune.flac"] = TrackTags(artist="TagArtist")

    synchronizer.synchronize(music_dir)

    by_title = {t.title: t.artist for t in store.find_all()}
    assert by_title == {"Song Title": "Artist", "Tune": "TagArtist"}


def test_folder_name_is_artist_only_below_library_root(synchronizer, store, music_dir, write_audio) -> None:
    write_audio(music_dir / "loose.mp3")
    write_audio(music_dir / "Radiohead" / "creep.mp3")

    synchronizer.synchronize(music_dir)
    synchronizer.synchronize(music_dir / "Radiohead")

    artists = {t.title: t.artist for t in store.find_all()}
    assert artists == {"loose": UNKNOWN_ARTIST, "creep": "Radiohead"}


def test_non_audio_entries_and_directories_are_skipped(synchronizer, store, music_dir, write_audio) -> None:
    write_audio(music_dir / "cover.jpg")
    write_audio(music_dir / "README")
    (music_dir / "folder.mp3").mkdir()
    write_audio(music_dir / "real.ogg")

    summary = synchronizer.synchronize(music_dir)

    assert [t.title for t in store.find_all()] == ["real"]
    assert summary.skipped == 3


def test_second_pass_changes_nothing(synchronizer, store, tag_reader, music_dir, write_audio) -> None:
    write_audio(music_dir / "A - One.mp3")
    write_audio(music_dir / "two.wav")
    write_audio(music_dir / "Sub" / "three.mp3")
    tag_reader.tags["two.wav"] = TrackTags(title="Two")

    first = synchronizer.synchronize(music_dir)
    before = store.find_all()
    second = synchronizer.synchronize(music_dir)

    assert first.created == 2
    assert not second.changed
    assert (second.created, second.updated, second.deduplicated, second.removed) == (0, 0, 0, 0)
    assert store.find_all() == before


def test_duplicates_collapse_onto_exact_path_record(synchronizer, store, tag_reader, music_dir, write_audio) -> None:
    song = write_audio(music_dir / "song.mp3")
    canonical_path = normalize_path(song)
    tag_reader.tags["song.mp3"] = TrackTags(title="Resolved", artist="Someone")
    stale = store.insert(Track(title="song.mp3", artist=UNKNOWN_ARTIST, path=canonical_path))
    other = store.insert(Track(title="Something Else", artist="Else", path=canonical_path))

    summary = synchronizer.synchronize(music_dir)

    remaining = store.find_all()
    assert len(remaining) == 1
    assert remaining[0].id == stale.id
    assert (remaining[0].title, remaining[0].artist) == ("Resolved", "Someone")
    assert store.get(other.id) is None
    assert summary.deduplicated == 1 and summary.updated == 1


def test_exact_match_beats_earlier_relative_match(store, tag_reader, music_dir, write_audio) -> None:
    write_audio(music_dir / "song.mp3")
    relative = store.insert(Track(title="Old", artist="Old", path=os.path.join("Music", "song.mp3")))
    exact = store.insert(Track(title="Kept", artist="Kept", path=normalize_path(music_dir / "song.mp3")))

    LibrarySynchronizer(store, tag_reader=tag_reader).synchronize(music_dir, requested="Music")

    assert [t.id for t in store.find_all()] == [exact.id]
    assert store.get(relative.id) is None


def test_record_saved_under_relative_path_is_moved_to_absolute(store, tag_reader, music_dir, write_audio) -> None:
    write_audio(music_dir / "song.mp3")
    old = store.insert(Track(title="My Title", artist="Me", path=os.path.join("Music", "song.mp3")))
    tag_reader.tags["song.mp3"] = TrackTags(title="Tag Title", artist="Tag Artist")

    summary = LibrarySynchronizer(store, tag_reader=tag_reader).synchronize(music_dir, requested="Music")

    moved = store.get(old.id)
    assert moved.path == normalize_path(music_dir / "song.mp3")
    # Resolved values never replace a real title/artist.
    assert (moved.title, moved.artist) == ("My Title", "Me")
    assert summary.updated == 1 and summary.created == 0


def test_stale_records_pruned_only_inside_scanned_directory(synchronizer, store, music_dir, tmp_path, write_audio) -> None:
    write_audio(music_dir / "keep.mp3")
    gone = store.insert(Track(title="gone", path=normalize_path(music_dir / "gone.mp3")))
    outside = store.insert(Track(title="outside", path=normalize_path(tmp_path / "Other" / "x.mp3")))
    sibling = store.insert(Track(title="sibling", path=normalize_path(tmp_path / "Music2" / "y.mp3")))

    summary = synchronizer.synchronize(music_dir)

    assert store.get(gone.id) is None
    assert store.get(outside.id) is not None
    assert store.get(sibling.id) is not None
    assert summary.removed == 1


def test_sub_directory_records_survive_parent_pass(synchronizer, store, music_dir, write_audio) -> None:
    nested = store.insert(Track(title="nested", path=normalize_path(music_dir / "Sub" / "missing.mp3")))
    write_audio(music_dir / "top.mp3")
    (music_dir / "Sub").mkdir()

    synchronizer.synchronize(music_dir)
    assert store.get(nested.id) is not None

    synchronizer.synchronize(music_dir / "Sub")
    assert store.get(nested.id) is None


def test_extension_change_removes_record(synchronizer, store, music_dir, write_audio) -> None:
    song = write_audio(music_dir / "song.mp3")
    synchronizer.synchronize(music_dir)
    assert len(store.find_all()) == 1

    song.rename(music_dir / "song.txt")
    summary = synchronizer.synchronize(music_dir)

    assert store.find_all() == []
    assert summary.removed == 1


def test_record_for_disallowed_extension_is_removed_even_if_file_exists(store, tag_reader, music_dir, write_audio) -> None:
    write_audio(music_dir / "song.mp3")
    write_audio(music_dir / "talk.flac")
    LibrarySynchronizer(store, tag_reader=tag_reader).synchronize(music_dir)

    mp3_only = LibrarySynchronizer(store, allowed_extensions=[".mp3"], tag_reader=tag_reader)
    mp3_only.synchronize(music_dir)

    assert [t.title for t in store.find_all()] == ["song"]


def test_directory_entry_at_stored_path_is_pruned(synchronizer, store, music_dir) -> None:
    (music_dir / "album.mp3").mkdir()
    bogus = store.insert(Track(title="album", path=normalize_path(music_dir / "album.mp3")))

    synchronizer.synchronize(music_dir)

    assert store.get(bogus.id) is None


def test_missing_directory_is_fatal_and_leaves_catalog(synchronizer, store, tmp_path) -> None:
    existing = store.insert(Track(title="x", path=normalize_path(tmp_path / "nowhere" / "x.mp3")))

    with pytest.raises(FileNotFoundError):
        synchronizer.synchronize(tmp_path / "nowhere")
    assert [t.id for t in store.find_all()] == [existing.id]


def test_file_instead_of_directory_is_fatal(synchronizer, music_dir, write_audio) -> None:
    song = write_audio(music_dir / "song.mp3")
    with pytest.raises(NotADirectoryError):
        synchronizer.synchronize(song)


class FlakyStore(MemoryTrackStore):
    def insert(self, track: Track) -> Track:
        if "bad" in track.path:
            raise StoreError("disk full")
        return super().insert(track)


def test_per_file_failure_does_not_abort_pass(tag_reader, music_dir, write_audio) -> None:
    store = FlakyStore()
    write_audio(music_dir / "bad.mp3")
    write_audio(music_dir / "good.mp3")

    summary = LibrarySynchronizer(store, tag_reader=tag_reader).synchronize(music_dir)

    assert [t.title for t in store.find_all()] == ["good"]
    assert summary.failed == 1 and summary.created == 1


def test_tag_reader_crash_falls_back_to_filename(store, music_dir, write_audio) -> None:
    def exploding_reader(path: str):
        raise RuntimeError("decoder crashed")

    write_audio(music_dir / "Artist - Song.mp3")
    summary = LibrarySynchronizer(store, tag_reader=exploding_reader).synchronize(music_dir)

    assert [(t.title, t.artist) for t in store.find_all()] == [("Song", "Artist")]
    assert summary.created == 1 and summary.failed == 0


def test_record_under_respelled_path_is_reconciled_not_duplicated(synchronizer, store, music_dir, write_audio) -> None:
    write_audio(music_dir / "song.mp3")
    mine = store.insert(Track(title="Mine", artist="Me", path=f"{music_dir}//song.mp3"))

    first = synchronizer.synchronize(music_dir)
    second = synchronizer.synchronize(music_dir)

    tracks = store.find_all()
    assert [(t.id, t.title, t.artist) for t in tracks] == [(mine.id, "Mine", "Me")]
    assert tracks[0].path == normalize_path(music_dir / "song.mp3")
    assert first.created == 0 and first.updated == 1
    assert not second.changed


def test_respelled_duplicate_collapses_onto_exact_record(synchronizer, store, music_dir, write_audio) -> None:
    write_audio(music_dir / "song.mp3")
    dotted = store.insert(Track(title="Dotted", path=os.path.join(str(music_dir), ".", "song.mp3")))
    exact = store.insert(Track(title="Exact", path=normalize_path(music_dir / "song.mp3")))

    summary = synchronizer.synchronize(music_dir)

    assert [t.id for t in store.find_all()] == [exact.id]
    assert store.get(dotted.id) is None
    assert summary.deduplicated == 1


def test_title_equal_to_stem_is_kept(synchronizer, store, tag_reader, music_dir, write_audio) -> None:
    write_audio(music_dir / "song.mp3")
    write_audio(music_dir / "raw.mp3")
    tag_reader.tags["song.mp3"] = TrackTags(title="Tagged Song")
    tag_reader.tags["raw.mp3"] = TrackTags(title="Tagged Raw")
    named = store.insert(Track(title="song", path=normalize_path(music_dir / "song.mp3")))
    unnamed = store.insert(Track(title="raw.mp3", path=normalize_path(music_dir / "raw.mp3")))

    synchronizer.synchronize(music_dir)

    assert store.get(named.id).title == "song"
    assert store.get(unnamed.id).title == "Tagged Raw"


def test_unreadable_entry_counts_as_failure(synchronizer, store, music_dir, write_audio) -> None:
    os.symlink(str(music_dir / "missing-target.mp3"), str(music_dir / "broken.mp3"))
    write_audio(music_dir / "good.mp3")

    summary = synchronizer.synchronize(music_dir)

    assert [t.title for t in store.find_all()] == ["good"]
    assert summary.failed == 1 and summary.created == 1


class LookupFailingStore(MemoryTrackStore):
    def find_by_paths(self, paths):
        paths = list(paths)
        if any(os.path.basename(p) == "bad.mp3" for p in paths):
            raise StoreError("catalog unavailable")
        return super().find_by_paths(paths)


def test_lookup_failure_skips_only_that_file(tag_reader, music_dir, write_audio) -> None:
    store = LookupFailingStore()
    write_audio(music_dir / "bad.mp3")
    write_audio(music_dir / "good.mp3")

    summary = LibrarySynchronizer(store, tag_reader=tag_reader).synchronize(music_dir)

    assert [t.title for t in store.find_all()] == ["good"]
    assert summary.failed == 1 and summary.created == 1 and summary.removed == 0


def test_summary_dict_has_only_counts(synchronizer, music_dir, write_audio) -> None:
    write_audio(music_dir / "song.mp3")
    summary = synchronizer.synchronize(music_dir)
    assert summary.as_dict() == {
        "created": 1,
        "updated": 0,
        "deduplicated": 0,
        "removed": 0,
        "skipped": 0,
        "failed": 0,
    }
