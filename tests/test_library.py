"""Tests for the saved-recordings library."""

import json
from datetime import datetime

import pytest

from screenrec.library import RecordingLibrary
from screenrec.recorder import RecordingResult


def _result(end=datetime(2026, 5, 1, 9, 30, 0), mime="video/webm", mode="fixed"):
    return RecordingResult(
        blob=b"\x1a\x45\xdf\xa3payload",
        mime_type=mime,
        duration=42.0,
        start_time=datetime(2026, 5, 1, 9, 29, 18),
        end_time=end,
        mode=mode,
    )


@pytest.fixture
def library(tmp_path):
    return RecordingLibrary(tmp_path / "recordings")


def test_creates_directory(tmp_path):
    RecordingLibrary(tmp_path / "a" / "b")
    assert (tmp_path / "a" / "b").is_dir()


def test_save_writes_blob_and_metadata(library):
    path = library.save(_result())
    assert path.name == "recording_2026-05-01-093000.webm"
    assert path.read_bytes() == b"\x1a\x45\xdf\xa3payload"

    meta = json.loads((library.recordings_dir / "recording_2026-05-01-093000.meta").read_text())
    assert meta["duration"] == 42.0
    assert meta["mime_type"] == "video/webm"
    assert meta["mode"] == "fixed"
    assert meta["size"] == len(b"\x1a\x45\xdf\xa3payload")
    assert meta["start_time"] == "2026-05-01T09:29:18"


def test_save_does_not_overwrite(library):
    first = library.save(_result())
    second = library.save(_result())
    third = library.save(_result())
    assert first != second != third
    assert second.name == "recording_2026-05-01-093000_1.webm"
    assert third.name == "recording_2026-05-01-093000_2.webm"
    assert library.read_metadata(second.stem) is not None


def test_save_custom_filename(library):
    path = library.save(_result(mime="video/mp4"), filename="demo.mp4")
    assert path.name == "demo.mp4"
    assert library.read_metadata("demo")["mime_type"] == "video/mp4"


def test_create_metadata_extra(library):
    meta = library.create_metadata(_result(), source="ffmpeg")
    assert meta["source"] == "ffmpeg"
    assert "created" in meta


def test_read_metadata_missing(library):
    assert library.read_metadata("nope") is None


def test_read_metadata_corrupt(library):
    (library.recordings_dir / "bad.meta").write_text("{not json")
    assert library.read_metadata("bad") is None


def test_list_empty(library):
    assert library.list_recordings() == []


def test_list_newest_first(library):
    library.save(_result(end=datetime(2026, 5, 1, 9, 0, 0)))
    library.save(_result(end=datetime(2026, 5, 2, 9, 0, 0), mode="loop"))
    library.save(_result(end=datetime(2026, 4, 30, 9, 0, 0), mime="video/mp4"))
    (library.recordings_dir / "notes.txt").write_text("ignored")

    recordings = library.list_recordings()
    assert [r.stem for r in recordings] == [
        "recording_2026-05-02-090000",
        "recording_2026-05-01-090000",
        "recording_2026-04-30-090000",
    ]
    assert recordings[0].mode == "loop"
    assert recordings[0].duration == 42.0
    assert recordings[2].video_path.suffix == ".mp4"
    assert recordings[0].size > 0


def test_list_limit(library):
    for day in range(1, 6):
        library.save(_result(end=datetime(2026, 5, day, 9, 0, 0)))
    assert len(library.list_recordings(limit=2)) == 2
    assert len(library.list_recordings(limit=None)) == 5


def test_list_without_metadata(library):
    (library.recordings_dir / "orphan.webm").write_bytes(b"x")
    recordings = library.list_recordings()
    assert recordings[0].meta_path is None
    assert recordings[0].duration is None
    assert recordings[0].mode is None
