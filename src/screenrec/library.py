"""Saved recordings: writing results to disk, metadata, and listing."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from screenrec.constants import EXTENSIONS
from screenrec.recorder.base import RecordingResult

VIDEO_SUFFIXES = tuple(f".{ext}" for ext in sorted(set(EXTENSIONS.values())))


@dataclass
class SavedRecording:
    """A recording file in the library and its sidecar metadata."""
    stem: str
    video_path: Path
    meta_path: Optional[Path]
    metadata: Optional[dict]

    @property
    def duration(self) -> Optional[float]:
        return self.metadata.get("duration") if self.metadata else None

    @property
    def mode(self) -> Optional[str]:
        return self.metadata.get("mode") if self.metadata else None

    @property
    def size(self) -> int:
        return self.video_path.stat().st_size


class RecordingLibrary:
    def __init__(self, recordings_dir: Path):
        self.recordings_dir = recordings_dir
        self.recordings_dir.mkdir(parents=True, exist_ok=True)

    def save(self, result: RecordingResult, filename: Optional[str] = None) -> Path:
        """Write the blob under its suggested filename plus a ``.meta`` file.

        An existing file of the same name gets a numeric suffix instead of
        being overwritten.
        """
        base = self.recordings_dir / (filename or result.suggested_filename())
        path = base
        counter = 1
        while path.exists():
            path = base.with_name(f"{base.stem}_{counter}{base.suffix}")
            counter += 1
        path.write_bytes(result.blob)
        self.write_metadata(path.stem, self.create_metadata(result))
        return path

    def create_metadata(self, result: RecordingResult, **extra) -> dict:
        meta = {
            "created": datetime.now(timezone.utc).isoformat(),
            "start_time": result.start_time.isoformat(),
            "end_time": result.end_time.isoformat(),
            "duration": result.duration,
            "mime_type": result.mime_type,
            "mode": result.mode,
            "size": result.size,
        }
        meta.update(extra)
        return meta

    def write_metadata(self, stem: str, metadata: dict) -> Path:
        meta_path = self.recordings_dir / f"{stem}.meta"
        meta_path.write_text(json.dumps(metadata, indent=2))
        return meta_path

    def read_metadata(self, stem: str) -> Optional[dict]:
        """Read the ``.meta`` JSON file, None if missing or unreadable."""
        meta_path = self.recordings_dir / f"{stem}.meta"
        if not meta_path.exists():
            return None
        try:
            return json.loads(meta_path.read_text())
        except (json.JSONDecodeError, OSError):
            return None

    def list_recordings(self, limit: Optional[int] = 20) -> list[SavedRecording]:
        """Saved recordings, newest first."""
        recordings = []
        for path in self.recordings_dir.iterdir():
            if path.suffix not in VIDEO_SUFFIXES or not path.is_file():
                continue
            meta_path = self.recordings_dir / f"{path.stem}.meta"
            recordings.append(SavedRecording(
                stem=path.stem,
                video_path=path,
                meta_path=meta_path if meta_path.exists() else None,
                metadata=self.read_metadata(path.stem),
            ))

        recordings.sort(key=lambda r: r.stem, reverse=True)
        return recordings[:limit] if limit else recordings
