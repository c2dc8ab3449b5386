"""Configuration loading, saving, and management."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import tomli_w

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from screenrec.constants import (
    DEFAULT_DURATION_MINUTES,
    DEFAULT_FRAMERATE,
    DEFAULT_LOOP_SECONDS,
    DEFAULT_MODE,
    DEFAULT_VIDEO_BITRATE,
    DEFAULT_VIDEO_FORMAT,
    DURATION_CHOICES,
    VALID_MODES,
    VALID_VIDEO_FORMATS,
)
from screenrec.recorder.base import RecordingOptions


@dataclass
class RecordingDefaults:
    duration_minutes: int = DEFAULT_DURATION_MINUTES
    include_audio: bool = False
    video_format: str = DEFAULT_VIDEO_FORMAT
    mode: str = DEFAULT_MODE
    loop_seconds: int = DEFAULT_LOOP_SECONDS


@dataclass
class CaptureDefaults:
    ffmpeg: str = "ffmpeg"
    framerate: int = DEFAULT_FRAMERATE
    display: str = ""
    video_bitrate: int = DEFAULT_VIDEO_BITRATE


@dataclass
class StorageDefaults:
    data_dir: str = ""


@dataclass
class ScreenrecConfig:
    recording: RecordingDefaults = field(default_factory=RecordingDefaults)
    capture: CaptureDefaults = field(default_factory=CaptureDefaults)
    storage: StorageDefaults = field(default_factory=StorageDefaults)

    @classmethod
    def load(cls, config_path: Path | None = None) -> ScreenrecConfig:
        """Load config from TOML file, falling back to defaults for missing keys."""
        config = cls()
        if config_path is None or not config_path.exists():
            return config

        with open(config_path, "rb") as f:
            data = tomllib.load(f)

        for section_field in fields(config):
            section = getattr(config, section_field.name)
            for k, v in data.get(section_field.name, {}).items():
                if hasattr(section, k):
                    setattr(section, k, v)

        return config

    def save(self, config_path: Path) -> None:
        """Write current config to TOML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        data = self._to_dict()
        with open(config_path, "wb") as f:
            tomli_w.dump(data, f)

    def get(self, key: str) -> Any:
        """Get a config value by dotted key (e.g., 'recording.mode')."""
        obj, name = self._resolve(key)
        return getattr(obj, name)

    def set(self, key: str, value: Any) -> None:
        """Set a config value by dotted key."""
        obj, name = self._resolve(key)
        current = getattr(obj, name)
        coerced = _coerce_value(value, current, key)
        _validate_value(key, coerced)
        setattr(obj, name, coerced)

    def recording_options(self) -> RecordingOptions:
        """Options for a recording session built from the ``recording`` section."""
        rec = self.recording
        return RecordingOptions(
            duration=rec.duration_minutes,
            include_audio=rec.include_audio,
            video_format=rec.video_format,
            mode=rec.mode,
            loop_duration=rec.loop_seconds,
        )

    def _resolve(self, key: str):
        section, _, name = key.partition(".")
        if not name:
            raise KeyError(f"Invalid key format: {key!r}. Use 'section.key' (e.g., 'recording.mode')")
        obj = getattr(self, section, None)
        if obj is None or section.startswith("_"):
            raise KeyError(f"Unknown config section: {section!r}")
        if not hasattr(obj, name):
            raise KeyError(f"Unknown config key: {key!r}")
        return obj, name

    def _to_dict(self) -> dict:
        """Convert config to a nested dict for TOML serialization."""
        result = {}
        for section_field in fields(self):
            section_obj = getattr(self, section_field.name)
            result[section_field.name] = {
                f.name: getattr(section_obj, f.name) for f in fields(section_obj)
            }
        return result


def _coerce_value(value: Any, current: Any, key: str) -> Any:
    """Coerce a string value to match the type of the current value."""
    if isinstance(value, str) and not isinstance(current, str):
        if isinstance(current, bool):
            if value.lower() in ("true", "1", "yes"):
                return True
            elif value.lower() in ("false", "0", "no"):
                return False
            raise ValueError(f"Cannot convert {value!r} to bool for key {key!r}")
        if isinstance(current, int):
            try:
                return int(value)
            except ValueError:
                raise ValueError(f"Cannot convert {value!r} to int for key {key!r}") from None
    return value


def _validate_value(key: str, value: Any) -> None:
    """Validate a config value."""
    if key == "recording.video_format" and value not in VALID_VIDEO_FORMATS:
        raise ValueError(f"Invalid video format: {value!r}. Choose from: {', '.join(VALID_VIDEO_FORMATS)}")
    if key == "recording.mode" and value not in VALID_MODES:
        raise ValueError(f"Invalid mode: {value!r}. Choose from: {', '.join(VALID_MODES)}")
    if key == "recording.duration_minutes" and value not in DURATION_CHOICES:
        raise ValueError(
            f"duration_minutes must be one of {', '.join(map(str, DURATION_CHOICES))}, got {value}"
        )
    if key == "recording.loop_seconds" and value <= 0:
        raise ValueError(f"loop_seconds must be positive, got {value}")
    if key == "capture.framerate" and value <= 0:
        raise ValueError(f"framerate must be positive, got {value}")
    if key == "capture.video_bitrate" and value <= 0:
        raise ValueError(f"video_bitrate must be positive, got {value}")
