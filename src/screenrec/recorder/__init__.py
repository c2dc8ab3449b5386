"""Screen recording module."""

from screenrec.recorder.base import (
    CaptureSource,
    CaptureStream,
    Chunk,
    Encoder,
    RecordingOptions,
    RecordingResult,
    RecordingStatus,
)
from screenrec.recorder.mock_source import MockCaptureSource
from screenrec.recorder.screen_recorder import ScreenRecorder

__all__ = [
    "CaptureSource",
    "CaptureStream",
    "Chunk",
    "Encoder",
    "RecordingOptions",
    "RecordingResult",
    "RecordingStatus",
    "MockCaptureSource",
    "ScreenRecorder",
]
