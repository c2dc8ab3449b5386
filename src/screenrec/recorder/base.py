"""Capture interfaces and shared data types."""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from screenrec.constants import (
    DEFAULT_DURATION_MINUTES,
    DEFAULT_LOOP_SECONDS,
    DEFAULT_MODE,
    DEFAULT_VIDEO_FORMAT,
    EXTENSIONS,
    VALID_MODES,
    VALID_VIDEO_FORMATS,
)


class RecordingStatus(str, enum.Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass(frozen=True)
class Chunk:
    """One encoder segment and the clock reading at which it arrived."""
    data: bytes
    received_at: float

    def __len__(self) -> int:
        return len(self.data)


@dataclass
class RecordingOptions:
    """Options for a recording session."""
    duration: int = DEFAULT_DURATION_MINUTES  # minutes, fixed mode
    include_audio: bool = False
    video_format: str = DEFAULT_VIDEO_FORMAT
    mode: str = DEFAULT_MODE
    loop_duration: int = DEFAULT_LOOP_SECONDS  # seconds, loop mode

    def __post_init__(self):
        if self.video_format not in VALID_VIDEO_FORMATS:
            raise ValueError(
                f"Invalid video format: {self.video_format!r}. "
                f"Choose from: {', '.join(VALID_VIDEO_FORMATS)}"
            )
        if self.mode not in VALID_MODES:
            raise ValueError(f"Invalid mode: {self.mode!r}. Choose from: {', '.join(VALID_MODES)}")
        if self.duration <= 0:
            raise ValueError(f"duration must be positive, got {self.duration}")
        if self.loop_duration <= 0:
            raise ValueError(f"loop_duration must be positive, got {self.loop_duration}")

    @property
    def is_loop(self) -> bool:
        return self.mode == "loop"

    @property
    def duration_seconds(self) -> int:
        return self.duration * 60


@dataclass
class RecordingResult:
    """Result of a finalized recording session."""
    blob: bytes
    mime_type: str
    duration: float  # seconds of retained content
    start_time: datetime
    end_time: datetime
    mode: str = DEFAULT_MODE

    @property
    def size(self) -> int:
        return len(self.blob)

    @property
    def extension(self) -> str:
        return extension_for(self.mime_type)

    def suggested_filename(self) -> str:
        """``recording_<timestamp>.<ext>`` using the resolved container."""
        stamp = self.end_time.strftime("%Y-%m-%d-%H%M%S")
        return f"recording_{stamp}.{self.extension}"


def extension_for(mime_type: str) -> str:
    """File extension for a MIME type, ignoring codec parameters."""
    base = mime_type.split(";", 1)[0].strip()
    try:
        return EXTENSIONS[base]
    except KeyError:
        raise ValueError(f"Unknown container: {mime_type!r}") from None


ChunkCallback = Callable[[bytes], None]
ErrorCallback = Callable[[Exception], None]
StopCallback = Callable[[], None]


class CaptureStream(ABC):
    """A live capture handle granted by the user."""

    @abstractmethod
    def add_ended_listener(self, callback: Callable[[], None]) -> None:
        """Register a callback for out-of-band termination (share revoked)."""
        ...

    @abstractmethod
    def stop(self) -> None:
        """Stop every track. Idempotent."""
        ...

    @property
    @abstractmethod
    def active(self) -> bool:
        """Whether any track is still live."""
        ...


class Encoder(ABC):
    """Chunked encoder attached to a capture stream.

    ``start`` begins emitting one chunk per *timeslice* seconds through
    *on_chunk*. ``stop`` is a request: the final chunk and then *on_stop*
    are delivered once the encoder has flushed, possibly from another thread.
    """

    @abstractmethod
    def start(
        self,
        timeslice: float,
        on_chunk: ChunkCallback,
        on_error: ErrorCallback,
        on_stop: StopCallback,
    ) -> None:
        ...

    @abstractmethod
    def pause(self) -> None:
        ...

    @abstractmethod
    def resume(self) -> None:
        ...

    @abstractmethod
    def stop(self) -> None:
        ...


class CaptureSource(ABC):
    """Platform capture capability: stream acquisition and format negotiation."""

    @abstractmethod
    def is_supported(self) -> bool:
        """Synchronous capability probe, run before any permission prompt."""
        ...

    @abstractmethod
    def is_type_supported(self, mime_type: str) -> bool:
        """Whether the encoder can produce *mime_type*."""
        ...

    @abstractmethod
    def request_stream(self, include_audio: bool) -> CaptureStream:
        """Ask the user for a screen/window stream. Blocks until granted.

        Raises PermissionDeniedError if the user declines.
        """
        ...

    @abstractmethod
    def create_encoder(
        self, stream: CaptureStream, mime_type: str, bitrate: Optional[int] = None
    ) -> Encoder:
        ...
