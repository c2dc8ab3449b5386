"""Mock capture backend for testing without a display or ffmpeg."""

from __future__ import annotations

from typing import Callable, Optional

from screenrec.errors import PermissionDeniedError
from screenrec.recorder.base import CaptureSource, CaptureStream, Encoder


class MockStream(CaptureStream):
    """A capture handle whose tracks are plain flags."""

    def __init__(self, include_audio: bool = False):
        self.include_audio = include_audio
        self.tracks = ["video", "audio"] if include_audio else ["video"]
        self._live = set(self.tracks)
        self._ended_listeners: list[Callable[[], None]] = []

    def add_ended_listener(self, callback: Callable[[], None]) -> None:
        self._ended_listeners.append(callback)

    def stop(self) -> None:
        self._live.clear()

    @property
    def active(self) -> bool:
        return bool(self._live)

    def revoke(self) -> None:
        """Simulate the user withdrawing the share from the OS picker."""
        self._live.clear()
        for callback in list(self._ended_listeners):
            callback()


class MockEncoder(Encoder):
    """Encoder that emits whatever the test feeds it, synchronously.

    The first emitted chunk is prefixed with *init_header* so tests can
    check that the container header survives eviction.
    """

    def __init__(self, stream: MockStream, mime_type: str, bitrate: Optional[int] = None,
                 init_header: bytes = b"INIT"):
        self.stream = stream
        self.mime_type = mime_type
        self.bitrate = bitrate
        self.init_header = init_header
        self.timeslice: Optional[float] = None
        self.state = "inactive"
        self.emitted = 0
        self._on_chunk = None
        self._on_error = None
        self._on_stop = None

    def start(self, timeslice, on_chunk, on_error, on_stop) -> None:
        if self.state != "inactive":
            raise RuntimeError("Already recording")
        self.timeslice = timeslice
        self._on_chunk = on_chunk
        self._on_error = on_error
        self._on_stop = on_stop
        self.state = "recording"

    def pause(self) -> None:
        if self.state == "recording":
            self.state = "paused"

    def resume(self) -> None:
        if self.state == "paused":
            self.state = "recording"

    def stop(self) -> None:
        if self.state == "inactive":
            return
        self.state = "inactive"
        self._on_stop()

    def emit(self, data: Optional[bytes] = None) -> bool:
        """Deliver one chunk if recording. Returns whether it was delivered."""
        if self.state != "recording":
            return False
        if data is None:
            data = f"chunk-{self.emitted:05d};".encode()
        if self.emitted == 0:
            data = self.init_header + data
        self.emitted += 1
        self._on_chunk(data)
        return True

    def fail(self, error: Exception) -> None:
        self.state = "inactive"
        self._on_error(error)


class MockCaptureSource(CaptureSource):
    """Capture source with scripted capabilities and picker outcome."""

    def __init__(
        self,
        supported: bool = True,
        mime_types: tuple[str, ...] = ("video/webm;codecs=vp9", "video/webm", "video/mp4"),
        deny: bool = False,
    ):
        self.supported = supported
        self.mime_types = mime_types
        self.deny = deny
        self.requests = 0
        self.stream: Optional[MockStream] = None
        self.encoder: Optional[MockEncoder] = None

    def is_supported(self) -> bool:
        return self.supported

    def is_type_supported(self, mime_type: str) -> bool:
        return mime_type in self.mime_types

    def request_stream(self, include_audio: bool) -> MockStream:
        self.requests += 1
        if self.deny:
            raise PermissionDeniedError("User cancelled window selection")
        self.stream = MockStream(include_audio)
        return self.stream

    def create_encoder(self, stream, mime_type, bitrate=None) -> MockEncoder:
        self.encoder = MockEncoder(stream, mime_type, bitrate)
        return self.encoder
