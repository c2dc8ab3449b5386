"""Screen capture through an ffmpeg subprocess.

ffmpeg grabs the display (x11grab, gdigrab or avfoundation), encodes to a
streamable container on stdout, and a reader thread cuts the pipe into one
chunk per timeslice. Fragmented MP4 puts the ``moov`` box in the first bytes
and live WebM puts the EBML header and track info there, so the first chunk
of a session is the container's init segment.
"""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import sys
import threading
import time
from typing import Callable, Optional

from screenrec.constants import DEFAULT_FRAMERATE, DEFAULT_VIDEO_BITRATE
from screenrec.errors import PermissionDeniedError, RecorderFailure
from screenrec.recorder.base import CaptureSource, CaptureStream, Encoder

logger = logging.getLogger(__name__)

GRABBERS = {
    "linux": "x11grab",
    "win32": "gdigrab",
    "darwin": "avfoundation",
}

# Encoder ffmpeg must provide for each MIME type.
REQUIRED_ENCODERS = {
    "video/mp4": "libx264",
    "video/webm;codecs=vp9": "libvpx-vp9",
    "video/webm": "libvpx",
}

_READ_SIZE = 65536
_PROBE_TIMEOUT = 15  # seconds


def _platform_key() -> str:
    return "linux" if sys.platform.startswith("linux") else sys.platform


def build_input_args(
    include_audio: bool, framerate: int = DEFAULT_FRAMERATE, display: str = ""
) -> list[str]:
    """ffmpeg input arguments for the current platform's screen grabber."""
    key = _platform_key()
    if key == "linux":
        args = ["-f", "x11grab", "-framerate", str(framerate),
                "-i", display or os.environ.get("DISPLAY", ":0")]
        if include_audio:
            args += ["-f", "pulse", "-i", "default"]
        return args
    if key == "win32":
        args = ["-f", "gdigrab", "-framerate", str(framerate), "-i", display or "desktop"]
        if include_audio:
            args += ["-f", "dshow", "-i", "audio=virtual-audio-capturer"]
        return args
    if key == "darwin":
        # avfoundation takes "<video>:<audio>" in a single input
        audio = "0" if include_audio else "none"
        return ["-f", "avfoundation", "-framerate", str(framerate),
                "-capture_cursor", "1", "-i", f"{display or '1'}:{audio}"]
    raise RecorderFailure(f"No screen grabber for platform {sys.platform!r}")


def build_output_args(mime_type: str, bitrate: int, include_audio: bool) -> list[str]:
    """ffmpeg encoding/muxing arguments writing a streamable container to stdout."""
    if mime_type == "video/mp4":
        args = ["-c:v", "libx264", "-preset", "veryfast", "-tune", "zerolatency",
                "-pix_fmt", "yuv420p", "-b:v", str(bitrate)]
        if include_audio:
            args += ["-c:a", "aac", "-b:a", "128k"]
        args += ["-f", "mp4", "-movflags", "frag_keyframe+empty_moov+default_base_moof"]
    elif mime_type in ("video/webm;codecs=vp9", "video/webm"):
        codec = "libvpx-vp9" if "vp9" in mime_type else "libvpx"
        args = ["-c:v", codec, "-deadline", "realtime", "-cpu-used", "8",
                "-b:v", str(bitrate)]
        if include_audio:
            args += ["-c:a", "libopus", "-b:a", "128k"]
        args += ["-f", "webm", "-live", "1"]
    else:
        raise ValueError(f"Unsupported MIME type: {mime_type!r}")
    args.append("pipe:1")
    return args


def parse_encoders(output: str) -> set[str]:
    """Encoder names from ``ffmpeg -encoders`` output."""
    names = set()
    in_table = False
    for line in output.splitlines():
        stripped = line.strip()
        if stripped.startswith("------"):
            in_table = True
            continue
        if not in_table or not stripped:
            continue
        parts = stripped.split()
        if len(parts) >= 2:
            names.add(parts[1])
    return names


class FfmpegStream(CaptureStream):
    """Capture handle; its single "track" is the ffmpeg process once started."""

    def __init__(self, input_args: list[str], include_audio: bool):
        self.input_args = input_args
        self.include_audio = include_audio
        self._process: Optional[subprocess.Popen] = None
        self._stopped = False
        self._ended_listeners: list[Callable[[], None]] = []

    def attach(self, process: subprocess.Popen) -> None:
        self._process = process

    def add_ended_listener(self, callback: Callable[[], None]) -> None:
        self._ended_listeners.append(callback)

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def active(self) -> bool:
        if self._stopped:
            return False
        return self._process is None or self._process.poll() is None

    def stop(self) -> None:
        self._stopped = True
        proc = self._process
        if proc is None or proc.poll() is not None:
            return
        if hasattr(signal, "SIGCONT"):
            proc.send_signal(signal.SIGCONT)
        proc.terminate()
        try:
            proc.wait(timeout=2)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()

    def notify_ended(self) -> None:
        for callback in list(self._ended_listeners):
            callback()


class FfmpegEncoder(Encoder):
    """Runs ffmpeg and turns its stdout into timesliced chunks."""

    def __init__(self, ffmpeg: str, stream: FfmpegStream, mime_type: str,
                 bitrate: int = DEFAULT_VIDEO_BITRATE):
        self._ffmpeg = ffmpeg
        self._stream = stream
        self.mime_type = mime_type
        self._bitrate = bitrate
        self._process: Optional[subprocess.Popen] = None
        self._reader_thread: Optional[threading.Thread] = None
        self._stop_requested = False
        self._paused = False

    def command(self) -> list[str]:
        return (
            [self._ffmpeg, "-hide_banner", "-loglevel", "error", "-y"]
            + self._stream.input_args
            + build_output_args(self.mime_type, self._bitrate, self._stream.include_audio)
        )

    def start(self, timeslice, on_chunk, on_error, on_stop) -> None:
        if self._process is not None:
            raise RuntimeError("Already recording")

        cmd = self.command()
        logger.debug("Starting ffmpeg: %s", " ".join(cmd))
        # Own process group: a terminal Ctrl+C must reach us, not ffmpeg directly
        if sys.platform == "win32":
            group = {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
        else:
            group = {"start_new_session": True}
        self._process = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            **group,
        )
        self._stream.attach(self._process)

        self._reader_thread = threading.Thread(
            target=self._pipe_reader,
            args=(timeslice, on_chunk, on_error, on_stop),
            name="screenrec-ffmpeg-reader",
            daemon=True,
        )
        self._reader_thread.start()

    def pause(self) -> None:
        proc = self._process
        if proc is None or proc.poll() is not None or self._paused:
            return
        if not hasattr(signal, "SIGSTOP"):
            logger.warning("Pausing ffmpeg is not supported on this platform; capture continues")
            return
        proc.send_signal(signal.SIGSTOP)
        self._paused = True

    def resume(self) -> None:
        proc = self._process
        if proc is None or proc.poll() is not None or not self._paused:
            return
        proc.send_signal(signal.SIGCONT)
        self._paused = False

    def stop(self) -> None:
        self._stop_requested = True
        proc = self._process
        if proc is None or proc.poll() is not None:
            return
        if self._paused:
            proc.send_signal(signal.SIGCONT)
            self._paused = False
        # SIGINT lets ffmpeg flush the muxer; Windows has no such signal for children
        if sys.platform == "win32":
            proc.terminate()
        else:
            proc.send_signal(signal.SIGINT)

    def _pipe_reader(self, timeslice, on_chunk, on_error, on_stop) -> None:
        """Read the container bytes and emit one chunk per timeslice."""
        proc = self._process
        pending = bytearray()
        last_emit = time.monotonic()

        while True:
            try:
                data = proc.stdout.read1(_READ_SIZE)
            except (OSError, ValueError):
                break
            if not data:
                break
            pending += data
            now = time.monotonic()
            if now - last_emit >= timeslice:
                on_chunk(bytes(pending))
                pending.clear()
                last_emit = now

        if pending:
            on_chunk(bytes(pending))

        returncode = proc.wait()
        if self._stop_requested or self._stream.stopped:
            on_stop()
        elif returncode == 0 or returncode < 0:
            # Exited without being asked: the capture went away underneath us.
            self._stream.notify_ended()
            on_stop()
        else:
            stderr = b""
            if proc.stderr is not None:
                try:
                    stderr = proc.stderr.read() or b""
                except (OSError, ValueError):
                    pass
            detail = stderr.decode(errors="replace").strip().splitlines()
            message = f"ffmpeg exited with status {returncode}"
            if detail:
                message += f": {detail[-1]}"
            on_error(RecorderFailure(message))


class FfmpegCaptureSource(CaptureSource):
    """CaptureSource backed by the ffmpeg binary."""

    def __init__(self, ffmpeg: str = "ffmpeg", framerate: int = DEFAULT_FRAMERATE,
                 display: str = ""):
        self.ffmpeg = ffmpeg
        self.framerate = framerate
        self.display = display
        self._encoders: Optional[set[str]] = None

    def is_supported(self) -> bool:
        return _platform_key() in GRABBERS and shutil.which(self.ffmpeg) is not None

    def available_encoders(self) -> set[str]:
        if self._encoders is None:
            try:
                out = subprocess.run(
                    [self.ffmpeg, "-hide_banner", "-encoders"],
                    capture_output=True, text=True, timeout=_PROBE_TIMEOUT,
                )
                self._encoders = parse_encoders(out.stdout)
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.warning("Could not list ffmpeg encoders: %s", e)
                self._encoders = set()
        return self._encoders

    def is_type_supported(self, mime_type: str) -> bool:
        encoder = REQUIRED_ENCODERS.get(mime_type)
        return encoder is not None and encoder in self.available_encoders()

    def request_stream(self, include_audio: bool) -> FfmpegStream:
        """Open the display once to make sure capture is permitted."""
        input_args = build_input_args(include_audio, self.framerate, self.display)
        probe = [self.ffmpeg, "-hide_banner", "-loglevel", "error"] + input_args + [
            "-frames:v", "1", "-f", "null", "-",
        ]
        try:
            out = subprocess.run(probe, capture_output=True, text=True, timeout=_PROBE_TIMEOUT)
        except subprocess.TimeoutExpired:
            raise PermissionDeniedError("Timed out waiting for screen capture access") from None
        except OSError as e:
            raise RecorderFailure(f"Could not run {self.ffmpeg}: {e}") from e

        if out.returncode != 0:
            lines = out.stderr.strip().splitlines()
            reason = lines[-1] if lines else f"exit status {out.returncode}"
            raise PermissionDeniedError(f"Screen capture was refused: {reason}")
        return FfmpegStream(input_args, include_audio)

    def create_encoder(self, stream, mime_type, bitrate=None) -> FfmpegEncoder:
        return FfmpegEncoder(self.ffmpeg, stream, mime_type, bitrate or DEFAULT_VIDEO_BITRATE)
