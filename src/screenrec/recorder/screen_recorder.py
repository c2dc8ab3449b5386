"""Screen recording session controller.

Ties a CaptureSource to a ChunkBuffer and a ticker, and drives the
``idle -> selecting -> recording <-> paused -> stopped`` state machine.

Encoder callbacks, ticks and control calls may arrive on different threads
(the ffmpeg pipe reader, the ticker thread, the caller). Every handler runs
under one re-entrant lock, so they are processed strictly one at a time.
Callbacks belonging to a session that has already been finalized or torn
down are recognized by identity and dropped.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from screenrec.constants import CHUNK_TIMESLICE, DEFAULT_VIDEO_BITRATE, TICK_INTERVAL
from screenrec.errors import (
    FinalizeFailure,
    RecorderBusyError,
    RecorderFailure,
    ScreenRecorderError,
    UnsupportedError,
)
from screenrec.recorder.base import (
    CaptureSource,
    CaptureStream,
    Chunk,
    Encoder,
    RecordingOptions,
    RecordingResult,
    RecordingStatus,
)
from screenrec.recorder.buffer import ChunkBuffer, PauseAccounting
from screenrec.recorder.finalize import assemble_recording
from screenrec.recorder.formats import negotiate_mime_type
from screenrec.recorder.timing import IntervalTicker

logger = logging.getLogger(__name__)

_ACTIVE = (RecordingStatus.RECORDING, RecordingStatus.PAUSED)


class _Session:
    """State owned by exactly one recording session."""

    def __init__(self, options: RecordingOptions, stream: CaptureStream, mime_type: str):
        self.options = options
        self.stream: Optional[CaptureStream] = stream
        self.mime_type = mime_type
        self.encoder: Optional[Encoder] = None
        self.ticker = None
        self.buffer: Optional[ChunkBuffer] = ChunkBuffer(
            retention_seconds=options.loop_duration if options.is_loop else None
        )
        self.pauses: Optional[PauseAccounting] = PauseAccounting()
        self.start_time: Optional[datetime] = None
        self.elapsed_time = 0
        self.stop_requested = False


class ScreenRecorder:
    """Records a screen capture in fixed-duration or loop mode.

    Usage::

        recorder = ScreenRecorder(source, on_complete=save)
        if recorder.start(RecordingOptions(mode="loop", loop_duration=120)):
            ...
            recorder.stop()

    Errors are delivered through *on_error* and the ``error`` property;
    ``start`` returns False when the session could not begin.
    """

    def __init__(
        self,
        source: CaptureSource,
        options: Optional[RecordingOptions] = None,
        on_complete: Optional[Callable[[RecordingResult], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        on_progress: Optional[Callable[[int, Optional[float]], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        ticker_factory=IntervalTicker,
        timeslice: float = CHUNK_TIMESLICE,
        bitrate: int = DEFAULT_VIDEO_BITRATE,
    ):
        self._source = source
        self.options = options or RecordingOptions()
        self.on_complete = on_complete
        self.on_error = on_error
        self.on_progress = on_progress
        self._clock = clock
        self._ticker_factory = ticker_factory
        self._timeslice = timeslice
        self._bitrate = bitrate

        self._lock = threading.RLock()
        self._session: Optional[_Session] = None
        # Token of the start() currently waiting on acquisition
        self._pending: Optional[object] = None
        self._closed = False

        self._status = RecordingStatus.IDLE
        self._elapsed_time = 0
        self._buffer_duration = 0.0
        self._result: Optional[RecordingResult] = None
        self._error: Optional[Exception] = None
        self._mime_type: Optional[str] = None

    # -- observable state --

    @property
    def status(self) -> RecordingStatus:
        return self._status

    @property
    def elapsed_time(self) -> int:
        return self._elapsed_time

    @property
    def buffer_duration(self) -> float:
        return self._buffer_duration

    @property
    def result(self) -> Optional[RecordingResult]:
        return self._result

    @property
    def recorded_blob(self) -> Optional[bytes]:
        return self._result.blob if self._result is not None else None

    @property
    def error(self) -> Optional[Exception]:
        return self._error

    @property
    def mime_type(self) -> Optional[str]:
        return self._mime_type

    @property
    def is_supported(self) -> bool:
        return self._source.is_supported()

    # -- controls --

    def start(self, options: Optional[RecordingOptions] = None) -> bool:
        """Acquire a capture stream and begin recording.

        Blocks while the user picks a source. Returns True once recording,
        False if the attempt failed (the error has been delivered).
        Raises RecorderBusyError if a session is already in progress.
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("Recorder is closed")
            if self._status in (RecordingStatus.SELECTING, *_ACTIVE):
                raise RecorderBusyError("Already recording")

            if options is not None:
                self.options = options
            options = self.options

            if not self._source.is_supported():
                return self._fail(UnsupportedError("Screen recording is not supported on this system"))

            attempt = self._pending = object()
            self._status = RecordingStatus.SELECTING
            self._error = None
            self._result = None
            self._elapsed_time = 0
            self._buffer_duration = 0.0
            self._mime_type = None

        # The picker may take arbitrarily long; don't hold the lock across it.
        try:
            stream = self._source.request_stream(options.include_audio)
        except ScreenRecorderError as e:
            with self._lock:
                if self._pending is not attempt:
                    return False
                self._pending = None
                return self._fail(e)
        except Exception as e:
            failure = RecorderFailure(f"Could not acquire capture stream: {e}")
            failure.__cause__ = e
            with self._lock:
                if self._pending is not attempt:
                    return False
                self._pending = None
                return self._fail(failure)

        with self._lock:
            # Abandoned by cleanup() or close() while the picker was open
            if self._closed or self._pending is not attempt:
                stream.stop()
                return False
            self._pending = None
            return self._begin(options, stream)

    def pause(self) -> None:
        """Suspend recording and the timer. No-op unless recording."""
        with self._lock:
            session = self._session
            if self._status != RecordingStatus.RECORDING or session is None or session.stop_requested:
                return
            session.encoder.pause()
            session.ticker.stop()
            session.pauses.pause(self._clock())
            self._status = RecordingStatus.PAUSED
            logger.info("Recording paused at %ds", session.elapsed_time)

    def resume(self) -> None:
        """Resume a paused recording. No-op unless paused."""
        with self._lock:
            session = self._session
            if self._status != RecordingStatus.PAUSED or session is None or session.stop_requested:
                return
            span = session.pauses.resume(self._clock())
            session.encoder.resume()
            self._status = RecordingStatus.RECORDING
            session.ticker.start()
            logger.info("Recording resumed after %.1fs paused", span)

    def stop(self) -> None:
        """Request the end of the recording. No-op unless recording or paused.

        The result is delivered through ``on_complete`` once the encoder has
        flushed its last chunk.
        """
        with self._lock:
            session = self._session
            if self._status not in _ACTIVE or session is None or session.stop_requested:
                return
            session.stop_requested = True
            session.ticker.stop()
            logger.info("Stopping recording at %ds", session.elapsed_time)
            try:
                session.encoder.stop()
            except Exception as e:
                failure = RecorderFailure(f"Encoder failed to stop: {e}")
                failure.__cause__ = e
                self._fail(failure)

    def cleanup(self) -> None:
        """Abandon the current session and return to idle. Safe to call repeatedly.

        No callbacks fire; an abandoned session produces no result.
        """
        with self._lock:
            self._pending = None
            self._release(self._session)
            if self._status in (RecordingStatus.SELECTING, *_ACTIVE):
                self._status = RecordingStatus.IDLE
                logger.info("Recording abandoned")

    def close(self) -> None:
        """Teardown: release OS resources without touching observable state."""
        with self._lock:
            self._closed = True
            self._release(self._session)

    def __enter__(self) -> ScreenRecorder:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def download(self, directory: Path, filename: Optional[str] = None) -> Path:
        """Write the last result to *directory*. Returns the written path."""
        result = self._result
        if result is None:
            raise RuntimeError("No recording available")
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / (filename or result.suggested_filename())
        path.write_bytes(result.blob)
        return path

    # -- internal --

    def _begin(self, options: RecordingOptions, stream: CaptureStream) -> bool:
        try:
            mime_type = negotiate_mime_type(self._source, options.video_format)
        except ScreenRecorderError as e:
            stream.stop()
            return self._fail(e)

        session = _Session(options, stream, mime_type)
        self._session = session
        try:
            session.encoder = self._source.create_encoder(stream, mime_type, self._bitrate)
            session.ticker = self._ticker_factory(lambda: self._on_tick(session), TICK_INTERVAL)
            stream.add_ended_listener(lambda: self._on_stream_ended(session))
            session.encoder.start(
                self._timeslice,
                on_chunk=lambda data: self._on_chunk(session, data),
                on_error=lambda err: self._on_encoder_error(session, err),
                on_stop=lambda: self._on_encoder_stop(session),
            )
        except ScreenRecorderError as e:
            return self._fail(e)
        except Exception as e:
            failure = RecorderFailure(f"Could not start encoder: {e}")
            failure.__cause__ = e
            return self._fail(failure)

        session.start_time = datetime.now()
        self._mime_type = mime_type
        self._status = RecordingStatus.RECORDING
        session.ticker.start()
        logger.info("Recording started (%s, %s)", options.mode, mime_type)
        return True

    def _on_chunk(self, session: _Session, data: bytes) -> None:
        with self._lock:
            if session is not self._session or not data:
                return
            now = self._clock()
            session.buffer.append(Chunk(data, now), session.pauses)
            self._buffer_duration = session.buffer.buffered_duration(now, session.pauses)

    def _on_tick(self, session: _Session) -> None:
        with self._lock:
            if session is not self._session or self._status != RecordingStatus.RECORDING:
                return
            session.elapsed_time += 1
            self._elapsed_time = session.elapsed_time

            buffered = self._buffer_duration if session.options.is_loop else None
            if self.on_progress is not None:
                self.on_progress(session.elapsed_time, buffered)

            if not session.options.is_loop and session.elapsed_time >= session.options.duration_seconds:
                logger.info("Duration limit reached")
                self.stop()

    def _on_stream_ended(self, session: _Session) -> None:
        with self._lock:
            if session is not self._session:
                return
            logger.info("Capture ended outside the recorder")
            self.stop()

    def _on_encoder_error(self, session: _Session, err: Exception) -> None:
        with self._lock:
            if session is not self._session:
                return
            if not isinstance(err, ScreenRecorderError):
                failure = RecorderFailure(f"Encoder error: {err}")
                failure.__cause__ = err
                err = failure
            self._fail(err)

    def _on_encoder_stop(self, session: _Session) -> None:
        with self._lock:
            if session is not self._session or self._status not in _ACTIVE:
                return
            if not session.stop_requested:
                session.stop_requested = True
                session.ticker.stop()
            self._finalize(session)

    def _finalize(self, session: _Session) -> None:
        try:
            result = assemble_recording(
                session.buffer,
                session.pauses,
                session.mime_type,
                now=self._clock(),
                elapsed_time=session.elapsed_time,
                start_time=session.start_time or datetime.now(),
                end_time=datetime.now(),
                mode=session.options.mode,
            )
        except FinalizeFailure as e:
            self._fail(e)
            return
        except Exception as e:
            failure = FinalizeFailure(f"Could not assemble recording: {e}")
            failure.__cause__ = e
            self._fail(failure)
            return

        self._result = result
        if session.options.is_loop:
            self._buffer_duration = result.duration
        self._status = RecordingStatus.STOPPED
        logger.info("Recording finalized: %.1fs, %d bytes", result.duration, result.size)
        try:
            if self.on_complete is not None:
                self.on_complete(result)
        finally:
            self._release(session)

    def _fail(self, err: Exception) -> bool:
        self._error = err
        self._status = RecordingStatus.IDLE
        self._release(self._session)
        logger.warning("Recording error: %s", err)
        if self.on_error is not None:
            self.on_error(err)
        return False

    def _release(self, session: Optional[_Session]) -> None:
        if session is None:
            return
        # Detach first: stopping the encoder may deliver on_stop synchronously
        if self._session is session:
            self._session = None
        if session.ticker is not None:
            session.ticker.stop()
        encoder, session.encoder = session.encoder, None
        if encoder is not None:
            try:
                encoder.stop()
            except Exception:
                logger.warning("Encoder did not stop cleanly", exc_info=True)
        if session.stream is not None:
            session.stream.stop()
        session.stream = None
        session.buffer = None
        session.pauses = None
