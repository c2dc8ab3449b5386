"""Tests for the ScreenRecorder state machine against the mock backend."""

import pytest

from screenrec.errors import (
    FinalizeFailure,
    PermissionDeniedError,
    RecorderBusyError,
    RecorderFailure,
    UnsupportedError,
)
from screenrec.recorder import MockCaptureSource, RecordingOptions, RecordingStatus


# ──── start / acquisition ────


class TestStart:
    def test_start_records(self, harness):
        assert harness.recorder.status == RecordingStatus.IDLE
        assert harness.recorder.start() is True

        assert harness.recorder.status == RecordingStatus.RECORDING
        assert harness.recorder.mime_type == "video/webm;codecs=vp9"
        assert harness.source.requests == 1
        assert harness.source.stream.active
        assert harness.encoder.state == "recording"
        assert harness.encoder.timeslice == 1.0
        assert harness.encoder.bitrate == 2_500_000
        assert harness.ticker.running
        assert harness.recorder.error is None

    def test_include_audio(self, make_harness):
        h = make_harness(include_audio=True)
        h.recorder.start()
        assert h.source.stream.tracks == ["video", "audio"]

    def test_unsupported_before_prompt(self, make_harness):
        h = make_harness(source=MockCaptureSource(supported=False))
        assert h.recorder.is_supported is False
        assert h.recorder.start() is False

        assert h.recorder.status == RecordingStatus.IDLE
        assert isinstance(h.recorder.error, UnsupportedError)
        assert h.errors == [h.recorder.error]
        assert h.source.requests == 0
        assert h.completed == []

    def test_permission_denied(self, make_harness):
        h = make_harness(source=MockCaptureSource(deny=True))
        assert h.recorder.start() is False

        assert h.recorder.status == RecordingStatus.IDLE
        assert isinstance(h.recorder.error, PermissionDeniedError)
        assert len(h.errors) == 1
        assert h.recorder._session is None

    def test_retry_after_denial(self, make_harness):
        source = MockCaptureSource(deny=True)
        h = make_harness(source=source)
        h.recorder.start()
        source.deny = False
        assert h.recorder.start() is True
        assert h.recorder.error is None
        assert h.recorder.status == RecordingStatus.RECORDING

    def test_unexpected_acquisition_error_wrapped(self, make_harness):
        class Broken(MockCaptureSource):
            def request_stream(self, include_audio):
                raise OSError("display went away")

        h = make_harness(source=Broken())
        assert h.recorder.start() is False
        assert isinstance(h.recorder.error, RecorderFailure)
        assert isinstance(h.recorder.error.__cause__, OSError)

    def test_no_usable_container(self, make_harness):
        h = make_harness(source=MockCaptureSource(mime_types=()))
        assert h.recorder.start() is False
        assert isinstance(h.recorder.error, UnsupportedError)
        assert not h.source.stream.active

    def test_format_fallback(self, make_harness):
        h = make_harness(source=MockCaptureSource(mime_types=("video/webm",)), video_format="mp4")
        h.recorder.start()
        h.run(3)
        h.recorder.stop()
        assert h.recorder.mime_type == "video/webm"
        assert h.completed[0].extension == "webm"
        assert h.completed[0].suggested_filename().endswith(".webm")

    def test_second_start_rejected(self, harness):
        harness.recorder.start()
        stream = harness.source.stream

        with pytest.raises(RecorderBusyError, match="Already recording"):
            harness.recorder.start()

        assert harness.recorder.status == RecordingStatus.RECORDING
        assert harness.source.requests == 1
        assert stream.active
        assert harness.errors == []

    def test_second_start_rejected_while_paused(self, harness):
        harness.recorder.start()
        harness.recorder.pause()
        with pytest.raises(RecorderBusyError):
            harness.recorder.start()

    def test_encoder_start_failure(self, make_harness):
        class BadEncoderSource(MockCaptureSource):
            def create_encoder(self, stream, mime_type, bitrate=None):
                raise RuntimeError("no encoder")

        h = make_harness(source=BadEncoderSource())
        assert h.recorder.start() is False
        assert isinstance(h.recorder.error, RecorderFailure)
        assert not h.source.stream.active
        assert h.recorder.status == RecordingStatus.IDLE

    def test_restart_after_stop_resets_state(self, harness):
        harness.recorder.start()
        harness.run(5)
        harness.recorder.stop()
        assert harness.recorder.result is not None

        harness.recorder.start()
        assert harness.recorder.status == RecordingStatus.RECORDING
        assert harness.recorder.result is None
        assert harness.recorder.recorded_blob is None
        assert harness.recorder.elapsed_time == 0


# ──── fixed mode ────


class TestFixedMode:
    def test_auto_stop_after_duration(self, make_harness):
        h = make_harness(duration=1)
        h.recorder.start()
        h.run(59)
        assert h.recorder.status == RecordingStatus.RECORDING

        h.run(1)
        assert h.recorder.status == RecordingStatus.STOPPED
        assert len(h.completed) == 1
        result = h.completed[0]
        assert result.duration == 60
        assert result.mode == "fixed"
        assert result.blob.startswith(b"INITchunk-00000;")
        assert result.blob.endswith(b"chunk-00059;")
        assert h.recorder.recorded_blob == result.blob
        assert h.recorder.elapsed_time == 60

    def test_resources_released_after_completion(self, make_harness):
        h = make_harness(duration=1)
        h.recorder.start()
        stream = h.source.stream
        h.run(60)
        assert not stream.active
        assert h.recorder._session is None

    def test_progress_published_without_buffer(self, make_harness):
        h = make_harness(duration=1)
        h.recorder.start()
        h.run(3)
        assert h.progress == [(1, None), (2, None), (3, None)]

    def test_manual_stop_reports_elapsed(self, harness):
        harness.recorder.start()
        harness.run(12)
        harness.recorder.stop()
        assert harness.completed[0].duration == 12
        assert harness.completed[0].start_time <= harness.completed[0].end_time


# ──── loop mode ────


class TestLoopMode:
    def test_keeps_last_window(self, make_harness):
        h = make_harness(mode="loop", loop_duration=120)
        h.recorder.start()
        h.run(300)
        assert h.recorder.status == RecordingStatus.RECORDING
        h.recorder.stop()

        result = h.completed[0]
        assert result.duration == pytest.approx(120)
        assert result.mode == "loop"
        # Init segment first, then the window starting at the 180th chunk
        assert result.blob.startswith(b"INITchunk-00000;chunk-00179;")
        assert b"chunk-00178;" not in result.blob
        assert result.blob.endswith(b"chunk-00299;")

    def test_init_segment_bytes_survive(self, make_harness):
        h = make_harness(mode="loop", loop_duration=60)
        h.recorder.start()
        h.encoder.init_header = b"\x1a\x45\xdf\xa3EBML"
        h.run(500)
        h.recorder.stop()
        assert h.completed[0].blob.startswith(b"\x1a\x45\xdf\xa3EBMLchunk-00000;")

    def test_buffer_bound(self, make_harness):
        h = make_harness(mode="loop", loop_duration=120)
        h.recorder.start()
        for second in range(1, 301):
            h.run(1)
            if second > 120:
                assert h.recorder.buffer_duration <= 120 + 1

    def test_progress_publishes_buffer(self, make_harness):
        h = make_harness(mode="loop", loop_duration=60)
        h.recorder.start()
        h.run(100)
        elapsed, buffered = h.progress[-1]
        assert elapsed == 100
        assert buffered == pytest.approx(60)

    def test_never_auto_stops(self, make_harness):
        h = make_harness(mode="loop", loop_duration=60, duration=1)
        h.recorder.start()
        h.run(200)
        assert h.recorder.status == RecordingStatus.RECORDING

    def test_short_session_duration(self, make_harness):
        h = make_harness(mode="loop", loop_duration=120)
        h.recorder.start()
        h.run(30)
        h.recorder.stop()
        # Measured from the first chunk's arrival
        assert h.completed[0].duration == pytest.approx(29)
        assert h.completed[0].blob.count(b"INIT") == 1


# ──── pause / resume ────


class TestPauseResume:
    def test_pause_stops_timer_and_encoder(self, harness):
        harness.recorder.start()
        harness.run(5)
        harness.recorder.pause()

        assert harness.recorder.status == RecordingStatus.PAUSED
        assert harness.encoder.state == "paused"
        assert not harness.ticker.running
        harness.run(10)
        assert harness.recorder.elapsed_time == 5

    def test_resume_restarts_same_timer(self, make_harness):
        h = make_harness(duration=1)
        h.recorder.start()
        h.run(30)
        h.recorder.pause()
        h.wait(100)
        h.recorder.resume()

        assert h.recorder.status == RecordingStatus.RECORDING
        assert h.ticker.starts == 2
        h.run(30)
        # Auto-stop logic still applies after resume
        assert h.recorder.status == RecordingStatus.STOPPED
        assert h.completed[0].duration == 60

    def test_pause_does_not_evict(self, make_harness):
        h = make_harness(mode="loop", loop_duration=15)
        h.recorder.start()
        h.run(10)
        h.recorder.pause()
        h.wait(50)
        h.recorder.resume()
        h.run(3)

        assert h.recorder._session.buffer.valid_start == 0
        assert h.recorder.buffer_duration == pytest.approx(12)

    def test_duration_counts_content_not_wall_time(self, make_harness):
        h = make_harness(mode="loop", loop_duration=30)
        h.recorder.start()
        h.run(10)
        h.recorder.pause()
        h.wait(50)
        h.recorder.resume()
        h.run(10)
        h.recorder.stop()

        result = h.completed[0]
        assert b"chunk-00000;" in result.blob
        assert b"chunk-00019;" in result.blob
        assert result.duration == pytest.approx(19)

    def test_window_slides_on_content_time(self, make_harness):
        """With the pause netted out, 20s of content in a 15s window keeps the last 15s."""
        h = make_harness(mode="loop", loop_duration=15)
        h.recorder.start()
        h.run(10)
        h.recorder.pause()
        h.wait(50)
        h.recorder.resume()
        h.run(10)
        h.recorder.stop()

        result = h.completed[0]
        assert result.duration == pytest.approx(15)
        assert b"chunk-00004;" in result.blob
        assert b"chunk-00003;" not in result.blob

    def test_stop_while_paused(self, make_harness):
        h = make_harness(mode="loop", loop_duration=60)
        h.recorder.start()
        h.run(10)
        h.recorder.pause()
        h.wait(30)
        h.recorder.stop()

        assert h.recorder.status == RecordingStatus.STOPPED
        assert h.completed[0].duration == pytest.approx(9)

    def test_illegal_transitions_are_noops(self, harness):
        rec = harness.recorder
        rec.pause()
        rec.resume()
        rec.stop()
        assert rec.status == RecordingStatus.IDLE

        rec.start()
        rec.resume()
        assert rec.status == RecordingStatus.RECORDING
        rec.pause()
        rec.pause()
        assert rec.status == RecordingStatus.PAUSED
        assert rec._session.pauses.pause_started_at is not None

        rec.stop()
        assert rec.status == RecordingStatus.STOPPED
        rec.pause()
        rec.resume()
        rec.stop()
        assert rec.status == RecordingStatus.STOPPED
        assert len(harness.completed) == 1
        assert harness.errors == []


# ──── stop paths ────


class TestStop:
    def test_stop_twice_finalizes_once(self, harness):
        harness.recorder.start()
        harness.run(3)
        harness.recorder.stop()
        harness.recorder.stop()
        assert len(harness.completed) == 1

    def test_revoke_runs_stop_path(self, harness):
        harness.recorder.start()
        harness.run(4)
        stream = harness.source.stream
        stream.revoke()

        assert harness.recorder.status == RecordingStatus.STOPPED
        assert len(harness.completed) == 1
        assert harness.completed[0].duration == 4
        assert not stream.active

    def test_revoke_while_paused(self, harness):
        harness.recorder.start()
        harness.run(2)
        harness.recorder.pause()
        harness.source.stream.revoke()
        assert harness.recorder.status == RecordingStatus.STOPPED
        assert len(harness.completed) == 1

    def test_empty_chunks_ignored(self, harness):
        harness.recorder.start()
        harness.encoder.emit(b"first")
        harness.encoder.emit(b"")
        harness.recorder.stop()
        assert harness.completed[0].blob == b"INITfirst"

    def test_stop_before_any_chunk(self, harness):
        harness.recorder.start()
        harness.recorder.stop()
        assert harness.completed[0].blob == b""
        assert harness.recorder.status == RecordingStatus.STOPPED

    def test_restart_from_complete_callback(self, make_harness):
        h = make_harness()
        restarted = []

        def on_complete(result):
            restarted.append(h.recorder.start())

        h.recorder.on_complete = on_complete
        h.recorder.start()
        h.run(2)
        h.recorder.stop()

        assert restarted == [True]
        assert h.recorder.status == RecordingStatus.RECORDING
        assert h.source.stream.active
        assert h.ticker.running


# ──── errors ────


class TestErrors:
    def test_encoder_failure(self, harness):
        harness.recorder.start()
        harness.run(3)
        stream = harness.source.stream
        harness.encoder.fail(RuntimeError("boom"))

        assert harness.recorder.status == RecordingStatus.IDLE
        assert isinstance(harness.recorder.error, RecorderFailure)
        assert "boom" in str(harness.recorder.error)
        assert len(harness.errors) == 1
        assert harness.completed == []
        assert not stream.active
        assert harness.recorder._session is None

    def test_recover_after_failure(self, harness):
        harness.recorder.start()
        harness.encoder.fail(RecorderFailure("encoder crashed"))
        assert harness.recorder.start() is True
        harness.run(2)
        harness.recorder.stop()
        assert len(harness.completed) == 1
        assert len(harness.errors) == 1

    def test_finalize_failure(self, harness, monkeypatch):
        def broken(*args, **kwargs):
            raise FinalizeFailure("disk on fire")

        monkeypatch.setattr("screenrec.recorder.screen_recorder.assemble_recording", broken)
        harness.recorder.start()
        harness.run(3)
        stream = harness.source.stream
        harness.recorder.stop()

        assert harness.recorder.status == RecordingStatus.IDLE
        assert isinstance(harness.recorder.error, FinalizeFailure)
        assert harness.completed == []
        assert len(harness.errors) == 1
        assert not stream.active

    def test_late_callbacks_ignored(self, harness):
        harness.recorder.start()
        encoder = harness.encoder
        encoder.fail(RecorderFailure("crash"))
        # A stale encoder reporting again must not touch the recorder
        encoder.state = "recording"
        encoder.emit(b"late")
        encoder.stop()
        assert harness.completed == []
        assert len(harness.errors) == 1


# ──── cleanup / teardown ────


class TestCleanup:
    def test_cleanup_never_started(self, harness):
        harness.recorder.cleanup()
        harness.recorder.cleanup()
        assert harness.recorder.status == RecordingStatus.IDLE

    def test_cleanup_twice_after_start(self, harness):
        harness.recorder.start()
        stream = harness.source.stream
        ticker = harness.ticker
        harness.recorder.cleanup()
        harness.recorder.cleanup()
        assert not stream.active
        assert not ticker.running
        assert harness.recorder._session is None

    def test_cleanup_while_recording_returns_to_idle(self, harness):
        harness.recorder.start()
        harness.run(3)
        stream = harness.source.stream
        encoder = harness.encoder
        harness.recorder.cleanup()

        assert harness.recorder.status == RecordingStatus.IDLE
        assert encoder.state == "inactive"
        assert not stream.active
        assert harness.completed == []
        assert harness.errors == []

        harness.recorder.stop()
        assert harness.recorder.status == RecordingStatus.IDLE
        assert harness.recorder.start() is True
        assert harness.recorder.status == RecordingStatus.RECORDING
        harness.run(2)
        harness.recorder.stop()
        assert len(harness.completed) == 1
        assert harness.completed[0].blob.startswith(b"INITchunk-00000;")

    def test_cleanup_while_paused_returns_to_idle(self, harness):
        harness.recorder.start()
        harness.run(2)
        harness.recorder.pause()
        encoder = harness.encoder
        harness.recorder.cleanup()

        assert harness.recorder.status == RecordingStatus.IDLE
        assert encoder.state == "inactive"
        assert harness.recorder.start() is True

    def test_cleanup_during_selection_abandons_start(self, make_harness):
        holder = {}

        class PickerOpen(MockCaptureSource):
            def request_stream(self, include_audio):
                stream = super().request_stream(include_audio)
                # Another caller gives up while the picker is showing
                holder["recorder"].cleanup()
                return stream

        h = make_harness(source=PickerOpen())
        holder["recorder"] = h.recorder
        assert h.recorder.start() is False

        assert h.recorder.status == RecordingStatus.IDLE
        assert not h.source.stream.active
        assert h.recorder._session is None
        assert h.errors == []

    def test_cleanup_survives_encoder_stop_failure(self, harness):
        harness.recorder.start()
        stream = harness.source.stream

        def broken_stop():
            raise RuntimeError("encoder wedged")

        harness.encoder.stop = broken_stop
        harness.recorder.cleanup()
        assert harness.recorder.status == RecordingStatus.IDLE
        assert not stream.active

    def test_close_stops_encoder(self, harness):
        harness.recorder.start()
        encoder = harness.encoder
        harness.recorder.close()
        assert encoder.state == "inactive"
        assert harness.completed == []

    def test_close_releases_without_state_change(self, harness):
        harness.recorder.start()
        harness.run(3)
        stream = harness.source.stream
        encoder = harness.encoder
        harness.recorder.close()

        assert not stream.active
        assert harness.recorder.status == RecordingStatus.RECORDING
        encoder.stop()
        assert harness.completed == []
        assert harness.errors == []

        with pytest.raises(RuntimeError, match="closed"):
            harness.recorder.start()

    def test_context_manager(self, make_harness):
        h = make_harness()
        with h.recorder as rec:
            rec.start()
            stream = h.source.stream
        assert not stream.active


# ──── download ────


class TestDownload:
    def test_writes_blob(self, harness, tmp_path):
        harness.recorder.start()
        harness.run(3)
        harness.recorder.stop()

        path = harness.recorder.download(tmp_path / "out")
        assert path.parent == tmp_path / "out"
        assert path.name == harness.completed[0].suggested_filename()
        assert path.read_bytes() == harness.completed[0].blob

    def test_custom_filename(self, harness, tmp_path):
        harness.recorder.start()
        harness.run(1)
        harness.recorder.stop()
        path = harness.recorder.download(tmp_path, filename="clip.webm")
        assert path == tmp_path / "clip.webm"

    def test_nothing_recorded(self, harness, tmp_path):
        with pytest.raises(RuntimeError, match="No recording"):
            harness.recorder.download(tmp_path)


def test_options_passed_to_start_replace_defaults(harness):
    harness.recorder.start(RecordingOptions(mode="loop", loop_duration=60))
    assert harness.recorder.options.is_loop
    assert harness.recorder._session.buffer.is_loop
