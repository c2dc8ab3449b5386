"""Shared test fixtures."""

import pytest

from screenrec.recorder import MockCaptureSource, RecordingOptions, ScreenRecorder
from screenrec.recorder.timing import ManualTicker


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Harness:
    """A ScreenRecorder wired to the mock backend, a fake clock and a manual ticker."""

    def __init__(self, source=None, options=None):
        self.clock = FakeClock()
        self.source = source or MockCaptureSource()
        self.completed = []
        self.errors = []
        self.progress = []
        self.recorder = ScreenRecorder(
            self.source,
            options or RecordingOptions(),
            on_complete=self.completed.append,
            on_error=self.errors.append,
            on_progress=lambda elapsed, buffered: self.progress.append((elapsed, buffered)),
            clock=self.clock,
            ticker_factory=ManualTicker,
        )

    @property
    def encoder(self):
        return self.source.encoder

    @property
    def ticker(self):
        session = self.recorder._session
        return session.ticker if session is not None else None

    def run(self, seconds: int) -> None:
        """Simulate *seconds* of recording: one chunk and one tick per second."""
        for _ in range(seconds):
            self.clock.advance(1.0)
            if self.encoder is not None:
                self.encoder.emit()
            ticker = self.ticker
            if ticker is not None:
                ticker.fire()

    def wait(self, seconds: float) -> None:
        """Let wall time pass with no chunks or ticks (e.g. while paused)."""
        self.clock.advance(seconds)


@pytest.fixture
def harness():
    return Harness()


@pytest.fixture
def make_harness():
    def _make(source=None, **kwargs):
        options = RecordingOptions(**kwargs) if kwargs else None
        return Harness(source=source, options=options)
    return _make
