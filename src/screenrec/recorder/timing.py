"""Periodic tick sources for the timing controller."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from screenrec.constants import TICK_INTERVAL

logger = logging.getLogger(__name__)


class IntervalTicker:
    """Calls *callback* every *interval* seconds on a daemon thread.

    ``stop`` may be called from inside the callback. Each ``start`` gets a
    fresh thread and stop event, so a restarted ticker never shares state
    with the thread it replaced.
    """

    def __init__(self, callback: Callable[[], None], interval: float = TICK_INTERVAL):
        self._callback = callback
        self._interval = interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and not self._stop_event.is_set()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(self._stop_event,), name="screenrec-ticker", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        # No join: the callback may be blocked on a lock the caller holds.
        self._stop_event.set()
        self._thread = None

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self._interval):
            if stop_event.is_set():
                break
            try:
                self._callback()
            except Exception:
                # A failing handler must not end the tick stream
                logger.exception("Tick handler failed")


class ManualTicker:
    """Ticker fired explicitly, for deterministic tests and simulations."""

    def __init__(self, callback: Callable[[], None], interval: float = TICK_INTERVAL):
        self._callback = callback
        self.interval = interval
        self.running = False
        self.starts = 0

    def start(self) -> None:
        if not self.running:
            self.running = True
            self.starts += 1

    def stop(self) -> None:
        self.running = False

    def fire(self) -> bool:
        """Deliver one tick if running. Returns whether it was delivered."""
        if not self.running:
            return False
        self._callback()
        return True
