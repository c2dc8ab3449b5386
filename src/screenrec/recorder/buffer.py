"""Chunk buffer with time-window eviction and pause accounting.

Chunks are appended in arrival order. In loop mode the buffer keeps a
``valid_start`` index marking the oldest chunk inside the retention window;
eviction only bumps that index, and the dead prefix is sliced off in one go
once it grows past ``compact_threshold``. The first chunk of a session (the
container init segment) is held by reference so it survives compaction.

Timestamps are stored on the session's *active clock*: receipt time minus
the pause time accrued so far. Comparing them against a cutoff that
subtracts the total paused time therefore nets pauses out exactly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from screenrec.constants import COMPACT_THRESHOLD
from screenrec.recorder.base import Chunk

logger = logging.getLogger(__name__)


@dataclass
class PauseAccounting:
    paused_total: float = 0.0
    pause_started_at: Optional[float] = None

    @property
    def is_paused(self) -> bool:
        return self.pause_started_at is not None

    def pause(self, now: float) -> None:
        if self.pause_started_at is None:
            self.pause_started_at = now

    def resume(self, now: float) -> float:
        """Close the current pause. Returns its length in seconds."""
        if self.pause_started_at is None:
            return 0.0
        span = max(0.0, now - self.pause_started_at)
        self.paused_total += span
        self.pause_started_at = None
        return span

    def paused_until(self, now: float) -> float:
        """Total paused time including an open pause."""
        total = self.paused_total
        if self.pause_started_at is not None:
            total += max(0.0, now - self.pause_started_at)
        return total

    def active_time(self, now: float) -> float:
        """*now* on the clock that stands still while paused."""
        return now - self.paused_until(now)


def compute_cutoff(now: float, retention_seconds: float, paused_total: float) -> float:
    """Stamps below the returned value are outside the retention window."""
    return now - retention_seconds - paused_total


def advance_valid_start(timestamps: list[float], start: int, cutoff: float) -> int:
    """Move *start* past every stamp older than *cutoff*.

    The newest entry is never passed, so a non-empty buffer always keeps at
    least one valid chunk.
    """
    last = len(timestamps) - 1
    while start < last and timestamps[start] < cutoff:
        start += 1
    return start


class ChunkBuffer:
    """Ordered chunk store for one recording session."""

    def __init__(
        self,
        retention_seconds: Optional[float] = None,
        compact_threshold: int = COMPACT_THRESHOLD,
    ):
        """
        Args:
            retention_seconds: Loop-mode window. ``None`` keeps everything.
            compact_threshold: Dead-prefix length that triggers compaction.
        """
        self.retention_seconds = retention_seconds
        self.compact_threshold = compact_threshold
        self.chunks: list[Chunk] = []
        self.timestamps: list[float] = []
        self.valid_start = 0
        self.init_segment: Optional[Chunk] = None
        self.compactions = 0

    def __len__(self) -> int:
        return len(self.chunks)

    @property
    def is_loop(self) -> bool:
        return self.retention_seconds is not None

    def append(self, chunk: Chunk, pauses: PauseAccounting) -> None:
        """Add *chunk*, evicting stale chunks in loop mode."""
        now = chunk.received_at
        if self.init_segment is None:
            self.init_segment = chunk
            logger.debug("Init segment recorded (%d bytes)", len(chunk))

        self.chunks.append(chunk)
        self.timestamps.append(pauses.active_time(now))

        if self.is_loop:
            self.evict(now, pauses)

    def evict(self, now: float, pauses: PauseAccounting) -> None:
        cutoff = compute_cutoff(now, self.retention_seconds, pauses.paused_until(now))
        before = self.valid_start
        self.valid_start = advance_valid_start(self.timestamps, self.valid_start, cutoff)
        if self.valid_start != before:
            logger.debug("Evicted %d chunk(s), valid_start=%d", self.valid_start - before, self.valid_start)

        if self.valid_start > self.compact_threshold:
            self.compact()

    def compact(self) -> None:
        """Drop the evicted prefix and reset ``valid_start`` to 0."""
        dropped = self.valid_start
        self.chunks = self.chunks[dropped:]
        self.timestamps = self.timestamps[dropped:]
        self.valid_start = 0
        self.compactions += 1
        logger.debug("Compacted buffer: dropped %d chunk(s), %d remain", dropped, len(self.chunks))

    def valid_chunks(self) -> list[Chunk]:
        return self.chunks[self.valid_start:]

    def oldest_valid_timestamp(self) -> Optional[float]:
        if self.valid_start >= len(self.timestamps):
            return None
        return self.timestamps[self.valid_start]

    def buffered_duration(self, now: float, pauses: PauseAccounting) -> float:
        """Seconds of content between the oldest valid chunk and *now*."""
        oldest = self.oldest_valid_timestamp()
        if oldest is None:
            return 0.0
        return max(0.0, pauses.active_time(now) - oldest)
