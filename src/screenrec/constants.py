"""Shared constants and defaults."""

APP_NAME = "screenrec"

DEFAULT_DURATION_MINUTES = 2
DEFAULT_LOOP_SECONDS = 120
DEFAULT_VIDEO_FORMAT = "webm"
DEFAULT_MODE = "fixed"
DEFAULT_FRAMERATE = 30
DEFAULT_VIDEO_BITRATE = 2_500_000  # 2.5 Mbps

VALID_VIDEO_FORMATS = ("webm", "mp4")
VALID_MODES = ("fixed", "loop")
DURATION_CHOICES = (1, 2, 3, 4, 5)  # minutes
LOOP_CHOICES = (60, 120, 180)  # seconds

# Encoder emits one chunk per timeslice; the timing controller ticks at 1 Hz.
CHUNK_TIMESLICE = 1.0
TICK_INTERVAL = 1.0

# Dead-prefix length that triggers a buffer compaction.
COMPACT_THRESHOLD = 60

# MIME candidates in probe priority order, grouped by container.
MIME_CANDIDATES = {
    "mp4": ("video/mp4",),
    "webm": ("video/webm;codecs=vp9", "video/webm"),
}
MIME_PRIORITY = ("mp4", "webm")

EXTENSIONS = {
    "video/mp4": "mp4",
    "video/webm": "webm",
}
