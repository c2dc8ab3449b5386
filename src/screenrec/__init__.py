"""Screen recorder with fixed-duration and rolling-window modes."""

__version__ = "0.1.0"
