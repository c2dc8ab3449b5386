"""Error taxonomy for the recorder."""


class ScreenRecorderError(Exception):
    """Base class for errors delivered through the recorder's error channel."""


class UnsupportedError(ScreenRecorderError):
    """The runtime lacks screen capture or chunked encoding support."""


class PermissionDeniedError(ScreenRecorderError):
    """The user declined or cancelled the capture source picker."""


class RecorderFailure(ScreenRecorderError):
    """The encoder reported an internal error mid-session."""


class FinalizeFailure(ScreenRecorderError):
    """Assembling the output blob failed."""


class RecorderBusyError(RuntimeError):
    """A session is already selecting, recording or paused."""
