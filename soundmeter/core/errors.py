"""Error kinds raised by the sampling core.

Only :meth:`SoundLevelMonitor.start` lets these reach a caller.  Errors that
happen inside the sampling loop or during cleanup are absorbed by the monitor
and reported through its diagnostic string.
"""


class MonitorError(Exception):
    """Base class for all SoundMeter core errors."""


class MicrophonePermissionError(MonitorError, PermissionError):
    """Microphone access is missing or was revoked."""


class DeviceError(MonitorError):
    """The capture device failed to open, or died while sampling."""


class SampleReadError(MonitorError):
    """A single tick could not read the current amplitude."""


class ReleaseError(MonitorError):
    """Releasing the capture device or its scratch file failed."""
