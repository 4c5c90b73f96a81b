"""Core sampling and conversion logic for SoundMeter."""

from .config import AppConfig
from .errors import (
    DeviceError, MicrophonePermissionError, MonitorError, ReleaseError, SampleReadError,
)
from .monitor import MonitorState, Phase, Reading, SoundLevelMonitor
from .processing import (
    amplitude_to_db, db_to_amplitude, detect_driver_type, draw_db_bar,
    is_threshold_exceeded, level_band, peak_amplitude,
)
from .sources import (
    AmplitudeSource, MicrophoneSource, SourceHandle, SyntheticSource,
    create_source, list_input_devices,
)

__all__ = [
    "AppConfig",
    "SoundLevelMonitor",
    "MonitorState",
    "Phase",
    "Reading",
    "AmplitudeSource",
    "MicrophoneSource",
    "SyntheticSource",
    "SourceHandle",
    "create_source",
    "list_input_devices",
    "amplitude_to_db",
    "db_to_amplitude",
    "is_threshold_exceeded",
    "level_band",
    "peak_amplitude",
    "draw_db_bar",
    "detect_driver_type",
    "MonitorError",
    "MicrophonePermissionError",
    "DeviceError",
    "SampleReadError",
    "ReleaseError",
]
