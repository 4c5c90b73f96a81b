"""Configuration management for SoundMeter.

This module provides configuration constants and the :class:`AppConfig` class
which merges defaults with values from an optional YAML file
(``.soundmeter.yml`` in the working directory).

Monitor constants
-----------------
- ``THRESHOLD_DB``     – alert boundary on the display scale (75 dB)
- ``SAMPLE_INTERVAL``  – delay between two sampling ticks in seconds
- ``SOURCE``           – amplitude source: ``'microphone'`` or ``'simulation'``
- ``RATE``             – capture sample rate in Hz
- ``CHUNK``            – PyAudio buffer size in frames (one tick worth)

Display scale
-------------
The decibel values produced here are a heuristic display scale and not a
calibrated sound pressure level.  Device readings land in
``[DEVICE_DB_MIN, DEVICE_DB_MAX]`` and simulated readings in
``[SIMULATED_DB_MIN, SIMULATED_DB_MAX]``.

Configuration file (``monitor:`` section)
-----------------------------------------
.. code-block:: yaml

    monitor:
      source: simulation
      threshold: 80
      interval: 0.1
      device_id: 3
      scratch_dir: /tmp/soundmeter
"""

import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

# Sampling parameters
SAMPLE_INTERVAL = 0.1  # 100ms between ticks
RATE = 16000
CHUNK = int(RATE * SAMPLE_INTERVAL)
CHANNEL = 1

# Amplitude / display scale
AMPLITUDE_MAX = 32767
THRESHOLD_DB = 75.0
DEVICE_DB_MIN = 30.0
DEVICE_DB_MAX = 120.0
SIMULATED_DB_MIN = 30.0
SIMULATED_DB_MAX = 100.0
METER_SCALE_MAX = 120.0

# Amplitude sources
SOURCE_MICROPHONE = 'microphone'
SOURCE_SIMULATION = 'simulation'
SOURCES = (SOURCE_MICROPHONE, SOURCE_SIMULATION)
SOURCE = SOURCE_MICROPHONE

# Scratch file required while the capture device is open
SCRATCH_PREFIX = 'temp_audio_'
SCRATCH_SUFFIX = '.wav'

CONFIG_FILE = '.soundmeter.yml'


class AppConfig:
    """Application configuration management."""

    def __init__(self) -> None:
        """Initialize configuration with defaults."""
        self._config: Dict[str, Any] = {
            'source': SOURCE,
            'threshold': THRESHOLD_DB,
            'interval': SAMPLE_INTERVAL,
            'rate': RATE,
            'chunk': CHUNK,
            'device_id': None,
            'scratch_dir': None,
        }
        self._load_yaml_config()

    def _load_yaml_config(self) -> None:
        """Load optional YAML configuration from the working directory."""
        config_path = Path.cwd() / CONFIG_FILE
        if not config_path.exists():
            return

        content = yaml.safe_load(config_path.read_text(encoding='utf-8'))
        if not content:
            return

        if not isinstance(content, dict):
            raise ValueError(f"Configuration in {CONFIG_FILE} must be a mapping")

        monitor_config = content.get('monitor')
        if isinstance(monitor_config, dict):
            for key in self._config.keys():
                if key in monitor_config:
                    self._config[key] = monitor_config[key]

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set configuration value.

        Args:
            key: Configuration key
            value: Configuration value
        """
        self._config[key] = value

    def get_source(self) -> str:
        """Return the configured amplitude source name.

        Raises:
            ValueError: If the configured source is not one of :data:`SOURCES`
        """
        source = str(self._config.get('source', SOURCE)).lower()
        if source not in SOURCES:
            raise ValueError(
                f"Unknown source '{source}', expected one of: {', '.join(SOURCES)}"
            )
        return source

    def get_scratch_dir(self) -> Path:
        """Return the directory holding the transient capture file.

        Falls back to the system temporary directory when ``scratch_dir`` is
        not configured.  The directory is created if missing.
        """
        scratch_dir = self._config.get('scratch_dir') or tempfile.gettempdir()
        path = Path(scratch_dir)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def get_device_id(self) -> Optional[int]:
        """Return the configured input device ID (``None`` = system default)."""
        device_id = self._config.get('device_id')
        return int(device_id) if device_id is not None else None
