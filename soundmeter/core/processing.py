"""Amplitude processing utilities for SoundMeter.

This module converts raw peak amplitudes into the decibel display scale,
evaluates the alert threshold, and classifies levels for presentation.

The decibel figures are a heuristic display mapping: raw peak amplitude is
stretched onto a logarithmic curve that lands roughly where everyday
quiet-to-loud dB figures sit, then offset and clamped.  They are not a
calibrated sound pressure level measurement.
"""

import math

import numpy as np
from loguru import logger

from .config import (
    AMPLITUDE_MAX, DEVICE_DB_MIN, DEVICE_DB_MAX, METER_SCALE_MAX, THRESHOLD_DB,
)

# Logarithmic stretch applied to the amplitude ratio and the offset added after it
AMPLITUDE_SCALE = 10000
DB_OFFSET = 20.0

LEVEL_QUIET = 'quiet'
LEVEL_MODERATE = 'moderate'
LEVEL_LOUD = 'loud'
LEVEL_ALERT = 'alert'


def clamp(value: float, low: float, high: float) -> float:
    """Clamp *value* into ``[low, high]``."""
    return max(low, min(high, value))


def amplitude_to_db(amplitude: int) -> float:
    """Convert a peak amplitude to the decibel display scale.

    Args:
        amplitude: Peak amplitude in ``[0, 32767]``

    Returns:
        Display level in ``[30.0, 120.0]``.  Silence (``0``) maps to 30 dB.
    """
    if amplitude > 0:
        ratio = amplitude / float(AMPLITUDE_MAX)
        db_raw = 20 * math.log10(ratio * AMPLITUDE_SCALE + 1)
        return clamp(db_raw + DB_OFFSET, DEVICE_DB_MIN, DEVICE_DB_MAX)
    return DEVICE_DB_MIN


def db_to_amplitude(db_level: float) -> int:
    """Map a display level back onto the raw amplitude range.

    Inverse of :func:`amplitude_to_db` for levels inside its output range;
    the result is rounded and clamped to ``[0, 32767]``.
    """
    ratio = (10 ** ((db_level - DB_OFFSET) / 20) - 1) / AMPLITUDE_SCALE
    return int(round(clamp(ratio * AMPLITUDE_MAX, 0, AMPLITUDE_MAX)))


def is_threshold_exceeded(db_level: float, threshold: float = THRESHOLD_DB) -> bool:
    """Return ``True`` when *db_level* is strictly above *threshold*."""
    return db_level > threshold


def peak_amplitude(audio_data: bytes) -> int:
    """Return the peak unsigned amplitude of an int16 audio buffer.

    Args:
        audio_data: Raw audio bytes (int16)

    Returns:
        Peak amplitude clamped to ``[0, 32767]``; ``0`` for empty or
        unreadable buffers.
    """
    try:
        audio_array = np.frombuffer(audio_data, dtype=np.int16)
        if audio_array.size == 0:
            return 0
        # int32 so that abs(-32768) does not wrap
        peak = int(np.max(np.abs(audio_array.astype(np.int32))))
        return min(peak, AMPLITUDE_MAX)
    except Exception as e:
        logger.debug(f"Error computing peak amplitude: {e}")
        return 0


def level_band(db_level: float, threshold: float = THRESHOLD_DB) -> str:
    """Classify a display level for colouring the meter.

    Returns:
        ``'alert'`` above the threshold, ``'loud'`` above 60% of the meter
        scale, ``'moderate'`` above 30%, otherwise ``'quiet'``.
    """
    if is_threshold_exceeded(db_level, threshold):
        return LEVEL_ALERT
    progress = db_level / METER_SCALE_MAX
    if progress > 0.6:
        return LEVEL_LOUD
    if progress > 0.3:
        return LEVEL_MODERATE
    return LEVEL_QUIET


def draw_db_bar(db_level: float, width: int = 50) -> str:
    """Create a text bar for *db_level* on the 0–120 meter scale.

    Args:
        db_level: Display level
        width: Width of the bar in characters

    Returns:
        A string representation of the dB bar
    """
    filled = int(clamp(db_level / METER_SCALE_MAX, 0.0, 1.0) * width)
    return '█' * filled + '░' * (width - filled)


def detect_driver_type(device_name: str) -> str:
    """Guess the host audio driver from a PortAudio device name.

    Returns:
        One of ``'pulse'``, ``'alsa'``, ``'jack'``, ``'usb'`` or ``'default'``.
    """
    name_lower = device_name.lower()

    if 'pulse' in name_lower or 'pipewire' in name_lower:
        return 'pulse'
    if 'alsa' in name_lower or 'hw:' in name_lower or 'plughw' in name_lower:
        return 'alsa'
    if 'jack' in name_lower:
        return 'jack'
    if 'usb' in name_lower:
        return 'usb'
    return 'default'
