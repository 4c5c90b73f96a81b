"""SoundMeter - real-time microphone level monitor.

This package samples microphone peak amplitude, converts it to a heuristic
decibel display scale, and flags readings above a noise threshold.
"""

from .cli.commands import app

__version__ = "1.0.0"

__all__ = ["app", "__version__"]
