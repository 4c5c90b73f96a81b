"""Command-line interface for SoundMeter."""

from .commands import app

__all__ = ["app"]
