"""CLI utilities for SoundMeter.

This module provides the themed Rich console, table builders and the live
level meter renderable.
"""

import os
from contextlib import contextmanager
from typing import Any, Dict, List

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from soundmeter.core.monitor import MonitorState
from soundmeter.core.processing import (
    LEVEL_ALERT, LEVEL_LOUD, LEVEL_MODERATE, LEVEL_QUIET, draw_db_bar, level_band,
)

# Create themed console for consistent output
_theme = Theme(
    {
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "bold red",
        "debug": "dim white",
    }
)

console = Console(theme=_theme)

LEVEL_STYLES = {
    LEVEL_QUIET: "green",
    LEVEL_MODERATE: "yellow",
    LEVEL_LOUD: "dark_orange",
    LEVEL_ALERT: "bold red",
}


def make_device_table(devices: List[dict]) -> Table:
    """Build a Rich Table from the device list returned by list_input_devices().

    Args:
        devices: List of dicts with keys: id, name, driver, channels, rate, is_default

    Returns:
        Configured Rich Table ready to print.
    """
    table = Table(show_header=True, header_style="bold", show_lines=False, expand=False)
    table.add_column("ID", style="cyan", width=4, justify="right")
    table.add_column("Name", min_width=30)
    table.add_column("Driver", style="dim", width=8)
    table.add_column("Ch", justify="right", style="dim", width=4)
    table.add_column("Rate", justify="right", style="dim", width=12)
    table.add_column("", width=9)

    for d in devices:
        default_mark = "[bold green]DEFAULT[/bold green]" if d.get("is_default") else ""
        table.add_row(
            str(d["id"]),
            d["name"],
            d.get("driver", "").upper(),
            str(d.get("channels", "")),
            f"{d.get('rate', '')} Hz",
            default_mark,
        )
    return table


def make_config_table(settings: Dict[str, Any]) -> Table:
    """Build a two-column key/value grid for the effective configuration."""
    grid = Table.grid(padding=(0, 1))
    grid.add_column(style="dim", justify="right")
    grid.add_column()
    for key, value in settings.items():
        grid.add_row(f"{key}:", "[dim]-[/dim]" if value is None else str(value))
    return grid


def render_meter(state: MonitorState, threshold: float, width: int = 50) -> Panel:
    """Render one monitor snapshot as a coloured level meter panel.

    The bar covers the 0–120 dB display scale and is coloured by
    :func:`~soundmeter.core.processing.level_band`.
    """
    reading = state.reading
    band = level_band(reading.decibel_level, threshold)
    style = LEVEL_STYLES[band] if state.running else "dim"

    meter = Text()
    meter.append("📈 ")
    meter.append(draw_db_bar(reading.decibel_level, width), style=style)
    meter.append(f" {reading.decibel_level:5.1f} dB", style="bold")

    scale = Text(f"   0 dB{' ' * (width - 10)}120 dB", style="dim")
    lines = [meter, scale]

    if reading.threshold_exceeded:
        lines.append(Text("⚠️  Noise level exceeds safe threshold!", style="bold white on red"))

    status = Text(f"Threshold: {threshold:g} dB", style="dim")
    if state.diagnostic:
        status.append(f"  |  {state.diagnostic}")
    if state.error_count:
        status.append(f"  |  errors: {state.error_count}", style="yellow")
    lines.append(status)

    return Panel(
        Group(*lines),
        title="[bold]🔊 Sound Level Meter[/bold]",
        subtitle="[dim]Ctrl+C to stop[/dim]",
        border_style="red" if reading.threshold_exceeded else "green",
    )


@contextmanager
def suppress_stderr():
    """Context manager to suppress stderr output from libraries like ALSA, JACK.

    Used to hide debug/warning messages from audio subsystems that pollute
    terminal output.
    """
    original_stderr_fd = os.dup(2)
    null_fd = os.open(os.devnull, os.O_WRONLY)
    try:
        os.dup2(null_fd, 2)
        yield
    finally:
        os.dup2(original_stderr_fd, 2)
        os.close(original_stderr_fd)
        os.close(null_fd)


__all__ = [
    "console", "suppress_stderr", "make_device_table", "make_config_table", "render_meter",
]
