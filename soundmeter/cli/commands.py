"""CLI commands for SoundMeter.

This module provides all command-line interface commands using Typer.
"""

import signal
import sys
import time
from typing import Optional

import typer
from loguru import logger
from rich.live import Live
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from soundmeter.core import (
    DeviceError,
    MicrophonePermissionError,
    SoundLevelMonitor,
    create_source,
    list_input_devices,
)
from soundmeter.core.config import (
    AppConfig, SAMPLE_INTERVAL, SOURCE_MICROPHONE, SOURCE_SIMULATION, THRESHOLD_DB,
)
from soundmeter.cli.utils import (
    console, suppress_stderr, make_config_table, make_device_table, render_meter,
)

app = typer.Typer(help="Real-time microphone sound level monitor")


def _configure_logging(verbose: bool) -> None:
    """Route loguru output to stderr at DEBUG (verbose) or WARNING level."""
    logger.remove()
    if verbose:
        logger.add(sys.stderr, level="DEBUG")
    else:
        logger.add(sys.stderr, level="WARNING")


@app.command()
def list_devices(
    driver: Optional[str] = typer.Option(
        None, help="Filter by driver type: pulse, alsa, jack, usb, default"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """List all available input audio devices."""
    _configure_logging(verbose)
    try:
        if verbose:
            devices = list_input_devices(driver_filter=driver)
        else:
            with suppress_stderr():
                devices = list_input_devices(driver_filter=driver)
    except (DeviceError, OSError) as e:
        console.print(f"[error]✗ Error listing devices: {e}[/error]")
        sys.exit(1)

    title = "Available Input Devices"
    if driver:
        title += f" (filtered by: {driver})"
    console.print(Panel(make_device_table(devices), title=f"[bold]{title}[/bold]"))


@app.command()
def monitor(
    duration: Optional[float] = typer.Option(
        None, help="Monitor duration in seconds. Leave empty for continuous monitoring."
    ),
    simulate: Optional[bool] = typer.Option(
        None,
        "--simulate/--microphone",
        help="Use simulated noise instead of the microphone. Defaults to the configured source.",
    ),
    device_id: Optional[int] = typer.Option(
        None, help="Audio device ID to use. Leave empty for the configured or system default device."
    ),
    threshold: Optional[float] = typer.Option(
        None, help=f"Alert threshold in dB on the display scale (default {THRESHOLD_DB:g})"
    ),
    scratch_dir: Optional[str] = typer.Option(
        None, help="Directory for the transient capture file (default: system temp dir)"
    ),
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Grant microphone access without prompting"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """Show a live sound level meter with a threshold alert.

    Press Ctrl+C to stop monitoring.
    """
    _configure_logging(verbose)

    config = AppConfig()
    if simulate is not None:
        config.set("source", SOURCE_SIMULATION if simulate else SOURCE_MICROPHONE)
    if device_id is not None:
        config.set("device_id", device_id)
    if scratch_dir is not None:
        config.set("scratch_dir", scratch_dir)
    if threshold is None:
        threshold = float(config.get("threshold", THRESHOLD_DB))
    interval = float(config.get("interval", SAMPLE_INTERVAL))

    try:
        source = create_source(config)
    except ValueError as e:
        console.print(f"[error]✗ {e}[/error]")
        sys.exit(1)

    granted = yes or Confirm.ask("🎙 Allow SoundMeter to access the microphone?", console=console, default=True)

    meter = SoundLevelMonitor(source, threshold=threshold, interval=interval)
    meter.check_permission(granted)

    try:
        if verbose:
            meter.start()
        else:
            with suppress_stderr():
                meter.start()
    except MicrophonePermissionError as e:
        console.print(f"[error]✗ {e}[/error]")
        sys.exit(1)
    except DeviceError as e:
        console.print(f"[error]✗ Could not start monitoring: {e}[/error]")
        sys.exit(1)

    def signal_handler(sig, frame):
        console.print("\n[warning]⏹ Received interrupt signal, stopping monitor...[/warning]")
        meter.close()
        sys.exit(0)

    previous_handlers = {
        signum: signal.signal(signum, signal_handler) for signum in (signal.SIGINT, signal.SIGTERM)
    }

    info_grid = Table.grid(padding=(0, 1))
    info_grid.add_column(style="dim", justify="right")
    info_grid.add_column()
    info_grid.add_row("Source:", source.name)
    if config.get_source() == SOURCE_MICROPHONE:
        device = config.get_device_id()
        info_grid.add_row("Device:", "system default" if device is None else str(device))
        info_grid.add_row("Scratch dir:", str(config.get_scratch_dir()))
    info_grid.add_row("Threshold:", f"{threshold:g} dB")
    info_grid.add_row("Interval:", f"{interval * 1000:.0f} ms")
    info_grid.add_row("Duration:", f"{duration:g}s" if duration is not None else "continuous (Ctrl+C to stop)")
    console.print(Panel(info_grid, title="[bold]🔊 Monitoring Session[/bold]", border_style="green"))

    start_time = time.time()
    try:
        with Live(render_meter(meter.state, threshold), console=console, refresh_per_second=10) as live:
            while meter.running:
                if duration is not None and time.time() - start_time >= duration:
                    break
                live.update(render_meter(meter.state, threshold))
                time.sleep(interval)
    except KeyboardInterrupt:
        console.print("[warning]⏹ Monitoring interrupted by user[/warning]")
    finally:
        failed = not meter.running
        diagnostic = meter.diagnostic
        meter.close()
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)

    if failed and diagnostic.startswith("Device error"):
        console.print(f"[error]✗ {diagnostic}[/error]")
        sys.exit(1)
    console.print("[success]✓ Monitoring stopped[/success]")


@app.command()
def status(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """Show the effective configuration and the available input devices."""
    _configure_logging(verbose)

    console.rule("[bold]📋 SoundMeter Status[/bold]")
    console.print()

    try:
        config = AppConfig()
        settings = {
            "source": config.get_source(),
            "threshold": f"{float(config.get('threshold')):g} dB",
            "interval": f"{float(config.get('interval')) * 1000:.0f} ms",
            "rate": f"{config.get('rate')} Hz",
            "device_id": config.get_device_id(),
            "scratch_dir": config.get_scratch_dir(),
        }
    except ValueError as e:
        console.print(f"[error]✗ Invalid configuration: {e}[/error]")
        sys.exit(1)
    console.print(Panel(make_config_table(settings), title="[bold]Configuration[/bold]"))

    try:
        if verbose:
            devices = list_input_devices()
        else:
            with suppress_stderr():
                devices = list_input_devices()
        console.print(Panel(make_device_table(devices), title="[bold]Available Input Devices[/bold]"))
    except (DeviceError, OSError) as e:
        console.print(f"[warning]Audio devices unavailable: {e}[/warning]")
