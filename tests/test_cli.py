"""CLI integration tests for SoundMeter."""

import pytest
from loguru import logger
from typer.testing import CliRunner

from soundmeter.cli import app
from soundmeter.cli import commands
from soundmeter.cli.utils import console
from soundmeter.core import DeviceError

runner = CliRunner()


@pytest.fixture(autouse=True)
def clean_cwd(tmp_path, monkeypatch):
    """Run every command in an empty directory so no workspace config is read."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(console, "width", 160)
    yield tmp_path
    # commands point loguru at the runner's stderr, which is closed afterwards
    logger.remove()


def test_help_command():
    """Test help command."""
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "monitor" in result.stdout


def test_monitor_help_shows_source_options():
    """The monitor command exposes the source switch and permission flag."""
    result = runner.invoke(app, ["monitor", "--help"])
    assert result.exit_code == 0
    assert "--simulate" in result.stdout
    assert "--yes" in result.stdout


def test_monitor_simulation_runs_for_duration():
    """A short simulated session renders the meter and stops cleanly."""
    result = runner.invoke(app, ["monitor", "--simulate", "--yes", "--duration", "0.3"])
    assert result.exit_code == 0, result.stdout
    assert "simulation" in result.stdout
    assert "Sound Level Meter" in result.stdout
    assert "Monitoring stopped" in result.stdout


def test_monitor_permission_denied():
    """Declining the permission prompt aborts before sampling."""
    result = runner.invoke(app, ["monitor", "--simulate", "--duration", "0.1"], input="n\n")
    assert result.exit_code == 1
    assert "permission" in result.stdout.lower()


def test_monitor_microphone_open_failure(fake_pyaudio, tmp_path):
    """Device failures at start are reported with a non-zero exit code."""
    fake_pyaudio.open_error = OSError("Device unavailable")
    result = runner.invoke(
        app,
        ["monitor", "--microphone", "--yes", "--duration", "0.1", "--scratch-dir", str(tmp_path / "scratch")],
    )
    assert result.exit_code == 1
    assert "Could not start monitoring" in result.stdout
    assert list((tmp_path / "scratch").iterdir()) == []


def test_monitor_microphone_session(fake_pyaudio, tmp_path):
    """A microphone session cleans its scratch file up on exit."""
    scratch = tmp_path / "scratch"
    result = runner.invoke(
        app,
        ["monitor", "--microphone", "--yes", "--duration", "0.2", "--scratch-dir", str(scratch)],
    )
    assert result.exit_code == 0, result.stdout
    assert "microphone" in result.stdout
    assert list(scratch.iterdir()) == []


def test_monitor_continuous_session_ends_on_device_loss(fake_pyaudio, tmp_path, monkeypatch):
    """Without --duration the session runs until the device goes away."""
    open_stream = fake_pyaudio.open

    def _open_stalled(self, **kwargs):
        stream = open_stream(self, **kwargs)
        stream.start_stream = lambda: None
        return stream

    monkeypatch.setattr(fake_pyaudio, "open", _open_stalled)
    result = runner.invoke(
        app, ["monitor", "--microphone", "--yes", "--scratch-dir", str(tmp_path / "scratch")]
    )
    assert result.exit_code == 1
    assert "continuous (Ctrl+C to stop)" in result.stdout
    assert "Device error" in result.stdout


def test_monitor_uses_yaml_source(clean_cwd):
    """The source falls back to the YAML configuration."""
    (clean_cwd / ".soundmeter.yml").write_text(
        "monitor:\n  source: simulation\n  threshold: 90\n", encoding="utf-8"
    )
    result = runner.invoke(app, ["monitor", "--yes", "--duration", "0.2"])
    assert result.exit_code == 0, result.stdout
    assert "simulation" in result.stdout
    assert "90 dB" in result.stdout


def test_list_devices_command(fake_pyaudio):
    """Test list-devices command."""
    result = runner.invoke(app, ["list-devices"])
    assert result.exit_code == 0
    assert "USB PnP Sound Device" in result.stdout
    assert "HDMI output" not in result.stdout


def test_list_devices_without_audio_backend(monkeypatch):
    """A missing audio backend is an error for list-devices."""
    def _unavailable(**kwargs):
        raise DeviceError("PyAudio is not available")

    monkeypatch.setattr(commands, "list_input_devices", _unavailable)
    result = runner.invoke(app, ["list-devices"])
    assert result.exit_code == 1
    assert "PyAudio is not available" in result.stdout


def test_status_command(fake_pyaudio):
    """Status shows the configuration and the devices."""
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert "Configuration" in result.stdout
    assert "microphone" in result.stdout
    assert "75 dB" in result.stdout
    assert "USB PnP Sound Device" in result.stdout


def test_status_without_audio_backend(monkeypatch):
    """Status still succeeds when devices cannot be listed."""
    def _unavailable(**kwargs):
        raise DeviceError("PyAudio is not available")

    monkeypatch.setattr(commands, "list_input_devices", _unavailable)
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert "Audio devices unavailable" in result.stdout
