"""Amplitude source tests for SoundMeter."""

import pytest

from soundmeter.core import (
    AppConfig,
    DeviceError,
    MicrophoneSource,
    SyntheticSource,
    create_source,
    list_input_devices,
)


# ---------------------------------------------------------------------------
# SyntheticSource
# ---------------------------------------------------------------------------

def test_synthetic_levels_stay_in_range():
    """10,000 simulated ticks stay within [30, 100]."""
    source = SyntheticSource()
    handle = source.open()
    levels = [source.decibels(handle) for _ in range(10000)]
    source.close(handle)

    assert min(levels) >= 30.0
    assert max(levels) <= 100.0


def test_synthetic_peak_probability():
    """Roughly 30% of ticks carry a loud peak."""
    source = SyntheticSource(seed=1234)
    handle = source.open()
    levels = [source.decibels(handle) for _ in range(10000)]

    # ambient (<45) + quiet extra (<10) never exceeds 55
    loud = sum(1 for level in levels if level > 55.0)
    assert 0.27 < loud / len(levels) < 0.33
    assert min(levels) >= 35.0


def test_synthetic_seed_is_reproducible():
    """The same seed gives the same sequence, and each open starts over."""
    source = SyntheticSource(seed=7)
    first = source.open()
    a = [source.decibels(first) for _ in range(5)]
    source.close(first)
    second = source.open()
    b = [source.decibels(second) for _ in range(5)]
    assert a == b
    assert first is not second


def test_synthetic_sample_on_amplitude_scale():
    """sample() maps the generated level back into [0, 32767]."""
    source = SyntheticSource(seed=3)
    handle = source.open()
    for _ in range(100):
        amplitude = source.sample(handle)
        assert isinstance(amplitude, int)
        assert 0 <= amplitude <= 32767


def test_synthetic_closed_handle_raises():
    """A closed simulation handle cannot be sampled."""
    source = SyntheticSource()
    handle = source.open()
    source.close(handle)
    source.close(handle)
    with pytest.raises(DeviceError):
        source.decibels(handle)


# ---------------------------------------------------------------------------
# MicrophoneSource
# ---------------------------------------------------------------------------

def test_microphone_open_sample_close(fake_pyaudio, scratch_dir):
    """Peak since last sample is reported, and close removes the scratch file."""
    source = MicrophoneSource(scratch_dir=scratch_dir, device_id=2)
    handle = source.open()

    assert handle.scratch_path.exists()
    assert handle.scratch_path.parent == scratch_dir
    assert handle.scratch_path.name.startswith("temp_audio_")

    stream = handle.stream
    assert stream.is_active()
    stream.feed([100, -2000, 300])
    stream.feed([50, 1000])
    assert source.sample(handle) == 2000
    assert source.sample(handle) == 0
    assert source.decibels(handle) == 30.0

    scratch_path = handle.scratch_path
    audio = handle.audio
    source.close(handle)

    assert not scratch_path.exists()
    assert stream.closed
    assert audio.terminated
    # closing twice is harmless
    source.close(handle)


def test_microphone_sample_on_closed_handle(fake_pyaudio, scratch_dir):
    """Sampling a closed handle is a device error."""
    source = MicrophoneSource(scratch_dir=scratch_dir)
    handle = source.open()
    source.close(handle)
    with pytest.raises(DeviceError):
        source.sample(handle)


def test_microphone_inactive_stream_is_device_error(fake_pyaudio, scratch_dir):
    """A stream that stopped on its own is reported as a device failure."""
    source = MicrophoneSource(scratch_dir=scratch_dir)
    handle = source.open()
    handle.stream.active = False
    with pytest.raises(DeviceError):
        source.sample(handle)
    source.close(handle)
    assert list(scratch_dir.iterdir()) == []


def test_microphone_open_failure_leaves_nothing(fake_pyaudio, scratch_dir):
    """A failed open raises DeviceError and releases partial resources."""
    fake_pyaudio.open_error = OSError("Invalid input device")
    source = MicrophoneSource(scratch_dir=scratch_dir)

    with pytest.raises(DeviceError, match="Invalid input device"):
        source.open()

    assert list(scratch_dir.iterdir()) == []
    assert all(audio.terminated for audio in fake_pyaudio.instances)


def test_microphone_check_permission(fake_pyaudio, scratch_dir):
    """Runtime check follows device visibility."""
    assert MicrophoneSource(scratch_dir=scratch_dir).check_permission() is True
    assert MicrophoneSource(scratch_dir=scratch_dir, device_id=2).check_permission() is True
    assert MicrophoneSource(scratch_dir=scratch_dir, device_id=1).check_permission() is False
    assert MicrophoneSource(scratch_dir=scratch_dir, device_id=9).check_permission() is False

    fake_pyaudio.default_index = None
    assert MicrophoneSource(scratch_dir=scratch_dir).check_permission() is False


def test_microphone_check_permission_audio_init_failure(fake_pyaudio, scratch_dir, monkeypatch):
    """PortAudio failing to initialise is a DeviceError, not a raw OSError."""
    def _broken_init(self):
        raise OSError("PortAudio init failed")

    monkeypatch.setattr(fake_pyaudio, "__init__", _broken_init)

    with pytest.raises(DeviceError, match="PortAudio init failed"):
        MicrophoneSource(scratch_dir=scratch_dir).check_permission()


def test_list_input_devices(fake_pyaudio):
    """Only input-capable devices are listed, with driver and default flags."""
    devices = list_input_devices()
    assert [d["id"] for d in devices] == [0, 2]
    assert devices[0]["driver"] == "alsa"
    assert devices[0]["is_default"] is True
    assert devices[1]["driver"] == "usb"
    assert devices[1]["rate"] == 16000

    usb_only = list_input_devices(driver_filter="USB")
    assert [d["id"] for d in usb_only] == [2]


def test_create_source(tmp_path, monkeypatch):
    """The configured source name selects the variant."""
    monkeypatch.chdir(tmp_path)
    config = AppConfig()
    config.set("scratch_dir", str(tmp_path / "scratch"))

    source = create_source(config)
    assert isinstance(source, MicrophoneSource)
    assert source.scratch_dir == tmp_path / "scratch"

    config.set("source", "simulation")
    assert isinstance(create_source(config), SyntheticSource)
