"""Shared test fixtures for SoundMeter tests."""

import time
import types

import numpy as np
import pytest

from soundmeter.core import sources


class FakeStream:
    """Stands in for a PyAudio input stream driven by ``feed()``."""

    def __init__(self, callback):
        self.callback = callback
        self.active = False
        self.closed = False

    def start_stream(self):
        self.active = True

    def is_active(self):
        return self.active

    def stop_stream(self):
        self.active = False

    def close(self):
        self.closed = True

    def feed(self, samples):
        data = np.array(samples, dtype=np.int16).tobytes()
        return self.callback(data, len(samples), {}, 0)


class FakePyAudio:
    """Minimal ``pyaudio.PyAudio`` replacement."""

    devices = [
        {"index": 0, "name": "HDA Intel PCH: ALC hw:0,0", "maxInputChannels": 2, "defaultSampleRate": 44100.0},
        {"index": 1, "name": "HDMI output", "maxInputChannels": 0, "defaultSampleRate": 48000.0},
        {"index": 2, "name": "USB PnP Sound Device", "maxInputChannels": 1, "defaultSampleRate": 16000.0},
    ]
    default_index = 0
    open_error = None
    instances = []

    def __init__(self):
        self.streams = []
        self.terminated = False
        type(self).instances.append(self)

    def get_device_count(self):
        return len(self.devices)

    def get_device_info_by_index(self, index):
        for device in self.devices:
            if device["index"] == index:
                return device
        raise ValueError(f"Invalid device index {index}")

    def get_default_input_device_info(self):
        if self.default_index is None:
            raise OSError("No Default Input Device Available")
        return self.get_device_info_by_index(self.default_index)

    def open(self, **kwargs):
        if self.open_error is not None:
            raise self.open_error
        stream = FakeStream(kwargs["stream_callback"])
        self.streams.append(stream)
        return stream

    def terminate(self):
        self.terminated = True


@pytest.fixture
def fake_pyaudio(monkeypatch):
    """Replace PyAudio inside the sources module with :class:`FakePyAudio`."""

    class _PyAudio(FakePyAudio):
        instances = []

    module = types.SimpleNamespace(PyAudio=_PyAudio, paInt16=8, paContinue=0)
    monkeypatch.setattr(sources, "_load_pyaudio", lambda: module)
    return _PyAudio


@pytest.fixture
def scratch_dir(tmp_path):
    """Provide a temporary scratch directory for capture files."""
    path = tmp_path / "scratch"
    path.mkdir(parents=True, exist_ok=True)
    return path


@pytest.fixture
def wait_until():
    """Poll a predicate until it holds or a timeout expires."""

    def _wait(predicate, timeout=3.0, interval=0.005):
        deadline = time.time() + timeout
        while time.time() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()

    return _wait
