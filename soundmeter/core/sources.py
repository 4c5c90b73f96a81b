"""Amplitude sources for SoundMeter.

An amplitude source hands the monitor one value per sampling tick.  Two
variants exist and are picked explicitly through configuration:

:class:`MicrophoneSource`
    Opens a PyAudio input stream.  Audio is captured in a callback thread
    that tracks the peak amplitude seen since the previous :meth:`sample`
    call.  While open, the captured audio is also written to a transient
    scratch WAV file which is removed again on :meth:`close`.

:class:`SyntheticSource`
    Produces plausible ambient noise with occasional peaks for machines
    without a usable capture device.  Its values are already on the display
    scale, so they bypass the amplitude transform.

Every :meth:`AmplitudeSource.open` call returns a fresh
:class:`SourceHandle`; handles are never reused across a close/open cycle.
"""

import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

import numpy as np
import soundfile as sf
from loguru import logger

from .config import (
    AppConfig, CHANNEL, CHUNK, RATE, SCRATCH_PREFIX, SCRATCH_SUFFIX,
    SIMULATED_DB_MAX, SIMULATED_DB_MIN, SOURCE_SIMULATION,
)
from .errors import DeviceError, ReleaseError
from .processing import (
    amplitude_to_db, clamp, db_to_amplitude, detect_driver_type, peak_amplitude,
)

# Synthetic noise model (already on the display scale)
AMBIENT_DB_RANGE = (35.0, 45.0)
PEAK_DB_RANGE = (20.0, 40.0)
QUIET_DB_RANGE = (0.0, 10.0)
PEAK_PROBABILITY = 0.3


def _load_pyaudio():
    """Import PyAudio on demand so the simulator works without PortAudio."""
    try:
        import pyaudio
    except ImportError as error:
        raise DeviceError(f"PyAudio is not available: {error}") from error
    return pyaudio


@dataclass
class SourceHandle:
    """Resources held by one open/close session of an amplitude source."""

    source_name: str
    audio: Any = None
    stream: Any = None
    scratch_path: Optional[Path] = None
    writer: Optional[sf.SoundFile] = None
    rng: Optional[np.random.Generator] = None
    closed: bool = False
    peak: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class AmplitudeSource(ABC):
    """Capability contract for anything that yields amplitude samples."""

    name = 'source'

    @abstractmethod
    def open(self) -> SourceHandle:
        """Acquire the underlying device.

        Raises:
            DeviceError: If the device cannot be opened.  Nothing stays
                acquired in that case.
        """

    @abstractmethod
    def sample(self, handle: SourceHandle) -> int:
        """Return the current amplitude in ``[0, 32767]``."""

    @abstractmethod
    def close(self, handle: SourceHandle) -> None:
        """Release *handle*.  Safe to call on an already closed handle."""

    def decibels(self, handle: SourceHandle) -> float:
        """Return the display level for one tick."""
        return amplitude_to_db(self.sample(handle))

    def check_permission(self) -> bool:
        """Runtime check that capture is currently allowed."""
        return True


class MicrophoneSource(AmplitudeSource):
    """Peak amplitude from a PyAudio input device."""

    name = 'microphone'

    def __init__(
        self,
        scratch_dir: Optional[Path] = None,
        device_id: Optional[int] = None,
        rate: int = RATE,
        chunk: int = CHUNK,
    ) -> None:
        """Initialize the microphone source.

        Args:
            scratch_dir: Directory for the transient capture file.  Defaults
                to the system temporary directory.
            device_id: PyAudio input device index (``None`` = system default)
            rate: Sample rate in Hz
            chunk: Frames per PyAudio buffer
        """
        self._scratch_dir = Path(scratch_dir) if scratch_dir else Path(tempfile.gettempdir())
        self._device_id = device_id
        self._rate = rate
        self._chunk = chunk

    @property
    def scratch_dir(self) -> Path:
        return self._scratch_dir

    def check_permission(self) -> bool:
        """Return ``True`` when the selected input device is visible to us.

        The operating system hides capture devices (or reports them without
        input channels) when microphone access has been withdrawn.
        """
        pyaudio = _load_pyaudio()
        try:
            audio = pyaudio.PyAudio()
        except OSError as error:
            raise DeviceError(f"Audio system failed to initialise: {error}") from error
        try:
            if self._device_id is None:
                info = audio.get_default_input_device_info()
            else:
                info = audio.get_device_info_by_index(self._device_id)
            return int(info.get('maxInputChannels', 0)) > 0
        except (OSError, ValueError) as error:
            logger.warning(f"Input device check failed: {error}")
            return False
        finally:
            audio.terminate()

    def open(self) -> SourceHandle:
        pyaudio = _load_pyaudio()
        handle = SourceHandle(source_name=self.name)
        try:
            self._scratch_dir.mkdir(parents=True, exist_ok=True)
            fd, path = tempfile.mkstemp(
                prefix=SCRATCH_PREFIX, suffix=SCRATCH_SUFFIX, dir=str(self._scratch_dir)
            )
            # soundfile reopens the path itself
            os.close(fd)
            handle.scratch_path = Path(path)
            handle.writer = sf.SoundFile(
                path, mode='w', samplerate=self._rate, channels=CHANNEL, subtype='PCM_16'
            )

            handle.audio = pyaudio.PyAudio()
            handle.stream = handle.audio.open(
                format=pyaudio.paInt16,
                channels=CHANNEL,
                rate=self._rate,
                input=True,
                input_device_index=self._device_id,
                frames_per_buffer=self._chunk,
                stream_callback=self._make_callback(handle, pyaudio.paContinue),
            )
            handle.stream.start_stream()
        except Exception as error:
            logger.error(f"Failed to open input device {self._device_id}: {error}")
            try:
                self.close(handle)
            except ReleaseError as release_error:
                logger.warning(f"Cleanup after failed open: {release_error}")
            raise DeviceError(f"Could not open input device: {error}") from error

        logger.debug(f"Microphone opened (device: {self._device_id}, scratch: {handle.scratch_path})")
        return handle

    @staticmethod
    def _make_callback(handle: SourceHandle, continue_flag: int):
        """Build the PyAudio stream callback tracking the running peak."""

        def _callback(in_data, frame_count, time_info, status_flags):
            if status_flags:
                logger.debug(f"Input status flags: {status_flags}")
            peak = peak_amplitude(in_data)
            with handle.lock:
                handle.peak = max(handle.peak, peak)
                writer = handle.writer
                if writer is not None and not writer.closed:
                    try:
                        writer.write(np.frombuffer(in_data, dtype=np.int16))
                    except Exception as e:
                        logger.debug(f"Scratch write failed: {e}")
            return None, continue_flag

        return _callback

    def sample(self, handle: SourceHandle) -> int:
        """Return the peak amplitude since the previous call.

        Raises:
            DeviceError: If the handle is closed or the stream stopped.
        """
        if handle.closed or handle.stream is None:
            raise DeviceError("Input stream is closed")
        try:
            active = handle.stream.is_active()
        except OSError as error:
            raise DeviceError(f"Input stream failed: {error}") from error
        if not active:
            raise DeviceError("Input stream is no longer active")

        with handle.lock:
            peak, handle.peak = handle.peak, 0
        return peak

    def close(self, handle: SourceHandle) -> None:
        """Stop the stream, release PortAudio and delete the scratch file.

        Every step is attempted even when an earlier one fails.

        Raises:
            ReleaseError: If any step failed.
        """
        if handle.closed:
            return
        handle.closed = True
        failures: List[str] = []

        stream, handle.stream = handle.stream, None
        if stream is not None:
            try:
                stream.stop_stream()
                stream.close()
            except Exception as e:
                failures.append(f"stream: {e}")

        audio, handle.audio = handle.audio, None
        if audio is not None:
            try:
                audio.terminate()
            except Exception as e:
                failures.append(f"audio: {e}")

        with handle.lock:
            writer, handle.writer = handle.writer, None
        if writer is not None:
            try:
                writer.close()
            except Exception as e:
                failures.append(f"scratch writer: {e}")

        if handle.scratch_path is not None:
            try:
                handle.scratch_path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                failures.append(f"scratch file: {e}")

        if failures:
            raise ReleaseError("; ".join(failures))
        logger.debug("Microphone released")


class SyntheticSource(AmplitudeSource):
    """Randomized ambient noise with occasional loud peaks."""

    name = 'simulation'

    def __init__(self, seed: Optional[int] = None) -> None:
        """Initialize the simulator.

        Args:
            seed: Seed for the random generator.  ``None`` uses fresh OS
                entropy on every :meth:`open`.
        """
        self._seed = seed

    def open(self) -> SourceHandle:
        handle = SourceHandle(source_name=self.name, rng=np.random.default_rng(self._seed))
        logger.debug("Simulation source opened")
        return handle

    def decibels(self, handle: SourceHandle) -> float:
        """Generate one display level in ``[30, 100]``."""
        if handle.closed or handle.rng is None:
            raise DeviceError("Simulation source is closed")
        rng = handle.rng
        base_noise = rng.uniform(*AMBIENT_DB_RANGE)
        if rng.random() < PEAK_PROBABILITY:
            extra = rng.uniform(*PEAK_DB_RANGE)
        else:
            extra = rng.uniform(*QUIET_DB_RANGE)
        return clamp(float(base_noise + extra), SIMULATED_DB_MIN, SIMULATED_DB_MAX)

    def sample(self, handle: SourceHandle) -> int:
        return db_to_amplitude(self.decibels(handle))

    def close(self, handle: SourceHandle) -> None:
        handle.closed = True
        handle.rng = None


def create_source(config: AppConfig) -> AmplitudeSource:
    """Build the amplitude source selected by *config*."""
    if config.get_source() == SOURCE_SIMULATION:
        return SyntheticSource()
    return MicrophoneSource(
        scratch_dir=config.get_scratch_dir(),
        device_id=config.get_device_id(),
        rate=int(config.get('rate', RATE)),
        chunk=int(config.get('chunk', CHUNK)),
    )


def list_input_devices(driver_filter: Optional[str] = None, audio: Any = None) -> List[dict]:
    """List the available input devices.

    Args:
        driver_filter: Optional driver type to filter by ('pulse', 'alsa',
            'jack', 'usb', 'default')
        audio: Existing ``pyaudio.PyAudio`` instance to reuse.  A temporary
            one is created (and terminated) when omitted.

    Returns:
        List of dicts with keys: id, name, driver, channels, rate, is_default
    """
    owns_audio = audio is None
    if owns_audio:
        audio = _load_pyaudio().PyAudio()

    try:
        try:
            default_device_id = int(audio.get_default_input_device_info()['index'])
        except OSError:
            default_device_id = -1

        devices = []
        for i in range(audio.get_device_count()):
            device_info = audio.get_device_info_by_index(i)
            channels = int(device_info.get('maxInputChannels', 0))
            if channels <= 0:
                continue
            device_name = device_info.get('name', 'Unknown')
            driver_type = detect_driver_type(device_name)
            if driver_filter and driver_type != driver_filter.lower():
                continue
            devices.append({
                'id': i,
                'name': device_name,
                'driver': driver_type,
                'channels': channels,
                'rate': int(device_info.get('defaultSampleRate', 0)),
                'is_default': i == default_device_id,
            })
        return devices
    finally:
        if owns_audio:
            audio.terminate()
