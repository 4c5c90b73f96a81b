"""Sound level monitor for SoundMeter.

:class:`SoundLevelMonitor` owns an :class:`~soundmeter.core.sources.AmplitudeSource`
and a background sampling thread.  Every tick it turns the source's value
into a :class:`Reading` and publishes a new immutable :class:`MonitorState`
snapshot.  Observers either poll :attr:`SoundLevelMonitor.state` or register
a callback with :meth:`SoundLevelMonitor.subscribe`; nothing outside the
monitor mutates its state.

Lifecycle
---------
::

    IDLE --start()--> STARTING --open ok--> RUNNING --stop()--> STOPPING --> IDLE
                         |                     |
                         +-- permission/open --+-- fatal DeviceError --> IDLE
                             failure

Only :meth:`SoundLevelMonitor.start` raises.  Per-tick failures are logged,
counted and reported via ``diagnostic``; cleanup failures are logged and the
monitor is forced back to ``IDLE`` so it can always be restarted.

Usage::

    monitor = SoundLevelMonitor(SyntheticSource())
    monitor.check_permission(True)
    with monitor:
        monitor.start()
        time.sleep(1)
        print(monitor.reading.decibel_level)
"""

import atexit
import dataclasses
import enum
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from loguru import logger

from .config import SAMPLE_INTERVAL, THRESHOLD_DB
from .errors import DeviceError, MicrophonePermissionError, ReleaseError, SampleReadError
from .processing import is_threshold_exceeded
from .sources import AmplitudeSource, SourceHandle


class Phase(enum.Enum):
    """Lifecycle phase of a monitor."""

    IDLE = 'idle'
    STARTING = 'starting'
    RUNNING = 'running'
    STOPPING = 'stopping'


@dataclass(frozen=True)
class Reading:
    """One published level.  ``tick`` counts from 1 within a session."""

    decibel_level: float = 0.0
    threshold_exceeded: bool = False
    tick: int = 0


IDLE_READING = Reading()


@dataclass(frozen=True)
class MonitorState:
    """Snapshot of everything a presentation layer may observe."""

    phase: Phase = Phase.IDLE
    permission_granted: bool = False
    reading: Reading = IDLE_READING
    diagnostic: str = ''
    error_count: int = 0

    @property
    def running(self) -> bool:
        return self.phase is Phase.RUNNING


Subscriber = Callable[[MonitorState], None]


class SoundLevelMonitor:
    """Periodically samples an amplitude source and publishes readings."""

    def __init__(
        self,
        source: AmplitudeSource,
        threshold: float = THRESHOLD_DB,
        interval: float = SAMPLE_INTERVAL,
    ) -> None:
        """Initialize the monitor.

        Args:
            source: Amplitude source sampled while running
            threshold: Alert boundary on the display scale
            interval: Delay between two ticks in seconds
        """
        self._source = source
        self._threshold = threshold
        self._interval = interval

        self._state = MonitorState()
        self._subscribers: List[Subscriber] = []

        self._lifecycle_lock = threading.RLock()
        self._publish_lock = threading.RLock()
        self._handle_lock = threading.Lock()

        self._handle: Optional[SourceHandle] = None
        self._thread: Optional[threading.Thread] = None
        self._sampler: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._stop_from_sampler = False

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def source(self) -> AmplitudeSource:
        return self._source

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def reading(self) -> Reading:
        return self._state.reading

    @property
    def running(self) -> bool:
        return self._state.running

    @property
    def diagnostic(self) -> str:
        return self._state.diagnostic

    @property
    def error_count(self) -> int:
        return self._state.error_count

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register *callback* for every published state.

        Callbacks run on whichever thread published the state (usually the
        sampling thread) and receive snapshots in publication order.

        Returns:
            A function that removes the subscription.
        """
        with self._publish_lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._publish_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def _publish(self, **changes) -> MonitorState:
        """Replace the whole snapshot and notify subscribers."""
        with self._publish_lock:
            self._state = dataclasses.replace(self._state, **changes)
            state = self._state
            for callback in list(self._subscribers):
                try:
                    callback(state)
                except Exception as e:
                    logger.warning(f"Subscriber {callback!r} failed: {e}")
            return state

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def check_permission(self, granted: bool) -> None:
        """Record whether microphone access has been granted.

        Revoking permission while running stops the monitor.
        """
        self._publish(permission_granted=bool(granted))
        if not granted and self._state.running:
            logger.warning("Microphone permission revoked, stopping")
            self.stop()

    def start(self) -> None:
        """Open the source and launch the sampling thread.

        Does nothing when already running.

        Raises:
            MicrophonePermissionError: If permission was not granted or the
                source's runtime check failed.
            DeviceError: If the runtime check errored or the source could
                not be opened.
        """
        with self._lifecycle_lock:
            if self._state.phase is Phase.RUNNING and not self._stop_event.is_set():
                return

            if not self._state.permission_granted:
                self._publish(diagnostic='No permission')
                logger.error("Cannot start: microphone permission not granted")
                raise MicrophonePermissionError("Microphone permission not granted")

            if threading.current_thread() is self._sampler:
                # restarted from a subscriber: the current loop exits on its own
                self._stop_from_sampler = False
                self._release()

            self._reap_thread()
            self._publish(phase=Phase.STARTING, diagnostic='Starting')

            try:
                permitted = self._source.check_permission()
            except Exception as error:
                self._publish(phase=Phase.IDLE, diagnostic=f'Start error: {error}')
                logger.error(f"Error checking {self._source.name} source: {error}")
                if isinstance(error, DeviceError):
                    raise
                raise DeviceError(str(error)) from error
            if not permitted:
                self._publish(phase=Phase.IDLE, diagnostic='Permission not granted')
                logger.error("Cannot start: runtime permission check failed")
                raise MicrophonePermissionError("Microphone access denied by the system")

            try:
                handle = self._source.open()
            except Exception as error:
                self._publish(phase=Phase.IDLE, diagnostic=f'Start error: {error}')
                logger.error(f"Error starting {self._source.name} source: {error}")
                if isinstance(error, DeviceError):
                    raise
                raise DeviceError(str(error)) from error

            with self._handle_lock:
                self._handle = handle
            self._stop_event = threading.Event()
            self._stop_from_sampler = False
            self._thread = threading.Thread(
                target=self._run,
                args=(handle, self._stop_event),
                name=f'soundmeter-{self._source.name}',
                daemon=True,
            )
            self._sampler = self._thread
            self._publish(
                phase=Phase.RUNNING,
                reading=IDLE_READING,
                error_count=0,
                diagnostic=f'{self._source.name.capitalize()} started',
            )
            try:
                self._thread.start()
            except RuntimeError as error:
                self._thread = None
                self._release()
                self._publish(phase=Phase.IDLE, diagnostic=f'Start error: {error}')
                raise DeviceError(f"Could not start sampling thread: {error}") from error
            atexit.register(self.stop)
            logger.info(f"Sound level monitor started ({self._source.name})")

    def stop(self) -> None:
        """Stop sampling, release the source and reset the reading.

        Safe to call in any phase.  When it returns, no further reading will
        be published for the stopped session.  If called from the sampling
        thread itself (e.g. from a subscriber), stop is requested and the
        thread releases everything before its next tick.
        """
        if threading.current_thread() is self._sampler:
            self._stop_from_sampler = True
            self._stop_event.set()
            return

        with self._lifecycle_lock:
            if self._state.phase is Phase.RUNNING:
                self._publish(phase=Phase.STOPPING)
            self._stop_event.set()
            self._reap_thread()
            if self._release():
                self._publish(phase=Phase.IDLE, reading=IDLE_READING, diagnostic='Stopped')
            else:
                self._publish(phase=Phase.IDLE, reading=IDLE_READING)
            atexit.unregister(self.stop)
            logger.info("Sound level monitor stopped")

    def close(self) -> None:
        """Tear the monitor down; equivalent to :meth:`stop`."""
        self.stop()

    def __enter__(self) -> "SoundLevelMonitor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _reap_thread(self) -> None:
        """Join the sampling thread, if one exists."""
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def _take_handle(self) -> Optional[SourceHandle]:
        """Hand the open source handle to exactly one caller."""
        with self._handle_lock:
            handle, self._handle = self._handle, None
        return handle

    def _release(self) -> bool:
        """Close the source handle, logging instead of raising on failure.

        Returns:
            ``False`` if releasing failed, ``True`` otherwise.
        """
        handle = self._take_handle()
        if handle is None:
            return True
        try:
            self._source.close(handle)
        except ReleaseError as e:
            self._publish(diagnostic=f'Release error: {e}')
            logger.error(f"Error releasing {self._source.name} source: {e}")
        except Exception as e:
            self._publish(diagnostic=f'Release error: {e}')
            logger.exception(f"Unexpected error releasing {self._source.name} source: {e}")
        else:
            return True
        return False

    def _run(self, handle: SourceHandle, stop_event: threading.Event) -> None:
        """Sampling loop; the only writer of readings while running."""
        tick = 0
        while not stop_event.is_set():
            try:
                db_level = self._source.decibels(handle)
            except DeviceError as error:
                logger.error(f"Device failure while sampling: {error}")
                self._release()
                self._publish(phase=Phase.IDLE, reading=IDLE_READING,
                              diagnostic=f'Device error: {error}')
                self._finish_from_sampler()
                return
            except SampleReadError as error:
                logger.warning(f"Read error on tick {tick + 1}: {error}")
                self._publish(diagnostic=f'Read error: {error}',
                              error_count=self._state.error_count + 1)
            except Exception as error:
                logger.exception(f"Unexpected error on tick {tick + 1}: {error}")
                self._publish(diagnostic=f'Read error: {error}',
                              error_count=self._state.error_count + 1)
            else:
                tick += 1
                if not stop_event.is_set():
                    self._publish(
                        reading=Reading(
                            decibel_level=db_level,
                            threshold_exceeded=is_threshold_exceeded(db_level, self._threshold),
                            tick=tick,
                        ),
                        diagnostic=f'Read #{tick} - {db_level:.1f} dB',
                    )
                    logger.debug(f"Tick {tick}: {db_level:.1f} dB")
            stop_event.wait(self._interval)

        # stop() was requested from this thread; nobody will join us
        if self._stop_from_sampler:
            self._release()
            self._publish(phase=Phase.IDLE, reading=IDLE_READING, diagnostic='Stopped')
            self._finish_from_sampler()
            logger.info("Sound level monitor stopped")

    def _finish_from_sampler(self) -> None:
        """Drop the references a session ended by its own thread still holds."""
        if self._thread is threading.current_thread():
            self._thread = None
            atexit.unregister(self.stop)
