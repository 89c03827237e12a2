"""Calibrated playback scheduling.

A PLAY command does not start audio immediately. The file is loaded and
held paused, and a one-shot timer starts it after the device's calibration
delay. At most one such pending start exists: a newer PLAY or any STOP
cancels it first.

The scheduler belongs to one asyncio event loop. Its public methods must be
called on that loop's thread, and engine events (which engines may raise on
their own worker threads) are re-posted onto the loop, so every change to
the pending start and the current track happens in one place.
"""

import asyncio
import logging
from typing import Optional

from .config import SyncPlayerConfig
from .engine import EngineState, MediaEngine, MediaEngineListener
from .protocol import PlayCommand
from .resolver import MediaResolver

_LOGGER = logging.getLogger(__name__)


class SchedulerState:
    """Scheduler state constants."""
    IDLE = "idle"
    SCHEDULED = "scheduled"
    PLAYING = "playing"


class PlayerListener:
    """Receives playback notifications from a PlaybackScheduler."""

    def on_preparing_to_play(self, filename: str, delay_ms: int) -> None:
        pass

    def on_playback_started(self, filename: str) -> None:
        pass

    def on_playback_stopped(self) -> None:
        pass

    def on_playback_ended(self) -> None:
        pass

    def on_playback_error(self, message: str) -> None:
        pass

    def on_debug_info(self, message: str) -> None:
        pass

    def on_engine_ready(self) -> None:
        pass


class PlaybackScheduler(MediaEngineListener):
    """Turns PLAY/STOP commands into calibrated engine calls."""

    def __init__(
        self,
        config: SyncPlayerConfig,
        engine: MediaEngine,
        resolver: MediaResolver,
        listener: PlayerListener,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            config: Provides the calibration delay
            engine: Audio engine to drive
            resolver: Maps command filenames to local files
            listener: Receiver of playback notifications
            loop: Owning event loop (defaults to the running loop)
        """
        self._calibration_ms = config.calibration_ms
        self._calibration_delay = config.calibration_delay
        self._engine = engine
        self._resolver = resolver
        self._listener = listener
        self._loop = loop if loop is not None else asyncio.get_running_loop()

        self._state = SchedulerState.IDLE
        self._current_track: Optional[str] = None
        self._pending_start: Optional[asyncio.TimerHandle] = None

        engine.set_listener(self)

    @property
    def state(self) -> str:
        """Current scheduler state."""
        return self._state

    @property
    def current_track(self) -> Optional[str]:
        """Filename the engine was last told to load, if still active."""
        return self._current_track

    @property
    def has_pending_start(self) -> bool:
        """Whether a calibrated start is armed."""
        return self._pending_start is not None

    @property
    def calibration_ms(self) -> int:
        return self._calibration_ms

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def on_play(self, command: PlayCommand) -> None:
        """Load a file and arm its calibrated start.

        A file that cannot be found is reported and leaves any scheduled or
        running playback untouched.
        """
        filename = command.filename
        self._debug(f"Processing play command: {command}")

        path = self._resolver.resolve(filename)
        if path is None:
            self._notify_error(f"File not found: {filename}")
            return
        self._debug(f"File found at: {path}")

        self._cancel_pending_start()
        try:
            self._engine.stop()
            self._engine.clear_media()
            self._engine.load(path)
            if command.start_position_ms > 0:
                self._debug(f"Seeking to position: {command.start_position_ms}ms")
                self._engine.seek(command.start_position_ms)
            # Hold until the calibrated moment
            self._engine.pause()
        except Exception as e:
            _LOGGER.exception("Failed to prepare %s", filename)
            self._current_track = None
            self._set_state(SchedulerState.IDLE)
            self._notify_error(f"Error processing play command: {e}")
            return

        self._current_track = filename
        self._set_state(SchedulerState.SCHEDULED)
        self._notify("on_preparing_to_play", filename, self._calibration_ms)

        self._pending_start = self._loop.call_later(
            self._calibration_delay,
            self._start_playback,
            filename,
        )

    def on_stop(self) -> None:
        """Cancel any pending start and stop the engine."""
        self._cancel_pending_start()
        try:
            self._engine.stop()
            self._engine.clear_media()
        except Exception as e:
            _LOGGER.warning("Engine failed to stop cleanly: %s", e)

        self._current_track = None
        self._set_state(SchedulerState.IDLE)
        self._notify("on_playback_stopped")

    def release(self) -> None:
        """Cancel pending work and free the engine."""
        self._cancel_pending_start()
        self._engine.set_listener(None)
        try:
            self._engine.release()
        except Exception as e:
            _LOGGER.warning("Engine release failed: %s", e)
        self._current_track = None
        self._set_state(SchedulerState.IDLE)

    def _start_playback(self, filename: str) -> None:
        """Timer callback: the calibration delay has elapsed."""
        self._pending_start = None
        try:
            self._engine.play()
        except Exception as e:
            _LOGGER.exception("Failed to start %s", filename)
            self._current_track = None
            self._set_state(SchedulerState.IDLE)
            self._notify_error(f"Playback error: {e}")
            return

        self._set_state(SchedulerState.PLAYING)
        _LOGGER.info("Playback started: %s", filename)
        self._notify("on_playback_started", filename)

    def _cancel_pending_start(self) -> None:
        if self._pending_start is not None:
            self._pending_start.cancel()
            self._pending_start = None
            self._debug("Cancelled pending start")

    # -------------------------------------------------------------------------
    # Engine events (any thread)
    # -------------------------------------------------------------------------

    def on_state_changed(self, state: str) -> None:
        self._post(self._handle_engine_state, state)

    def on_error(self, message: str) -> None:
        self._post(self._handle_engine_error, message)

    def on_playback_ended(self) -> None:
        self._post(self._handle_engine_ended)

    def _post(self, callback, *args) -> None:
        if self._loop.is_closed():
            _LOGGER.debug("Dropping engine event after loop shutdown")
            return
        try:
            self._loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            _LOGGER.debug("Dropping engine event after loop shutdown")

    def _handle_engine_state(self, state: str) -> None:
        self._debug(f"Player state changed to: {state.upper()}")
        if state == EngineState.READY:
            self._notify("on_engine_ready")

    def _handle_engine_ended(self) -> None:
        if self._state != SchedulerState.PLAYING:
            self._debug(f"Ignoring end-of-track while {self._state}")
            return
        _LOGGER.info("Playback ended: %s", self._current_track)
        self._current_track = None
        self._set_state(SchedulerState.IDLE)
        self._notify("on_playback_ended")

    def _handle_engine_error(self, message: str) -> None:
        self._cancel_pending_start()
        self._current_track = None
        self._set_state(SchedulerState.IDLE)
        self._notify_error(f"Playback error: {message}")

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    def _set_state(self, state: str) -> None:
        if state != self._state:
            _LOGGER.debug("Scheduler state: %s -> %s", self._state, state)
            self._state = state

    def _debug(self, message: str) -> None:
        _LOGGER.debug("%s", message)
        self._notify("on_debug_info", message)

    def _notify_error(self, message: str) -> None:
        _LOGGER.warning("%s", message)
        self._notify("on_playback_error", message)

    def _notify(self, method: str, *args) -> None:
        try:
            getattr(self._listener, method)(*args)
        except Exception as e:
            _LOGGER.warning("Player listener %s error: %s", method, e)
