"""Audio engine interface used by the playback scheduler.

The scheduler never decodes or renders audio itself. It drives an engine
through this narrow interface and receives the engine's state changes,
errors and end-of-track through a MediaEngineListener. Engines may report
events from their own worker threads.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

_LOGGER = logging.getLogger(__name__)


class EngineState:
    """Engine playback state constants."""
    IDLE = "idle"
    BUFFERING = "buffering"
    READY = "ready"
    ENDED = "ended"


class MediaEngineError(Exception):
    """Raised when an engine cannot carry out a transport operation."""


class MediaEngineListener:
    """Receives engine events. Methods may be called from any thread."""

    def on_state_changed(self, state: str) -> None:
        pass

    def on_error(self, message: str) -> None:
        pass

    def on_playback_ended(self) -> None:
        pass


class MediaEngine(ABC):
    """Abstract audio engine."""

    def __init__(self) -> None:
        self._listener: Optional[MediaEngineListener] = None
        self._state: str = EngineState.IDLE
        self._volume: int = 100

    def set_listener(self, listener: Optional[MediaEngineListener]) -> None:
        """Register the receiver of engine events."""
        self._listener = listener

    @property
    def state(self) -> str:
        """Current engine state (an EngineState value)."""
        return self._state

    @property
    def volume(self) -> int:
        """Current volume level (0-100)."""
        return self._volume

    def set_volume(self, volume: int) -> None:
        """Set volume level.

        Args:
            volume: Volume 0-100 (perceived loudness)
        """
        self._volume = max(0, min(100, volume))
        _LOGGER.debug("Engine volume set to %d", self._volume)

    @property
    @abstractmethod
    def is_playing(self) -> bool:
        """Whether audio is currently being rendered."""

    @abstractmethod
    def load(self, path: Path) -> None:
        """Load a media file, replacing any loaded one.

        Raises:
            MediaEngineError: If the file cannot be opened
        """

    @abstractmethod
    def seek(self, position_ms: int) -> None:
        """Move the play position of the loaded media."""

    @abstractmethod
    def play(self) -> None:
        """Start or resume rendering the loaded media."""

    @abstractmethod
    def pause(self) -> None:
        """Hold rendering without discarding the loaded media."""

    @abstractmethod
    def stop(self) -> None:
        """Stop rendering. Must not report end-of-track."""

    @abstractmethod
    def clear_media(self) -> None:
        """Forget the loaded media."""

    def release(self) -> None:
        """Free all engine resources."""
        self.stop()
        self.clear_media()

    # -------------------------------------------------------------------------
    # Event helpers for subclasses
    # -------------------------------------------------------------------------

    def _set_state(self, state: str) -> None:
        """Update engine state and notify the listener."""
        if state == self._state:
            return
        self._state = state
        _LOGGER.debug("Engine state: %s", state)
        if self._listener:
            try:
                self._listener.on_state_changed(state)
            except Exception as e:
                _LOGGER.warning("Engine state callback error: %s", e)

    def _report_error(self, message: str) -> None:
        _LOGGER.error("Engine error: %s", message)
        if self._listener:
            try:
                self._listener.on_error(message)
            except Exception as e:
                _LOGGER.warning("Engine error callback error: %s", e)

    def _report_ended(self) -> None:
        self._set_state(EngineState.ENDED)
        if self._listener:
            try:
                self._listener.on_playback_ended()
            except Exception as e:
                _LOGGER.warning("Engine ended callback error: %s", e)
