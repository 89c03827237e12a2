"""SyncPlayer application: wires the command client to the scheduler.

SyncPlayerApp is the composition root. It owns the SyncClient, the
PlaybackScheduler and the audio engine, forwards PLAY/STOP commands from
one to the other, logs every notification, and decides whether to
reconnect after the connection is lost.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from .audio_player import create_engine
from .client import SyncClient, SyncCommandListener
from .config import SyncPlayerConfig
from .engine import MediaEngine
from .protocol import Command, PlayCommand, StopCommand
from .resolver import MediaResolver
from .scheduler import PlaybackScheduler, PlayerListener

_LOGGER = logging.getLogger(__name__)


class SyncPlayerApp(SyncCommandListener, PlayerListener):
    """Runs one SyncPlayer client until shutdown."""

    def __init__(
        self,
        config: SyncPlayerConfig,
        engine: Optional[MediaEngine] = None,
        resolver: Optional[MediaResolver] = None,
    ) -> None:
        """Initialize the application.

        Args:
            config: Player configuration
            engine: Audio engine (created from the config when omitted)
            resolver: File resolver (rooted at config.media_root when omitted)
        """
        self._config = config
        self._engine = engine
        self._resolver = resolver or MediaResolver(config.media_root)
        self._client = SyncClient(config, self)
        self._scheduler: Optional[PlaybackScheduler] = None

        self._wake: Optional[asyncio.Event] = None
        self._shutdown_requested = False
        self._connection_lost = False
        self._last_error: Optional[str] = None

    @property
    def client(self) -> SyncClient:
        return self._client

    @property
    def scheduler(self) -> Optional[PlaybackScheduler]:
        return self._scheduler

    def get_status(self) -> Dict[str, Any]:
        """Get a snapshot of connection and playback state."""
        scheduler = self._scheduler
        return {
            "connection": self._client.state,
            "playback": scheduler.state if scheduler else None,
            "current_track": scheduler.current_track if scheduler else None,
            "calibration_ms": self._config.calibration_ms,
            "last_error": self._last_error,
        }

    async def run(self) -> bool:
        """Connect and process commands until shutdown() is called.

        Returns:
            True if stopped by shutdown(), False if the connection failed or
            was lost and reconnecting is disabled
        """
        self._wake = asyncio.Event()
        self._start_scheduler()

        try:
            while not self._shutdown_requested:
                self._connection_lost = False
                self._wake.clear()

                if await self._client.connect():
                    _LOGGER.info(
                        "Waiting for commands from %s:%d",
                        self._config.server_host,
                        self._config.server_port,
                    )
                    while not (self._connection_lost or self._shutdown_requested):
                        await self._wake.wait()
                        self._wake.clear()

                if self._shutdown_requested:
                    break
                if self._config.reconnect_delay <= 0:
                    return False

                _LOGGER.info(
                    "Reconnecting in %.1f seconds...",
                    self._config.reconnect_delay,
                )
                try:
                    await asyncio.wait_for(
                        self._wake.wait(),
                        timeout=self._config.reconnect_delay,
                    )
                except asyncio.TimeoutError:
                    pass
        finally:
            await self._client.disconnect()
            if self._scheduler:
                self._scheduler.release()
                self._scheduler = None

        return True

    def shutdown(self) -> None:
        """Ask run() to disconnect and return."""
        _LOGGER.info("Shutdown requested")
        self._shutdown_requested = True
        if self._wake:
            self._wake.set()

    def _start_scheduler(self) -> None:
        engine = self._engine or create_engine(self._config)
        self._scheduler = PlaybackScheduler(
            self._config,
            engine,
            self._resolver,
            self,
            loop=asyncio.get_running_loop(),
        )
        _LOGGER.info(
            "Player ready: media root %s, calibration %d ms",
            self._config.media_root,
            self._config.calibration_ms,
        )

    # -------------------------------------------------------------------------
    # SyncCommandListener
    # -------------------------------------------------------------------------

    def on_command_received(self, command: Command) -> None:
        _LOGGER.info("Received command: %s", command)
        if self._scheduler is None:
            _LOGGER.warning("No player, ignoring %s", command)
            return

        if isinstance(command, PlayCommand):
            self._scheduler.on_play(command)
        elif isinstance(command, StopCommand):
            self._scheduler.on_stop()
        else:
            _LOGGER.debug("Unknown command ignored: %s", command)

    def on_connection_lost(self, reason: str) -> None:
        _LOGGER.warning("Connection lost: %s", reason)
        self._last_error = reason
        self._connection_lost = True
        if self._wake:
            self._wake.set()

    def on_raw_message(self, text: str) -> None:
        _LOGGER.debug("[raw] %s", text)

    # -------------------------------------------------------------------------
    # PlayerListener
    # -------------------------------------------------------------------------

    def on_preparing_to_play(self, filename: str, delay_ms: int) -> None:
        _LOGGER.info("Preparing to play: %s in %dms", filename, delay_ms)

    def on_playback_started(self, filename: str) -> None:
        _LOGGER.info("Playback started: %s", filename)

    def on_playback_stopped(self) -> None:
        _LOGGER.info("Playback stopped")

    def on_playback_ended(self) -> None:
        _LOGGER.info("Playback ended")

    def on_playback_error(self, message: str) -> None:
        _LOGGER.error("%s", message)
        self._last_error = message

    def on_debug_info(self, message: str) -> None:
        _LOGGER.debug("[player] %s", message)

    def on_engine_ready(self) -> None:
        _LOGGER.debug("Engine ready, waiting for calibrated start")
