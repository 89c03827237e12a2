"""SyncPlayer TCP command client.

This module implements the client side of the SyncPlayer command stream:
it connects to the server, reads line-delimited JSON records from the
socket and hands parsed commands to a listener.
"""

import asyncio
import logging
from typing import Optional

from .config import SyncPlayerConfig
from .protocol import (
    Command,
    FrameDecoder,
    FrameOverflowError,
    ParseError,
    UnknownCommand,
    parse_command,
)

_LOGGER = logging.getLogger(__name__)


class ConnectionState:
    """Connection state constants."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SyncCommandListener:
    """Receives commands and connection events from a SyncClient.

    All methods are called on the client's event loop thread and must
    not block.
    """

    def on_command_received(self, command: Command) -> None:
        pass

    def on_connection_lost(self, reason: str) -> None:
        pass

    def on_raw_message(self, text: str) -> None:
        pass


class SyncClient:
    """TCP client for the SyncPlayer command stream.

    Handles:
    - Connecting with a bounded timeout
    - A background read loop that reassembles fragmented records
    - Parsing records into commands; malformed records are discarded
    - Reporting a lost connection exactly once

    The client never reconnects on its own.
    """

    def __init__(
        self,
        config: SyncPlayerConfig,
        listener: SyncCommandListener,
    ) -> None:
        """Initialize the client.

        Args:
            config: Server address, timeouts and buffer limits
            listener: Receiver of commands and connection events
        """
        self._config = config
        self._listener = listener

        # Connection state
        self._state = ConnectionState.DISCONNECTED
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._decoder = FrameDecoder(max_buffer_bytes=config.max_record_bytes)

        # Tasks
        self._read_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> str:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Whether the client is connected and the socket is open."""
        return (
            self._state == ConnectionState.CONNECTED
            and self._writer is not None
            and not self._writer.is_closing()
        )

    async def connect(self, host: Optional[str] = None, port: Optional[int] = None) -> bool:
        """Connect to the server and start the read loop.

        Args:
            host: Server host (defaults to the configured host)
            port: Server port (defaults to the configured port)

        Returns:
            True if the connection was established
        """
        host = host or self._config.server_host
        port = port if port is not None else self._config.server_port

        if self._state != ConnectionState.DISCONNECTED:
            _LOGGER.warning("connect() called while %s", self._state)
            return self.is_connected

        self._set_state(ConnectionState.CONNECTING)
        self._emit_raw(f"Connecting to {host}:{port}...")

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=self._config.connect_timeout,
            )
        except asyncio.TimeoutError:
            return self._connect_failed(
                f"timed out after {self._config.connect_timeout:.1f}s"
            )
        except Exception as e:
            return self._connect_failed(str(e) or type(e).__name__)

        if self._state != ConnectionState.CONNECTING:
            # disconnect() was called while the connection was in flight
            writer.close()
            return False

        self._reader = reader
        self._writer = writer
        self._decoder.reset()
        self._set_state(ConnectionState.CONNECTED)
        self._emit_raw("Connection established")

        self._read_task = asyncio.create_task(self._read_loop(), name="SyncClientReader")
        return True

    async def disconnect(self) -> None:
        """Disconnect from the server. Safe to call at any time."""
        self._set_state(ConnectionState.DISCONNECTED)

        task = self._read_task
        self._read_task = None
        if task and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        writer = self._close_transport()
        if writer is not None:
            try:
                await writer.wait_closed()
            except (OSError, ConnectionError):
                pass

    def _connect_failed(self, reason: str) -> bool:
        _LOGGER.warning("Connection failed: %s", reason)
        self._emit_raw(f"Connection failed: {reason}")
        self._set_state(ConnectionState.DISCONNECTED)
        return False

    async def _read_loop(self) -> None:
        """Read records until the stream ends, fails, or disconnect() is called."""
        reader = self._reader
        assert reader is not None
        self._emit_raw("Socket listening started")

        reason: Optional[str] = None
        try:
            while True:
                data = await reader.read(self._config.read_chunk_size)
                if not data:
                    reason = "Connection closed by server"
                    break

                self._emit_raw(
                    "Received raw: " + data.decode("utf-8", errors="replace").replace("\n", "\\n")
                )
                for record in self._decoder.feed(data):
                    self._handle_record(record)

        except asyncio.CancelledError:
            raise
        except FrameOverflowError as e:
            reason = f"Protocol error: {e}"
        except (OSError, ConnectionError) as e:
            reason = f"Read error: {str(e) or type(e).__name__}"
        except Exception as e:
            _LOGGER.exception("Unexpected error in read loop")
            reason = f"Listening loop failed: {e}"
        finally:
            lost = self._state == ConnectionState.CONNECTED
            self._set_state(ConnectionState.DISCONNECTED)
            self._close_transport()
            self._emit_raw("Listening loop ended")
            if lost and reason is not None:
                self._emit_connection_lost(reason)

    def _handle_record(self, record: str) -> None:
        """Parse one complete record and dispatch it."""
        self._emit_raw(f"Processing JSON: {record}")

        try:
            command = parse_command(record)
        except ParseError as e:
            _LOGGER.warning("Discarding malformed record: %s", e)
            self._emit_raw(f"JSON parse error: {e.reason}")
            return

        if isinstance(command, UnknownCommand):
            _LOGGER.info("Unknown command ignored: %s", command.kind or "<none>")
            self._emit_raw(f"Unknown command ignored: {command.kind}")
            return

        _LOGGER.debug("Command received: %s", command)
        try:
            self._listener.on_command_received(command)
        except Exception as e:
            _LOGGER.warning("Command callback error: %s", e)

    def _close_transport(self) -> Optional[asyncio.StreamWriter]:
        """Close the socket and drop per-connection state."""
        writer = self._writer
        self._reader = None
        self._writer = None
        self._decoder.reset()
        if writer is not None:
            writer.close()
        return writer

    def _set_state(self, state: str) -> None:
        """Update connection state."""
        if state != self._state:
            self._state = state
            _LOGGER.info("SyncPlayer connection: %s", state)

    def _emit_raw(self, text: str) -> None:
        try:
            self._listener.on_raw_message(text)
        except Exception as e:
            _LOGGER.warning("Raw message callback error: %s", e)

    def _emit_connection_lost(self, reason: str) -> None:
        _LOGGER.warning("Connection lost: %s", reason)
        try:
            self._listener.on_connection_lost(reason)
        except Exception as e:
            _LOGGER.warning("Connection lost callback error: %s", e)
