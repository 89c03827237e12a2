"""Shared fixtures and fakes for the SyncPlayer tests."""

import asyncio
from pathlib import Path
from typing import Callable, List, Optional, Set

import pytest
import pytest_asyncio

from syncplayer.client import SyncCommandListener
from syncplayer.engine import EngineState, MediaEngine, MediaEngineError
from syncplayer.protocol import Command
from syncplayer.scheduler import PlayerListener

# -----------------------------------------------------------------------------
# Fakes
# -----------------------------------------------------------------------------


class FakeEngine(MediaEngine):
    """Engine that records transport calls instead of playing audio."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: List[tuple] = []
        self.loaded: Optional[Path] = None
        self.released = False
        self.fail_on: Set[str] = set()
        self._playing = False

    @property
    def is_playing(self) -> bool:
        return self._playing

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    def names(self) -> List[str]:
        return [call[0] for call in self.calls]

    def _record(self, name: str, *args) -> None:
        if name in self.fail_on:
            raise MediaEngineError(f"{name} failed")
        self.calls.append((name,) + args)

    def load(self, path: Path) -> None:
        self._record("load", path)
        self.loaded = path
        self._set_state(EngineState.READY)

    def seek(self, position_ms: int) -> None:
        self._record("seek", position_ms)

    def play(self) -> None:
        self._record("play")
        self._playing = True

    def pause(self) -> None:
        self._record("pause")
        self._playing = False

    def stop(self) -> None:
        self._record("stop")
        self._playing = False

    def clear_media(self) -> None:
        self._record("clear_media")
        self.loaded = None
        self._set_state(EngineState.IDLE)

    def release(self) -> None:
        self.released = True
        super().release()


class RecordingPlayerListener(PlayerListener):
    """Collects scheduler notifications."""

    def __init__(self) -> None:
        self.preparing: List[tuple] = []
        self.started: List[str] = []
        self.stopped = 0
        self.ended = 0
        self.errors: List[str] = []
        self.debug: List[str] = []
        self.ready = 0

    def on_preparing_to_play(self, filename: str, delay_ms: int) -> None:
        self.preparing.append((filename, delay_ms))

    def on_playback_started(self, filename: str) -> None:
        self.started.append(filename)

    def on_playback_stopped(self) -> None:
        self.stopped += 1

    def on_playback_ended(self) -> None:
        self.ended += 1

    def on_playback_error(self, message: str) -> None:
        self.errors.append(message)

    def on_debug_info(self, message: str) -> None:
        self.debug.append(message)

    def on_engine_ready(self) -> None:
        self.ready += 1


class RecordingCommandListener(SyncCommandListener):
    """Collects client events."""

    def __init__(self) -> None:
        self.commands: List[Command] = []
        self.lost: List[str] = []
        self.raw: List[str] = []

    def on_command_received(self, command: Command) -> None:
        self.commands.append(command)

    def on_connection_lost(self, reason: str) -> None:
        self.lost.append(reason)

    def on_raw_message(self, text: str) -> None:
        self.raw.append(text)


class CommandServer:
    """Loopback TCP server standing in for a SyncPlayer server."""

    def __init__(self) -> None:
        self._server: Optional[asyncio.AbstractServer] = None
        self.writers: List[asyncio.StreamWriter] = []
        self.connected = asyncio.Event()
        self.port = 0

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._on_client, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def _on_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.writers.append(writer)
        self.connected.set()

    async def wait_connected(self, timeout: float = 2.0) -> None:
        await asyncio.wait_for(self.connected.wait(), timeout=timeout)

    async def send(self, data: bytes) -> None:
        for writer in self.writers:
            writer.write(data)
            await writer.drain()

    async def close_clients(self) -> None:
        for writer in self.writers:
            writer.close()
            try:
                await writer.wait_closed()
            except (OSError, ConnectionError):
                pass
        self.writers.clear()
        self.connected.clear()

    async def stop(self) -> None:
        await self.close_clients()
        if self._server:
            self._server.close()
            await self._server.wait_closed()


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until predicate() is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Timed out waiting for condition")
        await asyncio.sleep(0.01)


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def player_listener() -> RecordingPlayerListener:
    return RecordingPlayerListener()


@pytest.fixture
def command_listener() -> RecordingCommandListener:
    return RecordingCommandListener()


@pytest.fixture
def media_root(tmp_path: Path) -> Path:
    """Media folder with a few files, some nested."""
    root = tmp_path / "music"
    (root / "sub" / "dir").mkdir(parents=True)
    for name in ("a.mp3", "b.mp3", "sub/dir/track.mp3"):
        (root / name).write_bytes(b"\x00" * 16)
    return root


@pytest_asyncio.fixture
async def command_server():
    server = CommandServer()
    await server.start()
    yield server
    await server.stop()
