"""SyncPlayer client for starting audio on many devices at once.

This package implements a client that receives PLAY/STOP commands from a
SyncPlayer server over a line-delimited JSON TCP stream and starts local
audio files after a per-device calibration delay.

Example usage:
    from syncplayer import SyncPlayerApp, SyncPlayerConfig

    config = SyncPlayerConfig(
        server_host="192.168.1.20",
        calibration_ms=120,
        media_root=Path("~/Music"),
    )
    await SyncPlayerApp(config).run()
"""

__version__ = "1.0.0"

from .app import SyncPlayerApp
from .audio_player import MpvMediaEngine, SoundDeviceMediaEngine, create_engine
from .client import ConnectionState, SyncClient, SyncCommandListener
from .config import ConfigError, SyncPlayerConfig, load_config
from .engine import EngineState, MediaEngine, MediaEngineError, MediaEngineListener
from .protocol import (
    DEFAULT_PORT,
    Command,
    FrameDecoder,
    FrameOverflowError,
    ParseError,
    PlayCommand,
    ProtocolError,
    StopCommand,
    UnknownCommand,
    encode_command,
    parse_command,
)
from .resolver import MediaResolver
from .scheduler import PlaybackScheduler, PlayerListener, SchedulerState

__all__ = [
    # Application
    "SyncPlayerApp",
    "SyncPlayerConfig",
    "ConfigError",
    "load_config",
    # Connection
    "SyncClient",
    "SyncCommandListener",
    "ConnectionState",
    # Playback
    "PlaybackScheduler",
    "PlayerListener",
    "SchedulerState",
    "MediaResolver",
    # Engines
    "MediaEngine",
    "MediaEngineError",
    "MediaEngineListener",
    "EngineState",
    "SoundDeviceMediaEngine",
    "MpvMediaEngine",
    "create_engine",
    # Protocol
    "Command",
    "PlayCommand",
    "StopCommand",
    "UnknownCommand",
    "FrameDecoder",
    "ProtocolError",
    "ParseError",
    "FrameOverflowError",
    "parse_command",
    "encode_command",
    "DEFAULT_PORT",
]
