"""Runtime configuration for the SyncPlayer client.

Configuration is an explicit object handed to the client, the scheduler and
the audio engine at construction time. It can be loaded from a TOML file
with a single ``[syncplayer]`` table; command line flags override it.

Example ``syncplayer.toml``::

    [syncplayer]
    server_host = "192.168.1.20"
    server_port = 12345
    calibration_ms = 120
    media_root = "/srv/music"
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Optional

from .protocol import DEFAULT_PORT, MAX_RECORD_BYTES

_LOGGER = logging.getLogger(__name__)

CONFIG_SECTION = "syncplayer"
ENGINES = ("sounddevice", "mpv")


class ConfigError(ValueError):
    """Raised for unreadable or invalid configuration."""


@dataclass(frozen=True)
class SyncPlayerConfig:
    """Settings consumed by the client, scheduler and engines."""

    server_host: str = ""
    server_port: int = DEFAULT_PORT
    calibration_ms: int = 0
    media_root: Optional[Path] = None

    # Transport
    connect_timeout: float = 5.0
    read_chunk_size: int = 4096
    max_record_bytes: int = MAX_RECORD_BYTES

    # Reconnect policy of the application, 0 disables reconnecting
    reconnect_delay: float = 0.0

    # Audio output
    engine: str = "sounddevice"
    output_device: Optional[str] = None
    mpv_audio_device: Optional[str] = None
    volume: int = 100

    def __post_init__(self) -> None:
        if isinstance(self.media_root, str):
            object.__setattr__(self, "media_root", Path(self.media_root).expanduser())
        self.validate()

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ConfigError: On the first invalid value
        """
        if not 0 < self.server_port < 65536:
            raise ConfigError(f"server_port out of range: {self.server_port}")
        if self.calibration_ms < 0:
            raise ConfigError(f"calibration_ms must not be negative: {self.calibration_ms}")
        if self.connect_timeout <= 0:
            raise ConfigError(f"connect_timeout must be positive: {self.connect_timeout}")
        if self.read_chunk_size <= 0:
            raise ConfigError(f"read_chunk_size must be positive: {self.read_chunk_size}")
        if self.max_record_bytes <= 0:
            raise ConfigError(f"max_record_bytes must be positive: {self.max_record_bytes}")
        if self.reconnect_delay < 0:
            raise ConfigError(f"reconnect_delay must not be negative: {self.reconnect_delay}")
        if self.engine not in ENGINES:
            raise ConfigError(
                f"Unknown engine {self.engine!r}, expected one of {', '.join(ENGINES)}"
            )
        if not 0 <= self.volume <= 100:
            raise ConfigError(f"volume must be 0-100: {self.volume}")

    @property
    def calibration_delay(self) -> float:
        """Calibration delay in seconds."""
        return self.calibration_ms / 1000.0

    def with_overrides(self, **overrides: Any) -> SyncPlayerConfig:
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        return replace(self, **changes)


def load_config(path: Path | str) -> SyncPlayerConfig:
    """Load configuration from a TOML file.

    Args:
        path: TOML file with a ``[syncplayer]`` table

    Returns:
        Validated configuration

    Raises:
        ConfigError: If the file is missing, malformed or holds bad values
    """
    path = Path(path)
    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e

    section = data.get(CONFIG_SECTION, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{CONFIG_SECTION}] must be a table")

    known = {f.name for f in fields(SyncPlayerConfig)}
    unknown = set(section) - known
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    try:
        config = SyncPlayerConfig(**section)
    except TypeError as e:
        raise ConfigError(f"Invalid config {path}: {e}") from e

    _LOGGER.debug("Loaded config from %s: %s", path, config)
    return config
