"""SyncPlayer wire protocol: command types, parsing and stream framing.

The server pushes one JSON object per line over a plain TCP stream:

    {"cmd":"PLAY","filename":"<string>","startTime":<int64 ns>,"startPosMs":<int>}
    {"cmd":"STOP"}

TCP read boundaries are not message boundaries, so raw bytes go through a
FrameDecoder first and only complete records reach parse_command().
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Union

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

DEFAULT_PORT = 12345
RECORD_TERMINATOR = b"\n"

# Unterminated bytes allowed to sit in the frame buffer before the peer is
# considered broken.
MAX_RECORD_BYTES = 64 * 1024

# Value ranges of the numeric PLAY fields
START_TIME_MIN = -(2**63)
START_TIME_MAX = 2**63 - 1
START_POS_MS_MAX = 2**31 - 1

CMD_PLAY = "PLAY"
CMD_STOP = "STOP"

# JSON field names
FIELD_CMD = "cmd"
FIELD_FILENAME = "filename"
FIELD_START_TIME = "startTime"
FIELD_START_POS_MS = "startPosMs"


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------


class ProtocolError(Exception):
    """Base class for wire protocol errors."""


class ParseError(ProtocolError, ValueError):
    """A complete record could not be turned into a command."""

    def __init__(self, record: str, reason: str) -> None:
        super().__init__(f"{reason}: {record!r}")
        self.record = record
        self.reason = reason


class FrameOverflowError(ProtocolError):
    """The peer sent more unterminated data than the frame buffer allows."""


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class PlayCommand:
    """Start playing a file after the local calibration delay."""
    filename: str
    server_start_time_ns: int  # Informational, not used for scheduling
    start_position_ms: int = 0


@dataclass(frozen=True)
class StopCommand:
    """Cancel any scheduled start and stop playback."""


@dataclass(frozen=True)
class UnknownCommand:
    """A well-formed record whose command kind is not handled."""
    raw: str
    kind: str = ""


Command = Union[PlayCommand, StopCommand, UnknownCommand]


def _is_int(value: Any) -> bool:
    # bool is a subclass of int in Python but never a valid number here
    return isinstance(value, int) and not isinstance(value, bool)


def parse_command(record: str) -> Command:
    """Parse one complete record into a command.

    Args:
        record: A single trimmed text record (no terminator)

    Returns:
        PlayCommand, StopCommand or UnknownCommand

    Raises:
        ParseError: If the record is not a JSON object, or a PLAY record
            lacks a valid filename or startTime
    """
    try:
        msg = json.loads(record)
    except (ValueError, RecursionError) as e:
        # RecursionError: nesting deeper than the decoder can handle
        raise ParseError(record, f"Invalid JSON ({e})") from e

    if not isinstance(msg, dict):
        raise ParseError(record, "Record is not a JSON object")

    kind = msg.get(FIELD_CMD, "")
    if not isinstance(kind, str):
        return UnknownCommand(raw=record, kind=str(kind))

    if kind == CMD_PLAY:
        return _parse_play(record, msg)
    if kind == CMD_STOP:
        return StopCommand()

    return UnknownCommand(raw=record, kind=kind)


def _parse_play(record: str, msg: Dict[str, Any]) -> PlayCommand:
    filename = msg.get(FIELD_FILENAME)
    if not isinstance(filename, str) or not filename:
        raise ParseError(record, "PLAY requires a non-empty 'filename'")

    start_time = msg.get(FIELD_START_TIME)
    if not _is_int(start_time) or not START_TIME_MIN <= start_time <= START_TIME_MAX:
        raise ParseError(record, "PLAY requires a 64-bit integer 'startTime'")

    start_pos_ms = msg.get(FIELD_START_POS_MS, 0)
    if not _is_int(start_pos_ms) or not 0 <= start_pos_ms <= START_POS_MS_MAX:
        raise ParseError(record, "'startPosMs' must be an integer in 0..2^31-1")

    return PlayCommand(
        filename=filename,
        server_start_time_ns=start_time,
        start_position_ms=start_pos_ms,
    )


def encode_command(command: Command) -> bytes:
    """Serialize a command into one newline-terminated wire record."""
    if isinstance(command, PlayCommand):
        payload: Dict[str, Any] = {
            FIELD_CMD: CMD_PLAY,
            FIELD_FILENAME: command.filename,
            FIELD_START_TIME: command.server_start_time_ns,
        }
        if command.start_position_ms:
            payload[FIELD_START_POS_MS] = command.start_position_ms
    elif isinstance(command, StopCommand):
        payload = {FIELD_CMD: CMD_STOP}
    else:
        raise ValueError(f"Cannot encode {type(command).__name__}")

    return json.dumps(payload).encode("utf-8") + RECORD_TERMINATOR


# -----------------------------------------------------------------------------
# Framing
# -----------------------------------------------------------------------------


class FrameDecoder:
    """Splits a fragmented byte stream into newline-terminated records.

    The buffer lives for one connection. Between calls to feed() it only
    ever holds an unterminated tail, and feed() never waits for more data.
    """

    def __init__(self, max_buffer_bytes: int = MAX_RECORD_BYTES) -> None:
        self._buffer = bytearray()
        self._max_buffer_bytes = max_buffer_bytes

    @property
    def pending_bytes(self) -> int:
        """Number of buffered bytes still waiting for a terminator."""
        return len(self._buffer)

    def feed(self, data: bytes) -> List[str]:
        """Append a chunk and return every record it completes.

        Args:
            data: Raw bytes as read from the socket

        Returns:
            Trimmed, non-empty records in arrival order

        Raises:
            FrameOverflowError: If the unterminated tail grows past the cap
        """
        self._buffer.extend(data)
        records: List[str] = []

        while True:
            index = self._buffer.find(RECORD_TERMINATOR)
            if index < 0:
                break
            raw = bytes(self._buffer[:index])
            del self._buffer[:index + 1]

            text = raw.decode("utf-8", errors="replace").strip()
            if text:
                records.append(text)

        if len(self._buffer) > self._max_buffer_bytes:
            size = len(self._buffer)
            self._buffer.clear()
            raise FrameOverflowError(
                f"Unterminated record exceeds {self._max_buffer_bytes} bytes ({size} buffered)"
            )

        return records

    def reset(self) -> None:
        """Drop any partially received record."""
        self._buffer.clear()
