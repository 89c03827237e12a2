"""Audio file decoding for the sounddevice engine.

Files are decoded with soundfile (libsndfile), which covers WAV, FLAC,
OGG/Vorbis and, with libsndfile 1.1+, MP3. Decoders hand out blocks of
signed 16-bit interleaved samples as numpy arrays.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import numpy as np

_LOGGER = logging.getLogger(__name__)

# soundfile needs the libsndfile shared library at import time
try:
    import soundfile as sf
    SOUNDFILE_AVAILABLE = True
except (ImportError, OSError):
    SOUNDFILE_AVAILABLE = False
    _LOGGER.warning("soundfile not available - local file decoding disabled")


class AudioDecoder(ABC):
    """Abstract base class for file decoders."""

    @property
    @abstractmethod
    def sample_rate(self) -> int:
        """Sample rate in Hz."""

    @property
    @abstractmethod
    def channels(self) -> int:
        """Number of interleaved channels."""

    @abstractmethod
    def seek(self, position_ms: int) -> None:
        """Move the read position.

        Args:
            position_ms: Offset from the start of the file in milliseconds
        """

    @abstractmethod
    def read(self, frames: int) -> np.ndarray:
        """Read up to ``frames`` frames.

        Returns:
            int16 array of shape (n, channels); empty at end of file
        """

    @abstractmethod
    def close(self) -> None:
        """Release the underlying file."""


class SoundFileDecoder(AudioDecoder):
    """Decoder backed by soundfile.SoundFile."""

    def __init__(self, path: Path) -> None:
        if not SOUNDFILE_AVAILABLE:
            raise RuntimeError(
                "SoundFileDecoder requires soundfile. "
                "Install with: pip install soundfile"
            )
        self._path = path
        self._file: Optional["sf.SoundFile"] = sf.SoundFile(str(path))
        _LOGGER.info(
            "Opened %s: %d Hz, %d ch, %.1f s",
            path.name,
            self._file.samplerate,
            self._file.channels,
            self.duration_ms / 1000,
        )

    @property
    def sample_rate(self) -> int:
        return self._require_open().samplerate

    @property
    def channels(self) -> int:
        return self._require_open().channels

    @property
    def duration_ms(self) -> int:
        """Total length in milliseconds (0 if unknown)."""
        f = self._require_open()
        if f.frames <= 0:
            return 0
        return int(f.frames * 1000 / f.samplerate)

    def seek(self, position_ms: int) -> None:
        f = self._require_open()
        frame = int(max(0, position_ms) * f.samplerate / 1000)
        if f.frames > 0:
            frame = min(frame, f.frames)
        f.seek(frame)

    def read(self, frames: int) -> np.ndarray:
        return self._require_open().read(frames, dtype="int16", always_2d=True)

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def _require_open(self) -> "sf.SoundFile":
        if self._file is None:
            raise RuntimeError(f"Decoder for {self._path.name} is closed")
        return self._file


def open_decoder(path: Path) -> AudioDecoder:
    """Factory function to open a decoder for a media file.

    Args:
        path: Local media file

    Returns:
        AudioDecoder positioned at the start of the file

    Raises:
        ValueError: If the file format is not supported
        RuntimeError: If no decoding backend is installed
    """
    if not is_format_supported(path):
        raise ValueError(f"Unsupported audio format: {path.suffix or path.name}")
    try:
        return SoundFileDecoder(path)
    except sf.LibsndfileError as e:
        raise ValueError(f"Cannot decode {path.name}: {e}") from e


def is_format_supported(path: Path) -> bool:
    """Check whether a file extension can be decoded.

    Args:
        path: Media file path

    Returns:
        True if soundfile knows the container format
    """
    if not SOUNDFILE_AVAILABLE:
        return False
    suffix = path.suffix.lstrip(".").upper()
    if suffix == "OGA":
        suffix = "OGG"
    return suffix in sf.available_formats()
