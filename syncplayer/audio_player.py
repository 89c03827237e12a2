"""Audio engines that render local media files.

Two backends implement the MediaEngine interface:
- sounddevice: decodes with soundfile and writes PCM blocks to PortAudio
- mpv: hands the file to an mpv subprocess (better for PulseAudio and
  container setups, and for formats libsndfile cannot read)
"""

import logging
import os
import shutil
import signal
import subprocess
import threading
from pathlib import Path
from typing import List, Optional

import numpy as np

from .config import SyncPlayerConfig
from .decoder import AudioDecoder, open_decoder
from .engine import EngineState, MediaEngine, MediaEngineError

_LOGGER = logging.getLogger(__name__)

# Check for mpv availability
MPV_AVAILABLE = shutil.which("mpv") is not None

# sounddevice needs the PortAudio shared library at import time
try:
    import sounddevice as sd
    SOUNDDEVICE_AVAILABLE = True
except (ImportError, OSError):
    SOUNDDEVICE_AVAILABLE = False


def apply_volume(samples: np.ndarray, volume: int) -> np.ndarray:
    """Scale int16 samples by a perceived-loudness volume.

    Perceived loudness is roughly proportional to amplitude squared, so
    the amplitude multiplier is sqrt(volume / 100).

    Args:
        samples: int16 PCM samples
        volume: Volume 0-100

    Returns:
        Scaled int16 samples (the input itself at full volume)
    """
    if volume >= 100:
        return samples
    if volume <= 0:
        return np.zeros_like(samples)
    amplitude = (volume / 100.0) ** 0.5
    return (samples * amplitude).astype(np.int16)


class SoundDeviceMediaEngine(MediaEngine):
    """Engine that plays decoded PCM through a sounddevice OutputStream.

    Playback runs on a daemon thread. Pausing parks the thread on an event.
    Stopping only signals the thread and detaches it, so callers on the
    event loop never wait for PortAudio; a detached thread exits after at
    most one more block and never reports events.
    """

    # Frames written per stream.write() call
    BLOCK_FRAMES = 1024

    # Maximum time the playback thread waits while paused before
    # re-checking for a stop request (seconds)
    PAUSE_POLL_S = 0.1

    def __init__(self, output_device: Optional[str] = None, volume: int = 100) -> None:
        """Initialize the engine.

        Args:
            output_device: sounddevice output device (None for default)
            volume: Initial volume 0-100
        """
        super().__init__()
        if not SOUNDDEVICE_AVAILABLE:
            raise RuntimeError(
                "SoundDeviceMediaEngine requires sounddevice. "
                "Install with: pip install sounddevice"
            )
        self._output_device = output_device
        self.set_volume(volume)

        self._decoder: Optional[AudioDecoder] = None
        self._decoder_lock = threading.Lock()

        self._playing = threading.Event()
        # Stop flag of the current playback thread; each thread gets its own
        self._stop_event: Optional[threading.Event] = None
        self._playback_thread: Optional[threading.Thread] = None

    @property
    def is_playing(self) -> bool:
        return (
            self._playing.is_set()
            and self._playback_thread is not None
            and self._playback_thread.is_alive()
        )

    def load(self, path: Path) -> None:
        self.clear_media()
        self._set_state(EngineState.BUFFERING)
        try:
            decoder = open_decoder(path)
        except (ValueError, RuntimeError, OSError) as e:
            self._set_state(EngineState.IDLE)
            raise MediaEngineError(f"Cannot load {path.name}: {e}") from e

        with self._decoder_lock:
            self._decoder = decoder
        self._set_state(EngineState.READY)

    def seek(self, position_ms: int) -> None:
        with self._decoder_lock:
            if self._decoder is None:
                raise MediaEngineError("Cannot seek: no media loaded")
            self._decoder.seek(position_ms)
        _LOGGER.debug("Seeked to %d ms", position_ms)

    def play(self) -> None:
        if self._decoder is None:
            raise MediaEngineError("Cannot play: no media loaded")

        self._playing.set()
        if self._playback_thread and self._playback_thread.is_alive():
            # Resume after pause
            return

        stop_event = threading.Event()
        self._stop_event = stop_event
        self._playback_thread = threading.Thread(
            target=self._playback_loop,
            args=(self._decoder, stop_event),
            name="SyncPlayerAudioPlayback",
            daemon=True,
        )
        self._playback_thread.start()
        _LOGGER.info("Playback started")

    def pause(self) -> None:
        self._playing.clear()

    def stop(self) -> None:
        self._playing.clear()
        if self._stop_event is not None:
            self._stop_event.set()
        self._stop_event = None
        self._playback_thread = None

        with self._decoder_lock:
            if self._decoder is not None:
                self._decoder.seek(0)
                self._set_state(EngineState.READY)
            else:
                self._set_state(EngineState.IDLE)

    def clear_media(self) -> None:
        if self._playback_thread is not None:
            self.stop()
        with self._decoder_lock:
            if self._decoder is not None:
                self._decoder.close()
                self._decoder = None
        self._set_state(EngineState.IDLE)

    def _resolve_device(self) -> Optional[str]:
        """Return the configured device, or None if it does not exist."""
        device = self._output_device
        if device is not None:
            try:
                sd.query_devices(device)
            except (ValueError, sd.PortAudioError) as e:
                _LOGGER.warning(
                    "Configured output device '%s' not found (%s), using system default",
                    device,
                    e,
                )
                device = None
        return device

    def _playback_loop(self, decoder: AudioDecoder, stop_event: threading.Event) -> None:
        """Main playback thread loop."""
        ended = False
        try:
            with sd.OutputStream(
                device=self._resolve_device(),
                samplerate=decoder.sample_rate,
                channels=decoder.channels,
                dtype="int16",
                blocksize=self.BLOCK_FRAMES,
            ) as stream:
                while not stop_event.is_set():
                    if not self._playing.wait(timeout=self.PAUSE_POLL_S):
                        continue

                    # stop() rewinds or closes the decoder under this lock
                    with self._decoder_lock:
                        if stop_event.is_set():
                            break
                        block = decoder.read(self.BLOCK_FRAMES)
                    if len(block) == 0:
                        ended = True
                        break
                    stream.write(apply_volume(block, self._volume))

        except Exception as e:
            if not stop_event.is_set():
                self._playing.clear()
                self._report_error(f"Audio output failed: {e}")
            return

        if ended and not stop_event.is_set():
            self._playing.clear()
            _LOGGER.info("Playback reached end of file")
            self._report_ended()


class MpvMediaEngine(MediaEngine):
    """Engine that plays files with an mpv subprocess.

    mpv is only launched on play(). Pause and resume use SIGSTOP/SIGCONT
    on the process, and a watcher thread turns the process exit into an
    end-of-track (exit code 0) or error (anything else) event.
    """

    # Seconds to wait for mpv to exit after SIGTERM before killing it
    TERMINATE_TIMEOUT_S = 2.0

    def __init__(self, audio_device: Optional[str] = None, volume: int = 100) -> None:
        """Initialize the engine.

        Args:
            audio_device: Audio device in mpv format (e.g., "pulse/bluez_output.xxx")
            volume: Initial volume 0-100
        """
        super().__init__()
        if not MPV_AVAILABLE:
            raise RuntimeError("MpvMediaEngine requires mpv on PATH")
        self._audio_device = audio_device
        self._path: Optional[Path] = None
        self._start_ms: int = 0
        self._proc: Optional[subprocess.Popen] = None
        self._paused: bool = False
        self._watcher: Optional[threading.Thread] = None
        self._lock = threading.Lock()

        self.set_volume(volume)

    @property
    def is_playing(self) -> bool:
        proc = self._proc
        return proc is not None and proc.poll() is None and not self._paused

    def load(self, path: Path) -> None:
        self.clear_media()
        if not path.is_file():
            raise MediaEngineError(f"Cannot load {path.name}: not a file")
        self._path = path
        self._start_ms = 0
        self._set_state(EngineState.READY)

    def seek(self, position_ms: int) -> None:
        if self._path is None:
            raise MediaEngineError("Cannot seek: no media loaded")
        self._start_ms = max(0, position_ms)
        if self._proc is not None:
            # mpv has no control channel here; restart at the new position
            resume = not self._paused
            self._terminate()
            if resume:
                self._spawn()

    def play(self) -> None:
        if self._path is None:
            raise MediaEngineError("Cannot play: no media loaded")

        proc = self._proc
        if proc is not None and proc.poll() is None:
            if self._paused:
                os.kill(proc.pid, signal.SIGCONT)
                self._paused = False
            return
        self._spawn()

    def pause(self) -> None:
        proc = self._proc
        if proc is not None and proc.poll() is None and not self._paused:
            os.kill(proc.pid, signal.SIGSTOP)
            self._paused = True

    def stop(self) -> None:
        self._terminate()
        self._start_ms = 0
        self._set_state(EngineState.READY if self._path else EngineState.IDLE)

    def clear_media(self) -> None:
        self._terminate()
        self._path = None
        self._start_ms = 0
        self._set_state(EngineState.IDLE)

    def set_volume(self, volume: int) -> None:
        super().set_volume(volume)
        if self._proc is not None:
            _LOGGER.debug("mpv volume change applies from the next start")

    def build_command(self) -> List[str]:
        """Build the mpv command line for the loaded file."""
        cmd = [
            "mpv",
            "--no-terminal",
            "--no-video",
            f"--volume={self._volume}",
        ]
        if self._audio_device:
            cmd.append(f"--audio-device={self._audio_device}")
        if self._start_ms:
            cmd.append(f"--start={self._start_ms / 1000:.3f}")
        cmd += ["--", str(self._path)]
        return cmd

    def _spawn(self) -> None:
        cmd = self.build_command()
        _LOGGER.debug("Starting mpv: %s", " ".join(cmd))
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise MediaEngineError(f"Cannot start mpv: {e}") from e

        with self._lock:
            self._proc = proc
            self._paused = False
        self._watcher = threading.Thread(
            target=self._watch,
            args=(proc,),
            name="SyncPlayerMpvWatcher",
            daemon=True,
        )
        self._watcher.start()

    def _watch(self, proc: subprocess.Popen) -> None:
        """Wait for an mpv process and report how it exited."""
        _, stderr = proc.communicate()
        with self._lock:
            if proc is not self._proc:
                # Terminated on purpose
                return
            self._proc = None

        if proc.returncode == 0:
            _LOGGER.info("mpv finished playing %s", self._path)
            self._report_ended()
        else:
            detail = (stderr or b"").decode("utf-8", errors="replace").strip()
            tail = detail.splitlines()[-1] if detail else "no output"
            self._report_error(f"mpv exited with code {proc.returncode}: {tail}")

    def _terminate(self) -> None:
        """Stop the running mpv process, if any."""
        with self._lock:
            proc = self._proc
            self._proc = None
            paused = self._paused
            self._paused = False

        if proc is None:
            return

        try:
            if paused:
                os.kill(proc.pid, signal.SIGCONT)
            proc.terminate()
        except ProcessLookupError:
            return
        finally:
            # The old watcher sees a foreign process and exits silently
            self._watcher = None

        threading.Thread(
            target=self._reap,
            args=(proc,),
            name="SyncPlayerMpvReaper",
            daemon=True,
        ).start()

    def _reap(self, proc: subprocess.Popen) -> None:
        """Kill a terminated mpv process that does not exit in time."""
        try:
            proc.wait(timeout=self.TERMINATE_TIMEOUT_S)
        except subprocess.TimeoutExpired:
            _LOGGER.warning("mpv (pid %s) ignored SIGTERM, killing it", proc.pid)
            proc.kill()
            proc.wait()


def create_engine(config: SyncPlayerConfig) -> MediaEngine:
    """Factory function to create the configured audio engine.

    Args:
        config: Player configuration (engine, devices, volume)

    Returns:
        MediaEngine instance

    Raises:
        ValueError: If the engine name is not supported
    """
    engine = config.engine.lower()

    if engine == "sounddevice":
        return SoundDeviceMediaEngine(
            output_device=config.output_device,
            volume=config.volume,
        )
    elif engine == "mpv":
        return MpvMediaEngine(
            audio_device=config.mpv_audio_device,
            volume=config.volume,
        )
    else:
        raise ValueError(f"Unsupported engine: {config.engine}")
