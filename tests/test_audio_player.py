"""
Tests for the audio engines.

The engines talk to real audio hardware or to mpv, so sounddevice,
the decoder and subprocess are replaced with mocks here.
"""

import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import List
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from syncplayer import audio_player
from syncplayer.audio_player import (
    MpvMediaEngine,
    SoundDeviceMediaEngine,
    apply_volume,
    create_engine,
)
from syncplayer.config import SyncPlayerConfig
from syncplayer.engine import EngineState, MediaEngineError, MediaEngineListener


class EventRecorder(MediaEngineListener):
    """Engine listener that signals when a terminal event arrives."""

    def __init__(self) -> None:
        self.states: List[str] = []
        self.errors: List[str] = []
        self.ended = 0
        self.done = threading.Event()

    def on_state_changed(self, state: str) -> None:
        self.states.append(state)

    def on_error(self, message: str) -> None:
        self.errors.append(message)
        self.done.set()

    def on_playback_ended(self) -> None:
        self.ended += 1
        self.done.set()


# -----------------------------------------------------------------------------
# Volume
# -----------------------------------------------------------------------------


class TestApplyVolume:
    """Tests for perceived-loudness volume scaling."""

    def test_full_volume_passthrough(self) -> None:
        samples = np.array([[1000, -1000]], dtype=np.int16)
        assert apply_volume(samples, 100) is samples

    def test_mute(self) -> None:
        samples = np.array([[1000, -1000]], dtype=np.int16)
        assert not apply_volume(samples, 0).any()

    def test_quarter_volume_halves_amplitude(self) -> None:
        samples = np.array([[1000, -1000]], dtype=np.int16)
        scaled = apply_volume(samples, 25)
        assert scaled.dtype == np.int16
        assert scaled.tolist() == [[500, -500]]


# -----------------------------------------------------------------------------
# sounddevice engine
# -----------------------------------------------------------------------------


class FakeDecoder:
    """Decoder serving a fixed number of blocks."""

    sample_rate = 48000
    channels = 2

    def __init__(self, blocks: int) -> None:
        self.remaining = blocks
        self.seeks: List[int] = []
        self.closed = False

    def seek(self, position_ms: int) -> None:
        self.seeks.append(position_ms)

    def read(self, frames: int) -> np.ndarray:
        if self.remaining <= 0:
            return np.zeros((0, self.channels), dtype=np.int16)
        self.remaining -= 1
        return np.ones((frames, self.channels), dtype=np.int16)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def mock_sd():
    sd = MagicMock()
    stream = MagicMock()
    sd.OutputStream.return_value.__enter__.return_value = stream
    with patch.object(audio_player, "SOUNDDEVICE_AVAILABLE", True), \
            patch.object(audio_player, "sd", sd, create=True):
        yield sd


class TestSoundDeviceMediaEngine:
    """Tests for the sounddevice engine."""

    def test_requires_sounddevice(self) -> None:
        with patch.object(audio_player, "SOUNDDEVICE_AVAILABLE", False):
            with pytest.raises(RuntimeError):
                SoundDeviceMediaEngine()

    def test_plays_to_end(self, mock_sd, tmp_path: Path) -> None:
        decoder = FakeDecoder(blocks=3)
        engine = SoundDeviceMediaEngine(volume=100)
        recorder = EventRecorder()
        engine.set_listener(recorder)

        with patch.object(audio_player, "open_decoder", return_value=decoder):
            engine.load(tmp_path / "a.wav")
        assert engine.state == EngineState.READY
        assert recorder.states == [EngineState.BUFFERING, EngineState.READY]

        engine.play()
        assert recorder.done.wait(timeout=2.0)

        stream = mock_sd.OutputStream.return_value.__enter__.return_value
        assert stream.write.call_count == 3
        assert recorder.ended == 1
        assert engine.state == EngineState.ENDED

        engine.release()
        assert decoder.closed

    def test_load_failure_raises(self, mock_sd, tmp_path: Path) -> None:
        engine = SoundDeviceMediaEngine()
        with patch.object(audio_player, "open_decoder", side_effect=ValueError("bad format")):
            with pytest.raises(MediaEngineError, match="bad format"):
                engine.load(tmp_path / "a.xyz")
        assert engine.state == EngineState.IDLE

    def test_play_without_media(self, mock_sd) -> None:
        with pytest.raises(MediaEngineError):
            SoundDeviceMediaEngine().play()

    def test_stop_does_not_report_end(self, mock_sd, tmp_path: Path) -> None:
        decoder = FakeDecoder(blocks=1_000_000)
        engine = SoundDeviceMediaEngine()
        recorder = EventRecorder()
        engine.set_listener(recorder)

        with patch.object(audio_player, "open_decoder", return_value=decoder):
            engine.load(tmp_path / "a.wav")
        engine.play()
        engine.stop()

        assert recorder.ended == 0
        assert not engine.is_playing
        assert decoder.seeks[-1] == 0
        assert engine.state == EngineState.READY

    def test_stop_does_not_wait_for_blocked_output(self, mock_sd, tmp_path: Path) -> None:
        writing = threading.Event()
        gate = threading.Event()

        def blocking_write(block) -> None:
            writing.set()
            gate.wait(timeout=5.0)

        stream = mock_sd.OutputStream.return_value.__enter__.return_value
        stream.write.side_effect = blocking_write

        engine = SoundDeviceMediaEngine()
        recorder = EventRecorder()
        engine.set_listener(recorder)
        with patch.object(audio_player, "open_decoder", return_value=FakeDecoder(blocks=10)):
            engine.load(tmp_path / "a.wav")
        engine.play()
        assert writing.wait(timeout=2.0)
        thread = engine._playback_thread

        started = time.monotonic()
        engine.stop()
        assert time.monotonic() - started < 0.5
        assert engine.state == EngineState.READY

        gate.set()
        thread.join(timeout=2.0)
        assert not thread.is_alive()
        assert stream.write.call_count == 1
        assert recorder.ended == 0
        assert recorder.errors == []

    def test_output_failure_reports_error(self, mock_sd, tmp_path: Path) -> None:
        mock_sd.OutputStream.side_effect = RuntimeError("no device")
        engine = SoundDeviceMediaEngine()
        recorder = EventRecorder()
        engine.set_listener(recorder)

        with patch.object(audio_player, "open_decoder", return_value=FakeDecoder(blocks=1)):
            engine.load(tmp_path / "a.wav")
        engine.play()

        assert recorder.done.wait(timeout=2.0)
        assert recorder.errors == ["Audio output failed: no device"]


# -----------------------------------------------------------------------------
# mpv engine
# -----------------------------------------------------------------------------


def make_proc(returncode: int = 0, stderr: bytes = b"") -> MagicMock:
    """Fake mpv process that runs until terminate() is called."""
    proc = MagicMock()
    proc.pid = 4242
    proc.returncode = returncode
    exited = threading.Event()

    def communicate():
        exited.wait(timeout=5.0)
        return None, stderr

    proc.communicate.side_effect = communicate
    proc.terminate.side_effect = exited.set
    proc.poll.side_effect = lambda: returncode if exited.is_set() else None
    proc.exit = exited.set
    return proc


@pytest.fixture
def track(tmp_path: Path) -> Path:
    path = tmp_path / "track.mp3"
    path.write_bytes(b"")
    return path


@pytest.fixture
def mpv_engine():
    with patch.object(audio_player, "MPV_AVAILABLE", True):
        engine = MpvMediaEngine(audio_device="pulse/test", volume=80)
    yield engine


class TestMpvMediaEngine:
    """Tests for the mpv subprocess engine."""

    def test_requires_mpv(self) -> None:
        with patch.object(audio_player, "MPV_AVAILABLE", False):
            with pytest.raises(RuntimeError):
                MpvMediaEngine()

    def test_build_command(self, mpv_engine: MpvMediaEngine, track: Path) -> None:
        mpv_engine.load(track)
        mpv_engine.seek(1500)
        cmd = mpv_engine.build_command()

        assert cmd[0] == "mpv"
        assert "--volume=80" in cmd
        assert "--audio-device=pulse/test" in cmd
        assert "--start=1.500" in cmd
        assert cmd[-2:] == ["--", str(track)]

    def test_load_missing_file(self, mpv_engine: MpvMediaEngine, tmp_path: Path) -> None:
        with pytest.raises(MediaEngineError):
            mpv_engine.load(tmp_path / "missing.mp3")

    def test_pause_before_play_does_not_spawn(self, mpv_engine: MpvMediaEngine, track: Path) -> None:
        with patch.object(subprocess, "Popen") as popen:
            mpv_engine.load(track)
            mpv_engine.pause()
        popen.assert_not_called()

    def test_natural_exit_reports_end(self, mpv_engine: MpvMediaEngine, track: Path) -> None:
        recorder = EventRecorder()
        mpv_engine.set_listener(recorder)
        proc = make_proc(returncode=0)

        with patch.object(subprocess, "Popen", return_value=proc):
            mpv_engine.load(track)
            mpv_engine.play()
            proc.exit()
            assert recorder.done.wait(timeout=2.0)

        assert recorder.ended == 1
        assert recorder.errors == []

    def test_failed_exit_reports_error(self, mpv_engine: MpvMediaEngine, track: Path) -> None:
        recorder = EventRecorder()
        mpv_engine.set_listener(recorder)
        proc = make_proc(returncode=2, stderr=b"loading...\nFailed to open track.mp3\n")

        with patch.object(subprocess, "Popen", return_value=proc):
            mpv_engine.load(track)
            mpv_engine.play()
            proc.exit()
            assert recorder.done.wait(timeout=2.0)

        assert recorder.ended == 0
        assert recorder.errors == ["mpv exited with code 2: Failed to open track.mp3"]

    def test_pause_and_resume_signal_process(self, mpv_engine: MpvMediaEngine, track: Path) -> None:
        proc = make_proc()
        with patch.object(subprocess, "Popen", return_value=proc), \
                patch.object(audio_player.os, "kill") as kill:
            mpv_engine.load(track)
            mpv_engine.play()
            mpv_engine.pause()
            assert mpv_engine.is_playing is False
            mpv_engine.play()
            assert mpv_engine.is_playing is True

            assert kill.call_args_list[0].args == (4242, signal.SIGSTOP)
            assert kill.call_args_list[1].args == (4242, signal.SIGCONT)
            mpv_engine.stop()

    def test_stop_terminates_without_end_event(self, mpv_engine: MpvMediaEngine, track: Path) -> None:
        recorder = EventRecorder()
        mpv_engine.set_listener(recorder)
        proc = make_proc(returncode=-15)

        with patch.object(subprocess, "Popen", return_value=proc):
            mpv_engine.load(track)
            mpv_engine.play()
            mpv_engine.stop()

        proc.terminate.assert_called_once()
        assert recorder.ended == 0
        assert recorder.errors == []
        assert mpv_engine.state == EngineState.READY

    def test_stop_does_not_wait_for_exit(self, mpv_engine: MpvMediaEngine, track: Path) -> None:
        proc = make_proc(returncode=-9)
        gate = threading.Event()
        killed = threading.Event()

        def slow_wait(timeout=None):
            if timeout is not None:
                gate.wait(timeout=5.0)
                raise subprocess.TimeoutExpired("mpv", timeout)

        proc.wait.side_effect = slow_wait
        proc.kill.side_effect = killed.set

        with patch.object(subprocess, "Popen", return_value=proc):
            mpv_engine.load(track)
            mpv_engine.play()
            started = time.monotonic()
            mpv_engine.stop()
            assert time.monotonic() - started < 0.5

        assert not killed.is_set()
        gate.set()
        assert killed.wait(timeout=2.0)


class TestCreateEngine:
    """Tests for the engine factory."""

    def test_mpv(self) -> None:
        with patch.object(audio_player, "MPV_AVAILABLE", True):
            engine = create_engine(SyncPlayerConfig(engine="mpv", volume=40))
        assert isinstance(engine, MpvMediaEngine)
        assert engine.volume == 40

    def test_sounddevice(self, mock_sd) -> None:
        engine = create_engine(SyncPlayerConfig(engine="sounddevice", output_device="hw:1"))
        assert isinstance(engine, SoundDeviceMediaEngine)

    def test_unknown(self) -> None:
        config = MagicMock(engine="alsa")
        with pytest.raises(ValueError):
            create_engine(config)
