"""
Capture engines and WAV helpers.

Two engines implement the same start/stop contract:
- ArecordCapture: spawns ``arecord`` writing a temporary WAV file. Its PID
  is exposed so the lock can reap it if this process crashes.
- SoundDeviceCapture: records in-process with sounddevice and encodes the
  samples to WAV with soundfile.

stop() returns WAV bytes, or None when nothing usable was recorded.
"""

import io
import logging
import os
import shutil
import subprocess
import tempfile
import threading
from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np
import soundfile as sf

from .errors import CaptureError
from .types import ConfigSnapshot

logger = logging.getLogger(__name__)

# Constants
WAV_HEADER_BYTES = 44
BYTES_PER_SAMPLE = 2  # S16_LE
STOP_TIMEOUT_SECONDS = 5.0


def audio_to_wav_bytes(audio: np.ndarray, sample_rate: int = 16000) -> bytes:
    """Convert numpy float audio in [-1, 1] to 16-bit PCM WAV bytes."""
    audio_int16 = (np.clip(audio, -1.0, 1.0) * 32767).astype(np.int16)
    buffer = io.BytesIO()
    sf.write(buffer, audio_int16, sample_rate, format="WAV", subtype="PCM_16")
    buffer.seek(0)
    return buffer.getvalue()


def wav_duration(data: Optional[bytes], sample_rate: int = 16000, channels: int = 1) -> float:
    """
    Duration of WAV audio in seconds.

    A recorder killed mid-write can leave a bogus length in the header, so
    the header value is capped by what the byte count can actually hold.
    """
    if not data or len(data) <= WAV_HEADER_BYTES:
        return 0.0

    estimate = (len(data) - WAV_HEADER_BYTES) / (sample_rate * channels * BYTES_PER_SAMPLE)
    try:
        info = sf.info(io.BytesIO(data))
    except RuntimeError:
        return estimate
    if info.samplerate <= 0:
        return estimate
    payload = (len(data) - WAV_HEADER_BYTES) / (info.samplerate * info.channels * BYTES_PER_SAMPLE)
    return min(info.duration, payload)


class CaptureEngine(ABC):
    """
    Start/stop audio recorder.

    Subclasses must implement start(), stop() and is_running().
    """

    # Process name of the capture subprocess, when there is one
    process_name: Optional[str] = None

    @abstractmethod
    def start(self) -> None:
        """
        Begin recording.

        Raises:
            CaptureError: Recording could not start
        """

    @abstractmethod
    def stop(self) -> Optional[bytes]:
        """Stop recording and return WAV bytes, or None if nothing was captured."""

    @abstractmethod
    def is_running(self) -> bool:
        """True while audio is being captured."""

    @property
    def pid(self) -> Optional[int]:
        """PID of the capture subprocess, if any."""
        return None

    def cleanup(self) -> None:
        """Release everything, even mid-recording."""


class ArecordCapture(CaptureEngine):
    """
    Records through ALSA's ``arecord`` into a temporary WAV file.

    Usage:
        capture = ArecordCapture(device="default")
        capture.start()
        # ... user speaks ...
        wav = capture.stop()
    """

    process_name = "arecord"

    def __init__(
        self,
        device: str = "default",
        sample_rate: int = 16000,
        channels: int = 1,
        temp_dir: Optional[str] = None,
    ):
        self.device = device
        self.sample_rate = sample_rate
        self.channels = channels
        self.temp_dir = temp_dir
        self._process: Optional[subprocess.Popen] = None
        self._temp_file: Optional[str] = None
        self._stderr_thread: Optional[threading.Thread] = None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    def start(self) -> None:
        if self._process is not None:
            raise CaptureError("Recording already in progress")
        if shutil.which("arecord") is None:
            raise CaptureError("arecord not found. Install: sudo apt install alsa-utils")

        fd, self._temp_file = tempfile.mkstemp(prefix="voxclip-", suffix=".wav", dir=self.temp_dir)
        os.close(fd)

        args = [
            "arecord", "-q",
            "-D", self.device,
            "-f", "S16_LE",
            "-c", str(self.channels),
            "-r", str(self.sample_rate),
            self._temp_file,
        ]
        try:
            self._process = subprocess.Popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            self._remove_temp_file()
            raise CaptureError(f"Failed to start arecord: {e}") from e

        self._stderr_thread = threading.Thread(target=self._drain_stderr, daemon=True)
        self._stderr_thread.start()
        logger.info("Recording started (arecord PID: %d)", self._process.pid)

    def _drain_stderr(self) -> None:
        process = self._process
        if process is None or process.stderr is None:
            return
        for raw in process.stderr:
            line = raw.decode("utf-8", errors="replace").strip()
            # Overruns are common and not critical
            if line and "overrun" not in line:
                logger.warning("arecord: %s", line)

    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def stop(self) -> Optional[bytes]:
        if self._process is None:
            logger.warning("No recording in progress")
            return None

        logger.info("Stopping recording...")
        process = self._process
        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=STOP_TIMEOUT_SECONDS)
            except subprocess.TimeoutExpired:
                logger.warning("arecord did not exit, killing it")
                process.kill()
                process.wait()
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=1.0)

        data: Optional[bytes] = None
        try:
            if self._temp_file and os.path.exists(self._temp_file):
                with open(self._temp_file, "rb") as f:
                    data = f.read()
            else:
                logger.warning("No recorded file found")
        except OSError as e:
            logger.error("Failed to read recorded file: %s", e)
        finally:
            self._process = None
            self._remove_temp_file()

        if not data or len(data) <= WAV_HEADER_BYTES:
            logger.warning("Recording too short")
            return None
        return data

    def cleanup(self) -> None:
        if self._process is not None and self._process.poll() is None:
            try:
                self._process.kill()
                self._process.wait(timeout=STOP_TIMEOUT_SECONDS)
            except (OSError, subprocess.TimeoutExpired):
                pass
        self._process = None
        self._remove_temp_file()

    def _remove_temp_file(self) -> None:
        if self._temp_file and os.path.exists(self._temp_file):
            try:
                os.unlink(self._temp_file)
            except OSError as e:
                logger.warning("Failed to clean up temp file: %s", e)
        self._temp_file = None


class SoundDeviceCapture(CaptureEngine):
    """
    Records in-process from a PortAudio input stream.

    Thread-safe: the stream callback and stop() share a lock.
    """

    def __init__(self, device: str = "default", sample_rate: int = 16000, channels: int = 1):
        self.device = device
        self.sample_rate = sample_rate
        self.channels = channels
        self._stream = None
        self._blocks: List[np.ndarray] = []
        self._lock = threading.Lock()

    def start(self) -> None:
        if self._stream is not None:
            raise CaptureError("Recording already in progress")
        try:
            import sounddevice as sd

            self._blocks = []
            self._stream = sd.InputStream(
                device=None if self.device == "default" else self.device,
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype=np.float32,
                callback=self._audio_callback,
            )
            self._stream.start()
        except Exception as e:
            self._stream = None
            raise CaptureError(f"Failed to open input stream: {e}") from e
        logger.info("Recording started (sounddevice)")

    def _audio_callback(self, indata: np.ndarray, frames: int, time_info, status) -> None:
        if status:
            logger.debug("Audio callback status: %s", status)
        with self._lock:
            self._blocks.append(indata.copy().flatten())

    def is_running(self) -> bool:
        return self._stream is not None and bool(self._stream.active)

    def stop(self) -> Optional[bytes]:
        if self._stream is None:
            logger.warning("No recording in progress")
            return None

        logger.info("Stopping recording...")
        stream, self._stream = self._stream, None
        try:
            stream.stop()
            stream.close()
        except Exception as e:
            logger.warning("Error closing input stream: %s", e)

        with self._lock:
            blocks, self._blocks = self._blocks, []
        if not blocks:
            logger.warning("Recording too short")
            return None
        return audio_to_wav_bytes(np.concatenate(blocks), self.sample_rate)

    def cleanup(self) -> None:
        if self._stream is not None:
            try:
                self._stream.abort()
                self._stream.close()
            except Exception as e:
                logger.debug("Error aborting input stream: %s", e)
            self._stream = None
        with self._lock:
            self._blocks = []


def create_capture(snapshot: ConfigSnapshot) -> CaptureEngine:
    """Build the capture engine named by the configuration."""
    if snapshot.capture_backend == "sounddevice":
        return SoundDeviceCapture(device=snapshot.capture_device, sample_rate=snapshot.sample_rate)
    return ArecordCapture(device=snapshot.capture_device, sample_rate=snapshot.sample_rate)
