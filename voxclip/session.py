"""
Session management for the recording lifecycle.

A Session represents one invocation that owns the lock: record until the
stop event arrives, back the audio up, transcribe it, deliver the text.

    IDLE -> RECORDING -> STOP_REQUESTED -> TRANSCRIBING -> DELIVERING -> COMPLETED
                 any non-terminal state -> FAILED

Phases run strictly one after another on the main thread. The stop event
handler only sets a flag.
"""

import logging
import random
import string
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, FrozenSet, Optional

from .audio import CaptureEngine, wav_duration
from .backup import BackupStore
from .channel import StopChannel
from .errors import CaptureError
from .logs import SessionLogger
from .output import ClipboardSink, Notifier, format_text
from .providers import Provider
from .types import BackupRecord, ConfigSnapshot, SessionState, TranscriptionResult

if TYPE_CHECKING:
    from .lock import InstanceCoordinator

logger = logging.getLogger(__name__)

S = SessionState
TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    S.IDLE: frozenset({S.RECORDING, S.FAILED}),
    S.RECORDING: frozenset({S.STOP_REQUESTED, S.FAILED}),
    S.STOP_REQUESTED: frozenset({S.TRANSCRIBING, S.FAILED}),
    S.TRANSCRIBING: frozenset({S.DELIVERING, S.FAILED}),
    S.DELIVERING: frozenset({S.COMPLETED, S.FAILED}),
    S.COMPLETED: frozenset(),
    S.FAILED: frozenset(),
}

EXIT_OK = 0
EXIT_FAILURE = 1


def generate_session_id() -> str:
    """Base-36 millisecond timestamp plus a random suffix, e.g. ``m1x2k3abcde``."""
    digits = string.digits + string.ascii_lowercase
    millis = int(time.time() * 1000)
    encoded = ""
    while millis:
        millis, remainder = divmod(millis, 36)
        encoded = digits[remainder] + encoded
    suffix = "".join(random.choices(digits, k=5))
    return f"{encoded or '0'}{suffix}"


@dataclass
class Session:
    """
    Represents one capture/transcribe/deliver session.

    The recorded audio belongs to the session until it is handed to the
    provider. The backup is deleted only after a successful delivery.
    """
    config_snapshot: ConfigSnapshot
    provider: Provider
    capture: CaptureEngine
    sink: ClipboardSink
    backups: BackupStore
    channel: Optional[StopChannel] = None
    notifier: Optional[Notifier] = None
    coordinator: Optional["InstanceCoordinator"] = None
    id: str = field(default_factory=generate_session_id)
    poll_interval: float = 0.1

    # Runtime state
    state: SessionState = SessionState.IDLE
    start_time: float = 0.0
    audio: Optional[bytes] = None
    backup: Optional[BackupRecord] = None
    result: Optional[TranscriptionResult] = None
    error: Optional[BaseException] = None
    no_audio: bool = False
    _stop_event: threading.Event = field(default_factory=threading.Event)
    _listening: bool = False

    def __post_init__(self) -> None:
        self.log = SessionLogger(logger, self.id)

    # State machine

    def transition(self, new_state: SessionState) -> None:
        """
        Move to new_state.

        Raises:
            RuntimeError: The transition is not allowed from the current state
        """
        if new_state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal session transition {self.state.name} -> {new_state.name}")
        old_state, self.state = self.state, new_state
        self.log.event("STATE", level=logging.DEBUG, old=old_state.value, new=new_state.value)

    def request_stop(self) -> None:
        """Called from the stop channel handler. Only sets a flag."""
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def listen_for_stop(self) -> None:
        """
        Arm the stop channel.

        Call before the lock is written so a stop relayed right after the
        lock becomes visible is never lost.
        """
        if self.channel is not None and not self._listening:
            self.channel.listen(self.request_stop)
            self._listening = True

    # Pipeline

    def run(self) -> int:
        """
        Drive the session to a terminal state.

        Returns:
            Process exit status: 0 on completion or when nothing was
            recorded, 1 on any failure
        """
        self.start_time = time.time()
        self.log.event("SESSION_START", provider=self.provider.name)
        try:
            self._record()
            audio = self._collect_audio()
            if audio is None:
                return EXIT_OK
            self._backup(audio)
            text = self._transcribe(audio)
            self._deliver(text)
        except Exception as e:
            return self._fail(e)
        finally:
            self._cleanup()
        return EXIT_OK

    def _record(self) -> None:
        self.listen_for_stop()
        self.transition(S.RECORDING)
        self.capture.start()

        if self.coordinator is not None and self.capture.pid is not None:
            self.coordinator.track_capture(self.capture.pid, self.capture.process_name or "")

        self.log.event("RECORDING_START")
        if self.notifier:
            self.notifier.notify("start")

        if not self._wait_for_stop():
            # Recorder died on its own; keep what it captured for recovery
            audio = self.capture.stop()
            if audio:
                self.backup = self.backups.save(self.id, audio)
            raise CaptureError("Recording process exited before a stop was requested")

    def _wait_for_stop(self) -> bool:
        """
        Block until the stop event arrives or the recorder exits.

        Returns:
            True if a stop was requested
        """
        while not self._stop_event.wait(self.poll_interval):
            if not self.capture.is_running():
                return self._stop_event.is_set()
        return True

    def _collect_audio(self) -> Optional[bytes]:
        """Stop the recorder. Returns None (session FAILED, exit 0) when nothing usable was recorded."""
        self.transition(S.STOP_REQUESTED)
        audio = self.capture.stop()
        if self.notifier:
            self.notifier.notify("stop")

        recording_ms = int((time.time() - self.start_time) * 1000)
        duration = wav_duration(audio, self.config_snapshot.sample_rate)
        if audio is None or duration < self.config_snapshot.min_duration:
            self.no_audio = True
            self.log.event(
                "RECORDING_EMPTY",
                level=logging.WARNING,
                duration_ms=recording_ms,
                audio_seconds=round(duration, 3),
            )
            self.transition(S.FAILED)
            return None

        self.audio = audio
        self.log.event(
            "RECORDING_SUCCESS",
            duration_ms=recording_ms,
            audio_seconds=round(duration, 3),
            audio_size=len(audio),
        )
        return audio

    def _backup(self, audio: bytes) -> None:
        self.backup = self.backups.save(self.id, audio)
        if self.backup is not None:
            self.log.event("BACKUP_SAVED", path=str(self.backup.path), size=len(audio))
        else:
            self.log.event("BACKUP_FAILED", level=logging.WARNING)

    def _transcribe(self, audio: bytes) -> str:
        self.transition(S.TRANSCRIBING)
        # Ownership of the audio passes to the provider
        self.audio = None
        self.result = self.provider.transcribe(audio)
        self.log.event(
            "TRANSCRIPTION",
            text=self.result.text,
            elapsed_ms=self.result.elapsed_ms,
            attempts=self.result.attempts,
        )
        return self.result.text

    def _deliver(self, text: str) -> None:
        self.transition(S.DELIVERING)
        snapshot = self.config_snapshot
        formatted = format_text(
            text,
            wrap_width=snapshot.wrap_width,
            prefix=snapshot.text_prefix,
            suffix=snapshot.text_suffix,
        )
        self.sink.deliver(formatted)
        if self.notifier:
            self.notifier.notify("ready")
        self.log.event("CLIPBOARD_SUCCESS", text_length=len(formatted))

        self.backups.discard(self.backup)
        self.backup = None
        self.transition(S.COMPLETED)

        total_s = time.time() - self.start_time
        self.log.event("SESSION_COMPLETE", total_seconds=round(total_s, 2))

    def _fail(self, error: BaseException) -> int:
        """Top-level failure handler: log, notify, keep the backup, return exit status."""
        self.error = error
        phase = self.state.value
        if not self.state.is_terminal:
            self.transition(S.FAILED)

        self.log.failure(error, phase)
        if not hasattr(error, "kind"):
            self.log.exception("Unexpected error during %s", phase)
        if self.backup is not None:
            self.log.event("BACKUP_RETAINED", level=logging.WARNING, path=str(self.backup.path))
        if self.notifier:
            self.notifier.notify("error", message=f"Voice input failed: {error}")
        return EXIT_FAILURE

    def _cleanup(self) -> None:
        try:
            self.capture.cleanup()
        except Exception as e:
            logger.error("Error during capture cleanup: %s", e)
        if self.coordinator is not None:
            self.coordinator.untrack_capture()

    def close(self) -> None:
        """
        Disarm the stop channel.

        Call only after the lock is released; until then a relayed stop
        must land on our handler instead of the default action.
        """
        if self.channel is not None and self._listening:
            self.channel.close()
            self._listening = False
