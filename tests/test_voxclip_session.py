"""
Tests for voxclip Session.

Tests the recording session lifecycle with fake capture, provider and
clipboard collaborators.
"""

import dataclasses

import numpy as np
import pytest
from unittest.mock import Mock


def make_wav(seconds, sample_rate=16000):
    from voxclip.audio import audio_to_wav_bytes

    return audio_to_wav_bytes(np.zeros(int(seconds * sample_rate), dtype=np.float32), sample_rate)


class FakeCapture:
    """Capture engine that returns canned audio."""

    process_name = "arecord"

    def __init__(self, audio=None, start_error=None, dies=False, on_start=None):
        self.audio = audio
        self.start_error = start_error
        self.dies = dies
        self.on_start = on_start
        self.running = False
        self.cleaned_up = False

    @property
    def pid(self):
        return 31337

    def start(self):
        if self.start_error:
            raise self.start_error
        self.running = not self.dies
        if self.on_start:
            self.on_start()

    def stop(self):
        self.running = False
        return self.audio

    def is_running(self):
        return self.running

    def cleanup(self):
        self.cleaned_up = True


class TestSession:
    """Tests for Session.run()."""

    def create_session(self, tmp_path, audio=None, stop_early=True, snapshot_changes=None, **kwargs):
        from voxclip.backup import BackupStore
        from voxclip.config import Config
        from voxclip.session import Session
        from voxclip.types import TranscriptionResult

        snapshot = Config(data_dir=tmp_path).snapshot()
        if snapshot_changes:
            snapshot = dataclasses.replace(snapshot, **snapshot_changes)

        provider = Mock()
        provider.name = "nexara"
        provider.transcribe.return_value = TranscriptionResult(
            text="hello world", provider="nexara", elapsed_ms=120, attempts=1
        )

        defaults = {
            "config_snapshot": snapshot,
            "provider": provider,
            "capture": FakeCapture(audio=make_wav(1.0) if audio is None else audio),
            "sink": Mock(),
            "backups": BackupStore(tmp_path / "recordings"),
            "channel": Mock(),
            "notifier": Mock(),
            "coordinator": Mock(),
            "poll_interval": 0.01,
        }
        defaults.update(kwargs)
        session = Session(**defaults)
        if stop_early:
            session.request_stop()
        return session

    def backups_on_disk(self, tmp_path):
        recordings = tmp_path / "recordings"
        return sorted(p.name for p in recordings.iterdir()) if recordings.exists() else []

    def test_successful_session(self, tmp_path):
        from voxclip.types import SessionState

        session = self.create_session(tmp_path)

        assert session.run() == 0

        assert session.state == SessionState.COMPLETED
        session.provider.transcribe.assert_called_once()
        session.sink.deliver.assert_called_once_with("hello world")
        assert session.result.text == "hello world"
        assert session.backup is None
        assert self.backups_on_disk(tmp_path) == []

    def test_audio_handed_to_provider(self, tmp_path):
        audio = make_wav(1.0)
        session = self.create_session(tmp_path, audio=audio)

        session.run()

        session.provider.transcribe.assert_called_once_with(audio)
        assert session.audio is None

    def test_stop_channel_stays_armed_until_close(self, tmp_path):
        session = self.create_session(tmp_path)

        session.run()

        session.channel.listen.assert_called_once_with(session.request_stop)
        session.channel.close.assert_not_called()

        session.close()
        session.close()

        session.channel.close.assert_called_once()

    def test_backup_written_before_transcription(self, tmp_path):
        from voxclip.types import TranscriptionResult

        session = self.create_session(tmp_path)
        backup_path = tmp_path / "recordings" / f"{session.id}.wav"
        seen = {}

        def transcribe(audio):
            seen["backup_exists"] = backup_path.exists()
            seen["backup_bytes"] = backup_path.read_bytes() if backup_path.exists() else None
            return TranscriptionResult(text="hello world", provider="nexara", elapsed_ms=5)

        session.provider.transcribe.side_effect = transcribe

        assert session.run() == 0

        assert seen["backup_exists"] is True
        assert seen["backup_bytes"] == session.capture.audio
        assert not backup_path.exists()

    def test_stop_event_during_recording(self, tmp_path):
        from voxclip.types import SessionState

        holder = {}
        capture = FakeCapture(audio=make_wav(1.0), on_start=lambda: holder["session"].request_stop())
        session = self.create_session(tmp_path, stop_early=False, capture=capture)
        holder["session"] = session

        assert session.run() == 0
        assert session.state == SessionState.COMPLETED

    def test_capture_pid_tracked(self, tmp_path):
        session = self.create_session(tmp_path)

        session.run()

        session.coordinator.track_capture.assert_called_once_with(31337, "arecord")
        session.coordinator.untrack_capture.assert_called_once()
        assert session.capture.cleaned_up is True

    def test_notifier_events(self, tmp_path):
        session = self.create_session(tmp_path)

        session.run()

        events = [c.args[0] for c in session.notifier.notify.call_args_list]
        assert events == ["start", "stop", "ready"]

    def test_text_formatted_before_delivery(self, tmp_path):
        session = self.create_session(
            tmp_path,
            snapshot_changes={"text_prefix": "> ", "text_suffix": " <", "wrap_width": 6},
        )

        session.run()

        session.sink.deliver.assert_called_once_with("> hello\nworld <")

    def test_no_audio_exits_cleanly(self, tmp_path):
        from voxclip.types import SessionState

        session = self.create_session(tmp_path, capture=FakeCapture(audio=None))

        assert session.run() == 0

        assert session.state == SessionState.FAILED
        assert session.no_audio is True
        session.provider.transcribe.assert_not_called()
        session.sink.deliver.assert_not_called()
        assert self.backups_on_disk(tmp_path) == []

    def test_short_recording_treated_as_no_audio(self, tmp_path):
        session = self.create_session(tmp_path, audio=make_wav(0.1))

        assert session.run() == 0

        assert session.no_audio is True
        session.provider.transcribe.assert_not_called()

    def test_min_duration_zero_accepts_short_audio(self, tmp_path):
        from voxclip.types import SessionState

        session = self.create_session(tmp_path, audio=make_wav(0.1), snapshot_changes={"min_duration": 0.0})

        assert session.run() == 0
        assert session.state == SessionState.COMPLETED

    def test_provider_failure_keeps_backup(self, tmp_path):
        from voxclip.errors import NetworkError
        from voxclip.types import SessionState

        session = self.create_session(tmp_path)
        error = NetworkError("reset by peer", provider="nexara", attempts=10)
        session.provider.transcribe.side_effect = error

        assert session.run() == 1

        assert session.state == SessionState.FAILED
        assert session.error is error
        assert self.backups_on_disk(tmp_path) == [f"{session.id}.wav"]
        session.sink.deliver.assert_not_called()
        session.notifier.notify.assert_called_with("error", message="Voice input failed: reset by peer")

    def test_delivery_failure_keeps_backup(self, tmp_path):
        from voxclip.errors import DeliveryError
        from voxclip.types import SessionState

        session = self.create_session(tmp_path)
        session.sink.deliver.side_effect = DeliveryError("No clipboard tool found")

        assert session.run() == 1

        assert session.state == SessionState.FAILED
        assert self.backups_on_disk(tmp_path) == [f"{session.id}.wav"]

    def test_capture_start_failure(self, tmp_path):
        from voxclip.errors import CaptureError
        from voxclip.types import SessionState

        capture = FakeCapture(start_error=CaptureError("arecord not found"))
        session = self.create_session(tmp_path, capture=capture)

        assert session.run() == 1

        assert session.state == SessionState.FAILED
        assert isinstance(session.error, CaptureError)
        session.provider.transcribe.assert_not_called()

    def test_capture_exits_on_its_own(self, tmp_path):
        from voxclip.errors import CaptureError
        from voxclip.types import SessionState

        capture = FakeCapture(audio=make_wav(1.0), dies=True)
        session = self.create_session(tmp_path, stop_early=False, capture=capture)

        assert session.run() == 1

        assert session.state == SessionState.FAILED
        assert isinstance(session.error, CaptureError)
        assert self.backups_on_disk(tmp_path) == [f"{session.id}.wav"]
        session.provider.transcribe.assert_not_called()

    def test_unexpected_error_fails_session(self, tmp_path):
        from voxclip.types import SessionState

        session = self.create_session(tmp_path)
        session.provider.transcribe.side_effect = KeyError("boom")

        assert session.run() == 1
        assert session.state == SessionState.FAILED

    def test_backup_failure_does_not_stop_transcription(self, tmp_path):
        from voxclip.backup import BackupStore
        from voxclip.types import SessionState

        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        session = self.create_session(tmp_path, backups=BackupStore(blocker / "recordings"))

        assert session.run() == 0
        assert session.state == SessionState.COMPLETED


class TestStateMachine:

    def create_session(self, tmp_path):
        from voxclip.backup import BackupStore
        from voxclip.config import Config
        from voxclip.session import Session

        return Session(
            config_snapshot=Config(data_dir=tmp_path).snapshot(),
            provider=Mock(),
            capture=FakeCapture(),
            sink=Mock(),
            backups=BackupStore(tmp_path),
        )

    def test_starts_idle(self, tmp_path):
        from voxclip.types import SessionState

        assert self.create_session(tmp_path).state == SessionState.IDLE

    def test_illegal_transition(self, tmp_path):
        from voxclip.types import SessionState

        session = self.create_session(tmp_path)

        with pytest.raises(RuntimeError):
            session.transition(SessionState.TRANSCRIBING)

    def test_terminal_states_final(self, tmp_path):
        from voxclip.types import SessionState

        session = self.create_session(tmp_path)
        session.transition(SessionState.FAILED)

        with pytest.raises(RuntimeError):
            session.transition(SessionState.RECORDING)

    def test_every_state_can_fail(self):
        from voxclip.session import TRANSITIONS
        from voxclip.types import SessionState

        for state, targets in TRANSITIONS.items():
            if not state.is_terminal:
                assert SessionState.FAILED in targets

    def test_listen_for_stop_once(self, tmp_path):
        session = self.create_session(tmp_path)
        session.channel = Mock()

        session.listen_for_stop()
        session.listen_for_stop()

        session.channel.listen.assert_called_once()


class TestSessionId:

    def test_ids_unique_and_lowercase(self):
        from voxclip.session import generate_session_id

        ids = {generate_session_id() for _ in range(200)}

        assert len(ids) == 200
        for session_id in ids:
            assert session_id.isalnum()
            assert session_id == session_id.lower()
