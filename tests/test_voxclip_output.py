"""
Tests for voxclip output: text formatting, clipboard, sounds.
"""

import subprocess

import pytest
from unittest.mock import Mock, patch


class TestFormatText:

    def test_short_text_unchanged(self):
        from voxclip.output import format_text

        assert format_text("hello world") == "hello world"

    def test_whitespace_collapsed(self):
        from voxclip.output import format_text

        assert format_text("  hello \n  world  ") == "hello world"

    def test_wraps_at_word_boundaries(self):
        from voxclip.output import format_text

        text = format_text("one two three four five", wrap_width=9)

        assert text == "one two\nthree\nfour five"

    def test_long_words_not_broken(self):
        from voxclip.output import format_text

        assert format_text("supercalifragilistic ok", wrap_width=5) == "supercalifragilistic\nok"

    def test_zero_width_disables_wrapping(self):
        from voxclip.output import format_text

        text = "word " * 50
        assert "\n" not in format_text(text, wrap_width=0)

    def test_prefix_and_suffix(self):
        from voxclip.output import format_text

        assert format_text("note", prefix="- ", suffix=".") == "- note."

    def test_empty_text(self):
        from voxclip.output import format_text

        assert format_text("   ", prefix=">") == ""


class TestClipboardDetection:

    def test_prefers_xclip(self):
        from voxclip.output import detect_clipboard_tool

        with patch("voxclip.output.shutil.which", side_effect=lambda name: f"/usr/bin/{name}"):
            assert detect_clipboard_tool() == "xclip"

    def test_falls_back_to_wl_copy(self):
        from voxclip.output import detect_clipboard_tool

        with patch("voxclip.output.shutil.which", side_effect=lambda name: "/usr/bin/wl-copy" if name == "wl-copy" else None):
            assert detect_clipboard_tool() == "wl-copy"

    def test_explicit_tool_only(self):
        from voxclip.output import detect_clipboard_tool

        with patch("voxclip.output.shutil.which", side_effect=lambda name: "/usr/bin/xclip" if name == "xclip" else None):
            assert detect_clipboard_tool("pbcopy") is None

    def test_nothing_installed(self):
        from voxclip.output import detect_clipboard_tool

        with patch("voxclip.output.shutil.which", return_value=None):
            assert detect_clipboard_tool() is None


class TestClipboardSink:

    def test_deliver_writes_to_tool(self):
        from voxclip.output import ClipboardSink

        process = Mock()
        tasks = Mock()
        sink = ClipboardSink("auto", tasks=tasks)

        with patch("voxclip.output.shutil.which", return_value="/usr/bin/xclip"), \
             patch("voxclip.output.subprocess.Popen", return_value=process) as popen:
            sink.deliver("привет мир")

        assert popen.call_args.args[0] == ["xclip", "-selection", "clipboard"]
        process.stdin.write.assert_called_once_with("привет мир".encode("utf-8"))
        process.stdin.close.assert_called_once()
        tasks.submit.assert_called_once_with("clipboard:xclip", sink._watch, process)

    def test_no_tool_raises(self):
        from voxclip.errors import DeliveryError
        from voxclip.output import ClipboardSink

        with patch("voxclip.output.shutil.which", return_value=None):
            with pytest.raises(DeliveryError):
                ClipboardSink().deliver("text")

    def test_launch_failure_raises(self):
        from voxclip.errors import DeliveryError
        from voxclip.output import ClipboardSink

        with patch("voxclip.output.shutil.which", return_value="/usr/bin/wl-copy"), \
             patch("voxclip.output.subprocess.Popen", side_effect=OSError("exec format error")):
            with pytest.raises(DeliveryError):
                ClipboardSink("wl-copy").deliver("text")

    def test_empty_text_skipped(self):
        from voxclip.output import ClipboardSink

        with patch("voxclip.output.subprocess.Popen") as popen:
            ClipboardSink().deliver("   ")

        popen.assert_not_called()

    def test_watch_tolerates_failure(self):
        from voxclip.output import ClipboardSink

        sink = ClipboardSink("xclip")
        sink.tool = "xclip"
        failed = Mock()
        failed.wait.return_value = 1
        lingering = Mock()
        lingering.wait.side_effect = subprocess.TimeoutExpired("xclip", 2)

        sink._watch(failed)
        sink._watch(lingering)


class TestBackgroundTasks:

    def test_runs_task(self):
        from voxclip.output import BackgroundTasks

        tasks = BackgroundTasks(max_workers=1)
        future = tasks.submit("add", lambda a, b: a + b, 2, 3)

        assert future.result(timeout=5) == 5
        tasks.shutdown()

    def test_failure_contained(self):
        from voxclip.output import BackgroundTasks

        def broken():
            raise RuntimeError("player crashed")

        tasks = BackgroundTasks(max_workers=1)
        future = tasks.submit("broken", broken)

        assert isinstance(future.exception(timeout=5), RuntimeError)
        tasks.shutdown()


class TestNotifier:

    def test_plays_existing_sound(self, tmp_path):
        from voxclip.output import Notifier, play_sound

        (tmp_path / "start.wav").write_bytes(b"RIFF")
        tasks = Mock()

        Notifier(tmp_path, tasks=tasks).notify("start")

        tasks.submit.assert_called_once_with("sound:start", play_sound, tmp_path / "start.wav")

    def test_missing_sound_ignored(self, tmp_path):
        from voxclip.output import Notifier

        tasks = Mock()
        Notifier(tmp_path, tasks=tasks).notify("stop")

        tasks.submit.assert_not_called()

    def test_disabled(self, tmp_path):
        from voxclip.output import Notifier

        (tmp_path / "error.wav").write_bytes(b"RIFF")
        tasks = Mock()
        Notifier(tmp_path, tasks=tasks, enabled=False).notify("error", message="failed")

        tasks.submit.assert_not_called()

    def test_error_message_shows_notification(self, tmp_path):
        from voxclip.output import Notifier, desktop_notify

        tasks = Mock()
        Notifier(tmp_path, tasks=tasks).notify("error", message="Voice input failed")

        tasks.submit.assert_called_once_with("notify:error", desktop_notify, "Voice input failed")


class TestPlaySound:

    def test_linux_prefers_paplay(self, tmp_path):
        from voxclip.output import play_sound

        sound = tmp_path / "start.wav"
        with patch("voxclip.output.sys.platform", "linux"), \
             patch("voxclip.output.shutil.which", return_value="/usr/bin/paplay"), \
             patch("voxclip.output.subprocess.run") as run:
            play_sound(sound)

        assert run.call_args.args[0] == ["paplay", "--volume", "32768", str(sound)]

    def test_falls_back_to_aplay(self, tmp_path):
        from voxclip.output import play_sound

        sound = tmp_path / "error.wav"
        with patch("voxclip.output.sys.platform", "linux"), \
             patch("voxclip.output.shutil.which", side_effect=lambda name: "/usr/bin/aplay" if name == "aplay" else None), \
             patch("voxclip.output.subprocess.run") as run:
            play_sound(sound)

        assert run.call_args.args[0] == ["aplay", "-q", str(sound)]

    def test_no_player(self, tmp_path):
        from voxclip.output import play_sound

        with patch("voxclip.output.shutil.which", return_value=None), \
             patch("voxclip.output.subprocess.run") as run:
            play_sound(tmp_path / "start.wav")

        run.assert_not_called()
