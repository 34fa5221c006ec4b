"""
Output functions for the clipboard, sounds and desktop notifications.

Uses system commands (xclip / wl-copy / pbcopy, paplay / aplay / afplay,
notify-send / osascript). Anything that waits on a subprocess runs on a
BackgroundTasks pool so it never holds up the session.
"""

import logging
import shutil
import subprocess
import sys
import textwrap
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .errors import DeliveryError

logger = logging.getLogger(__name__)

CLIPBOARD_COMMANDS: Dict[str, List[str]] = {
    "xclip": ["xclip", "-selection", "clipboard"],
    "wl-copy": ["wl-copy"],
    "pbcopy": ["pbcopy"],
}
# xclip first: more reliable than wl-copy under XWayland
CLIPBOARD_DETECTION_ORDER = ("xclip", "wl-copy", "pbcopy")

SOUND_FILES: Dict[str, str] = {
    "start": "start.wav",
    "stop": "stop.wav",
    "ready": "start.wav",  # same chime as start
    "error": "error.wav",
}

SUBPROCESS_TIMEOUT = 2.0


def format_text(text: str, wrap_width: int = 120, prefix: str = "", suffix: str = "") -> str:
    """
    Wrap text at word boundaries and add the configured prefix/suffix.

    Args:
        text: Transcribed text
        wrap_width: Maximum line length; 0 disables wrapping
        prefix: Prepended to the first line
        suffix: Appended to the last line
    """
    text = " ".join(text.split())
    if not text:
        return text
    if wrap_width > 0:
        text = textwrap.fill(
            text,
            width=wrap_width,
            break_long_words=False,
            break_on_hyphens=False,
        )
    return f"{prefix}{text}{suffix}"


class BackgroundTasks:
    """
    Bounded pool for fire-and-forget work.

    Task results are only logged; failures never propagate to the caller.
    """

    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="voxclip-bg")
        self._futures: List[Future] = []

    def submit(self, name: str, fn: Callable, *args, **kwargs) -> Future:
        future = self._executor.submit(fn, *args, **kwargs)

        def _log_result(f: Future) -> None:
            if f.cancelled():
                logger.debug("Background task %s cancelled", name)
                return
            exc = f.exception()
            if exc is not None:
                logger.warning("Background task %s failed: %s", name, exc)
            else:
                logger.debug("Background task %s finished", name)

        future.add_done_callback(_log_result)
        self._futures.append(future)
        return future

    def shutdown(self, timeout: float = 3.0) -> None:
        """Wait up to timeout for pending tasks, then drop the rest."""
        pending = [f for f in self._futures if not f.done()]
        if pending:
            _, not_done = wait(pending, timeout=timeout)
            for f in not_done:
                f.cancel()
        self._executor.shutdown(wait=False)
        self._futures.clear()


def detect_clipboard_tool(preferred: str = "auto") -> Optional[str]:
    """Return the clipboard tool to use, or None if none is installed."""
    candidates = CLIPBOARD_DETECTION_ORDER if preferred == "auto" else (preferred,)
    for tool in candidates:
        if shutil.which(CLIPBOARD_COMMANDS[tool][0]):
            return tool
    return None


class ClipboardSink:
    """
    Delivers text to the system clipboard.

    The clipboard tool is launched and fed the text; its exit status is
    watched in the background and only logged.
    """

    def __init__(self, tool: str = "auto", tasks: Optional[BackgroundTasks] = None):
        self.preferred = tool
        self.tool: Optional[str] = None
        self.tasks = tasks

    def deliver(self, text: str) -> None:
        """
        Copy text to the clipboard.

        Raises:
            DeliveryError: No clipboard tool could be launched
        """
        if not text or not text.strip():
            logger.warning("No text to copy")
            return

        if self.tool is None:
            self.tool = detect_clipboard_tool(self.preferred)
        if self.tool is None:
            raise DeliveryError(
                "No clipboard tool found. Install: sudo apt install xclip wl-clipboard"
            )

        command = CLIPBOARD_COMMANDS[self.tool]
        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
            process.stdin.write(text.encode("utf-8"))
            process.stdin.close()
        except OSError as e:
            raise DeliveryError(f"Failed to run {self.tool}: {e}") from e

        logger.info("Text copied to clipboard with %s", self.tool)

        if self.tasks is not None:
            self.tasks.submit(f"clipboard:{self.tool}", self._watch, process)

    def _watch(self, process: subprocess.Popen) -> None:
        try:
            returncode = process.wait(timeout=SUBPROCESS_TIMEOUT)
        except subprocess.TimeoutExpired:
            # wl-copy / xclip may keep serving the selection
            logger.debug("%s still running after %.0fs", self.tool, SUBPROCESS_TIMEOUT)
            return
        if returncode != 0:
            logger.warning("Clipboard copy may have failed (%s exited with %d)", self.tool, returncode)


def play_sound(sound_file: Path) -> None:
    """
    Play a sound file with the first available player.

    Args:
        sound_file: WAV/MP3 file to play
    """
    if sys.platform == "darwin":
        players = [["afplay", str(sound_file)]]
    else:
        volume = "16384" if "error" in sound_file.name else "32768"
        players = [
            ["paplay", "--volume", volume, str(sound_file)],
            ["aplay", "-q", str(sound_file)],
        ]

    for command in players:
        if shutil.which(command[0]) is None:
            continue
        subprocess.run(command, capture_output=True, timeout=SUBPROCESS_TIMEOUT * 5)
        return
    logger.debug("No audio player available for %s", sound_file)


def desktop_notify(message: str, title: str = "voxclip") -> None:
    """Show a desktop notification (notify-send on Linux, osascript on macOS)."""
    if sys.platform == "darwin":
        escaped_message = message.replace("\\", "\\\\").replace('"', '\\"')
        escaped_title = title.replace("\\", "\\\\").replace('"', '\\"')
        command = ["osascript", "-e", f'display notification "{escaped_message}" with title "{escaped_title}"']
    else:
        command = ["notify-send", title, message]

    if shutil.which(command[0]) is None:
        return
    subprocess.run(command, capture_output=True, timeout=SUBPROCESS_TIMEOUT)


class Notifier:
    """
    Fire-and-forget audio cues for session events.

    Events: start, stop, ready, error. Missing sound files and players are
    ignored.
    """

    def __init__(
        self,
        sounds_dir: Path,
        tasks: Optional[BackgroundTasks] = None,
        enabled: bool = True,
    ):
        self.sounds_dir = Path(sounds_dir)
        self.tasks = tasks
        self.enabled = enabled

    def notify(self, event: str, message: Optional[str] = None) -> None:
        """Queue the sound for event, plus a desktop notification when message is given."""
        if not self.enabled or self.tasks is None:
            return

        sound_name = SOUND_FILES.get(event)
        if sound_name:
            sound_file = self.sounds_dir / sound_name
            if sound_file.is_file():
                self.tasks.submit(f"sound:{event}", play_sound, sound_file)
            else:
                logger.debug("Sound file not found: %s", sound_file)

        if message:
            self.tasks.submit(f"notify:{event}", desktop_notify, message)
