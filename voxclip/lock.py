"""
Instance coordination through a PID lock file.

The first invocation writes its PID to the lock file and owns the session.
A later invocation that finds a live owner relays a stop event to it and
exits. A lock whose owner is gone is stale and gets replaced.

Liveness is probed with psutil on the local host only.
"""

import atexit
import logging
import os
import signal
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union

import psutil

from .channel import StopChannel
from .errors import LockError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NoLock:
    """No lock file exists."""


@dataclass(frozen=True)
class LiveLock:
    """The lock file names a running process."""
    pid: int


@dataclass(frozen=True)
class StaleLock:
    """The lock file names a dead process, or holds no valid PID."""
    pid: Optional[int]


LockState = Union[NoLock, LiveLock, StaleLock]


@dataclass(frozen=True)
class ProcessLock:
    """Proof that this process owns the active session."""
    path: Path
    owner_pid: int


def is_process_running(pid: int) -> bool:
    """Check if a process with the given PID is running (zombies count as dead)."""
    if pid <= 0:
        return False
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        # Exists but belongs to someone else
        return True


class InstanceCoordinator:
    """
    Decides between "start a session" and "stop the running one".

    Usage:
        coordinator = InstanceCoordinator(lock_path, SignalStopChannel())
        state = coordinator.inspect()
        if isinstance(state, LiveLock):
            coordinator.relay_stop(state.pid)
            sys.exit(0)
        lock = coordinator.acquire()  # None if another owner won the race
        try:
            ...
        finally:
            coordinator.release()
    """

    def __init__(self, lock_path: Path, channel: StopChannel, pid: Optional[int] = None):
        self.lock_path = Path(lock_path)
        self.capture_path = self.lock_path.with_name(self.lock_path.name + ".capture")
        self.channel = channel
        self.pid = pid or os.getpid()
        self._owned = False
        self._handlers_installed = False
        self._previous_handlers: Dict[int, object] = {}
        self._previous_excepthook = None

    def inspect(self) -> LockState:
        """Read the lock file and classify it."""
        try:
            raw = self.lock_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return NoLock()
        except OSError as e:
            logger.warning("Cannot read lock file %s: %s", self.lock_path, e)
            return NoLock()

        try:
            pid = int(raw)
        except ValueError:
            logger.warning("Lock file %s holds an invalid PID: %r", self.lock_path, raw)
            return StaleLock(None)

        # Our own PID in the file means the previous owner's PID was reused
        if pid == self.pid or not is_process_running(pid):
            return StaleLock(pid)
        return LiveLock(pid)

    def relay_stop(self, pid: int) -> bool:
        """
        Send the stop event to the running owner.

        Returns:
            True if the event was delivered
        """
        logger.info("Stopping recording (PID: %d)", pid)
        try:
            self.channel.send(pid)
        except OSError as e:
            logger.warning("Failed to send stop signal to PID %d: %s", pid, e)
            return False
        return True

    def clear_stale(self, state: StaleLock) -> None:
        """Remove a lock left behind by a process that died without cleanup."""
        logger.info("Stale lock found (PID %s not running), cleaning up", state.pid)
        try:
            self._remove_lock_file()
        except LockError as e:
            logger.warning("%s", e)

    def _remove_lock_file(self) -> None:
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise LockError(f"Failed to remove lock file {self.lock_path}: {e}") from e

    def acquire(self) -> Optional[ProcessLock]:
        """
        Write our PID to the lock file and arm release on every exit path.

        Stale locks are cleared and the tracked capture process of a crashed
        session is reaped first. I/O errors are logged and the session
        proceeds without a lock file.

        Returns:
            The ProcessLock, or None when another process took the lock
            first (a stop event has then been relayed to it)
        """
        self.reap_orphaned_capture()

        for _ in range(2):
            try:
                self.lock_path.parent.mkdir(parents=True, exist_ok=True)
                fd = os.open(self.lock_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
            except FileExistsError:
                state = self.inspect()
                if isinstance(state, LiveLock):
                    logger.warning("Another session started concurrently (PID %d)", state.pid)
                    self.relay_stop(state.pid)
                    return None
                if isinstance(state, StaleLock):
                    self.clear_stale(state)
                continue
            except OSError as e:
                logger.warning("Failed to create lock file %s: %s", self.lock_path, e)
                break
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(str(self.pid))
            logger.info("Created lock file %s (PID: %d)", self.lock_path, self.pid)
            break

        self._owned = True
        self._install_release_handlers()
        return ProcessLock(path=self.lock_path, owner_pid=self.pid)

    def release(self) -> None:
        """Remove the lock file if it still names us. Safe to call repeatedly."""
        if not self._owned:
            return
        self._owned = False

        try:
            if self.lock_path.read_text(encoding="utf-8").strip() == str(self.pid):
                self._remove_lock_file()
                logger.info("Cleaned up lock file")
        except FileNotFoundError:
            pass
        except (OSError, LockError) as e:
            logger.warning("Failed to clean up lock file %s: %s", self.lock_path, e)

        self.untrack_capture()
        self._restore_handlers()

    @property
    def owned(self) -> bool:
        return self._owned

    # Capture process tracking

    def track_capture(self, pid: int, name: str) -> None:
        """Remember the capture subprocess so a later run can reap it if we crash."""
        try:
            self.capture_path.write_text(f"{pid} {name}", encoding="utf-8")
        except OSError as e:
            logger.warning("Failed to record capture PID: %s", e)

    def untrack_capture(self) -> None:
        try:
            self.capture_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to remove %s: %s", self.capture_path, e)

    def reap_orphaned_capture(self) -> Optional[int]:
        """
        Terminate the capture process recorded by a crashed session.

        Only the exact PID written by track_capture() is targeted, and only
        while its process name still matches (PIDs get reused).

        Returns:
            The PID that was terminated, if any
        """
        try:
            raw = self.capture_path.read_text(encoding="utf-8").split()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Cannot read %s: %s", self.capture_path, e)
            return None

        reaped = None
        try:
            pid, name = int(raw[0]), raw[1]
            proc = psutil.Process(pid)
            if proc.name() == name:
                proc.terminate()
                reaped = pid
                logger.info("Killed orphaned %s process (PID: %d)", name, pid)
        except (IndexError, ValueError):
            logger.warning("Ignoring malformed capture record: %r", raw)
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.debug("Orphaned capture process not reaped: %s", e)

        self.untrack_capture()
        return reaped

    # Exit-path handlers

    def _install_release_handlers(self) -> None:
        if self._handlers_installed:
            return
        self._handlers_installed = True

        atexit.register(self.release)

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                self._previous_handlers[signum] = signal.signal(signum, self._on_terminate)
            except ValueError:
                # Not the main thread; atexit still covers normal exits
                logger.debug("Cannot install handler for signal %d", signum)

        self._previous_excepthook = sys.excepthook

        def _excepthook(exc_type, exc, tb):
            self.release()
            self._previous_excepthook(exc_type, exc, tb)

        sys.excepthook = _excepthook

    def _restore_handlers(self) -> None:
        if not self._handlers_installed:
            return
        self._handlers_installed = False

        atexit.unregister(self.release)
        for signum, handler in self._previous_handlers.items():
            try:
                signal.signal(signum, handler)
            except (ValueError, TypeError):
                pass
        self._previous_handlers.clear()
        if self._previous_excepthook is not None:
            sys.excepthook = self._previous_excepthook
            self._previous_excepthook = None

    def _on_terminate(self, signum, frame) -> None:
        """Handle SIGINT/SIGTERM: release the lock, then exit."""
        logger.warning("Received %s - cleaning up", signal.Signals(signum).name)
        self.release()
        raise SystemExit(128 + signum)
