"""
Stop channel: how a second invocation tells the owning session to stop.

The coordinator only sends on the channel after it has read a live lock,
so a stop can never arrive before the owner exists.
"""

import logging
import os
import signal
from abc import ABC, abstractmethod
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class StopChannel(ABC):
    """Delivers a single "stop" event to the process that owns the lock."""

    @abstractmethod
    def send(self, pid: int) -> None:
        """
        Deliver a stop event to pid.

        Raises:
            OSError: The event could not be delivered
        """

    @abstractmethod
    def listen(self, callback: Callable[[], None]) -> None:
        """Call callback when a stop event arrives for this process."""

    def close(self) -> None:
        """Stop listening."""


class SignalStopChannel(StopChannel):
    """
    Stop channel over a POSIX signal (SIGUSR1 by default).

    The callback runs inside the signal handler on the main thread, so it
    must only set flags (e.g. a threading.Event).
    """

    def __init__(self, signum: int = signal.SIGUSR1):
        self.signum = signum
        self._previous: Optional[object] = None
        self._listening = False

    def send(self, pid: int) -> None:
        os.kill(pid, self.signum)
        logger.info("Stop signal %s sent to PID %d", signal.Signals(self.signum).name, pid)

    def listen(self, callback: Callable[[], None]) -> None:
        def _handler(signum, frame):
            logger.info("Received stop signal")
            callback()

        self._previous = signal.signal(self.signum, _handler)
        self._listening = True

    def close(self) -> None:
        if not self._listening:
            return
        signal.signal(self.signum, self._previous if self._previous is not None else signal.SIG_DFL)
        self._listening = False
