"""
Main entry point for voxclip.

Run with: python -m voxclip

The first invocation starts recording. Running it again (usually from the
same desktop shortcut) stops the recording; the first process then
transcribes the audio and copies the text to the clipboard.
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .audio import create_capture
from .backup import BackupStore
from .channel import SignalStopChannel
from .config import ENV_PREFIX, Config
from .errors import ConfigurationError
from .lock import InstanceCoordinator, LiveLock, StaleLock
from .logs import setup_logging
from .output import BackgroundTasks, ClipboardSink, Notifier
from .providers import describe_all, select_provider
from .session import EXIT_FAILURE, EXIT_OK, Session

logger = logging.getLogger("voxclip")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="voxclip",
        description="Toggle voice recording; the second call stops it and copies the transcript.",
    )
    parser.add_argument(
        "--list-providers",
        action="store_true",
        help="show transcription providers and their environment variables",
    )
    parser.add_argument(
        "--list-backups",
        action="store_true",
        help="show recordings kept from failed sessions",
    )
    parser.add_argument("--version", action="version", version=f"voxclip {__version__}")
    return parser


def list_backups(config: Config) -> None:
    records = BackupStore(config.backup_dir, keep=config.max_backups).list()
    if not records:
        print(f"No backups in {config.backup_dir}")
        return
    for record in records:
        size = record.path.stat().st_size
        print(f"{record.created_at:%Y-%m-%d %H:%M:%S}  {size:>10}  {record.path}")


def relay_stop_with_defaults() -> bool:
    """
    Stop a running session using only the lock path from the environment
    (or the default one). Used when the configuration cannot be loaded.

    Returns:
        True if a live owner was found and the stop was delivered
    """
    raw = os.environ.get(ENV_PREFIX + "LOCK_PATH")
    lock_path = Path(raw).expanduser() if raw else Config().lock_path
    coordinator = InstanceCoordinator(lock_path, SignalStopChannel())
    state = coordinator.inspect()
    return isinstance(state, LiveLock) and coordinator.relay_stop(state.pid)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point. Returns the process exit status."""
    args = build_parser().parse_args(argv)

    if args.list_providers:
        print(describe_all())
        return EXIT_OK

    try:
        config = Config.load()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        # A running session must stay stoppable even with broken settings
        if relay_stop_with_defaults():
            return EXIT_OK
        return EXIT_FAILURE

    setup_logging(config.log_file, level=config.log_level, max_bytes=config.log_max_bytes)

    if args.list_backups:
        list_backups(config)
        return EXIT_OK

    channel = SignalStopChannel()
    coordinator = InstanceCoordinator(config.lock_path, channel)

    # Second invocation: stop the running session and get out
    state = coordinator.inspect()
    if isinstance(state, LiveLock):
        if coordinator.relay_stop(state.pid):
            return EXIT_OK
        logger.warning("Owner PID %d did not accept the stop signal, starting a new session", state.pid)
    elif isinstance(state, StaleLock):
        coordinator.clear_stale(state)

    try:
        provider = select_provider(config.env)
    except ConfigurationError as e:
        logger.error("%s", e)
        return EXIT_FAILURE
    logger.info("Using %s provider", provider.name)

    snapshot = config.snapshot()
    tasks = BackgroundTasks()
    session = Session(
        config_snapshot=snapshot,
        provider=provider,
        capture=create_capture(snapshot),
        sink=ClipboardSink(snapshot.clipboard_tool, tasks=tasks),
        backups=BackupStore(snapshot.backup_dir, keep=snapshot.max_backups),
        channel=channel,
        notifier=Notifier(snapshot.sounds_dir, tasks=tasks, enabled=snapshot.sound_notifications),
        coordinator=coordinator,
    )

    # Armed before the lock exists so an early stop sets a flag instead of killing us
    session.listen_for_stop()
    try:
        if coordinator.acquire() is None:
            return EXIT_OK
        return session.run()
    finally:
        coordinator.release()
        session.close()
        tasks.shutdown()
        provider.close()


if __name__ == "__main__":
    sys.exit(main())
