"""
Logging setup and the per-session structured event logger.

Every line carries a timestamp and level; session lines also carry the
session id and an event name, followed by the event's fields as JSON.
The log file is rotated to a single ``.old`` copy once it grows past
max_bytes.
"""

import json
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, MutableMapping, Optional, Tuple

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(context)s%(message)s"
CONSOLE_FORMAT = "%(context)s%(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class SessionFormatter(logging.Formatter):
    """Formatter that renders optional session id and event name."""

    def format(self, record: logging.LogRecord) -> str:
        session_id = getattr(record, "session_id", None)
        event = getattr(record, "event", None)
        parts = []
        if session_id:
            parts.append(f"[{session_id}]")
        if event:
            parts.append(event)
        record.context = " ".join(parts) + (" | " if parts else "")
        return super().format(record)


def _old_namer(default_name: str) -> str:
    """Name the single rotated file ``<log>.old`` instead of ``<log>.1``."""
    if default_name.endswith(".1"):
        return default_name[:-2] + ".old"
    return default_name


def setup_logging(
    log_file: Optional[Path] = None,
    level: str = "INFO",
    max_bytes: int = 1024 * 1024,
    console: bool = True,
) -> None:
    """
    Configure the root logger with a console and a rotating file handler.

    Args:
        log_file: Path of the log file; no file handler when None
        level: Root log level name
        max_bytes: Size at which the file is rotated to ``.old``
        console: Also log to stderr
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(SessionFormatter(CONSOLE_FORMAT))
        root_logger.addHandler(console_handler)

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=max_bytes,
                backupCount=1,
                encoding="utf-8",
            )
        except OSError as e:
            # Logging to the console still works; a broken log dir must not stop a recording
            root_logger.warning("Cannot open log file %s: %s", log_file, e)
        else:
            file_handler.namer = _old_namer
            file_handler.setFormatter(SessionFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))
            root_logger.addHandler(file_handler)


class SessionLogger(logging.LoggerAdapter):
    """
    Logger handle owned by one session.

    Usage:
        log = SessionLogger(logging.getLogger("voxclip.session"), session_id)
        log.event("BACKUP_SAVED", path=str(path), size=len(audio))
    """

    def __init__(self, logger: logging.Logger, session_id: str):
        super().__init__(logger, {"session_id": session_id})
        self.session_id = session_id

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def event(self, name: str, level: int = logging.INFO, **fields: Any) -> None:
        """Log a named session event with JSON-encoded fields."""
        message = json.dumps(fields, default=str, ensure_ascii=False) if fields else ""
        self.log(level, message, extra={"event": name})

    def failure(self, error: BaseException, context: str) -> None:
        """Log an error event with its type and the phase it happened in."""
        self.event(
            "ERROR",
            level=logging.ERROR,
            context=context,
            error=str(error),
            error_type=type(error).__name__,
            kind=getattr(error, "kind", None),
        )
