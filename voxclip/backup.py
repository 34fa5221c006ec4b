"""
Backup storage for raw recordings.

Every recording is written here before it is sent to a provider and
deleted once its text has been delivered. Recordings from failed sessions
stay for manual recovery; only the newest ``keep`` files are retained.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .types import BackupRecord

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".wav"


class BackupStore:
    """Manages the recordings directory."""

    def __init__(self, backup_dir: Path, keep: int = 5):
        """
        Args:
            backup_dir: Directory holding one file per session
            keep: Number of most recent backups retained by prune()
        """
        if keep < 1:
            raise ValueError("keep must be at least 1")
        self.backup_dir = Path(backup_dir)
        self.keep = keep

    def path_for(self, session_id: str) -> Path:
        return self.backup_dir / f"{session_id}{BACKUP_SUFFIX}"

    def save(self, session_id: str, audio: bytes) -> Optional[BackupRecord]:
        """
        Write audio to disk, then prune old backups.

        Failures are logged and never raised; a missing backup must not
        stop the transcription.

        Returns:
            The BackupRecord, or None if the write failed
        """
        path = self.path_for(session_id)
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            with open(path, "wb") as f:
                f.write(audio)
        except OSError as e:
            logger.error("Failed to save recording backup %s: %s", path, e)
            return None

        logger.info("Recording backed up: %s (%d bytes)", path, len(audio))
        record = BackupRecord(session_id=session_id, path=path, created_at=datetime.now())
        self.prune()
        return record

    def discard(self, record: Optional[BackupRecord]) -> bool:
        """
        Delete a backup after its text was delivered.

        Returns:
            True if the file was removed
        """
        if record is None:
            return False
        try:
            record.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error("Failed to delete backup %s: %s", record.path, e)
            return False
        logger.info("Backup deleted after successful transcription")
        return True

    def _files_newest_first(self) -> List[Path]:
        if not self.backup_dir.is_dir():
            return []
        files = [p for p in self.backup_dir.iterdir() if p.is_file() and p.suffix == BACKUP_SUFFIX]
        return sorted(files, key=lambda p: (p.stat().st_mtime_ns, p.name), reverse=True)

    def prune(self) -> List[Path]:
        """
        Keep only the newest ``keep`` backups.

        Returns:
            Paths that were deleted
        """
        deleted: List[Path] = []
        try:
            files = self._files_newest_first()
        except OSError as e:
            logger.error("Failed to list backups in %s: %s", self.backup_dir, e)
            return deleted

        for path in files[self.keep:]:
            try:
                path.unlink()
            except OSError as e:
                logger.error("Failed to delete old backup %s: %s", path, e)
                continue
            deleted.append(path)
            logger.info("Deleted old backup: %s", path.name)
        return deleted

    def list(self) -> List[BackupRecord]:
        """Retained backups, newest first."""
        return [
            BackupRecord(
                session_id=path.stem,
                path=path,
                created_at=datetime.fromtimestamp(path.stat().st_mtime),
            )
            for path in self._files_newest_first()
        ]
