"""
Shared type definitions for voxclip.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional


class SessionState(Enum):
    """Lifecycle of one capture/transcribe/deliver session."""
    IDLE = "idle"
    RECORDING = "recording"
    STOP_REQUESTED = "stop_requested"
    TRANSCRIBING = "transcribing"
    DELIVERING = "delivering"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.FAILED)


@dataclass(frozen=True)
class TranscriptionResult:
    """Result of one successful provider call. Text is never empty."""
    text: str
    provider: str
    elapsed_ms: int
    attempts: int = 1


@dataclass(frozen=True)
class ProviderConfig:
    """
    Immutable provider configuration, validated before a provider is built.

    Timeout is in seconds.
    """
    provider_name: str
    credential: str
    endpoint: Optional[str] = None
    model: Optional[str] = None
    timeout: float = 120.0
    max_retries: int = 3
    language: Optional[str] = None


@dataclass(frozen=True)
class BackupRecord:
    """A raw recording kept on disk until its text has been delivered."""
    session_id: str
    path: Path
    created_at: datetime


@dataclass(frozen=True)
class ConfigSnapshot:
    """
    Immutable snapshot of configuration for a session.
    Ensures the settings a session started with stay fixed until it exits.
    """
    # Paths
    data_dir: Path
    lock_path: Path
    backup_dir: Path
    log_file: Path

    # Audio
    capture_backend: str
    capture_device: str
    sample_rate: int
    min_duration: float

    # Backups
    max_backups: int

    # Output
    clipboard_tool: str
    text_prefix: str
    text_suffix: str
    wrap_width: int
    sound_notifications: bool
    sounds_dir: Path

    # Logging
    log_level: str
    log_max_bytes: int
