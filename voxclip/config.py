"""
Configuration management with immutable snapshots.

Loads from: environment variables > .env files > settings.json > defaults
Provides immutable snapshots for session isolation.

Provider credentials are not copied into the snapshot; they stay in the
merged environment mapping (Config.env) that provider selection reads.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import dotenv_values

from .errors import ConfigurationError
from .types import ConfigSnapshot


ENV_PREFIX = "VOXCLIP_"

# Defaults
DEFAULT_CONFIG: Dict[str, Any] = {
    # Audio
    "capture_backend": "arecord",
    "capture_device": "default",
    "sample_rate": 16000,
    "min_duration": 0.5,  # shorter recordings are treated as "no audio"

    # Backups
    "max_backups": 5,

    # Output
    "clipboard_tool": "auto",
    "text_prefix": "",
    "text_suffix": "",
    "wrap_width": 120,
    "sound_notifications": True,

    # Logging
    "log_level": "INFO",
    "log_max_bytes": 1024 * 1024,
}

PATH_SETTINGS = ("lock_path", "backup_dir", "log_file", "sounds_dir")

CAPTURE_BACKENDS = ("arecord", "sounddevice")
CLIPBOARD_TOOLS = ("auto", "xclip", "wl-copy", "pbcopy")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _coerce(key: str, value: Any, default: Any) -> Any:
    """Convert a raw setting to the type of its default."""
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ("1", "true", "yes", "on")
    try:
        return type(default)(value)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"Setting {key} must be {type(default).__name__}, got {value!r}"
        ) from None


class Config:
    """
    Single source of truth for all settings.

    Usage:
        config = Config.load()
        snapshot = config.snapshot()  # Immutable copy for session
        provider = select_provider(config.env)
    """

    def __init__(self, data_dir: Optional[Path] = None):
        # Paths
        self.data_dir: Path = data_dir or Path.home() / ".voxclip"
        self.lock_path: Path = Path(tempfile.gettempdir()) / "voxclip.pid"
        self.backup_dir: Path = self.data_dir / "recordings"
        self.log_file: Path = self.data_dir / "logs" / "voxclip.log"
        self.sounds_dir: Path = self.data_dir / "sounds"
        self.settings_file: Path = self.data_dir / "settings.json"
        self.env_file: Path = self.data_dir / ".env"

        # Audio
        self.capture_backend: str = "arecord"
        self.capture_device: str = "default"
        self.sample_rate: int = 16000
        self.min_duration: float = 0.5

        # Backups
        self.max_backups: int = 5

        # Output
        self.clipboard_tool: str = "auto"
        self.text_prefix: str = ""
        self.text_suffix: str = ""
        self.wrap_width: int = 120
        self.sound_notifications: bool = True

        # Logging
        self.log_level: str = "INFO"
        self.log_max_bytes: int = 1024 * 1024

        # Merged environment (.env files overlaid by the process environment)
        self.env: Dict[str, str] = {}

    @classmethod
    def load(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        data_dir: Optional[Path] = None,
        project_dir: Optional[Path] = None,
    ) -> "Config":
        """
        Load configuration from all sources.

        Args:
            environ: Process environment (defaults to os.environ)
            data_dir: Override for ~/.voxclip
            project_dir: Directory whose .env is read first (defaults to cwd)

        Raises:
            ConfigurationError: A setting has the wrong type or value
        """
        environ = dict(os.environ if environ is None else environ)
        if data_dir is None and environ.get(ENV_PREFIX + "DATA_DIR"):
            data_dir = Path(environ[ENV_PREFIX + "DATA_DIR"]).expanduser()

        config = cls(data_dir)
        config._load_env(environ, project_dir or Path.cwd())
        config._load_settings()
        config._apply_env_overrides()
        config._validate()
        return config

    def _load_env(self, environ: Mapping[str, str], project_dir: Path) -> None:
        """Merge .env files (project root, then data dir) under the process environment."""
        merged: Dict[str, str] = {}
        for env_file in (project_dir / ".env", self.env_file):
            if env_file.is_file():
                values = dotenv_values(env_file)
                merged.update({k: v for k, v in values.items() if v is not None})

        # Environment variables override file values
        merged.update(environ)
        self.env = merged

    def _load_settings(self) -> None:
        """Load non-secret settings from settings.json."""
        if not self.settings_file.is_file():
            return

        try:
            with open(self.settings_file, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Error loading {self.settings_file}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"{self.settings_file} must contain a JSON object")

        for key, default in DEFAULT_CONFIG.items():
            if key in data:
                setattr(self, key, _coerce(key, data[key], default))
        for key in PATH_SETTINGS:
            if data.get(key):
                setattr(self, key, Path(data[key]).expanduser())

    def _apply_env_overrides(self) -> None:
        """Apply VOXCLIP_<NAME> variables from the merged environment."""
        for key, default in DEFAULT_CONFIG.items():
            raw = self.env.get(ENV_PREFIX + key.upper())
            if raw is not None and raw.strip() != "":
                setattr(self, key, _coerce(ENV_PREFIX + key.upper(), raw, default))
        for key in PATH_SETTINGS:
            raw = self.env.get(ENV_PREFIX + key.upper())
            if raw:
                setattr(self, key, Path(raw).expanduser())

    def _validate(self) -> None:
        if self.capture_backend not in CAPTURE_BACKENDS:
            raise ConfigurationError(
                f"capture_backend must be one of {', '.join(CAPTURE_BACKENDS)}, "
                f"got {self.capture_backend!r}"
            )
        if self.clipboard_tool not in CLIPBOARD_TOOLS:
            raise ConfigurationError(
                f"clipboard_tool must be one of {', '.join(CLIPBOARD_TOOLS)}, "
                f"got {self.clipboard_tool!r}"
            )
        self.log_level = self.log_level.upper()
        if self.log_level not in LOG_LEVELS:
            raise ConfigurationError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        if self.max_backups < 1:
            raise ConfigurationError("max_backups must be at least 1")
        if self.min_duration < 0:
            raise ConfigurationError("min_duration cannot be negative")
        if self.sample_rate <= 0:
            raise ConfigurationError("sample_rate must be positive")
        if self.wrap_width < 0:
            raise ConfigurationError("wrap_width cannot be negative (0 disables wrapping)")

    def snapshot(self) -> ConfigSnapshot:
        """Return immutable copy for session isolation."""
        return ConfigSnapshot(
            data_dir=self.data_dir,
            lock_path=self.lock_path,
            backup_dir=self.backup_dir,
            log_file=self.log_file,
            capture_backend=self.capture_backend,
            capture_device=self.capture_device,
            sample_rate=self.sample_rate,
            min_duration=self.min_duration,
            max_backups=self.max_backups,
            clipboard_tool=self.clipboard_tool,
            text_prefix=self.text_prefix,
            text_suffix=self.text_suffix,
            wrap_width=self.wrap_width,
            sound_notifications=self.sound_notifications,
            sounds_dir=self.sounds_dir,
            log_level=self.log_level,
            log_max_bytes=self.log_max_bytes,
        )
