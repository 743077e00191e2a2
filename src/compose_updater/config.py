"""Configuration management for Compose Updater.

Two layers:

- ``Settings``: process-level settings (paths, log level) read from
  ``COMPOSE_UPDATER_*`` environment variables or a ``.env`` file.
- ``GlobalConfig``: the operator-editable ``KEY=value`` file under the
  config directory (``WEBHOOK_URL``, ``HEALTH_TIMEOUT``, ...).
"""

from __future__ import annotations

import os
import re
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from compose_updater.constants import APP_NAME, DEFAULT_HEALTH_TIMEOUT
from compose_updater.errors import ConfigError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="COMPOSE_UPDATER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Paths
    config_dir: Path = Field(
        default=Path(f"/etc/{APP_NAME}"), description="Registry and global config directory"
    )
    log_dir: Path = Field(
        default=Path(f"/var/log/{APP_NAME}"), description="Per-project update logs"
    )
    lock_dir: Path = Field(default=Path("/var/run"), description="Lock file directory")

    # External tools
    command: str = Field(
        default=APP_NAME, description="Executable the scheduler invokes for update-single"
    )
    docker_binary: str = Field(default="docker", description="Docker CLI executable")
    crontab_binary: str = Field(default="crontab", description="crontab executable")

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")
    require_root: bool = Field(
        default=True, description="Require root for registry-mutating commands"
    )

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def projects_file(self) -> Path:
        return self.config_dir / "projects"

    @property
    def global_config_file(self) -> Path:
        return self.config_dir / "config"

    def project_log_file(self, project_name: str) -> Path:
        """Return the append-only log path for a project."""
        return self.log_dir / f"{project_name}.log"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# ---------------------------------------------------------------------------
# Global KEY=value configuration
# ---------------------------------------------------------------------------

_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_TRUE_VALUES = {"1", "true", "yes", "on"}


class GlobalConfig:
    """Line-oriented ``KEY=value`` configuration file.

    Values are read fresh on every access so that a long ``update-all`` run
    picks up edits made by another administrative command. Writes go to a
    temp file which then replaces the original.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def items(self) -> list[tuple[str, str]]:
        """Return all entries in file order."""
        if not self._path.exists():
            return []
        entries: list[tuple[str, str]] = []
        for line in self._path.read_text(encoding="utf-8").splitlines():
            if not line.strip() or line.lstrip().startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            entries.append((key.strip(), value))
        return entries

    def get(self, key: str, default: str | None = None) -> str | None:
        for entry_key, value in self.items():
            if entry_key == key:
                return value
        return default

    def set(self, key: str, value: str) -> None:
        """Insert or replace ``key``. Replaced keys move to the end of the file."""
        if not _KEY_RE.fullmatch(key):
            raise ConfigError(f"Invalid config key: {key!r}")
        if "\n" in value:
            raise ConfigError("Config values must be a single line")

        entries = [(k, v) for k, v in self.items() if k != key]
        entries.append((key, value))
        self._write(entries)

    def unset(self, key: str) -> bool:
        entries = self.items()
        remaining = [(k, v) for k, v in entries if k != key]
        if len(remaining) == len(entries):
            return False
        self._write(remaining)
        return True

    # ------------------------------------------------------------------
    # Typed accessors
    # ------------------------------------------------------------------

    @property
    def webhook_url(self) -> str | None:
        value = (self.get("WEBHOOK_URL") or "").strip()
        return value or None

    @property
    def health_timeout(self) -> int:
        raw = (self.get("HEALTH_TIMEOUT") or "").strip()
        if not raw:
            return DEFAULT_HEALTH_TIMEOUT
        try:
            value = int(raw)
        except ValueError:
            return DEFAULT_HEALTH_TIMEOUT
        return value if value > 0 else DEFAULT_HEALTH_TIMEOUT

    @property
    def pre_hook_required(self) -> bool:
        return (self.get("PRE_HOOK_REQUIRED") or "").strip().lower() in _TRUE_VALUES

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _write(self, entries: list[tuple[str, str]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(f".{self._path.name}.{os.getpid()}.tmp")
        content = "".join(f"{key}={value}\n" for key, value in entries)
        tmp_path.write_text(content, encoding="utf-8")
        tmp_path.replace(self._path)
