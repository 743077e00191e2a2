"""Per-key, host-local mutual exclusion.

Each key maps to ``<lock_dir>/compose-updater-<key>.lock`` held with a
non-blocking ``flock``. The kernel drops the lock when the owning file
descriptor closes, so a crashed or killed process never leaves a lock
held; the file itself stays behind and only records the last holder.
"""

from __future__ import annotations

import fcntl
import os
import re
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import IO

from compose_updater.constants import APP_NAME
from compose_updater.errors import LockBusyError
from compose_updater.logging import get_logger

log = get_logger("compose_updater.locks")

_KEY_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_.-]")


@dataclass(frozen=True)
class LockInfo:
    """Who last wrote a lock file, and whether the lock is currently held."""

    key: str
    path: str
    held: bool
    pid: int | None = None
    acquired_at: str | None = None


class LockHandle:
    """Exclusive possession of one key. Release is idempotent."""

    def __init__(self, key: str, path: Path, file: IO[str]) -> None:
        self.key = key
        self.path = path
        self._file: IO[str] | None = file

    @property
    def released(self) -> bool:
        return self._file is None

    def release(self) -> None:
        if self._file is None:
            return
        try:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
        finally:
            self._file.close()
            self._file = None
        log.debug("lock_released", key=self.key)

    def __enter__(self) -> LockHandle:
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()


class LockManager:
    """Hands out non-blocking advisory locks keyed by name."""

    def __init__(self, lock_dir: Path) -> None:
        self._lock_dir = Path(lock_dir)

    def path_for(self, key: str) -> Path:
        safe_key = _KEY_UNSAFE_RE.sub("-", key) or "default"
        return self._lock_dir / f"{APP_NAME}-{safe_key}.lock"

    def acquire(self, key: str) -> LockHandle:
        """Take the lock for ``key`` or fail immediately.

        Raises:
            LockBusyError: another holder (process or handle) owns the key.
        """
        path = self.path_for(key)
        self._lock_dir.mkdir(parents=True, exist_ok=True)

        # "a+" keeps the previous holder's info intact if we lose the race
        file = open(path, "a+", encoding="utf-8")  # noqa: SIM115
        try:
            fcntl.flock(file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            file.close()
            log.warning("lock_busy", key=key, path=str(path))
            raise LockBusyError(key, str(path)) from None
        except OSError:
            file.close()
            raise

        file.seek(0)
        file.truncate()
        file.write(f"{os.getpid()} {datetime.now(UTC).isoformat()}\n")
        file.flush()

        log.debug("lock_acquired", key=key, path=str(path))
        return LockHandle(key, path, file)

    def inspect(self, key: str) -> LockInfo | None:
        """Describe the lock for ``key``; None if no lock file exists."""
        path = self.path_for(key)
        if not path.exists():
            return None

        pid: int | None = None
        acquired_at: str | None = None
        try:
            content = path.read_text(encoding="utf-8").split()
        except OSError:
            content = []
        if content and content[0].isdigit():
            pid = int(content[0])
            acquired_at = content[1] if len(content) > 1 else None

        return LockInfo(
            key=key,
            path=str(path),
            held=self._pid_alive(pid) and self._is_held(path),
            pid=pid,
            acquired_at=acquired_at,
        )

    @staticmethod
    def _pid_alive(pid: int | None) -> bool:
        if pid is None:
            return True
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True

    @staticmethod
    def _is_held(path: Path) -> bool:
        """Probe the lock with a non-blocking exclusive flock.

        The probe holds the lock for an instant, so an ``acquire`` racing it
        sees ``LockBusyError``. ``inspect`` only probes when the recorded
        holder is still alive.
        """
        try:
            with open(path, "a+", encoding="utf-8") as probe:
                try:
                    fcntl.flock(probe.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                except BlockingIOError:
                    return True
                fcntl.flock(probe.fileno(), fcntl.LOCK_UN)
                return False
        except OSError:
            return False
