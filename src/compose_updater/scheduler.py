"""crontab synchronization.

The registry is the source of truth. Every sync drops all lines carrying
the managed marker and re-adds one per enabled project; lines owned by
anything else are preserved in order.
"""

from __future__ import annotations

import asyncio
import shlex
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from compose_updater.constants import CRON_MARKER
from compose_updater.errors import CommandError
from compose_updater.logging import get_logger
from compose_updater.models import ProjectRecord
from compose_updater.schedule import to_cron

log = get_logger("compose_updater.scheduler")


@dataclass(frozen=True)
class CronEntry:
    """One managed crontab line."""

    schedule: str
    command: str
    log_path: str

    def render(self) -> str:
        # cron treats a bare "%" in the command field as a newline
        command = f"{self.command} >> {shlex.quote(self.log_path)} 2>&1".replace("%", r"\%")
        return f"{self.schedule} {command} {CRON_MARKER}"


class CrontabScheduler:
    """Full-rebuild synchronization of the invoking user's crontab."""

    def __init__(
        self,
        command: str,
        log_path_for: Callable[[str], Path],
        crontab_binary: str = "crontab",
    ) -> None:
        self._command = command
        self._log_path_for = log_path_for
        self._crontab = crontab_binary

    def entries_for(self, records: Iterable[ProjectRecord]) -> list[CronEntry]:
        """Build managed entries for every enabled record."""
        entries: list[CronEntry] = []
        for record in records:
            if not record.enabled:
                continue
            entries.append(
                CronEntry(
                    schedule=to_cron(record.schedule),
                    command=f"{self._command} update-single {shlex.quote(record.path)}",
                    log_path=str(self._log_path_for(record.name)),
                )
            )
        return entries

    async def sync(self, records: Iterable[ProjectRecord]) -> int:
        """Replace all managed entries with those derived from ``records``.

        Returns the number of managed entries written.
        """
        entries = self.entries_for(records)
        unmanaged = [line for line in await self._read() if CRON_MARKER not in line]
        lines = unmanaged + [entry.render() for entry in entries]
        await self._write(lines)
        log.info("scheduler_synced", managed=len(entries), unmanaged=len(unmanaged))
        return len(entries)

    async def remove_all(self) -> None:
        """Drop every managed entry."""
        await self.sync([])

    async def managed_count(self) -> int:
        return sum(1 for line in await self._read() if CRON_MARKER in line)

    # ------------------------------------------------------------------
    # crontab I/O
    # ------------------------------------------------------------------

    async def _read(self) -> list[str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                self._crontab,
                "-l",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise CommandError(f"{self._crontab} -l", None, str(exc)) from exc
        stdout, _ = await proc.communicate()
        if proc.returncode != 0:
            # No crontab for this user yet
            return []
        return stdout.decode(errors="replace").splitlines()

    async def _write(self, lines: list[str]) -> None:
        content = "".join(f"{line}\n" for line in lines)
        try:
            proc = await asyncio.create_subprocess_exec(
                self._crontab,
                "-",
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise CommandError(f"{self._crontab} -", None, str(exc)) from exc
        _, stderr_bytes = await proc.communicate(content.encode())
        if proc.returncode != 0:
            stderr = stderr_bytes.decode(errors="replace")
            log.error("scheduler_write_failed", stderr=stderr[:500])
            raise CommandError(f"{self._crontab} -", proc.returncode, stderr)
