"""Optional pre/post update hook scripts.

A hook is an executable file in the project directory. When the updater
runs as root, a hook is only executed if root also owns it, so a project
owner cannot escalate through a hook script.
"""

from __future__ import annotations

import asyncio
import os
from enum import Enum
from pathlib import Path

from compose_updater.errors import HookError
from compose_updater.logging import get_logger

log = get_logger("compose_updater.hooks")


class HookOutcome(Enum):
    """What happened when a hook was requested."""

    MISSING = "missing"
    NOT_EXECUTABLE = "not_executable"
    UNTRUSTED = "untrusted"
    SUCCEEDED = "succeeded"


class HookRunner:
    """Runs hook scripts synchronously from the caller's point of view."""

    def __init__(self, euid: int | None = None) -> None:
        self._euid = euid

    @property
    def euid(self) -> int:
        return os.geteuid() if self._euid is None else self._euid

    async def run(self, project_dir: Path, hook_name: str) -> HookOutcome:
        """Run ``project_dir/hook_name`` if present, executable, and trusted.

        Raises:
            HookError: the hook ran and exited non-zero.
        """
        hook_path = project_dir / hook_name
        if not hook_path.is_file():
            return HookOutcome.MISSING

        if not os.access(hook_path, os.X_OK):
            log.warning(
                "hook_not_executable",
                hook=hook_name,
                path=str(hook_path),
                fix=f'chmod +x "{hook_path}"',
            )
            return HookOutcome.NOT_EXECUTABLE

        euid = self.euid
        owner = hook_path.stat().st_uid
        if euid == 0 and owner != euid:
            log.warning(
                "hook_untrusted_owner",
                hook=hook_name,
                path=str(hook_path),
                owner=owner,
                fix=f'sudo chown root:root "{hook_path}"',
            )
            return HookOutcome.UNTRUSTED

        log.info("hook_running", hook=hook_name)
        try:
            proc = await asyncio.create_subprocess_exec(str(hook_path), cwd=str(project_dir))
        except OSError as exc:
            log.error("hook_start_failed", hook=hook_name, error=str(exc))
            raise HookError(hook_name, -1) from exc

        returncode = await proc.wait()
        if returncode != 0:
            log.error("hook_failed", hook=hook_name, returncode=returncode)
            raise HookError(hook_name, returncode)

        log.info("hook_succeeded", hook=hook_name)
        return HookOutcome.SUCCEEDED
