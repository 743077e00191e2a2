"""Docker Compose and container-inspection collaborator.

Every engine interaction goes through ``ComposeClient``. The production
implementation shells out to the ``docker`` CLI and parses its JSON output;
tests substitute an in-memory fake. All subprocess calls are confined to
this module and ``hooks``/``scheduler``.
"""

from __future__ import annotations

import asyncio
import json
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from compose_updater.constants import COMPOSE_FILENAMES
from compose_updater.errors import CommandError, PullError, RecreateError
from compose_updater.logging import get_logger
from compose_updater.models import ContainerInfo, ServiceContainer

log = get_logger("compose_updater.compose")

_UNTAGGED = "<none>"


def find_compose_file(project_dir: Path) -> Path | None:
    """Return the compose manifest in ``project_dir``, if any."""
    for filename in COMPOSE_FILENAMES:
        candidate = project_dir / filename
        if candidate.is_file():
            return candidate
    return None


@dataclass
class CommandResult:
    """Exit status and captured output of an external command."""

    returncode: int
    stdout: str
    stderr: str


class ComposeClient(Protocol):
    """Operations the updater needs from the compose tool and engine."""

    async def resolve_services(self, project_dir: Path) -> list[str]: ...

    async def pull(self, project_dir: Path) -> None: ...

    async def up(
        self,
        project_dir: Path,
        *,
        force_recreate: bool = False,
        remove_orphans: bool = True,
    ) -> None: ...

    async def ps(
        self, project_dir: Path, *, include_stopped: bool = False
    ) -> list[ServiceContainer]: ...

    async def image_ref(self, project_dir: Path, service: str) -> str | None: ...

    async def tag(self, image_id: str, ref: str) -> None: ...

    async def prune_images(self) -> None: ...

    async def inspect(self, container_id: str) -> ContainerInfo: ...

    async def image_id(self, ref: str) -> str | None: ...


class DockerComposeCli:
    """``ComposeClient`` backed by the ``docker`` / ``docker compose`` CLI.

    Pull, up, and hooks run without a client-side timeout: a hung engine
    call hangs the update, exactly as running the CLI by hand would.
    """

    def __init__(self, docker_binary: str = "docker", query_timeout: float | None = 60) -> None:
        self._docker = docker_binary
        self._query_timeout = query_timeout

    # ------------------------------------------------------------------
    # Compose operations
    # ------------------------------------------------------------------

    async def resolve_services(self, project_dir: Path) -> list[str]:
        result = await self._compose(
            project_dir, "config", "--services", timeout=self._query_timeout
        )
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    async def pull(self, project_dir: Path) -> None:
        try:
            await self._compose(project_dir, "pull")
        except CommandError as exc:
            raise PullError(exc.command, exc.returncode, exc.stderr) from exc

    async def up(
        self,
        project_dir: Path,
        *,
        force_recreate: bool = False,
        remove_orphans: bool = True,
    ) -> None:
        args = ["up", "-d"]
        if force_recreate:
            args.append("--force-recreate")
        if remove_orphans:
            args.append("--remove-orphans")
        try:
            await self._compose(project_dir, *args)
        except CommandError as exc:
            raise RecreateError(exc.command, exc.returncode, exc.stderr) from exc

    async def ps(
        self, project_dir: Path, *, include_stopped: bool = False
    ) -> list[ServiceContainer]:
        args = ["ps", "--format", "json"]
        if include_stopped:
            args.insert(1, "--all")
        result = await self._compose(project_dir, *args, timeout=self._query_timeout)

        containers: list[ServiceContainer] = []
        for entry in _parse_json_records(result.stdout):
            service = entry.get("Service")
            container_id = entry.get("ID")
            if service and container_id:
                containers.append(ServiceContainer(service=service, container_id=container_id))
        return containers

    async def image_ref(self, project_dir: Path, service: str) -> str | None:
        result = await self._compose(
            project_dir, "images", "--format", "json", service, timeout=self._query_timeout
        )
        for entry in _parse_json_records(result.stdout):
            repository = entry.get("Repository") or ""
            tag = entry.get("Tag") or ""
            if repository and tag and _UNTAGGED not in (repository, tag):
                return f"{repository}:{tag}"
        return None

    async def prune_images(self) -> None:
        await self._run_cmd([self._docker, "image", "prune", "-f"])

    # ------------------------------------------------------------------
    # Engine operations
    # ------------------------------------------------------------------

    async def tag(self, image_id: str, ref: str) -> None:
        await self._run_cmd([self._docker, "tag", image_id, ref], timeout=self._query_timeout)

    async def inspect(self, container_id: str) -> ContainerInfo:
        result = await self._run_cmd(
            [self._docker, "inspect", container_id], timeout=self._query_timeout
        )
        records = _parse_json_records(result.stdout)
        if not records:
            raise CommandError(f"docker inspect {container_id}", result.returncode, "empty output")
        data = records[0]
        state = data.get("State") or {}
        health = state.get("Health") or {}
        return ContainerInfo(
            container_id=container_id,
            image_id=str(data.get("Image", "")),
            configured_image=str((data.get("Config") or {}).get("Image", "")),
            state=str(state.get("Status", "")),
            health=health.get("Status") or None,
        )

    async def image_id(self, ref: str) -> str | None:
        try:
            result = await self._run_cmd(
                [self._docker, "image", "inspect", ref], timeout=self._query_timeout
            )
        except CommandError:
            return None
        records = _parse_json_records(result.stdout)
        if not records:
            return None
        return records[0].get("Id") or None

    # ------------------------------------------------------------------
    # Subprocess helpers
    # ------------------------------------------------------------------

    async def _compose(
        self, project_dir: Path, *args: str, timeout: float | None = None
    ) -> CommandResult:
        return await self._run_cmd(
            [self._docker, "compose", *args], cwd=project_dir, timeout=timeout
        )

    async def _run_cmd(
        self,
        argv: list[str],
        cwd: Path | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a command and return its output.

        Raises:
            CommandError: the command could not start, timed out, or exited non-zero.
        """
        cmd = shlex.join(argv)
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd is not None else None,
            )
        except OSError as exc:
            log.warning("compose_cmd_error", cmd=cmd, error=str(exc))
            raise CommandError(cmd, None, str(exc)) from exc

        try:
            if timeout is None:
                stdout, stderr = await proc.communicate()
            else:
                stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            log.warning("compose_cmd_timeout", cmd=cmd, timeout=timeout)
            raise CommandError(cmd, None, f"timed out after {timeout}s") from None

        result = CommandResult(
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )
        if result.returncode != 0:
            log.warning(
                "compose_cmd_failed",
                cmd=cmd,
                returncode=result.returncode,
                stderr=result.stderr[:500],
            )
            raise CommandError(cmd, result.returncode, result.stderr)

        log.debug("compose_cmd_ok", cmd=cmd)
        return result


def _parse_json_records(output: str) -> list[dict[str, Any]]:
    """Parse docker JSON output, either a single array or one object per line."""
    text = output.strip()
    if not text:
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        records: list[dict[str, Any]] = []
        for line in text.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                item = json.loads(line)
            except json.JSONDecodeError:
                log.debug("compose_json_line_skipped", line=line[:200])
                continue
            if isinstance(item, dict):
                records.append(item)
        return records

    if isinstance(data, dict):
        return [data]
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    return []
