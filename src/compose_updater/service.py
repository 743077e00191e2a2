"""Administrative commands exposed to the CLI.

Every command takes its target directory explicitly. Commands that change
the registry run under the global lock and finish with a full crontab
rebuild, so two concurrent ``add``/``remove`` invocations cannot interleave
their read-modify-write cycles.
"""

from __future__ import annotations

import os
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from compose_updater.compose import ComposeClient, DockerComposeCli, find_compose_file
from compose_updater.config import GlobalConfig, Settings
from compose_updater.constants import DEFAULT_LOG_LINES, GLOBAL_LOCK_KEY
from compose_updater.errors import CommandError, PermissionDeniedError, RegistrationError
from compose_updater.health import HealthMonitor
from compose_updater.hooks import HookRunner
from compose_updater.locks import LockInfo, LockManager
from compose_updater.logging import get_logger
from compose_updater.models import (
    ProjectRecord,
    ProjectStatus,
    UpdateResult,
    project_name_for,
)
from compose_updater.notifier import WebhookNotifier
from compose_updater.orchestrator import UpdateOrchestrator
from compose_updater.registry import FileRegistryStore, ProjectRegistry
from compose_updater.rollback import RollbackManager
from compose_updater.schedule import compile_schedule
from compose_updater.scheduler import CrontabScheduler

log = get_logger("compose_updater.service")


@dataclass
class ServiceStatus:
    """Runtime view of one compose service."""

    service: str
    container_id: str
    state: str
    health: str | None
    image: str


@dataclass
class ProjectStatusReport:
    """Everything ``status`` shows for a project directory."""

    path: str
    name: str
    record: ProjectRecord | None
    services: list[ServiceStatus] = field(default_factory=list)
    lock: LockInfo | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "name": self.name,
            "registered": self.record is not None,
            "schedule": self.record.schedule if self.record else None,
            "status": self.record.status.value if self.record else None,
            "services": [vars(s) for s in self.services],
            "lock": vars(self.lock) if self.lock else None,
        }


@dataclass
class ImageCheck:
    """Whether a service's running image differs from its freshly pulled tag."""

    service: str
    image: str
    running: bool
    update_available: bool | None


class ProjectService:
    """Registry, scheduling, and update commands for the CLI."""

    def __init__(
        self,
        settings: Settings,
        registry: ProjectRegistry,
        scheduler: CrontabScheduler,
        locks: LockManager,
        global_config: GlobalConfig,
        compose: ComposeClient,
        orchestrator: UpdateOrchestrator,
        euid: Callable[[], int] = os.geteuid,
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._scheduler = scheduler
        self._locks = locks
        self._config = global_config
        self._compose = compose
        self._orchestrator = orchestrator
        self._euid = euid

    @classmethod
    def from_settings(cls, settings: Settings) -> ProjectService:
        """Wire the production collaborators."""
        compose = DockerComposeCli(settings.docker_binary)
        locks = LockManager(settings.lock_dir)
        global_config = GlobalConfig(settings.global_config_file)
        notifier = WebhookNotifier(lambda: global_config.webhook_url)
        orchestrator = UpdateOrchestrator(
            compose=compose,
            locks=locks,
            notifier=notifier,
            global_config=global_config,
            hooks=HookRunner(),
            health=HealthMonitor(compose),
            rollback=RollbackManager(compose),
            log_path_for=settings.project_log_file,
        )
        scheduler = CrontabScheduler(
            command=settings.command,
            log_path_for=settings.project_log_file,
            crontab_binary=settings.crontab_binary,
        )
        return cls(
            settings=settings,
            registry=ProjectRegistry(FileRegistryStore(settings.projects_file)),
            scheduler=scheduler,
            locks=locks,
            global_config=global_config,
            compose=compose,
            orchestrator=orchestrator,
        )

    @property
    def registry(self) -> ProjectRegistry:
        return self._registry

    @property
    def global_config(self) -> GlobalConfig:
        return self._config

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def add(
        self,
        directory: str | Path,
        *,
        interval: str | int | None = None,
        at: str | None = None,
        days: str | None = None,
        cron: str | None = None,
    ) -> ProjectRecord:
        """Register (or re-register) a project and rebuild the crontab."""
        self._require_root()
        project_dir = self._existing_project_dir(directory)
        schedule = compile_schedule(interval=interval, at=at, days=days, cron=cron)
        record = ProjectRecord.for_directory(project_dir, schedule)

        with self._locks.acquire(GLOBAL_LOCK_KEY):
            self._registry.reload()
            others = [p for p in self._registry.names_for(record.name) if p != record.path]
            if others:
                log.warning(
                    "project_name_collision",
                    name=record.name,
                    path=record.path,
                    shared_with=others,
                )
            self._registry.add(record)
            await self._scheduler.sync(self._registry.list())

        log.info("project_registered", path=record.path, name=record.name, schedule=schedule)
        return record

    async def remove(self, directory: str | Path) -> None:
        self._require_root()
        path = str(self._canonical(directory))
        with self._locks.acquire(GLOBAL_LOCK_KEY):
            self._registry.reload()
            if not self._registry.remove(path):
                raise RegistrationError(f"Project not registered: {path}")
            await self._scheduler.sync(self._registry.list())

    async def enable(self, directory: str | Path) -> None:
        await self._set_status(directory, ProjectStatus.ENABLED)

    async def disable(self, directory: str | Path) -> None:
        await self._set_status(directory, ProjectStatus.DISABLED)

    def list(self) -> list[ProjectRecord]:
        self._registry.reload()
        return self._registry.list()

    async def managed_schedule_count(self) -> int:
        try:
            return await self._scheduler.managed_count()
        except CommandError as exc:
            log.warning("scheduler_unavailable", error=str(exc))
            return 0

    async def resync(self) -> int:
        """Rebuild managed crontab entries from the registry."""
        self._require_root()
        with self._locks.acquire(GLOBAL_LOCK_KEY):
            self._registry.reload()
            return await self._scheduler.sync(self._registry.list())

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    async def update(self, directory: str | Path) -> UpdateResult:
        return await self._orchestrator.update(self._canonical(directory))

    async def update_single(self, directory: str | Path) -> UpdateResult:
        """Scheduled, non-interactive update; output goes to cron's redirect."""
        project_dir = self._canonical(directory)
        record = self._registry.get(str(project_dir))
        return await self._orchestrator.update(record or project_dir, capture_log=False)

    async def update_all(self) -> list[UpdateResult]:
        return await self._orchestrator.update_all(self.list())

    async def check(self, directory: str | Path) -> list[ImageCheck]:
        """Pull images and report which services would change on update.

        Pulling only updates local tags; running containers are untouched.
        """
        project_dir = self._existing_project_dir(directory)
        await self._compose.pull(project_dir)

        checks: list[ImageCheck] = []
        running = {c.service: c for c in await self._compose.ps(project_dir)}
        for service in await self._compose.resolve_services(project_dir):
            entry = running.get(service)
            if entry is None:
                checks.append(ImageCheck(service, "-", running=False, update_available=None))
                continue
            info = await self._compose.inspect(entry.container_id)
            latest = await self._compose.image_id(info.configured_image)
            checks.append(
                ImageCheck(
                    service=service,
                    image=info.configured_image,
                    running=True,
                    update_available=None if latest is None else latest != info.image_id,
                )
            )
        return checks

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    async def status(self, directory: str | Path) -> ProjectStatusReport:
        project_dir = self._existing_project_dir(directory)
        name = project_name_for(project_dir)
        self._registry.reload()
        report = ProjectStatusReport(
            path=str(project_dir),
            name=name,
            record=self._registry.get(str(project_dir)),
            lock=self._locks.inspect(name),
        )
        for entry in await self._compose.ps(project_dir, include_stopped=True):
            info = await self._compose.inspect(entry.container_id)
            report.services.append(
                ServiceStatus(
                    service=entry.service,
                    container_id=entry.container_id[:12],
                    state=info.state,
                    health=info.health,
                    image=info.configured_image,
                )
            )
        return report

    def logs(self, directory: str | Path, lines: int = DEFAULT_LOG_LINES) -> tuple[Path, list[str]]:
        """Return the project's log path and its last ``lines`` lines."""
        project_dir = self._canonical(directory)
        record = self._registry.get(str(project_dir))
        name = record.name if record else project_name_for(project_dir)
        log_path = self._settings.project_log_file(name)
        if not log_path.exists():
            return log_path, []
        with open(log_path, encoding="utf-8", errors="replace") as handle:
            tail = deque(handle, maxlen=max(lines, 0))
        return log_path, [line.rstrip("\n") for line in tail]

    # ------------------------------------------------------------------
    # Global configuration
    # ------------------------------------------------------------------

    def config_items(self) -> list[tuple[str, str]]:
        return self._config.items()

    def config_get(self, key: str) -> str | None:
        return self._config.get(key)

    def config_set(self, key: str, value: str) -> None:
        self._require_root()
        self._config.set(key, value)
        log.info("config_set", key=key)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _set_status(self, directory: str | Path, status: ProjectStatus) -> None:
        self._require_root()
        path = str(self._canonical(directory))
        with self._locks.acquire(GLOBAL_LOCK_KEY):
            self._registry.reload()
            if not self._registry.set_status(path, status):
                raise RegistrationError(f"Project not registered: {path}")
            await self._scheduler.sync(self._registry.list())

    def _require_root(self) -> None:
        if self._settings.require_root and self._euid() != 0:
            raise PermissionDeniedError("This command requires root privileges. Run with sudo.")

    @staticmethod
    def _canonical(directory: str | Path) -> Path:
        return Path(directory).expanduser().resolve()

    def _existing_project_dir(self, directory: str | Path) -> Path:
        project_dir = self._canonical(directory)
        if not project_dir.is_dir():
            raise RegistrationError(f"Directory not found: {directory}")
        if find_compose_file(project_dir) is None:
            raise RegistrationError(f"No docker-compose.yml found in {project_dir}")
        return project_dir
