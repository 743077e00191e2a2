"""Data models for registered projects and update attempts."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

_NAME_UNSAFE_RE = re.compile(r"[^a-z0-9]")


def project_name_for(path: str | Path) -> str:
    """Derive the lock/log identifier for a project directory.

    Distinct paths may share a name (``/srv/App`` and ``/opt/app``); the
    registry is keyed on path so this only affects lock and log names.
    """
    return _NAME_UNSAFE_RE.sub("-", Path(path).name.lower())


class ProjectStatus(Enum):
    """Whether scheduled updates run for a project."""

    ENABLED = "enabled"
    DISABLED = "disabled"


@dataclass
class ProjectRecord:
    """One registered compose project."""

    path: str
    name: str
    schedule: str
    status: ProjectStatus = ProjectStatus.ENABLED

    @classmethod
    def for_directory(
        cls,
        path: str | Path,
        schedule: str,
        status: ProjectStatus = ProjectStatus.ENABLED,
    ) -> ProjectRecord:
        return cls(path=str(path), name=project_name_for(path), schedule=schedule, status=status)

    @property
    def enabled(self) -> bool:
        return self.status is ProjectStatus.ENABLED

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "name": self.name,
            "schedule": self.schedule,
            "status": self.status.value,
        }


class HealthState(Enum):
    """Container state as seen by a single health poll."""

    NONE = "none"
    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    EXITED = "exited"
    DEAD = "dead"


@dataclass(frozen=True)
class ServiceContainer:
    """A compose service and the container currently backing it."""

    service: str
    container_id: str


@dataclass(frozen=True)
class ContainerInfo:
    """Subset of ``docker inspect`` output the updater relies on."""

    container_id: str
    image_id: str
    configured_image: str
    state: str
    health: str | None = None

    @property
    def health_state(self) -> HealthState:
        """Collapse engine state and health probe into a single ``HealthState``."""
        if self.state in ("exited", "dead"):
            return HealthState(self.state)
        if self.health is None:
            return HealthState.NONE
        try:
            return HealthState(self.health)
        except ValueError:
            return HealthState.NONE


@dataclass
class RollbackSnapshot:
    """Image ids that were running right before an update attempt."""

    images: dict[str, str] = field(default_factory=dict)
    taken_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def __len__(self) -> int:
        return len(self.images)

    def __iter__(self):
        return iter(self.images.items())


class UpdatePhase(Enum):
    """States of the update state machine."""

    IDLE = "idle"
    LOCKING = "locking"
    PRE_HOOK = "pre_hook"
    SNAPSHOTTING = "snapshotting"
    PULLING = "pulling"
    RECREATING = "recreating"
    HEALTH_CHECKING = "health_checking"
    POST_HOOK = "post_hook"
    CLEANUP = "cleanup"
    ROLLING_BACK = "rolling_back"
    NOTIFY_AND_RELEASE = "notify_and_release"


class UpdateStatus(Enum):
    """Outcome of an update attempt."""

    SUCCESS = "success"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    SKIPPED = "skipped"


@dataclass
class UpdateResult:
    """Result of one update attempt."""

    project: str
    path: str
    status: UpdateStatus = UpdateStatus.FAILED
    phase: UpdatePhase = UpdatePhase.IDLE
    error: str | None = None
    steps_completed: list[str] = field(default_factory=list)
    rollback_attempted: bool = False
    rollback_succeeded: bool | None = None
    started_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    completed_at: str | None = None
    duration_seconds: float | None = None

    @property
    def ok(self) -> bool:
        return self.status is UpdateStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "project": self.project,
            "path": self.path,
            "status": self.status.value,
            "phase": self.phase.value,
            "error": self.error,
            "steps_completed": self.steps_completed,
            "rollback_attempted": self.rollback_attempted,
            "rollback_succeeded": self.rollback_succeeded,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "duration_seconds": self.duration_seconds,
        }
