"""Shared fixtures and test doubles."""

from __future__ import annotations

from pathlib import Path

import pytest

from compose_updater.errors import CommandError, PullError, RecreateError
from compose_updater.models import ContainerInfo, ServiceContainer


class FakeCompose:
    """In-memory ``ComposeClient``.

    ``refs`` maps service -> ``repo:tag``; ``tags`` maps ``repo:tag`` -> image
    id (the local tag table); ``remote`` holds the image ids a pull brings in.
    Containers adopt ``tags[ref]`` whenever ``up`` runs.
    """

    def __init__(self) -> None:
        self.refs: dict[str, str | None] = {}
        self.tags: dict[str, str] = {}
        self.remote: dict[str, str] = {}
        self.containers: dict[str, ContainerInfo] = {}
        self.stopped: set[str] = set()
        self.calls: list[tuple] = []
        self.fail_pull = False
        self.fail_up = False
        self.fail_force_recreate = False
        self.fail_prune = False
        self.fail_tag: set[str] = set()
        # state/health applied to every container after a non-forced ``up``
        self.state_after_up: tuple[str, str | None] = ("running", None)

    # -- setup helpers -------------------------------------------------

    def add_service(
        self,
        service: str,
        ref: str | None,
        image_id: str,
        state: str = "running",
        health: str | None = None,
    ) -> None:
        self.refs[service] = ref
        if ref:
            self.tags[ref] = image_id
        self.containers[service] = ContainerInfo(
            container_id=f"cid-{service}",
            image_id=image_id,
            configured_image=ref or "",
            state=state,
            health=health,
        )

    def image_of(self, service: str) -> str:
        return self.containers[service].image_id

    # -- ComposeClient -------------------------------------------------

    async def resolve_services(self, project_dir: Path) -> list[str]:
        return list(self.refs)

    async def pull(self, project_dir: Path) -> None:
        self.calls.append(("pull",))
        if self.fail_pull:
            raise PullError("docker compose pull", 1, "manifest unknown")
        self.tags.update(self.remote)

    async def up(
        self,
        project_dir: Path,
        *,
        force_recreate: bool = False,
        remove_orphans: bool = True,
    ) -> None:
        self.calls.append(("up", force_recreate))
        if (force_recreate and self.fail_force_recreate) or (not force_recreate and self.fail_up):
            raise RecreateError("docker compose up -d", 1, "port already allocated")

        state, health = ("running", None) if force_recreate else self.state_after_up
        for service, ref in self.refs.items():
            old = self.containers[service]
            self.containers[service] = ContainerInfo(
                container_id=old.container_id,
                image_id=self.tags.get(ref, old.image_id) if ref else old.image_id,
                configured_image=old.configured_image,
                state=state,
                health=health,
            )

    async def ps(
        self, project_dir: Path, *, include_stopped: bool = False
    ) -> list[ServiceContainer]:
        self.calls.append(("ps", include_stopped))
        return [
            ServiceContainer(service, info.container_id)
            for service, info in self.containers.items()
            if include_stopped or (info.state == "running" and service not in self.stopped)
        ]

    async def image_ref(self, project_dir: Path, service: str) -> str | None:
        return self.refs.get(service)

    async def tag(self, image_id: str, ref: str) -> None:
        self.calls.append(("tag", image_id, ref))
        if ref in self.fail_tag:
            raise CommandError(f"docker tag {image_id} {ref}", 1, "no such image")
        self.tags[ref] = image_id

    async def prune_images(self) -> None:
        self.calls.append(("prune",))
        if self.fail_prune:
            raise CommandError("docker image prune -f", 1, "daemon busy")

    async def inspect(self, container_id: str) -> ContainerInfo:
        for info in self.containers.values():
            if info.container_id == container_id:
                return info
        raise CommandError(f"docker inspect {container_id}", 1, "No such object")

    async def image_id(self, ref: str) -> str | None:
        return self.tags.get(ref)

    # -- assertions ----------------------------------------------------

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls if call[0] != "ps"]


class FakeClock:
    """Monotonic clock advanced only by ``sleep``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture()
def fake_compose() -> FakeCompose:
    return FakeCompose()


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def project_dir(tmp_path: Path) -> Path:
    """A directory containing a compose manifest."""
    directory = tmp_path / "My_App"
    directory.mkdir()
    (directory / "docker-compose.yml").write_text("services: {}\n", encoding="utf-8")
    return directory
