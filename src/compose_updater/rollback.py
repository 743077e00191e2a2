"""Snapshot running image ids and restore them after a failed update."""

from __future__ import annotations

from pathlib import Path

from compose_updater.compose import ComposeClient
from compose_updater.errors import CommandError, RecreateError, RollbackError
from compose_updater.logging import get_logger
from compose_updater.models import RollbackSnapshot

log = get_logger("compose_updater.rollback")


class RollbackManager:
    """Restores a project to the images recorded in a ``RollbackSnapshot``.

    Rollback is a local retag: each service's configured ``repo:tag`` is
    pointed back at the snapshot image id, then the whole project is
    force-recreated. Per-service problems are logged and skipped; only a
    failed final recreate raises.
    """

    def __init__(self, compose: ComposeClient) -> None:
        self._compose = compose

    async def snapshot(self, project_dir: Path) -> RollbackSnapshot:
        """Record the image id of every running service container."""
        snapshot = RollbackSnapshot()
        for entry in await self._compose.ps(project_dir):
            info = await self._compose.inspect(entry.container_id)
            if info.image_id:
                snapshot.images[entry.service] = info.image_id
        log.info("rollback_snapshot_taken", services=len(snapshot), images=snapshot.images)
        return snapshot

    async def rollback(self, project_dir: Path, snapshot: RollbackSnapshot) -> None:
        """Retag every snapshot service and force-recreate the project.

        Raises:
            RollbackError: the forced recreate failed.
        """
        log.warning("rollback_started", services=len(snapshot))

        for service, image_id in snapshot:
            try:
                ref = await self._compose.image_ref(project_dir, service)
            except CommandError as exc:
                log.warning("rollback_ref_lookup_failed", service=service, error=str(exc))
                continue
            if not ref:
                log.warning("rollback_service_skipped", service=service, reason="no image tag")
                continue

            try:
                await self._compose.tag(image_id, ref)
            except CommandError as exc:
                log.warning("rollback_retag_failed", service=service, ref=ref, error=str(exc))
                continue
            log.info("rollback_retagged", service=service, ref=ref, image_id=image_id)

        try:
            await self._compose.up(project_dir, force_recreate=True, remove_orphans=False)
        except RecreateError as exc:
            log.error("rollback_failed", error=str(exc), stderr=exc.stderr[:500])
            raise RollbackError(f"Rollback recreate failed: {exc}") from exc

        log.info("rollback_complete")
