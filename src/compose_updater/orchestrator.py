"""Update orchestrator: lock, hooks, snapshot, pull, recreate, verify, revert.

Lifecycle of one update:
1. Acquire the per-project lock (busy -> fail immediately)
2. Run ``pre-update.sh``
3. Snapshot the image id of every running service
4. ``docker compose pull`` (failure -> notify, nothing to revert)
5. ``docker compose up -d --remove-orphans`` (failure -> rollback)
6. Poll container health (failure -> rollback)
7. Run ``post-update.sh`` and prune dangling images
8. Notify, then release the lock
"""

from __future__ import annotations

import contextlib
import time
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from pathlib import Path

import structlog

from compose_updater.compose import ComposeClient, find_compose_file
from compose_updater.config import GlobalConfig
from compose_updater.constants import POST_UPDATE_HOOK, PRE_UPDATE_HOOK
from compose_updater.errors import (
    CommandError,
    HookError,
    LockBusyError,
    PullError,
    RecreateError,
    RegistrationError,
    RollbackError,
)
from compose_updater.health import HealthMonitor
from compose_updater.hooks import HookOutcome, HookRunner
from compose_updater.locks import LockManager
from compose_updater.logging import get_logger, project_log
from compose_updater.models import (
    ProjectRecord,
    RollbackSnapshot,
    UpdatePhase,
    UpdateResult,
    UpdateStatus,
    project_name_for,
)
from compose_updater.notifier import FAILURE, SUCCESS, WebhookNotifier
from compose_updater.rollback import RollbackManager

log = get_logger("compose_updater.orchestrator")


class UpdateOrchestrator:
    """Runs the update state machine for one project at a time."""

    def __init__(
        self,
        compose: ComposeClient,
        locks: LockManager,
        notifier: WebhookNotifier,
        global_config: GlobalConfig,
        hooks: HookRunner | None = None,
        health: HealthMonitor | None = None,
        rollback: RollbackManager | None = None,
        log_path_for: Callable[[str], Path] | None = None,
    ) -> None:
        self._compose = compose
        self._locks = locks
        self._notifier = notifier
        self._config = global_config
        self._hooks = hooks or HookRunner()
        self._health = health or HealthMonitor(compose)
        self._rollback = rollback or RollbackManager(compose)
        self._log_path_for = log_path_for
        self._phase = UpdatePhase.IDLE
        self._current_project: str | None = None

    # ------------------------------------------------------------------
    # Public status surface
    # ------------------------------------------------------------------

    @property
    def phase(self) -> UpdatePhase:
        return self._phase

    @property
    def current_project(self) -> str | None:
        return self._current_project

    # ------------------------------------------------------------------
    # Primary flows
    # ------------------------------------------------------------------

    async def update(
        self,
        target: ProjectRecord | Path | str,
        *,
        capture_log: bool = True,
    ) -> UpdateResult:
        """Update one project directory.

        ``capture_log`` appends this run's log records to the project's log
        file. Scheduled runs turn it off because cron already redirects the
        process output there.

        Raises:
            RegistrationError: the directory is missing or has no compose file.
        """
        project_dir = Path(target.path if isinstance(target, ProjectRecord) else target)
        if not project_dir.is_dir():
            raise RegistrationError(f"Directory not found: {project_dir}")
        if find_compose_file(project_dir) is None:
            raise RegistrationError(f"No docker-compose.yml found in {project_dir}")

        name = target.name if isinstance(target, ProjectRecord) else project_name_for(project_dir)
        result = UpdateResult(project=name, path=str(project_dir))

        log_cm: contextlib.AbstractContextManager[object] = contextlib.nullcontext()
        if capture_log and self._log_path_for is not None:
            log_cm = project_log(self._log_path_for(name))

        with log_cm, structlog.contextvars.bound_contextvars(project=name):
            self._phase = UpdatePhase.LOCKING
            try:
                handle = self._locks.acquire(name)
            except LockBusyError as exc:
                log.error("update_already_running", lock_path=exc.lock_path)
                result.error = str(exc)
                result.phase = UpdatePhase.LOCKING
                result.completed_at = self._now_iso()
                result.duration_seconds = 0.0
                self._phase = UpdatePhase.IDLE
                return result

            with handle:
                self._current_project = name
                try:
                    await self._do_update(project_dir, name, result)
                finally:
                    self._current_project = None
                    self._phase = UpdatePhase.IDLE

        return result

    async def update_all(self, records: Iterable[ProjectRecord]) -> list[UpdateResult]:
        """Update every enabled project, one after another.

        A failing project does not stop the remaining ones.
        """
        results: list[UpdateResult] = []
        for record in records:
            if not record.enabled:
                continue
            log.info("update_all_project", project=record.name, path=record.path)
            try:
                result = await self.update(record)
            except RegistrationError as exc:
                log.error("update_all_project_invalid", project=record.name, error=str(exc))
                result = UpdateResult(
                    project=record.name,
                    path=record.path,
                    status=UpdateStatus.SKIPPED,
                    error=str(exc),
                )
                result.completed_at = self._now_iso()
                await self._notify(FAILURE, f"Update skipped for {record.name}: {exc}", record.name)
            results.append(result)

        succeeded = sum(1 for r in results if r.ok)
        log.info("update_all_complete", updated=succeeded, failed=len(results) - succeeded)
        return results

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _do_update(self, project_dir: Path, name: str, result: UpdateResult) -> None:
        start = time.monotonic()
        snapshot: RollbackSnapshot | None = None
        mutated = False
        log.info("update_started", path=str(project_dir))

        try:
            self._enter(result, UpdatePhase.PRE_HOOK)
            if not await self._run_pre_hook(project_dir, result):
                result.error = f"Pre-update hook failed for {name}"
                await self._finish(result, FAILURE, f"{result.error}. Update aborted.")
                return

            self._enter(result, UpdatePhase.SNAPSHOTTING)
            snapshot = await self._rollback.snapshot(project_dir)
            result.steps_completed.append("snapshot")

            self._enter(result, UpdatePhase.PULLING)
            try:
                await self._compose.pull(project_dir)
            except PullError as exc:
                log.error("update_pull_failed", stderr=exc.stderr[:500])
                result.error = f"Failed to pull images for {name}"
                await self._finish(result, FAILURE, result.error)
                return
            result.steps_completed.append("pull")

            self._enter(result, UpdatePhase.RECREATING)
            mutated = True
            try:
                await self._compose.up(project_dir, remove_orphans=True)
            except RecreateError as exc:
                log.error("update_recreate_failed", stderr=exc.stderr[:500])
                result.error = f"Failed to recreate containers for {name}"
                await self._revert(project_dir, snapshot, result)
                await self._finish(result, FAILURE, result.error)
                return
            result.steps_completed.append("recreate")

            self._enter(result, UpdatePhase.HEALTH_CHECKING)
            verdict = await self._health.wait_for_healthy(project_dir, self._config.health_timeout)
            if not verdict.healthy:
                log.error(
                    "update_health_check_failed", reason=verdict.reason, detail=str(verdict.error)
                )
                result.error = f"Health check failed ({verdict.reason}): {verdict.error}"
                await self._revert(project_dir, snapshot, result)
                await self._finish(
                    result,
                    FAILURE,
                    f"Update failed and rolled back for {name} (Health Check Failed)",
                )
                return
            result.steps_completed.append("health_check")

            self._enter(result, UpdatePhase.POST_HOOK)
            await self._run_post_hook(project_dir, result)

            self._enter(result, UpdatePhase.CLEANUP)
            try:
                await self._compose.prune_images()
                result.steps_completed.append("prune_images")
            except CommandError as exc:
                log.warning("update_prune_failed", error=str(exc))

            result.status = UpdateStatus.SUCCESS
            log.info("update_success")
            await self._finish(result, SUCCESS, f"Update completed successfully for {name}")

        except Exception as exc:
            result.error = f"Unexpected error: {exc}"
            log.exception("update_unexpected_error")
            if mutated and snapshot is not None and not result.rollback_attempted:
                await self._revert(project_dir, snapshot, result)
            await self._finish(result, FAILURE, f"Update failed for {name}: {exc}")
        finally:
            result.duration_seconds = round(time.monotonic() - start, 2)
            result.completed_at = self._now_iso()

    async def _run_pre_hook(self, project_dir: Path, result: UpdateResult) -> bool:
        """Return False only when a failing pre-hook must stop the update."""
        try:
            outcome = await self._hooks.run(project_dir, PRE_UPDATE_HOOK)
        except HookError as exc:
            if self._config.pre_hook_required:
                log.error("update_pre_hook_failed", returncode=exc.returncode)
                return False
            log.warning("update_pre_hook_failed_continuing", returncode=exc.returncode)
            return True
        if outcome is HookOutcome.SUCCEEDED:
            result.steps_completed.append("pre_hook")
        return True

    async def _run_post_hook(self, project_dir: Path, result: UpdateResult) -> None:
        try:
            outcome = await self._hooks.run(project_dir, POST_UPDATE_HOOK)
        except HookError as exc:
            log.warning("update_post_hook_failed", returncode=exc.returncode)
            return
        if outcome is HookOutcome.SUCCEEDED:
            result.steps_completed.append("post_hook")

    async def _revert(
        self, project_dir: Path, snapshot: RollbackSnapshot, result: UpdateResult
    ) -> None:
        self._enter(result, UpdatePhase.ROLLING_BACK)
        result.rollback_attempted = True
        try:
            await self._rollback.rollback(project_dir, snapshot)
            ok = True
        except RollbackError as exc:
            log.error("update_rollback_failed", error=str(exc))
            ok = False
        except Exception:
            log.exception("update_rollback_error")
            ok = False
        result.rollback_succeeded = ok
        result.status = UpdateStatus.ROLLED_BACK if ok else UpdateStatus.FAILED
        if ok:
            result.steps_completed.append("rollback")

    async def _finish(self, result: UpdateResult, outcome: str, message: str) -> None:
        self._enter(result, UpdatePhase.NOTIFY_AND_RELEASE)
        if outcome == FAILURE:
            log.error("update_failed", error=result.error, status=result.status.value)
        await self._notify(outcome, message, result.project)

    async def _notify(self, outcome: str, message: str, project_name: str) -> None:
        try:
            await self._notifier.notify(outcome, message, project_name)
        except Exception:
            log.exception("update_notify_error")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _enter(self, result: UpdateResult, phase: UpdatePhase) -> None:
        self._phase = phase
        result.phase = phase
        log.debug("update_phase", phase=phase.value)

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(UTC).isoformat()
