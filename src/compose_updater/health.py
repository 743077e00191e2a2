"""Poll compose service containers until they are healthy or time runs out."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from compose_updater.compose import ComposeClient
from compose_updater.constants import HEALTH_POLL_INTERVAL_SECONDS
from compose_updater.errors import (
    CommandError,
    HealthCheckError,
    HealthFastFailError,
    HealthTimeoutError,
)
from compose_updater.logging import get_logger
from compose_updater.models import HealthState

log = get_logger("compose_updater.health")


@dataclass
class HealthVerdict:
    """Result of ``HealthMonitor.wait_for_healthy``.

    ``reason`` is ``"healthy"``, ``"fast_fail"`` or ``"timeout"``. Callers
    only look at ``healthy``; the reason is kept for logs.
    """

    healthy: bool
    reason: str
    error: HealthCheckError | None = None
    rounds: int = 0


@dataclass
class _Round:
    observed: int = 0
    pending: list[str] | None = None
    failure: str | None = None


class HealthMonitor:
    """Fixed-interval health polling of a compose project."""

    def __init__(
        self,
        compose: ComposeClient,
        poll_interval: float = HEALTH_POLL_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._compose = compose
        self._poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep

    async def wait_for_healthy(self, project_dir: Path, timeout_seconds: float) -> HealthVerdict:
        """Poll until every running container is healthy.

        An exited, dead, or unhealthy container ends polling immediately.
        Containers without a health probe count as healthy once running.
        """
        log.info("health_wait_started", timeout=timeout_seconds)
        start = self._clock()
        rounds = 0

        while self._clock() - start < timeout_seconds:
            rounds += 1
            poll = await self._poll(project_dir)

            if poll.failure:
                error = HealthFastFailError(poll.failure)
                log.warning("health_fast_fail", detail=poll.failure, round=rounds)
                return HealthVerdict(healthy=False, reason="fast_fail", error=error, rounds=rounds)

            if poll.observed and not poll.pending:
                log.info("health_ok", containers=poll.observed, round=rounds)
                return HealthVerdict(healthy=True, reason="healthy", rounds=rounds)

            log.debug(
                "health_not_ready",
                containers=poll.observed,
                pending=poll.pending or [],
                round=rounds,
            )
            await self._sleep(self._poll_interval)

        error = HealthTimeoutError(f"services not healthy after {timeout_seconds}s")
        log.warning("health_timeout", timeout=timeout_seconds, rounds=rounds)
        return HealthVerdict(healthy=False, reason="timeout", error=error, rounds=rounds)

    async def _poll(self, project_dir: Path) -> _Round:
        poll = _Round(pending=[])
        try:
            containers = await self._compose.ps(project_dir, include_stopped=True)
        except CommandError as exc:
            # Engine hiccup: treat the round as not ready and let the timeout decide
            log.warning("health_ps_failed", error=str(exc))
            poll.pending = ["<ps>"]
            return poll

        for entry in containers:
            try:
                info = await self._compose.inspect(entry.container_id)
            except CommandError as exc:
                log.warning("health_inspect_failed", service=entry.service, error=str(exc))
                poll.pending.append(entry.service)
                continue

            poll.observed += 1
            state = info.health_state
            if state in (HealthState.EXITED, HealthState.DEAD):
                poll.failure = f"Service {entry.service} is {state.value}"
                return poll
            if state is HealthState.UNHEALTHY:
                poll.failure = f"Service {entry.service} is unhealthy"
                return poll
            if state is HealthState.STARTING or info.state != "running":
                poll.pending.append(entry.service)

        return poll
