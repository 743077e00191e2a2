"""Exception hierarchy for Compose Updater.

Best-effort steps (hook skips, per-service retags, image prune, webhook
delivery) log their errors and carry on; everything else propagates one of
these so the orchestrator can pick the rollback/notify path.
"""

from __future__ import annotations


class ComposeUpdaterError(Exception):
    """Base class for all expected failures."""


class ConfigError(ComposeUpdaterError):
    """Invalid global configuration key or value."""


class PermissionDeniedError(ComposeUpdaterError):
    """Command requires elevated privileges."""


class RegistrationError(ComposeUpdaterError):
    """Directory missing, not a compose project, or not registered."""


class ScheduleError(ComposeUpdaterError):
    """Unparsable interval, time, day list, or cron expression."""


class LockBusyError(ComposeUpdaterError):
    """Another process holds the lock for ``key``."""

    def __init__(self, key: str, lock_path: str) -> None:
        self.key = key
        self.lock_path = lock_path
        super().__init__(f"Another update is already running for: {key}")


class HookError(ComposeUpdaterError):
    """A hook script exited non-zero."""

    def __init__(self, hook_name: str, returncode: int) -> None:
        self.hook_name = hook_name
        self.returncode = returncode
        super().__init__(f"Hook {hook_name} failed with exit code {returncode}")


class CommandError(ComposeUpdaterError):
    """An external command exited non-zero or could not be started."""

    def __init__(self, command: str, returncode: int | None, stderr: str = "") -> None:
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        detail = f" (rc={returncode})" if returncode is not None else ""
        super().__init__(f"Command failed: {command}{detail}")


class PullError(CommandError):
    """``compose pull`` failed; nothing has been changed yet."""


class RecreateError(CommandError):
    """``compose up`` failed after the pull; state must be reverted."""


class HealthCheckError(ComposeUpdaterError):
    """Services did not become healthy."""


class HealthTimeoutError(HealthCheckError):
    """Health polling ran out of time."""


class HealthFastFailError(HealthCheckError):
    """A container exited, died, or reported unhealthy."""


class RollbackError(ComposeUpdaterError):
    """The final forced recreate of a rollback failed."""


class NotificationError(ComposeUpdaterError):
    """Webhook delivery failed. Never escapes the notifier."""
