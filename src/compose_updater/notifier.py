"""Webhook notifications for update outcomes.

Delivery is best-effort: a missing URL is a no-op and any transport error
is logged and dropped, so a notification problem never changes the
reported update result.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import httpx

from compose_updater import __version__
from compose_updater.constants import (
    APP_NAME,
    NOTIFY_COLOR_FAILURE,
    NOTIFY_COLOR_SUCCESS,
    NOTIFY_TIMEOUT_SECONDS,
)
from compose_updater.errors import NotificationError
from compose_updater.logging import get_logger

log = get_logger("compose_updater.notifier")

SUCCESS = "success"
FAILURE = "failure"


def build_payload(outcome: str, message: str, project_name: str, ts: int) -> dict[str, Any]:
    """Build a Slack-compatible attachment payload."""
    return {
        "attachments": [
            {
                "color": NOTIFY_COLOR_FAILURE if outcome == FAILURE else NOTIFY_COLOR_SUCCESS,
                "title": f"Compose Updater: {project_name}",
                "text": message,
                "footer": f"{APP_NAME} v{__version__}",
                "ts": ts,
            }
        ]
    }


class WebhookNotifier:
    """Posts update outcomes to a configured webhook URL."""

    def __init__(
        self,
        url_provider: Callable[[], str | None],
        timeout: float = NOTIFY_TIMEOUT_SECONDS,
    ) -> None:
        self._url_provider = url_provider
        self._timeout = timeout

    async def notify(self, outcome: str, message: str, project_name: str) -> bool:
        """Send a notification. Returns True if the webhook accepted it."""
        url = self._url_provider()
        if not url:
            log.debug("notify_skipped", reason="no_webhook")
            return False

        payload = build_payload(outcome, message, project_name, int(time.time()))
        try:
            await self._post(url, payload)
        except NotificationError as exc:
            log.warning("notify_failed", project=project_name, error=str(exc))
            return False

        log.info("notify_sent", project=project_name, outcome=outcome)
        return True

    async def _post(self, url: str, payload: dict[str, Any]) -> None:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=payload)
        except (httpx.HTTPError, httpx.InvalidURL, OSError, ValueError) as exc:
            raise NotificationError(str(exc)) from exc

        if resp.status_code >= 400:
            raise NotificationError(f"webhook returned HTTP {resp.status_code}")
