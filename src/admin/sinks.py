"""Notification sinks for the alert engine.

A sink is ``async def send(channel, message) -> None``. ``log_sink`` is the
default; ``SlackWebhookSink`` posts to an incoming webhook when SLACK_WEBHOOK_URL
is set.
"""

from __future__ import annotations

import logging

import httpx

from src.config import settings

logger = logging.getLogger(__name__)


async def log_sink(channel: str, message: str) -> None:
    """Write the alert to the application log."""
    logger.info("[alert:%s] %s", channel, message.replace("\n", " | "))


class SlackWebhookSink:
    """Posts alerts to a Slack incoming webhook."""

    def __init__(self, webhook_url: str | None = None, timeout: float | None = None) -> None:
        self._webhook_url = webhook_url if webhook_url is not None else settings.notifications.slack_webhook_url
        self._timeout = httpx.Timeout(timeout or settings.notifications.timeout, connect=5.0)

    @property
    def enabled(self) -> bool:
        return bool(self._webhook_url)

    async def __call__(self, channel: str, message: str) -> None:
        if not self.enabled:
            await log_sink(channel, message)
            return

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._webhook_url, json={"text": message, "channel": channel})
                response.raise_for_status()
        except httpx.TimeoutException:
            logger.warning("Slack webhook timeout (channel=%s)", channel)
        except httpx.HTTPStatusError as exc:
            logger.warning("Slack webhook HTTP error %s (channel=%s)", exc.response.status_code, channel)
        except httpx.HTTPError:
            logger.exception("Slack webhook request failed (channel=%s)", channel)
