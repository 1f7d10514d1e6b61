"""
Push-notification collaborator.

The core calls ``NotificationDispatcher.send`` after a transition has
been committed.  Delivery happens in a background task: a failing
provider is logged as ``UpstreamUnavailable`` and never affects the
transition that triggered it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Protocol

import httpx

from carryon.domain.errors import UpstreamUnavailable
from carryon.domain.identity import Identity

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify(
        self, recipient: Identity, title: str, body: str, data: dict[str, Any]
    ) -> None: ...


class LoggingNotifier:
    """Used when no push provider is configured."""

    async def notify(self, recipient, title, body, data):
        logger.info("Notify %s: %s - %s", recipient.key, title, body)


class HttpPushNotifier:
    """POSTs notifications to a push gateway webhook."""

    def __init__(self, url: str, timeout: float = 5.0):
        self.url = url
        self.timeout = timeout

    async def notify(self, recipient, title, body, data):
        payload = {"recipient": recipient.key, "title": title, "body": body, "data": data}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"Push gateway failed: {exc}") from exc


class NotificationDispatcher:
    def __init__(self, notifier: Notifier):
        self.notifier = notifier
        self._pending: set[asyncio.Task] = set()

    def send(
        self,
        recipient: Identity,
        title: str,
        body: str,
        data: Optional[dict[str, Any]] = None,
    ) -> asyncio.Task:
        task = asyncio.create_task(self._deliver(recipient, title, body, data or {}))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _deliver(self, recipient, title, body, data) -> None:
        try:
            await self.notifier.notify(recipient, title, body, data)
        except UpstreamUnavailable:
            logger.warning("Notification to %s dropped", recipient.key, exc_info=True)
        except Exception:
            logger.exception("Notification to %s failed", recipient.key)

    async def drain(self) -> None:
        """Wait for in-flight notifications (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def build_notifier(url: Optional[str], timeout: float = 5.0) -> Notifier:
    if url:
        return HttpPushNotifier(url, timeout)
    return LoggingNotifier()
