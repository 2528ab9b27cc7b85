"""Notification collaborator: outbound email.

Delivery mechanics live elsewhere; ``WebhookNotifier`` hands messages to an
HTTP email relay and ``LogNotifier`` just records them.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import httpx
from loguru import logger


class NotificationError(RuntimeError):
    """Raised when the relay rejects or cannot accept a message."""


@runtime_checkable
class Notifier(Protocol):
    async def send_email(self, to: str, subject: str, html: str) -> None: ...


class LogNotifier:
    """Writes messages to the log instead of sending them."""

    def __init__(self) -> None:
        self.sent: list[dict[str, str]] = []

    async def send_email(self, to: str, subject: str, html: str) -> None:
        self.sent.append({"to": to, "subject": subject, "html": html})
        logger.info(f"email (log only) to={to} subject={subject!r}")


class WebhookNotifier:
    """POSTs ``{from, to, subject, html}`` to an email relay endpoint."""

    def __init__(
        self,
        url: str,
        token: str = "",
        sender: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._token = token
        self._sender = sender
        self._timeout = timeout
        self._client = client

    async def send_email(self, to: str, subject: str, html: str) -> None:
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        body = {"from": self._sender, "to": to, "subject": subject, "html": html}
        try:
            if self._client is not None:
                resp = await self._client.post(self._url, json=body, headers=headers, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.post(self._url, json=body, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(f"email relay failed for {to}: {exc}") from exc
        logger.info(f"email queued to={to} subject={subject!r}")
