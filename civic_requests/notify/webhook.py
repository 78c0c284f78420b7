"""
HTTP webhook delivery for stored notifications.

Posts each notification as JSON to a configured endpoint (an SMS or
e-mail gateway, a citizen portal push service). The database row is the
source of truth; the webhook is a best-effort copy.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from civic_requests.notify.dispatcher import NotificationSink


@dataclass
class WebhookConfig:
    """Configuration for the outbound webhook."""

    url: str
    token: str = ""
    timeout: float = 10.0


class WebhookSink(NotificationSink):
    """
    Deliver notifications to an HTTP endpoint.

    Usage:
        sink = WebhookSink(WebhookConfig(url="https://gateway.example/notify", token="..."))
        sink.deliver({"recipient_id": "citizen-1", "title": "...", ...})
        sink.close()
    """

    name = "webhook"

    def __init__(
        self, config: WebhookConfig, transport: Optional[httpx.BaseTransport] = None
    ) -> None:
        self.config = config
        headers = {"Content-Type": "application/json"}
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"
        self._client = httpx.Client(
            headers=headers,
            timeout=config.timeout,
            transport=transport,
        )

    def deliver(self, notification: dict[str, Any]) -> None:
        resp = self._client.post(self.config.url, json=notification)
        resp.raise_for_status()

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
