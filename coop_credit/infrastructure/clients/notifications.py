"""Notification webhook client with exponential backoff retry logic"""

import asyncio
import logging
from typing import Any, Dict

import httpx

from coop_credit.config import settings
from coop_credit.infrastructure.observability.metrics import (
    notification_failure_counter,
    notification_latency_histogram,
)

logger = logging.getLogger(__name__)


class NotificationClient:
    """Client for sending member-facing events to the notification service"""

    def __init__(self, webhook_url: str | None = None, max_retries: int | None = None, backoff_base: float | None = None):
        self.webhook_url = webhook_url or settings.notification_webhook_url
        self.max_retries = settings.webhook_max_retries if max_retries is None else max_retries
        self.backoff_base = settings.webhook_backoff_base if backoff_base is None else backoff_base
        self.timeout = settings.http_timeout_seconds

    async def send_event(self, payload: Dict[str, Any]) -> None:
        """
        Deliver one event with retry logic.

        Retry strategy:
        - One attempt plus up to max_retries retries (0 disables retrying)
        - Exponential backoff: 1s, 2s, 4s, 8s (base * 2^attempt)
        - Retries on 5xx errors and network failures
        - Tracks latency histogram and failure counter

        Raises the last httpx error once retries are exhausted.
        """
        attempt = 0
        async with httpx.AsyncClient() as client:
            while True:
                try:
                    with notification_latency_histogram.time():
                        response = await client.post(
                            self.webhook_url,
                            json=payload,
                            timeout=self.timeout,
                        )
                        response.raise_for_status()
                        return

                except (httpx.HTTPStatusError, httpx.RequestError):
                    notification_failure_counter.inc()

                    if attempt >= self.max_retries:
                        raise

                    backoff = self.backoff_base * (2 ** attempt)
                    attempt += 1
                    await asyncio.sleep(backoff)

    async def notify(self, payload: Dict[str, Any]) -> None:
        """Fire-and-forget delivery: failures are logged, never propagated to the ledger"""
        try:
            await self.send_event(payload)
        except (httpx.HTTPStatusError, httpx.RequestError) as e:
            logger.error(
                f"Notification delivery failed: {e}",
                extra={"event": payload.get("event"), "member_id": payload.get("member_id")},
            )
