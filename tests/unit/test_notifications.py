"""Unit tests for the notification webhook retry loop"""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from coop_credit.config import settings
from coop_credit.infrastructure.clients.notifications import NotificationClient

URL = "http://notifications.test/events"
PAYLOAD = {"event": "PAYMENT_APPLIED", "member_id": 1}


def ok_response():
    return httpx.Response(200, request=httpx.Request("POST", URL))


def test_explicit_zero_retries_is_kept():
    client = NotificationClient(webhook_url=URL, max_retries=0, backoff_base=0.0)
    assert client.max_retries == 0
    assert client.backoff_base == 0.0


def test_unset_retries_fall_back_to_settings():
    client = NotificationClient(webhook_url=URL)
    assert client.max_retries == settings.webhook_max_retries


@patch.object(httpx.AsyncClient, "post", new_callable=AsyncMock)
def test_zero_retries_makes_a_single_attempt(mock_post: AsyncMock):
    mock_post.side_effect = httpx.ConnectError("connection refused")
    client = NotificationClient(webhook_url=URL, max_retries=0, backoff_base=0.0)

    with pytest.raises(httpx.ConnectError):
        asyncio.run(client.send_event(PAYLOAD))

    assert mock_post.await_count == 1


@patch.object(httpx.AsyncClient, "post", new_callable=AsyncMock)
def test_retries_until_success(mock_post: AsyncMock):
    """Two failures then a 200 with two retries allowed: delivered on the third attempt"""
    mock_post.side_effect = [httpx.ConnectError("down"), httpx.ConnectError("down"), ok_response()]
    client = NotificationClient(webhook_url=URL, max_retries=2, backoff_base=0.0)

    asyncio.run(client.send_event(PAYLOAD))

    assert mock_post.await_count == 3
    assert mock_post.call_args.kwargs["json"] == PAYLOAD


@patch.object(httpx.AsyncClient, "post", new_callable=AsyncMock)
def test_notify_swallows_delivery_failure(mock_post: AsyncMock):
    mock_post.side_effect = httpx.ConnectError("down")
    client = NotificationClient(webhook_url=URL, max_retries=1, backoff_base=0.0)

    asyncio.run(client.notify(PAYLOAD))

    assert mock_post.await_count == 2
