"""Dependency injection for FastAPI endpoints"""

import hmac

from fastapi import Header, HTTPException, Request

from coop_credit.infrastructure.clients.notifications import NotificationClient
from coop_credit.services.credit_engine import CreditEngine
from coop_credit.services.penalty_processor import PenaltyProcessor
from coop_credit.services.sweep import PenaltySweep


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_credit_engine(request: Request) -> CreditEngine:
    return request.app.state.credit_engine


def get_penalty_processor(request: Request) -> PenaltyProcessor:
    return request.app.state.penalty_processor


def get_penalty_sweep(request: Request) -> PenaltySweep:
    return request.app.state.penalty_sweep


def get_notification_client(request: Request) -> NotificationClient:
    """Provide notification webhook client instance"""
    config = request.app.state.settings
    return NotificationClient(
        webhook_url=config.notification_webhook_url,
        max_retries=config.webhook_max_retries,
        backoff_base=config.webhook_backoff_base,
    )


def verify_cron_secret(request: Request, authorization: str | None = Header(None)) -> None:
    """Scheduled endpoints require 'Authorization: Bearer <cron_secret>'"""
    expected = f"Bearer {request.app.state.settings.cron_secret}"
    if authorization is None or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")
