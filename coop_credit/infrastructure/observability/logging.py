"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict

from pythonjsonlogger import jsonlogger

logger = logging.getLogger("coop_credit")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = "coop-credit"
        # Decimals are not JSON serializable; money is logged as its exact string
        for key, value in list(log_record.items()):
            if isinstance(value, Decimal):
                log_record[key] = str(value)


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    root = logging.getLogger()
    root.setLevel(level)

    # Remove existing handlers
    root.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    root.addHandler(handler)


def log_payment(
    member_id: int,
    applied: Decimal,
    new_balance: Decimal,
    allocations: int,
    request_id: str | None = None,
) -> None:
    """Log structured payment outcome for reconciliation"""
    logger.info(
        "Payment applied",
        extra={
            "request_id": request_id,
            "member_id": member_id,
            "step": "payment_applied",
            "applied": applied,
            "new_balance": new_balance,
            "allocation_count": allocations,
        },
    )


def log_sweep(succeeded: int, failed: int, events: int, duration_ms: float) -> None:
    """Log aggregate sweep outcome"""
    level = logging.WARNING if failed else logging.INFO
    logger.log(
        level,
        "Penalty sweep completed",
        extra={
            "step": "sweep_complete",
            "members_succeeded": succeeded,
            "members_failed": failed,
            "events_posted": events,
            "duration_ms": duration_ms,
        },
    )
