"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from fleet_settlement.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_settlement(
    driver_id: str,
    week_id: str,
    outcome: str,
    net_payable: Decimal,
    partial_failures: int,
    duration_ms: float,
) -> None:
    """Log structured settlement outcome for analysis"""
    logging.getLogger("fleet_settlement.settlement").info(
        "Settlement computed",
        extra={
            "driver_id": driver_id,
            "week_id": week_id,
            "step": "settlement_complete",
            "outcome": outcome,
            "net_payable": str(net_payable),
            "partial_failures": partial_failures,
            "duration_ms": duration_ms,
        },
    )


def log_payment(
    driver_id: str,
    week_id: str,
    transaction_id: str,
    total_amount: Decimal,
    has_proof: bool,
    duration_ms: float,
) -> None:
    """Log structured payment commit for audit"""
    logging.getLogger("fleet_settlement.payments").info(
        "Payment committed",
        extra={
            "driver_id": driver_id,
            "week_id": week_id,
            "step": "payment_committed",
            "transaction_id": transaction_id,
            "total_amount": str(total_amount),
            "has_proof": has_proof,
            "duration_ms": duration_ms,
        },
    )
