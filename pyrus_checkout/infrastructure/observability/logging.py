"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.utcnow().isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = "pyrus-checkout"


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_settlement(
    request_id: str,
    client_id: str,
    tier: str,
    payment_path: str,
    final_amount: str,
    coupon_code: Optional[str],
) -> None:
    """Log structured settlement outcome for revenue analysis"""
    logging.info(
        "Checkout settlement completed",
        extra={
            "request_id": request_id,
            "client_id": client_id,
            "tier": tier,
            "step": "settlement_complete",
            "payment_path": payment_path,
            "final_amount": final_amount,
            "coupon_code": coupon_code,
        },
    )
