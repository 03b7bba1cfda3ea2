"""
Audit logging for money-moving operations and unexpected failures.

Every settlement, deposit claim and unhandled error is emitted as one JSON
line on a dedicated logger so it can be shipped or grepped independently of
the application log. Error entries are also appended to the durable error
log file configured by ERROR_LOG.
"""
import json
import logging
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from storebot.core.config import settings

# Separate loggers for audit events and the durable error log
audit_logger = logging.getLogger("audit")
error_logger = logging.getLogger("audit.errors")


def setup_logging(level: int = logging.INFO, error_log: Optional[str] = None) -> None:
    """Configure root logging and attach the error log file handler once."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    path = Path(error_log or settings.ERROR_LOG)
    for handler in error_logger.handlers:
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == path.resolve():
            return
    path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.setLevel(logging.ERROR)
    error_logger.addHandler(file_handler)


class AuditLog:
    """Central audit logging for settlement events."""

    @staticmethod
    def log_error(error: BaseException, context: str) -> None:
        """
        Durably record an unexpected error.

        Never raises: a broken log sink must not turn a handled failure
        into a crash.

        Usage:
            AuditLog.log_error(exc, "Command: buy")
        """
        try:
            log_entry = {
                "timestamp": datetime.utcnow().isoformat(),
                "event_type": "error",
                "context": context,
                "error_type": type(error).__name__,
                "message": str(error),
                "traceback": "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                ),
            }
            error_logger.error(json.dumps(log_entry))
        except Exception:  # noqa: BLE001 - log sink failures are dropped
            logging.getLogger(__name__).debug("Error log sink failed", exc_info=True)

    @staticmethod
    def log_settlement(
        order_id: str,
        user_id: str,
        product_id: str,
        price: int,
        payment_method: str,
        deposit_id: Optional[str] = None,
    ) -> None:
        """One line per order written. The issued token is never logged here."""
        log_entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "event_type": f"order.{payment_method}",
            "order_id": order_id,
            "user_id": user_id,
            "product_id": product_id,
            "price": price,
        }
        if deposit_id:
            log_entry["deposit_id"] = deposit_id
        audit_logger.info(json.dumps(log_entry))

    @staticmethod
    def log_deposit(
        action: str,  # "created", "claimed", "credited", "refunded", "expired"
        deposit_id: str,
        user_id: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        log_entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "event_type": f"deposit.{action}",
            "deposit_id": deposit_id,
            "user_id": user_id,
        }
        if details:
            log_entry["details"] = details
        audit_logger.info(json.dumps(log_entry))

    @staticmethod
    def log_balance_change(user_id: str, delta: int, reason: str) -> None:
        log_entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "event_type": "balance.change",
            "user_id": user_id,
            "delta": delta,
            "reason": reason,
        }
        audit_logger.info(json.dumps(log_entry))
