"""
Structured logging for the collections engine.
Provides the application logger, correlation-aware adapters and audit trail entries.
"""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, MutableMapping, Optional, Tuple

from cobranca.core.config import settings

LOGGER_NAME = "cobranca"


class JsonFormatter(logging.Formatter):
    """JSON log formatter for log aggregation pipelines."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = getattr(record, "correlation_id", None)
        if correlation_id:
            log_data["correlation_id"] = correlation_id

        audit = getattr(record, "audit", None)
        if audit:
            log_data["audit"] = audit

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO", format_type: str = "standard") -> logging.Logger:
    """
    Configures the application logger.

    - **level**: DEBUG, INFO, WARNING, ERROR or CRITICAL
    - **format_type**: "standard" (human readable) or "json"
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if format_type == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    app_logger = logging.getLogger(LOGGER_NAME)
    app_logger.setLevel(log_level)

    for handler in app_logger.handlers[:]:
        app_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    app_logger.addHandler(console_handler)

    # Reduce noise from external libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return app_logger


class CorrelationAdapter(logging.LoggerAdapter):
    """Injects the request correlation id into every record."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("correlation_id", self.extra["correlation_id"])
        kwargs["extra"] = extra
        return f"[{self.extra['correlation_id']}] {msg}", kwargs


logger = setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
audit_logger = logging.getLogger(f"{LOGGER_NAME}.audit")


def get_logger_with_correlation(correlation_id: str) -> CorrelationAdapter:
    """Returns a logger that tags each message with the given correlation id."""
    return CorrelationAdapter(logger, {"correlation_id": correlation_id})


def audit_log(action: str, user: str, resource: str, details: Optional[Dict[str, Any]] = None) -> None:
    """
    Writes an audit trail entry.
    Every state-changing ledger operation records who did what to which resource.
    """
    entry: Dict[str, Any] = {
        "action": action,
        "user": user,
        "resource": resource,
        "details": details or {},
    }
    audit_logger.info(f"AUDIT {action} {resource}", extra={"audit": entry})
