"""
Structured JSON logging with correlation IDs.

Every record is emitted as one JSON object. The dispatcher binds the id of
the queue message being handled as the correlation id, so all log lines of
one ingest or reconciliation can be grouped, including the ones written by
adapters deep in the call stack.
"""

import json
import logging
import time
import uuid
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict, Optional

# Bound per worker thread by the dispatcher for the duration of one message
correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

_NOISY_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3", "httpx", "httpcore")


class StructuredFormatter(logging.Formatter):
    """
    Render log records as JSON.

    Keys passed as ``extra={"extra_fields": {...}}`` are merged into the
    top level of the object (asset ids, job ids, queue names).
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.utcfromtimestamp(record.created).isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        correlation_id = correlation_id_ctx.get()
        if correlation_id:
            payload["correlation_id"] = correlation_id
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        payload.update(getattr(record, "extra_fields", None) or {})
        return json.dumps(payload, default=str)


class PerformanceTracker:
    """
    Time one adapter call and log the outcome.

    Usage:
        with PerformanceTracker("moderate_image", logger, asset_id=...):
            analyzer.moderate_image(key)

    Exceptions propagate unchanged; a failure is logged at WARNING with the
    error type so slow or failing providers stand out in the logs.
    """

    def __init__(self, operation: str, logger: logging.Logger,
                 log_level: int = logging.INFO, **extra_fields):
        self.operation = operation
        self.logger = logger
        self.log_level = log_level
        self.extra_fields = extra_fields
        self.duration_ms: Optional[float] = None
        self._started: Optional[float] = None

    def __enter__(self) -> "PerformanceTracker":
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.duration_ms = round((time.perf_counter() - self._started) * 1000, 2)
        fields = dict(self.extra_fields, operation=self.operation, duration_ms=self.duration_ms)

        if exc_type is None:
            self.logger.log(
                self.log_level,
                f"{self.operation} finished in {self.duration_ms} ms",
                extra={"extra_fields": fields},
            )
        else:
            fields.update(error=str(exc_val), error_type=exc_type.__name__)
            self.logger.warning(
                f"{self.operation} failed after {self.duration_ms} ms",
                extra={"extra_fields": fields},
            )
        return False


def setup_logging(log_level: str = "INFO", json_format: bool = True) -> None:
    """
    Install a single stderr handler on the root logger.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_format: JSON lines when True, plain text otherwise
    """
    level = logging.getLevelName(log_level.upper())
    handler = logging.StreamHandler()
    handler.setFormatter(
        StructuredFormatter() if json_format
        else logging.Formatter("%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s")
    )

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    # AWS SDK and HTTP client debug output drowns the pipeline logs
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind a correlation id (a fresh UUID when none is given) and return it."""
    correlation_id = correlation_id or str(uuid.uuid4())
    correlation_id_ctx.set(correlation_id)
    return correlation_id


def get_correlation_id() -> Optional[str]:
    return correlation_id_ctx.get()


def clear_correlation_id() -> None:
    correlation_id_ctx.set(None)
