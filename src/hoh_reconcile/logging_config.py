"""
Structured JSON Logging Configuration for the Hub Cluster Controller

Provides:
- JSON formatted logs for easy parsing (Loki, ELK, etc.)
- Reconcile key tracking across log entries of one sync
- Log level filtering via environment variable
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Iterator, Optional

# Context variable for the cluster currently being reconciled
reconcile_key_ctx: ContextVar[Optional[str]] = ContextVar("reconcile_key", default=None)

_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName",
))


class JSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging.

    Output format:
    {
        "timestamp": "2025-12-17T19:30:00.000Z",
        "level": "INFO",
        "logger": "hoh_reconcile.reconciler",
        "message": "Reconciling hub cluster for cluster1",
        "cluster": "cluster1",
        "extra": { ... }
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        key = reconcile_key_ctx.get()
        if key:
            log_obj["cluster"] = key

        extra_fields = {
            k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS
        }
        if extra_fields:
            log_obj["extra"] = extra_fields

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


class KeyFormatter(logging.Formatter):
    """Plain-text formatter that prefixes the reconcile key when one is set."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        key = reconcile_key_ctx.get()
        return f"{message} [cluster={key}]" if key else message


@contextmanager
def reconcile_context(key: str) -> Iterator[None]:
    """Bind ``key`` to every log record emitted inside the block."""
    token = reconcile_key_ctx.set(key)
    try:
        yield
    finally:
        reconcile_key_ctx.reset(token)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_to_file: Optional[str] = None
) -> logging.Logger:
    """
    Configure structured logging for the controller.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (True) or standard format (False)
        log_to_file: Optional file path for log output

    Returns:
        Configured root logger
    """
    # Allow environment override
    level = os.environ.get("HOH_LOG_LEVEL", level).upper()
    json_format = os.environ.get("HOH_LOG_JSON", str(json_format)).lower() == "true"

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = KeyFormatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_to_file:
        file_handler = logging.FileHandler(log_to_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("kubernetes_asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    # Health server access logs are noise under kubelet probes
    uvicorn_access = logging.getLogger("uvicorn.access")
    uvicorn_access.handlers = []
    uvicorn_access.setLevel(logging.CRITICAL)
    uvicorn_access.propagate = False

    return root_logger
