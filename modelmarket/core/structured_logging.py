"""
JSON logging for the billing backend.

Every record, whether from structlog or a plain ``logging.getLogger``,
goes through one structlog processor chain and is written as a JSON line
to stderr and to ``<log_dir>/modelmarket.jsonl``. Records made while a
request is in flight carry its request and correlation ids.
"""
from __future__ import annotations

import logging
import logging.handlers
import sys
import time
from contextvars import ContextVar
from pathlib import Path

import structlog

APP_VERSION = "0.4.0"
SERVICE_NAME = "modelmarket-backend"

LOG_FILE = "modelmarket.jsonl"
LOG_FILE_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Set per request by CorrelationMiddleware
request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

_started_at = time.time()


def get_uptime_s() -> float:
    return time.time() - _started_at


def _service_fields(_logger, _method: str, event_dict: dict) -> dict:
    event_dict["service"] = SERVICE_NAME
    event_dict["version"] = APP_VERSION
    for key, var in (("request_id", request_id_var), ("correlation_id", correlation_id_var)):
        value = var.get()
        if value:
            event_dict[key] = value
    return event_dict


def _file_handler(log_dir: str) -> logging.Handler | None:
    try:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        return logging.handlers.RotatingFileHandler(
            Path(log_dir) / LOG_FILE,
            maxBytes=LOG_FILE_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
    except OSError:
        # read-only deployments still log to stderr
        return None


def setup_logging(log_dir: str = "logs", level: int = logging.INFO) -> None:
    """Configure structlog and the root logger. Call once at import of the app."""
    chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        _service_fields,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
        structlog.processors.format_exc_info,
    ]
    structlog.configure(
        processors=[*chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
    )

    handlers = [logging.StreamHandler(sys.stderr), _file_handler(log_dir)]
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    for handler in filter(None, handlers):
        handler.setFormatter(formatter)
        root.addHandler(handler)

    # httpx logs every Helio call at INFO
    for name in ("httpx", "httpcore", "alembic.runtime.migration"):
        logging.getLogger(name).setLevel(logging.WARNING)
