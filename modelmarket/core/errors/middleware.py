"""
FastAPI exception handlers for MarketError and request validation.

Catches MarketError, looks up the registry, and returns a structured
JSON error response. Unknown codes get a safe fallback.
"""

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from modelmarket.core.errors import VALIDATION_FAILED, MarketError
from modelmarket.core.errors.registry import ErrorEntry, error_registry

logger = logging.getLogger(__name__)

_FALLBACK_BODY = {
    "title": "Internal error",
    "message": "An unexpected error occurred.",
    "retryable": False,
    "user_action_required": False,
    "remediation": [],
}


def log_market_error(exc: MarketError) -> ErrorEntry | None:
    """Log *exc* at its registry severity and return the registry entry."""
    entry = error_registry.get(exc.code)
    if entry is None:
        logger.error(
            "unregistered_error_code",
            extra={"error.code": exc.code, "error.message": exc.detail},
        )
        return None

    log_extra = {
        "error.code": exc.code,
        "error.kind": type(exc).__name__,
        "error.message_safe": entry.safe_message,
        "error.message": exc.detail,
        "error.retryable": entry.retryable,
        "error.user_action_required": entry.user_action_required,
        **{f"error.ctx.{k}": v for k, v in exc.context.items()},
    }
    _severity_to_log_fn(entry.severity)(entry.title, extra=log_extra)
    return entry


def _retry_headers(exc: MarketError) -> dict:
    retry_after = exc.context.get("retry_after")
    if retry_after is None:
        return {}
    return {"Retry-After": str(max(1, int(retry_after)))}


async def market_error_handler(request: Request, exc: MarketError) -> JSONResponse:
    """Convert MarketError into a structured JSON response."""
    entry = log_market_error(exc)

    if entry is None:
        return JSONResponse(
            status_code=500,
            content={"error": {"code": exc.code, **_FALLBACK_BODY}},
        )

    return JSONResponse(
        status_code=entry.http_status,
        headers=_retry_headers(exc),
        content={
            "error": {
                "code": entry.code,
                "title": entry.title,
                "message": entry.safe_message,
                "retryable": entry.retryable,
                "user_action_required": entry.user_action_required,
                "remediation": entry.remediation,
            }
        },
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render body/query validation failures as 400 with field-level detail."""
    entry = error_registry.get(VALIDATION_FAILED)
    details = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    logger.info("request_validation_failed", extra={"http.path": request.url.path, "fields": len(details)})
    return JSONResponse(
        status_code=400,
        content={
            "error": {
                "code": VALIDATION_FAILED,
                "title": entry.title if entry else "Validation failed",
                "message": entry.safe_message if entry else "Validation failed.",
                "retryable": False,
                "user_action_required": True,
                "remediation": entry.remediation if entry else [],
                "details": details,
            }
        },
    )


def _severity_to_log_fn(severity: str):
    """Map registry severity to logger method."""
    return {
        "DEBUG": logger.debug,
        "INFO": logger.info,
        "WARN": logger.warning,
        "ERROR": logger.error,
        "CRITICAL": logger.critical,
    }.get(severity, logger.error)
