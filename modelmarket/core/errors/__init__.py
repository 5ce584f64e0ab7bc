"""
Error code system.

MarketError is the base exception for all structured errors.
Raise it with an error code from the registry, and the error middleware
will produce a structured JSON response.

Usage:
    from modelmarket.core.errors import MarketError
    raise MarketError("MKT-SUB-002", detail="plan 42 not found for model abc")
"""

from __future__ import annotations

import re

CODE_PATTERN = re.compile(r"^MKT-[A-Z]{2,6}-\d{3}$")

# Named codes used across services
AUTHENTICATION_REQUIRED = "MKT-AUTH-001"
ACCESS_DENIED = "MKT-AUTH-002"
INVALID_SIGNATURE = "MKT-AUTH-003"
WEBHOOK_SECRET_MISSING = "MKT-CFG-001"
MALFORMED_PAYLOAD = "MKT-API-001"
VALIDATION_FAILED = "MKT-API-002"
MODEL_UNAVAILABLE = "MKT-API-003"
MODEL_NOT_PUBLISHED = "MKT-API-004"
DUPLICATE_SUBSCRIPTION = "MKT-SUB-001"
REFERENCE_NOT_FOUND = "MKT-SUB-002"
RENEWAL_NOT_ELIGIBLE = "MKT-SUB-003"
SUBSCRIPTION_NOT_FOUND = "MKT-SUB-004"
RATE_LIMIT_EXCEEDED = "MKT-USE-001"
TOO_MANY_REQUESTS = "MKT-USE-002"
REQUEST_RATE_LIMITED = "MKT-USE-003"
PAYMENT_PROVIDER_ERROR = "MKT-PAY-001"
PAYMENT_PROVIDER_UNCONFIGURED = "MKT-PAY-002"
PERSISTENCE_ERROR = "MKT-DB-001"
UNEXPECTED_ERROR = "MKT-SYS-001"


class MarketError(Exception):
    """Structured application error tied to the error registry.

    Args:
        code: Registry error code, e.g. "MKT-SUB-002".
        detail: Internal-only detail message (never exposed to users).
        context: Arbitrary key-value context for structured logging.
            A ``retry_after`` entry (seconds) becomes a Retry-After header.
    """

    def __init__(
        self,
        code: str,
        detail: str | None = None,
        context: dict | None = None,
    ) -> None:
        if not CODE_PATTERN.match(code):
            raise ValueError(f"Invalid error code format: {code!r}")
        self.code = code
        self.detail = detail
        self.context = context or {}
        super().__init__(f"{code}: {detail}" if detail else code)
