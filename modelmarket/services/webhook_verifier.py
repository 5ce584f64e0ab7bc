"""
Helio webhook authentication.

Helio authenticates deliveries with a static shared token sent as
``Authorization: Bearer <token>``. The body is not signed, so a replayed
delivery passes this check; replay is absorbed by transaction-id
idempotency in the payment processor.
"""

from __future__ import annotations

import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)

__all__ = ["extract_bearer_token", "verify_bearer_token"]

_BEARER_PREFIX = "Bearer "


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from a ``Bearer <token>`` header, or None."""
    if not authorization or not authorization.startswith(_BEARER_PREFIX):
        return None
    token = authorization[len(_BEARER_PREFIX):].strip()
    return token or None


def verify_bearer_token(
    body: bytes,
    authorization: Optional[str],
    secret: Optional[str],
) -> bool:
    """Check a webhook's bearer token against the configured shared secret.

    Args:
        body: Raw request body bytes, exactly as received.
        authorization: Value of the Authorization header, if any.
        secret: Configured shared secret.

    Returns:
        True only when a secret is configured and the bearer token matches it.
        Comparison is constant-time.
    """
    if not secret:
        return False

    token = extract_bearer_token(authorization)
    if token is None:
        return False

    return hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))
