"""
API Key Authentication
======================

Resolves the calling user from the ``X-API-Key`` header.

Key format: ``mm_<key_id>_<secret>``
    - key_id: 8-char alphanumeric, stored as ``api_keys.key_prefix`` for O(1) lookup
    - secret: 32-char random, NEVER stored; only its HMAC-SHA256 is kept
    - HMAC uses MODELMARKET_APIKEY_HMAC_SECRET

HMAC secret auto-generation: if MODELMARKET_APIKEY_HMAC_SECRET is not set,
generate one, persist it to <data_directory>/.modelmarket_hmac_secret, and
log a WARNING.

Auth can only be disabled in development (debug=True AND
environment=development); a fixed dev user is returned in that case.
"""

import hashlib
import hmac
import logging
import secrets
import string
from pathlib import Path
from typing import Optional, Tuple

from cachetools import TTLCache
from fastapi import Request
from pydantic import BaseModel
from sqlmodel import select

from modelmarket.config import settings
from modelmarket.core.database import get_session_context
from modelmarket.core.errors import AUTHENTICATION_REQUIRED, MarketError
from modelmarket.core.timeutil import utcnow
from modelmarket.models.api_key import APIKey
from modelmarket.models.marketplace import User

logger = logging.getLogger(__name__)

KEY_PREFIX = "mm_"
DEV_USER_ID = "dev_user_auth_disabled"

_KEY_ID_ALPHABET = string.ascii_lowercase + string.digits


class AuthenticatedUser(BaseModel):
    user_id: str
    key_id: str
    email: Optional[str] = None


# Validated keys, keyed by the raw header value
api_key_cache = TTLCache(maxsize=1000, ttl=settings.auth_cache_ttl)


def _is_auth_enabled() -> bool:
    """Auth is off only when disabled AND debug AND environment=development."""
    if settings.auth_enabled:
        return True
    if settings.debug and settings.environment == "development":
        logger.warning(
            "AUTH DISABLED: MODELMARKET_AUTH_ENABLED=false with debug=True and environment=development. "
            "Do NOT use this in production."
        )
        return False
    logger.warning(
        "Ignoring MODELMARKET_AUTH_ENABLED=false because debug=%s and environment=%s.",
        settings.debug,
        settings.environment,
    )
    return True


# ---------------------------------------------------------------------------
# HMAC secret management
# ---------------------------------------------------------------------------

def _hmac_secret_file() -> Path:
    return Path(settings.data_directory) / ".modelmarket_hmac_secret"


def _get_hmac_secret() -> str:
    """Configured secret, else the persisted one, else a newly generated one."""
    if settings.apikey_hmac_secret:
        return settings.apikey_hmac_secret

    secret_file = _hmac_secret_file()
    if secret_file.exists():
        stored = secret_file.read_text().strip()
        if stored:
            settings.apikey_hmac_secret = stored
            logger.info("Loaded HMAC secret from %s", secret_file)
            return stored

    generated = secrets.token_hex(32)
    try:
        secret_file.parent.mkdir(parents=True, exist_ok=True)
        secret_file.write_text(generated)
        secret_file.chmod(0o600)
    except OSError as exc:
        logger.warning("Could not persist HMAC secret to %s: %s", secret_file, exc)

    settings.apikey_hmac_secret = generated
    logger.warning(
        "MODELMARKET_APIKEY_HMAC_SECRET not set: auto-generated and persisted to %s. "
        "Set it explicitly in production so keys survive restarts.",
        secret_file,
    )
    return generated


def hmac_hash_secret(secret: str) -> str:
    """HMAC-SHA256 of a key secret under the configured HMAC secret."""
    return hmac.new(_get_hmac_secret().encode(), secret.encode(), hashlib.sha256).hexdigest()


def _parse_key(api_key: str) -> Optional[Tuple[str, str]]:
    """Split ``mm_<key_id>_<secret>`` into (key_id, secret), or None."""
    if not api_key.startswith(KEY_PREFIX):
        return None
    parts = api_key.split("_", 2)
    if len(parts) != 3 or not parts[1] or not parts[2]:
        return None
    return parts[1], parts[2]


# ---------------------------------------------------------------------------
# Key issue / validation
# ---------------------------------------------------------------------------

def create_api_key(user_id: str, label: Optional[str] = None) -> Tuple[str, APIKey]:
    """Issue a key for *user_id*. The raw key is returned once and never stored."""
    key_id = "".join(secrets.choice(_KEY_ID_ALPHABET) for _ in range(8))
    secret = secrets.token_urlsafe(24)[:32]
    record = APIKey(
        user_id=user_id,
        key_prefix=key_id,
        key_hash=hmac_hash_secret(secret),
        label=label,
    )
    with get_session_context() as session:
        session.add(record)
        session.commit()
        session.refresh(record)
    logger.info("Issued API key %s for user %s", key_id, user_id)
    return f"{KEY_PREFIX}{key_id}_{secret}", record


def revoke_api_key(key_id: str) -> bool:
    with get_session_context() as session:
        record = session.exec(select(APIKey).where(APIKey.key_prefix == key_id)).first()
        if record is None or not record.is_active:
            return False
        record.is_active = False
        record.revoked_at = utcnow()
        session.add(record)
        session.commit()
    for raw_key in [k for k, v in api_key_cache.items() if v.key_id == key_id]:
        api_key_cache.pop(raw_key, None)
    return True


def _validate_key(api_key: str) -> Optional[AuthenticatedUser]:
    parsed = _parse_key(api_key)
    if not parsed:
        return None
    key_id, secret = parsed

    with get_session_context() as session:
        record = session.exec(
            select(APIKey).where(
                APIKey.key_prefix == key_id,
                APIKey.is_active == True,  # noqa: E712
            )
        ).first()
        if record is None:
            return None

        if not hmac.compare_digest(record.key_hash, hmac_hash_secret(secret)):
            return None

        user = session.get(User, record.user_id)
        if user is None:
            return None

        record.last_used_at = utcnow()
        session.add(record)
        session.commit()

        return AuthenticatedUser(user_id=user.id, key_id=record.key_prefix, email=user.email)


async def get_current_user(request: Request) -> AuthenticatedUser:
    """FastAPI dependency: the user behind ``X-API-Key``, else MKT-AUTH-001."""
    if not _is_auth_enabled():
        dev_user = AuthenticatedUser(user_id=DEV_USER_ID, key_id="dev")
        request.state.user = dev_user
        return dev_user

    api_key = request.headers.get("X-API-Key")
    if not api_key:
        raise MarketError(AUTHENTICATION_REQUIRED, detail="X-API-Key header is missing")

    cached = api_key_cache.get(api_key)
    if cached:
        request.state.user = cached
        return cached

    user = _validate_key(api_key)
    if user is None:
        logger.warning("Invalid API key received: %s...", api_key[:7])
        raise MarketError(AUTHENTICATION_REQUIRED, detail="invalid API key")

    api_key_cache[api_key] = user
    request.state.user = user
    return user
