"""
Request Rate Limiter: fixed-window limits per client fingerprint.

Presets:
  general:    100 req / 15 min
  auth:        10 req / 15 min
  inference:    5 req / 60 s

Client fingerprint = sha256(client IP + User-Agent). Client IP comes from
x-forwarded-for (first hop), x-real-ip, cf-connecting-ip, then the socket peer.

Implementation: in-memory, per process. Counters reset on restart and are
not shared between workers.
"""
from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Dict, Optional

from fastapi import Request

from modelmarket.core.errors import REQUEST_RATE_LIMITED, MarketError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    window_s: float
    max_requests: int
    message: str = "Too many requests, please try again later"


PRESETS: Dict[str, RateLimitConfig] = {
    "general": RateLimitConfig(15 * 60, 100),
    "auth": RateLimitConfig(15 * 60, 10, "Too many authentication attempts"),
    "inference": RateLimitConfig(60, 5, "Rate limit exceeded for AI inference"),
}


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float

    def retry_after(self, now: float) -> int:
        return max(1, int(round(self.reset_at - now)))


class _FixedWindow:
    """Counter for a single key; resets when its window elapses."""

    __slots__ = ("count", "reset_at")

    def __init__(self, reset_at: float):
        self.count = 0
        self.reset_at = reset_at


class FixedWindowRateLimiter:
    """Thread-safe fixed-window limiter keyed by arbitrary strings."""

    def __init__(self, config: RateLimitConfig, clock=time.time):
        self.config = config
        self._clock = clock
        self._windows: Dict[str, _FixedWindow] = {}
        self._lock = Lock()

    def hit(self, key: str) -> RateLimitDecision:
        """Count one request for *key* unless its window is already full."""
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or window.reset_at <= now:
                window = _FixedWindow(now + self.config.window_s)
                self._windows[key] = window

            if window.count >= self.config.max_requests:
                return RateLimitDecision(False, self.config.max_requests, 0, window.reset_at)

            window.count += 1
            remaining = self.config.max_requests - window.count
            return RateLimitDecision(True, self.config.max_requests, remaining, window.reset_at)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [k for k, w in self._windows.items() if w.reset_at <= now]
            for key in stale:
                del self._windows[key]
        return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header)
        if value:
            return value.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def client_fingerprint(request: Request) -> str:
    user_agent = request.headers.get("user-agent") or "unknown"
    return hashlib.sha256(f"{client_ip(request)}|{user_agent}".encode("utf-8")).hexdigest()


_limiters: Dict[str, FixedWindowRateLimiter] = {
    name: FixedWindowRateLimiter(config) for name, config in PRESETS.items()
}


def get_limiter(preset: str) -> FixedWindowRateLimiter:
    return _limiters[preset]


def rate_limit(preset: str = "general"):
    """FastAPI dependency factory enforcing a preset per client fingerprint."""
    limiter = get_limiter(preset)

    async def _dependency(request: Request) -> Optional[RateLimitDecision]:
        decision = limiter.hit(client_fingerprint(request))
        if not decision.allowed:
            retry_after = decision.retry_after(time.time())
            logger.warning(
                "Rate limit hit: preset=%s ip=%s retry_after=%ds",
                preset, client_ip(request), retry_after,
            )
            raise MarketError(
                REQUEST_RATE_LIMITED,
                detail=limiter.config.message,
                context={"retry_after": retry_after, "preset": preset, "limit": decision.limit},
            )
        return decision

    return _dependency
