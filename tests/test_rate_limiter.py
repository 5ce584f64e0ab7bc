"""Tests for the per-fingerprint fixed-window request limiter."""

from types import SimpleNamespace

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from modelmarket.core.errors import MarketError
from modelmarket.core.errors.middleware import market_error_handler
from modelmarket.services.rate_limiter import (
    FixedWindowRateLimiter,
    RateLimitConfig,
    client_fingerprint,
    client_ip,
    rate_limit,
)


class _Clock:
    def __init__(self, t=1000.0):
        self.t = t

    def __call__(self):
        return self.t


def _request(headers=None, host="10.0.0.1"):
    return SimpleNamespace(headers=headers or {}, client=SimpleNamespace(host=host))


@pytest.fixture
def clock():
    return _Clock()


@pytest.fixture
def limiter(clock):
    return FixedWindowRateLimiter(RateLimitConfig(window_s=60, max_requests=3), clock=clock)


# ---------------------------------------------------------------------------
# Window accounting
# ---------------------------------------------------------------------------

class TestFixedWindow:
    def test_allows_up_to_limit(self, limiter):
        decisions = [limiter.hit("k") for _ in range(3)]
        assert all(d.allowed for d in decisions)
        assert [d.remaining for d in decisions] == [2, 1, 0]

    def test_blocks_above_limit(self, limiter):
        for _ in range(3):
            limiter.hit("k")
        decision = limiter.hit("k")
        assert decision.allowed is False
        assert decision.retry_after(1000.0) == 60

    def test_keys_independent(self, limiter):
        for _ in range(3):
            limiter.hit("a")
        assert limiter.hit("b").allowed is True

    def test_window_resets(self, limiter, clock):
        for _ in range(3):
            limiter.hit("k")
        clock.t += 61
        assert limiter.hit("k").allowed is True

    def test_purge_expired(self, limiter, clock):
        limiter.hit("a")
        clock.t += 61
        limiter.hit("b")
        assert limiter.purge_expired() == 1


# ---------------------------------------------------------------------------
# Client identification
# ---------------------------------------------------------------------------

class TestClientIp:
    def test_forwarded_for_first_hop(self):
        assert client_ip(_request({"x-forwarded-for": "1.1.1.1, 2.2.2.2"})) == "1.1.1.1"

    def test_real_ip_then_cloudflare(self):
        assert client_ip(_request({"x-real-ip": "3.3.3.3", "cf-connecting-ip": "4.4.4.4"})) == "3.3.3.3"
        assert client_ip(_request({"cf-connecting-ip": "4.4.4.4"})) == "4.4.4.4"

    def test_socket_peer_fallback(self):
        assert client_ip(_request()) == "10.0.0.1"

    def test_fingerprint_depends_on_user_agent(self):
        a = client_fingerprint(_request({"user-agent": "curl/8"}))
        b = client_fingerprint(_request({"user-agent": "python-httpx"}))
        assert a != b
        assert len(a) == 64


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------

class TestDependency:
    def test_inference_preset_returns_429_with_retry_after(self):
        app = FastAPI()
        app.add_exception_handler(MarketError, market_error_handler)

        @app.get("/limited", dependencies=[Depends(rate_limit("inference"))])
        async def limited():
            return {"ok": True}

        client = TestClient(app)
        headers = {"user-agent": "rate-limit-test"}
        for _ in range(5):
            assert client.get("/limited", headers=headers).status_code == 200

        resp = client.get("/limited", headers=headers)
        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "MKT-USE-003"
        assert int(resp.headers["Retry-After"]) > 0
