"""Tests for X-API-Key identity lookup."""

import pytest
from fastapi.testclient import TestClient
from sqlmodel import select

from modelmarket.auth import api_key_auth
from modelmarket.auth.api_key_auth import (
    DEV_USER_ID,
    _parse_key,
    api_key_cache,
    create_api_key,
    hmac_hash_secret,
    revoke_api_key,
)
from modelmarket.config import settings
from modelmarket.core.database import get_session_context
from modelmarket.main import app
from modelmarket.models.api_key import APIKey


@pytest.fixture
def auth_on(monkeypatch):
    monkeypatch.setattr(settings, "auth_enabled", True)


@pytest.fixture
def client():
    return TestClient(app)


class TestKeyFormat:
    def test_parse(self):
        assert _parse_key("mm_abcd1234_s3cr3t_with_underscores") == ("abcd1234", "s3cr3t_with_underscores")

    @pytest.mark.parametrize("raw", ["vz_abc_def", "mm_", "mm_abc", "mm__secret"])
    def test_rejects_malformed(self, raw):
        assert _parse_key(raw) is None

    def test_hash_is_deterministic_hmac(self):
        assert hmac_hash_secret("x") == hmac_hash_secret("x")
        assert hmac_hash_secret("x") != hmac_hash_secret("y")


class TestCreateApiKey:
    def test_secret_never_stored(self, market):
        raw, record = create_api_key(market.buyer.id, label="ci")
        key_id, secret = _parse_key(raw)
        assert record.key_prefix == key_id
        assert record.key_hash == hmac_hash_secret(secret)
        assert secret not in record.key_hash


class TestGetCurrentUser:
    def test_dev_user_when_auth_disabled(self, client, market):
        resp = client.get("/api/subscriptions")
        assert resp.status_code == 200
        assert api_key_auth._is_auth_enabled() is False
        assert market.buyer.id == DEV_USER_ID

    def test_missing_key_401(self, client, auth_on):
        resp = client.get("/api/subscriptions")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "MKT-AUTH-001"

    def test_invalid_key_401(self, client, auth_on, market):
        raw, _ = create_api_key(market.buyer.id)
        resp = client.get("/api/subscriptions", headers={"X-API-Key": raw + "tampered"})
        assert resp.status_code == 401

    def test_valid_key_resolves_user_and_caches(self, client, auth_on, market):
        raw, _ = create_api_key(market.buyer.id)
        resp = client.get("/api/subscriptions", headers={"X-API-Key": raw})
        assert resp.status_code == 200
        assert api_key_cache[raw].user_id == market.buyer.id

        with get_session_context() as session:
            record = session.exec(select(APIKey).where(APIKey.key_prefix == _parse_key(raw)[0])).one()
        assert record.last_used_at is not None

    def test_revoked_key_rejected(self, client, auth_on, market):
        raw, record = create_api_key(market.buyer.id)
        assert client.get("/api/subscriptions", headers={"X-API-Key": raw}).status_code == 200
        assert revoke_api_key(record.key_prefix) is True
        assert client.get("/api/subscriptions", headers={"X-API-Key": raw}).status_code == 401

    def test_disable_ignored_outside_development(self, client, monkeypatch):
        monkeypatch.setattr(settings, "auth_enabled", False)
        monkeypatch.setattr(settings, "environment", "production")
        assert client.get("/api/subscriptions").status_code == 401
