"""Tests for the error code registry and the structured error handlers."""

import textwrap

import pytest
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.testclient import TestClient
from pydantic import BaseModel

from modelmarket.core import errors
from modelmarket.core.errors import CODE_PATTERN, MarketError
from modelmarket.core.errors.middleware import market_error_handler, validation_error_handler
from modelmarket.core.errors.registry import ErrorRegistry, RegistryValidationError, error_registry


class TestRegistryFile:
    def test_every_named_code_is_registered(self):
        named = [v for k, v in vars(errors).items() if k.isupper() and isinstance(v, str) and CODE_PATTERN.match(v)]
        assert named
        for code in named:
            assert error_registry.get(code) is not None, code
        assert sorted(error_registry.all_codes()) == sorted(set(named))

    def test_http_statuses(self):
        expected = {
            "MKT-AUTH-001": 401,
            "MKT-AUTH-002": 403,
            "MKT-AUTH-003": 401,
            "MKT-CFG-001": 500,
            "MKT-API-001": 400,
            "MKT-API-003": 404,
            "MKT-SUB-001": 400,
            "MKT-SUB-002": 404,
            "MKT-USE-001": 429,
            "MKT-USE-002": 429,
            "MKT-USE-003": 429,
            "MKT-PAY-001": 502,
            "MKT-PAY-002": 503,
            "MKT-DB-001": 500,
        }
        for code, status in expected.items():
            assert error_registry.lookup(code).http_status == status, code

    def test_lookup_unknown_raises(self):
        with pytest.raises(KeyError):
            error_registry.lookup("MKT-SYS-999")


class TestRegistryValidation:
    def _load(self, tmp_path, body):
        path = tmp_path / "registry.yaml"
        path.write_text(textwrap.dedent(body))
        registry = ErrorRegistry()
        registry.load(str(path))
        return registry

    def test_domain_mismatch_rejected(self, tmp_path):
        with pytest.raises(RegistryValidationError):
            self._load(tmp_path, """
                schema_version: 1
                errors:
                  - code: MKT-SUB-001
                    domain: USE
                    title: x
                    severity: WARN
                    retryable: false
                    user_action_required: false
                    http_status: 400
                    safe_message: x
                    remediation: []
            """)

    def test_duplicate_rejected(self, tmp_path):
        entry = """
                  - code: MKT-SUB-001
                    domain: SUB
                    title: x
                    severity: WARN
                    retryable: false
                    user_action_required: false
                    http_status: 400
                    safe_message: x
                    remediation: []
        """
        with pytest.raises(RegistryValidationError):
            self._load(tmp_path, "schema_version: 1\nerrors:\n" + textwrap.dedent(entry) + textwrap.dedent(entry))

    def test_unsupported_schema_version_rejected(self, tmp_path):
        with pytest.raises(RegistryValidationError):
            self._load(tmp_path, "schema_version: 2\nerrors: []\n")

    def test_missing_remediation_rejected(self, tmp_path):
        with pytest.raises(RegistryValidationError, match="remediation"):
            self._load(tmp_path, """
                schema_version: 1
                errors:
                  - code: MKT-SUB-001
                    domain: SUB
                    title: x
                    severity: WARN
                    retryable: false
                    user_action_required: false
                    http_status: 400
                    safe_message: x
            """)


class TestMarketError:
    def test_rejects_malformed_code(self):
        with pytest.raises(ValueError):
            MarketError("SUB-1")


class _Body(BaseModel):
    count: int


def _app():
    app = FastAPI()
    app.add_exception_handler(MarketError, market_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    @app.get("/boom")
    async def boom():
        raise MarketError("MKT-USE-001", detail="internal detail", context={"retry_after": 42.4})

    @app.get("/unregistered")
    async def unregistered():
        raise MarketError("MKT-SYS-998")

    @app.post("/echo")
    async def echo(body: _Body):
        return body

    return app


class TestHandlers:
    def test_structured_body_and_retry_after(self):
        resp = TestClient(_app()).get("/boom")
        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "42"
        err = resp.json()["error"]
        assert err["code"] == "MKT-USE-001"
        assert err["retryable"] is True
        assert "internal detail" not in resp.text

    def test_unregistered_code_is_500(self):
        resp = TestClient(_app()).get("/unregistered")
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "MKT-SYS-998"

    def test_validation_is_400_with_fields(self):
        resp = TestClient(_app()).post("/echo", json={"count": "many"})
        assert resp.status_code == 400
        err = resp.json()["error"]
        assert err["code"] == "MKT-API-002"
        assert err["details"][0]["field"] == "count"
