"""Tests for Helio bearer-token webhook authentication."""

from modelmarket.services.webhook_verifier import extract_bearer_token, verify_bearer_token

BODY = b'{"event": "CREATED"}'


class TestExtractBearerToken:
    def test_extracts_token(self):
        assert extract_bearer_token("Bearer abc123") == "abc123"

    def test_missing_header(self):
        assert extract_bearer_token(None) is None

    def test_wrong_scheme(self):
        assert extract_bearer_token("Basic abc123") is None

    def test_empty_token(self):
        assert extract_bearer_token("Bearer ") is None


class TestVerifyBearerToken:
    def test_matching_token(self):
        assert verify_bearer_token(BODY, "Bearer s3cret", "s3cret") is True

    def test_mismatched_token(self):
        assert verify_bearer_token(BODY, "Bearer wrong", "s3cret") is False

    def test_missing_header_fails_closed(self):
        assert verify_bearer_token(BODY, None, "s3cret") is False

    def test_unconfigured_secret_fails_closed(self):
        assert verify_bearer_token(BODY, "Bearer anything", None) is False
        assert verify_bearer_token(BODY, "Bearer ", "") is False

    def test_prefix_of_secret_rejected(self):
        assert verify_bearer_token(BODY, "Bearer s3c", "s3cret") is False
