"""Tests for rate limit detection on upstream error payloads."""

import pytest

from relay.services.rate_limit_detection import (
    RATE_LIMIT_PATTERNS,
    extract_error_message,
    is_rate_limit_error,
    is_rate_limit_error_with_status,
)


class TestExtractErrorMessage:
    """Tests for extract_error_message."""

    @pytest.mark.parametrize(
        "payload",
        [
            {"error": {"message": "X"}},
            {"error": "X"},
            {"message": "X"},
            {"detail": "X"},
            "X",
            {"error": {"error": "X"}},
        ],
    )
    def test_supported_shapes(self, payload):
        """Every supported shape yields the same message."""
        assert extract_error_message(payload) == "X"

    def test_nested_message_wins(self):
        """error.message takes priority over top-level message."""
        payload = {"error": {"message": "nested"}, "message": "top"}
        assert extract_error_message(payload) == "nested"

    def test_empty_nested_falls_through(self):
        """Empty nested fields fall back to top-level fields."""
        payload = {"error": {"message": "", "code": 500}, "detail": "Server busy"}
        assert extract_error_message(payload) == "Server busy"

    def test_bytes_decoded(self):
        """Raw bytes bodies are decoded."""
        assert extract_error_message(b"Too many requests") == "Too many requests"

    @pytest.mark.parametrize("payload", [None, 42, [], {}, {"error": {"code": 1}}])
    def test_nothing_usable(self, payload):
        """No message in other shapes."""
        assert extract_error_message(payload) is None


class TestIsRateLimitError:
    """Tests for message based rate limit detection."""

    def test_nested_message(self):
        """Nested OpenAI-style message."""
        payload = {"error": {"message": "You've exceeded your account's rate limit."}}
        assert is_rate_limit_error(payload) is True

    def test_permanent_error(self):
        """Ordinary request errors are not rate limits."""
        payload = {"error": "Invalid request", "message": "Missing required parameter"}
        assert is_rate_limit_error(payload) is False

    def test_bare_string(self):
        """Bare string bodies are matched."""
        assert is_rate_limit_error("Error: Too many requests. Rate limit exceeded.") is True

    def test_chinese_message(self):
        """Chinese quota messages are matched."""
        assert is_rate_limit_error({"message": "您的积分不足，无法完成此次请求"}) is True

    def test_case_insensitive(self):
        """Matching ignores case."""
        assert is_rate_limit_error({"detail": "Upstream OVERLOADED"}) is True

    def test_internal_server_error(self):
        """Internal server errors are treated as capacity failures."""
        assert is_rate_limit_error({"error": {"message": "Internal server error"}}) is True

    def test_error_code_only(self):
        """Structured error.code is checked when the message does not match."""
        payload = {"error": {"message": "Request failed", "code": "insufficient_quota"}}
        assert is_rate_limit_error(payload) is True

    def test_error_type_only(self):
        """error.type is checked too."""
        payload = {"error": {"type": "rate_limit_error", "message": "Please retry"}}
        assert is_rate_limit_error(payload) is True

    def test_unrelated_code(self):
        """Other codes do not match."""
        payload = {"error": {"message": "Bad model", "code": "model_not_found"}}
        assert is_rate_limit_error(payload) is False

    @pytest.mark.parametrize("phrase", RATE_LIMIT_PATTERNS)
    def test_every_pattern(self, phrase):
        """Each keyword matches on its own."""
        assert is_rate_limit_error(f"upstream said: {phrase}") is True

    @pytest.mark.parametrize("payload", [None, 0, [], {}, {"error": None}, object()])
    def test_odd_shapes_false(self, payload):
        """Unexpected shapes are never rate limits."""
        assert is_rate_limit_error(payload) is False

    def test_never_raises(self):
        """Payloads that blow up during inspection read as not rate limited."""

        class Exploding(dict):
            def get(self, *args, **kwargs):
                raise RuntimeError("boom")

        assert is_rate_limit_error(Exploding()) is False


class TestIsRateLimitErrorWithStatus:
    """Tests for the status-aware variant."""

    def test_429_shortcut(self):
        """429 is a rate limit regardless of body."""
        assert is_rate_limit_error_with_status(429, {}) is True
        assert is_rate_limit_error_with_status(429, None) is True

    def test_delegates_to_message_check(self):
        """Other statuses look at the body."""
        body = {"error": {"message": "Rate limit reached for gpt-4o"}}
        assert is_rate_limit_error_with_status(400, body) is True

    def test_no_body(self):
        """Without a body only 429 counts."""
        assert is_rate_limit_error_with_status(500, None) is False
        assert is_rate_limit_error_with_status(503, "") is False

    def test_permanent_error(self):
        """A 400 validation failure is not a rate limit."""
        body = {"error": {"message": "max_tokens must be positive"}}
        assert is_rate_limit_error_with_status(400, body) is False

    def test_missing_status(self):
        """No status falls back to the body."""
        assert is_rate_limit_error_with_status(None, "请求过于频繁") is True
