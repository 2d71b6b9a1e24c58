"""
Rate limit detection for upstream error responses.

Upstreams report quota and throttling failures in many shapes: nested
OpenAI-style error objects, flat messages, bare strings, English or Chinese.
These helpers normalize the payload to a message and match it against a
shared keyword list. They never raise; anything unexpected reads as
"not a rate limit".
"""

import logging
from typing import Any

logger = logging.getLogger(__name__)

# Matched as lowercase substrings of the error message
RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "rate_limit",
    "ratelimit",
    "too many requests",
    "request limit",
    "quota exceeded",
    "quota",
    "insufficient_quota",
    "exceeded your current quota",
    "limit exceeded",
    "billing hard limit",
    "throttled",
    "overloaded",
    "slow down",
    "internal server error",
    "请求过于频繁",
    "频率限制",
    "积分不足",
    "压力过大",
    "额度已用完",
)

# Structured fields of an OpenAI-style {"error": {...}} object
_ERROR_CODE_FIELDS = ("code", "type", "error")


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def extract_error_message(payload: Any) -> str | None:
    """
    Best-effort human readable message from an error payload.

    Strings are returned unchanged. For objects the first text value of
    error.message, error.error, error, message, detail is used.

    Args:
        payload: Parsed response body or raw text

    Returns:
        The message, or None if nothing usable was found
    """
    if isinstance(payload, str):
        return payload
    if isinstance(payload, bytes):
        return payload.decode("utf-8", errors="replace")
    if not isinstance(payload, dict):
        return None

    error = payload.get("error")
    if isinstance(error, dict):
        message = _text(error.get("message")) or _text(error.get("error"))
        if message:
            return message

    return _text(error) or _text(payload.get("message")) or _text(payload.get("detail"))


def _matches_pattern(value: str) -> bool:
    lowered = value.lower()
    return any(pattern in lowered for pattern in RATE_LIMIT_PATTERNS)


def _matches_error_codes(payload: Any) -> bool:
    """Check error.code / error.type / error.error of an OpenAI-style payload."""
    if not isinstance(payload, dict):
        return False
    error = payload.get("error")
    if not isinstance(error, dict):
        return False
    values = [str(error.get(name)) for name in _ERROR_CODE_FIELDS if error.get(name)]
    return any(_matches_pattern(value) for value in values)


def is_rate_limit_error(payload: Any) -> bool:
    """
    Check if an upstream error payload looks like a rate limit or quota failure.

    Args:
        payload: Parsed response body (dict) or raw text

    Returns:
        True if the message or structured error code matches a rate limit pattern
    """
    try:
        message = extract_error_message(payload)
        if message and _matches_pattern(message):
            return True
        return _matches_error_codes(payload)
    except Exception as e:
        logger.debug(f"Rate limit detection failed, treating as not rate limited: {e}")
        return False


def is_rate_limit_error_with_status(status_code: int | None, body: Any) -> bool:
    """
    Status-aware rate limit check. HTTP 429 is a rate limit regardless of body.

    Args:
        status_code: Upstream HTTP status
        body: Parsed response body (dict) or raw text

    Returns:
        True if the failure should be treated as a rate limit
    """
    try:
        if status_code == 429:
            return True
        if not body:
            return False
        return is_rate_limit_error(body)
    except Exception as e:
        logger.debug(f"Rate limit detection failed, treating as not rate limited: {e}")
        return False
