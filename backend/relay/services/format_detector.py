"""Request body format detection for team memory injection."""

from enum import Enum
from typing import Any


class RequestFormat(str, Enum):
    """Upstream request body shapes the injector understands."""

    CLAUDE_MESSAGES = "claude_messages"  # model + system block list
    OPENAI_RESPONSES = "openai_responses"  # input item array of messages
    UNKNOWN = "unknown"


def detect_request_format(body: Any) -> RequestFormat:
    """
    Classify a request body.

    Claude Messages: has a model and a list-shaped system field.
    OpenAI Responses: input is a non-empty list whose first item is a message.
    Everything else, including chat-completions bodies, is UNKNOWN.
    """
    if not isinstance(body, dict):
        return RequestFormat.UNKNOWN

    if "model" in body and isinstance(body.get("system"), list):
        return RequestFormat.CLAUDE_MESSAGES

    items = body.get("input")
    if isinstance(items, list) and items:
        first = items[0]
        if isinstance(first, dict) and first.get("type") == "message":
            return RequestFormat.OPENAI_RESPONSES

    return RequestFormat.UNKNOWN
