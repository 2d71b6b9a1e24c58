"""
Team memory injection into outbound request bodies.

Bodies are mutated in place. Claude Messages requests get the memory merged
into system[1] so no extra cache_control block is created (the upstream caps
cacheable blocks at 4). OpenAI Responses requests get a user message at
input[0].
"""

import logging
from collections.abc import Callable, Iterable
from enum import Enum
from functools import partial
from typing import Any

from relay.config import Platform, TeamMemoryConfig
from relay.services.format_detector import RequestFormat, detect_request_format
from relay.services.memory_markers import (
    InsertPosition,
    UpsertAction,
    upsert_memory_block,
    wrap_memory_content,
)
from relay.services.team_memory import MemoryRecord, TeamMemoryStore

logger = logging.getLogger(__name__)

CACHE_CONTROL_EPHEMERAL = {"type": "ephemeral"}

# Decides whether a Claude request comes from the genuine Claude Code client
ClientVerifier = Callable[[dict[str, Any]], bool]


class InjectionOutcome(str, Enum):
    """What an injection call did to the request body."""

    SKIPPED = "skipped"  # gated off, no memory, or unexpected shape
    UNCHANGED = "unchanged"  # same memory version already present
    UPDATED = "updated"  # older block replaced in place
    MERGED = "merged"  # block prepended to existing system[1] text
    APPENDED = "appended"  # new system block appended
    PREPENDED = "prepended"  # new input[0] message inserted

    @property
    def changed(self) -> bool:
        return self not in (InjectionOutcome.SKIPPED, InjectionOutcome.UNCHANGED)


def model_matches_prefixes(model: str, prefixes: Iterable[str]) -> bool:
    """Check if a model name starts with any allowed prefix."""
    return any(model.startswith(prefix) for prefix in prefixes)


class TeamMemoryInjector:
    """Merges the store's team memory into Claude and OpenAI Responses bodies."""

    def __init__(self, store: TeamMemoryStore, client_verifier: ClientVerifier | None = None):
        """
        Initialize injector.

        Args:
            store: Source of the memory snapshot
            client_verifier: Checks if a Claude body comes from a genuine client.
                Without one, every request counts as unverified.
        """
        self._store = store
        self._client_verifier = client_verifier
        self._handlers: dict[RequestFormat, Callable[[dict[str, Any]], InjectionOutcome]] = {
            RequestFormat.CLAUDE_MESSAGES: self.inject_claude_messages,
            RequestFormat.OPENAI_RESPONSES: self.inject_openai_responses,
        }

    def inject(self, body: Any) -> InjectionOutcome:
        """Detect the body format and inject into it when supported."""
        request_format = detect_request_format(body)
        handler = self._handlers.get(request_format)
        if handler is None:
            return InjectionOutcome.SKIPPED
        return handler(body)

    def _is_eligible(
        self, body: dict[str, Any], platform: Platform, config: TeamMemoryConfig
    ) -> bool:
        """Platform enabled and the model matches an allowed prefix."""
        if not config.enabled:
            return False

        model = body.get("model")
        if not isinstance(model, str):
            return False

        if not model_matches_prefixes(model, config.prefixes_for(platform)):
            logger.debug(f"Model {model} not eligible for {platform} team memory")
            return False

        return True

    def _loaded_memory(self) -> MemoryRecord | None:
        record = self._store.load_record()
        if not record.content.strip() or record.timestamp_ms is None:
            return None
        return record

    def _is_verified(self, body: dict[str, Any]) -> bool:
        if self._client_verifier is None:
            return False
        try:
            return bool(self._client_verifier(body))
        except Exception as e:
            logger.warning(f"Client verification failed, treating as unverified: {e}")
            return False

    def inject_claude_messages(
        self, body: dict[str, Any], is_verified_client: bool | None = None
    ) -> InjectionOutcome:
        """
        Merge team memory into a Claude Messages request.

        With two or more system blocks the memory goes at the start of
        system[1].text (or replaces an older block there). Otherwise a new
        system block is appended.

        Args:
            body: Request body, mutated in place
            is_verified_client: Skip the client verifier and use this answer

        Returns:
            InjectionOutcome describing the change
        """
        if not isinstance(body, dict):
            return InjectionOutcome.SKIPPED

        config = self._store.get_config("claude")
        if not self._is_eligible(body, "claude", config):
            return InjectionOutcome.SKIPPED

        if config.only_for_real_claude_code:
            if is_verified_client is None:
                is_verified_client = self._is_verified(body)
            if not is_verified_client:
                logger.debug("Skipping team memory for unverified Claude client")
                return InjectionOutcome.SKIPPED

        record = self._loaded_memory()
        if record is None:
            return InjectionOutcome.SKIPPED

        if "system" not in body or body["system"] is None:
            body["system"] = []
        system = body["system"]
        if not isinstance(system, list):
            logger.debug(f"Claude system field is {type(system).__name__}, skipping team memory")
            return InjectionOutcome.SKIPPED

        timestamp = record.timestamp_ms
        build_block = partial(wrap_memory_content, record.content, with_banner=True)

        if len(system) > 1:
            block = system[1]
            text = (block.get("text") or "") if isinstance(block, dict) else None
            if not isinstance(text, str):
                logger.debug("Claude system[1] has no text, skipping team memory")
                return InjectionOutcome.SKIPPED

            result = upsert_memory_block(text, timestamp, build_block, InsertPosition.PREPEND)
            if result.action is UpsertAction.UNCHANGED:
                logger.debug(f"Team memory already injected with same timestamp: {timestamp}")
                return InjectionOutcome.UNCHANGED

            block["text"] = result.text
            if config.use_cache_control and not block.get("cache_control"):
                block["cache_control"] = dict(CACHE_CONTROL_EPHEMERAL)

            if result.action is UpsertAction.REPLACED:
                logger.info(
                    f"Updated team memory in Claude system[1]: source={record.source_label}, "
                    f"size={len(record.content)}, "
                    f"timestamp={result.previous_timestamp}->{timestamp}"
                )
                return InjectionOutcome.UPDATED

            logger.info(
                f"Merged team memory into Claude system[1]: source={record.source_label}, "
                f"size={len(record.content)}, timestamp={timestamp}"
            )
            return InjectionOutcome.MERGED

        memory_block: dict[str, Any] = {"type": "text", "text": build_block(timestamp)}
        if config.use_cache_control:
            memory_block["cache_control"] = dict(CACHE_CONTROL_EPHEMERAL)
        system.append(memory_block)

        logger.info(
            f"Appended team memory as Claude system block: source={record.source_label}, "
            f"size={len(record.content)}, timestamp={timestamp}"
        )
        return InjectionOutcome.APPENDED

    def inject_openai_responses(self, body: dict[str, Any]) -> InjectionOutcome:
        """
        Inject team memory into an OpenAI Responses request.

        An existing block in input[0] is kept or replaced in place. Otherwise
        a new user message holding the block is inserted at input[0].

        Args:
            body: Request body, mutated in place

        Returns:
            InjectionOutcome describing the change
        """
        if not isinstance(body, dict):
            return InjectionOutcome.SKIPPED

        config = self._store.get_config("openai")
        if not self._is_eligible(body, "openai", config):
            return InjectionOutcome.SKIPPED

        record = self._loaded_memory()
        if record is None:
            return InjectionOutcome.SKIPPED

        if "input" not in body or body["input"] is None:
            body["input"] = []
        items = body["input"]
        if not isinstance(items, list):
            logger.debug(f"Responses input is {type(items).__name__}, skipping team memory")
            return InjectionOutcome.SKIPPED

        timestamp = record.timestamp_ms
        build_block = partial(wrap_memory_content, record.content, with_banner=False)

        text_item = _leading_user_text_item(items)
        if text_item is not None:
            result = upsert_memory_block(
                text_item["text"], timestamp, build_block, InsertPosition.NONE
            )
            if result.action is UpsertAction.UNCHANGED:
                logger.debug(f"Team memory already injected with same timestamp: {timestamp}")
                return InjectionOutcome.UNCHANGED
            if result.action is UpsertAction.REPLACED:
                text_item["text"] = result.text
                logger.info(
                    f"Updated team memory in Responses input[0]: source={record.source_label}, "
                    f"size={len(record.content)}, "
                    f"timestamp={result.previous_timestamp}->{timestamp}"
                )
                return InjectionOutcome.UPDATED

        items.insert(
            0,
            {
                "type": "message",
                "role": "user",
                "content": [{"type": "input_text", "text": build_block(timestamp)}],
            },
        )
        logger.info(
            f"Prepended team memory as Responses input[0]: source={record.source_label}, "
            f"size={len(record.content)}, timestamp={timestamp}"
        )
        return InjectionOutcome.PREPENDED


def _leading_user_text_item(items: list[Any]) -> dict[str, Any] | None:
    """First content item of input[0] if it is a user message starting with plain text."""
    if not items:
        return None
    first = items[0]
    if not isinstance(first, dict):
        return None
    if first.get("type") != "message" or first.get("role") != "user":
        return None
    content = first.get("content")
    if not isinstance(content, list) or not content:
        return None
    item = content[0]
    if not isinstance(item, dict) or item.get("type") != "input_text":
        return None
    if not isinstance(item.get("text"), str):
        return None
    return item
