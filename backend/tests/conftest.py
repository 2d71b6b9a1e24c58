"""Shared pytest fixtures and configuration.

Tests never touch real upstreams or Redis. The team memory store reads its
config from a plain dict (the relay_config fixture) so each test can edit
config between calls, and timestamps come from a controllable clock.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from relay.services.memory_injector import TeamMemoryInjector
from relay.services.team_memory import TeamMemoryStore


class FakeClock:
    """Deterministic clock for memory load timestamps."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 60.0) -> None:
        self.now = self.now + timedelta(seconds=seconds)

    @property
    def timestamp_ms(self) -> int:
        return int(self.now.timestamp() * 1000)


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting at 2025-01-01T00:00:00Z."""
    return FakeClock()


@pytest.fixture
def relay_config() -> dict[str, Any]:
    """Mutable relay config, both platforms disabled."""
    return {
        "claude": {"teamMemory": {"enabled": False}},
        "openai": {"teamMemory": {"enabled": False}},
    }


@pytest.fixture
def set_team_memory(relay_config):
    """Replace one platform's teamMemory section."""

    def _set(platform: str, **team_memory: Any) -> None:
        relay_config[platform] = {"teamMemory": team_memory}

    return _set


@pytest.fixture
def store(relay_config, clock, tmp_path) -> TeamMemoryStore:
    """Store reading relay_config, with memory files resolved under tmp_path."""
    return TeamMemoryStore(config_source=lambda: relay_config, base_dir=tmp_path, clock=clock)


@pytest.fixture
def injector(store) -> TeamMemoryInjector:
    """Injector without a client verifier."""
    return TeamMemoryInjector(store)


@pytest.fixture
def write_memory_file(tmp_path):
    """Write a memory file relative to the store's base directory."""

    def _write(relative_path: str, content: str):
        path = tmp_path / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return _write
