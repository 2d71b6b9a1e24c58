"""
Configuration management using pydantic-settings.
Loads from environment variables and ~/.env.local
"""

import logging
from collections.abc import Callable, Mapping
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

Platform = Literal["claude", "openai"]

PLATFORMS: tuple[Platform, ...] = ("claude", "openai")

# Used when a platform's config omits modelPrefixes
DEFAULT_MODEL_PREFIXES: dict[str, list[str]] = {
    "claude": ["claude-sonnet"],
    "openai": ["gpt-", "o1-", "o3-"],
}

# Zero-arg callable returning {"claude": {"teamMemory": {...}}, "openai": {...}}
ConfigSource = Callable[[], Mapping[str, Any]]


class TeamMemoryConfig(BaseModel):
    """Team memory settings for one upstream platform family.

    Accepts the camelCase keys of the relay config file as well as field names.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    enabled: bool = False
    content: str | None = None
    url: str | None = None
    model_prefixes: list[str] | None = Field(default=None, alias="modelPrefixes")
    refresh_interval: float = Field(default=0, alias="refreshInterval")
    only_for_real_claude_code: bool = Field(default=False, alias="onlyForRealClaudeCode")
    use_cache_control: bool = Field(default=False, alias="useCacheControl")

    @field_validator("refresh_interval", mode="before")
    @classmethod
    def _none_interval_is_disabled(cls, value: Any) -> Any:
        return 0 if value is None else value

    @property
    def has_content(self) -> bool:
        """True when a non-blank static content override is configured."""
        return bool(self.content and self.content.strip())

    @property
    def has_url(self) -> bool:
        """True when a non-blank remote URL is configured."""
        return bool(self.url and self.url.strip())

    def prefixes_for(self, platform: Platform) -> list[str]:
        """Configured model prefixes, or the platform defaults when unset."""
        if self.model_prefixes is None:
            return list(DEFAULT_MODEL_PREFIXES[platform])
        return list(self.model_prefixes)


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=str(Path.home() / ".env.local"),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8003
    debug: bool = False
    log_level: str = "INFO"

    # Redis (rate limit counters)
    relay_redis_url: str = "redis://localhost:6379/2"

    # CORS
    cors_origins: str = "http://localhost:3003"

    # Team memory, e.g. CLAUDE_TEAM_MEMORY__ENABLED=true
    claude_team_memory: TeamMemoryConfig = Field(default_factory=TeamMemoryConfig)
    openai_team_memory: TeamMemoryConfig = Field(default_factory=TeamMemoryConfig)

    def as_relay_config(self) -> dict[str, Any]:
        """Render team memory settings in the relay config shape."""
        return {
            "claude": {"teamMemory": self.claude_team_memory.model_dump(by_alias=True)},
            "openai": {"teamMemory": self.openai_team_memory.model_dump(by_alias=True)},
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def settings_config_source() -> Mapping[str, Any]:
    """Default config source backed by process settings."""
    return get_settings().as_relay_config()


def read_team_memory_config(source: ConfigSource, platform: Platform) -> TeamMemoryConfig:
    """
    Read one platform's team memory config from the config source.

    The source is called on every read so config edits take effect without
    a restart. Missing or malformed sections read as a disabled config.

    Args:
        source: Config source callable
        platform: "claude" or "openai"

    Returns:
        Parsed config, or the disabled default
    """
    try:
        raw = source()
    except Exception as e:
        logger.warning(f"Team memory config source failed for {platform}: {e}")
        return TeamMemoryConfig()

    section = raw.get(platform) if isinstance(raw, Mapping) else None
    team_memory = section.get("teamMemory") if isinstance(section, Mapping) else None

    if isinstance(team_memory, TeamMemoryConfig):
        return team_memory
    if not isinstance(team_memory, Mapping):
        return TeamMemoryConfig()

    try:
        return TeamMemoryConfig.model_validate(dict(team_memory))
    except ValidationError as e:
        logger.warning(f"Invalid {platform}.teamMemory config, treating as disabled: {e}")
        return TeamMemoryConfig()
