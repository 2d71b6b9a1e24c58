"""
Team memory store.

Holds the shared team memory text injected into outbound requests, resolved
from (in priority order):
- Static content in the claude or openai teamMemory config
- A remote URL (fetched with a 30s timeout)
- A local markdown file under the working directory

The cached value is a single immutable MemoryRecord that is swapped whole, so
readers always see a matching content/timestamp pair. A failed refresh keeps
serving the last good record.
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any

import httpx

from relay.config import (
    ConfigSource,
    Platform,
    TeamMemoryConfig,
    read_team_memory_config,
    settings_config_source,
)
from relay.errors import MemoryFetchError

logger = logging.getLogger(__name__)

FETCH_TIMEOUT_SECONDS = 30.0

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

# Relative to the working directory, first existing file wins
MEMORY_FILE_CANDIDATES: tuple[Path, ...] = (
    Path(".local") / "team-memory.md",
    Path(".local") / "TEAM_CLAUDE.md",
    Path("data") / "team-memory.md",
)


def epoch_ms(moment: datetime) -> int:
    """Whole epoch milliseconds of an aware datetime, without float rounding."""
    return (moment - EPOCH) // timedelta(milliseconds=1)


class MemorySource(str, Enum):
    """Where the cached team memory came from."""

    STATIC_CONTENT = "content"
    REMOTE_URL = "url"
    LOCAL_FILE = "file"
    UNSET = "unset"


@dataclass(frozen=True)
class MemoryRecord:
    """Currently effective team memory. Replaced as a whole, never mutated."""

    content: str = ""
    source: MemorySource = MemorySource.UNSET
    loaded_at: datetime | None = None
    origin: str | None = None  # platform for content/url, path for file

    @property
    def is_loaded(self) -> bool:
        return self.loaded_at is not None

    @property
    def timestamp_ms(self) -> int | None:
        """Load time in epoch milliseconds, as embedded in memory markers."""
        if self.loaded_at is None:
            return None
        return epoch_ms(self.loaded_at)

    @property
    def source_label(self) -> str | None:
        """Diagnostic label such as 'content-claude', 'url-openai' or 'file'."""
        if self.source is MemorySource.UNSET:
            return None
        if self.source is MemorySource.LOCAL_FILE:
            return self.source.value
        return f"{self.source.value}-{self.origin}"


EMPTY_RECORD = MemoryRecord()


@dataclass
class TeamMemoryStatus:
    """Read-only diagnostics snapshot of the store."""

    enabled: bool
    source: str | None
    loaded_at: datetime | None
    cache_size_bytes: int
    auto_refresh_active: bool
    claude_config: dict[str, Any] = field(default_factory=dict)
    openai_config: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the diagnostics wire shape."""
        return {
            "enabled": self.enabled,
            "source": self.source,
            "lastLoadedTime": self.loaded_at.isoformat() if self.loaded_at else None,
            "cacheSize": self.cache_size_bytes,
            "autoRefreshEnabled": self.auto_refresh_active,
            "claudeConfig": self.claude_config,
            "openaiConfig": self.openai_config,
        }


def _utc_now() -> datetime:
    return datetime.now(UTC)


class TeamMemoryStore:
    """
    Cache of the team memory text with manual and periodic refresh.

    Constructed once by the relay at startup; the relay calls start() after
    construction and dispose() on shutdown.
    """

    def __init__(
        self,
        config_source: ConfigSource = settings_config_source,
        base_dir: Path | None = None,
        clock: Callable[[], datetime] = _utc_now,
        fetch_timeout: float = FETCH_TIMEOUT_SECONDS,
    ):
        """
        Initialize the store empty.

        Args:
            config_source: Polled on every call for the teamMemory config
            base_dir: Directory memory files are resolved against. Defaults to cwd at lookup time.
            clock: Source of load timestamps
            fetch_timeout: Remote fetch timeout in seconds
        """
        self._config_source = config_source
        self._base_dir = base_dir
        self._clock = clock
        self._fetch_timeout = fetch_timeout
        self._record: MemoryRecord = EMPTY_RECORD
        self._last_timestamp_ms: int | None = None
        self._refresh_task: asyncio.Task[None] | None = None

    # Config

    def get_config(self, platform: Platform) -> TeamMemoryConfig:
        """Current teamMemory config for a platform."""
        return read_team_memory_config(self._config_source, platform)

    def is_enabled(self) -> bool:
        """True when team memory is enabled for either platform."""
        return self.get_config("claude").enabled or self.get_config("openai").enabled

    # Reading

    def record(self) -> MemoryRecord:
        """Current record without triggering any load."""
        return self._record

    def load_record(self) -> MemoryRecord:
        """
        Current record, resolving static content or a local file when nothing is cached.

        Never touches the network. When a URL is configured and nothing has
        been fetched yet, returns the empty record.
        """
        record = self._record
        if record.is_loaded:
            return record

        claude = self.get_config("claude")
        openai = self.get_config("openai")

        static = self._static_content(claude, openai)
        if static is not None:
            platform, content = static
            logger.info(f"Loaded team memory from {platform} config content")
            return self._replace(content, MemorySource.STATIC_CONTENT, platform)

        if claude.has_url or openai.has_url:
            logger.debug("Team memory URL configured, waiting for async refresh")
            return record

        path, content = self._read_memory_file()
        if content:
            return self._replace(content, MemorySource.LOCAL_FILE, str(path))

        return record

    def load(self) -> str:
        """Current team memory text, or an empty string."""
        return self.load_record().content

    # Refresh

    async def refresh(self) -> bool:
        """
        Re-resolve team memory by source priority.

        Static content never triggers network I/O. On any fetch failure the
        cached record is kept as is.

        Returns:
            True if static content is in effect or the cache was replaced
        """
        claude = self.get_config("claude")
        openai = self.get_config("openai")

        static = self._static_content(claude, openai)
        if static is not None:
            platform, content = static
            current = self._record
            if current.source is MemorySource.STATIC_CONTENT and current.content == content:
                logger.debug(f"Team memory using {platform} static content, no refresh needed")
            else:
                self._replace(content, MemorySource.STATIC_CONTENT, platform)
                logger.info(f"Loaded team memory from {platform} config content")
            return True

        if claude.has_url or openai.has_url:
            url_platform: Platform = "claude" if claude.has_url else "openai"
            url = (claude.url if claude.has_url else openai.url) or ""
            try:
                content = await self._fetch_url(url.strip())
            except MemoryFetchError as e:
                logger.error(f"Failed to refresh team memory from URL: {e}")
                return False

            if not content.strip():
                logger.warning(f"Team memory URL returned empty content: {url}")
                return False

            self._replace(content, MemorySource.REMOTE_URL, url_platform)
            logger.info(f"Refreshed team memory from URL: url={url}, size={len(content)}")
            return True

        path, content = self._read_memory_file()
        if content:
            self._replace(content, MemorySource.LOCAL_FILE, str(path))
            logger.info(f"Refreshed team memory from file: {path}, size={len(content)}")
            return True

        return False

    async def _fetch_url(self, url: str) -> str:
        """GET the memory URL and return the full body text."""
        try:
            async with httpx.AsyncClient(timeout=self._fetch_timeout) as client:
                response = await client.get(url)
        except httpx.TimeoutException as e:
            raise MemoryFetchError(url, "Request timeout") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise MemoryFetchError(url, str(e) or type(e).__name__) from e

        if not response.is_success:
            raise MemoryFetchError(
                url,
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )

        content_type = response.headers.get("content-type", "")
        if "text/" not in content_type and "application/" not in content_type:
            logger.warning(f"Unexpected team memory content-type: {content_type!r}")

        return response.text

    def _read_memory_file(self) -> tuple[Path | None, str]:
        """Read the first existing memory file. Returns (path, content)."""
        base_dir = self._base_dir or Path.cwd()
        try:
            for candidate in MEMORY_FILE_CANDIDATES:
                path = base_dir / candidate
                if path.is_file():
                    content = path.read_text(encoding="utf-8")
                    logger.info(f"Loaded team memory from file: {path}")
                    return path, content
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to load team memory from file: {e}")
        return None, ""

    @staticmethod
    def _static_content(
        claude: TeamMemoryConfig, openai: TeamMemoryConfig
    ) -> tuple[Platform, str] | None:
        if claude.has_content:
            return "claude", claude.content or ""
        if openai.has_content:
            return "openai", openai.content or ""
        return None

    def _replace(self, content: str, source: MemorySource, origin: str | None) -> MemoryRecord:
        """Swap in a new record. Marker timestamps strictly increase, even across clear()."""
        loaded_at = self._clock()
        previous_ms = self._last_timestamp_ms
        if previous_ms is not None and epoch_ms(loaded_at) <= previous_ms:
            loaded_at = EPOCH + timedelta(milliseconds=previous_ms + 1)
        self._last_timestamp_ms = epoch_ms(loaded_at)
        record = MemoryRecord(content=content, source=source, loaded_at=loaded_at, origin=origin)
        self._record = record
        return record

    def clear(self) -> None:
        """Drop the cached memory."""
        self._record = EMPTY_RECORD

    # Auto refresh

    def _refresh_interval_minutes(self) -> float:
        claude = self.get_config("claude")
        openai = self.get_config("openai")
        return claude.refresh_interval or openai.refresh_interval or 0

    @property
    def auto_refresh_active(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    def start_auto_refresh(self) -> bool:
        """
        Start the periodic refresh task, replacing any running one.

        Must be called from a running event loop.

        Returns:
            True if a refresh task was started
        """
        if self._refresh_task is not None:
            self.stop_auto_refresh()

        interval_minutes = self._refresh_interval_minutes()
        if interval_minutes <= 0:
            logger.debug(f"Team memory auto-refresh disabled (interval: {interval_minutes})")
            return False

        claude = self.get_config("claude")
        openai = self.get_config("openai")
        if self._static_content(claude, openai) is not None:
            logger.debug("Team memory auto-refresh not needed for static content")
            return False

        self._refresh_task = asyncio.create_task(self._auto_refresh_loop(interval_minutes * 60))
        logger.info(f"Started team memory auto-refresh (interval: {interval_minutes}min)")
        return True

    def stop_auto_refresh(self) -> None:
        """Cancel the periodic refresh task. Safe to call when not running."""
        task = self._refresh_task
        if task is None:
            return
        self._refresh_task = None
        task.cancel()
        logger.info("Stopped team memory auto-refresh")

    async def _auto_refresh_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            logger.debug("Auto-refreshing team memory")
            try:
                await self.refresh()
            except Exception as e:
                logger.error(f"Team memory auto-refresh failed: {e}")

    # Lifecycle

    async def start(self) -> None:
        """Initial load plus auto refresh. No-op when both platforms are disabled."""
        if not self.is_enabled():
            return

        try:
            await self.refresh()
        except Exception as e:
            logger.warning(f"Failed to initialize team memory: {e}")

        self.start_auto_refresh()

    def stop(self) -> None:
        """Stop auto refresh. The cached memory stays available."""
        self.stop_auto_refresh()

    async def dispose(self) -> None:
        """Stop auto refresh and wait for the task to finish."""
        task = self._refresh_task
        self.stop_auto_refresh()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # Diagnostics

    def status(self) -> TeamMemoryStatus:
        """Diagnostics snapshot. Has no side effects."""
        record = self._record
        claude = self.get_config("claude")
        openai = self.get_config("openai")
        return TeamMemoryStatus(
            enabled=claude.enabled or openai.enabled,
            source=record.source_label,
            loaded_at=record.loaded_at,
            cache_size_bytes=len(record.content.encode("utf-8")),
            auto_refresh_active=self.auto_refresh_active,
            claude_config=claude.model_dump(by_alias=True),
            openai_config=openai.model_dump(by_alias=True),
        )
