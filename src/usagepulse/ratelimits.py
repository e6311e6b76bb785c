"""Rate-limit detection over message parts, and the watcher that reports them."""

import asyncio
import logging
import re
from collections.abc import Callable
from pathlib import Path

from .config import RATE_LIMIT_POLL_INTERVAL, STORAGE_DIR
from .models import UNKNOWN, PartRecord, RateLimitEvent
from .state import now_ms
from .storage import read_record, record_files
from .watcher import JsonFilePoller

logger = logging.getLogger("usagepulse")

RATE_LIMIT_PATTERNS = [
    re.compile(r"429"),
    re.compile(r"too many requests", re.IGNORECASE),
    re.compile(r"rate limit", re.IGNORECASE),
    re.compile(r"throttl", re.IGNORECASE),
    re.compile(r"quota exceeded", re.IGNORECASE),
    re.compile(r"capacity", re.IGNORECASE),
]

# Checked in order; the first provider with a matching hint wins
PROVIDER_HINTS: dict[str, list[str]] = {
    "anthropic": ["claude", "anthropic", "sonnet", "opus", "haiku"],
    "openai": ["openai", "gpt", "o1", "o3", "chatgpt"],
    "google": ["google", "gemini", "palm", "vertex"],
    "openrouter": ["openrouter"],
}

RECENT_EVENTS_WINDOW_MS = 60 * 60 * 1000


def detect_provider(text: str, tool: str | None = None) -> str:
    lower = (text + (tool or "")).lower()
    for provider, hints in PROVIDER_HINTS.items():
        if any(h in lower for h in hints):
            return provider
    return UNKNOWN


def is_rate_limit_error(part: PartRecord) -> bool:
    state = part.state
    if state is None or state.status not in ("completed", "error"):
        return False
    text = " ".join([state.output or "", state.error or ""])
    return any(pattern.search(text) for pattern in RATE_LIMIT_PATTERNS)


def event_from_part(part: PartRecord, timestamp: int) -> RateLimitEvent:
    error_message = (part.state.output or part.state.error or "") if part.state else ""
    return RateLimitEvent(
        timestamp=timestamp,
        provider_id=detect_provider(error_message, part.tool),
        error_message=error_message,
        part_id=part.id,
    )


class RateLimitWatcher(JsonFilePoller):
    """Watches ``part/<message>/prt_*.json`` for throttling errors."""

    prefix = "prt_"

    def __init__(
        self,
        storage_dir: Path = STORAGE_DIR,
        on_rate_limit: Callable[[RateLimitEvent], None] | None = None,
        interval: float = RATE_LIMIT_POLL_INTERVAL,
        settle_delay: float = 0.1,
        clock: Callable[[], int] = now_ms,
    ):
        super().__init__(Path(storage_dir) / "part", interval, settle_delay)
        self.on_rate_limit = on_rate_limit
        self.clock = clock

    async def load_recent_events(self, since_ms: int = RECENT_EVENTS_WINDOW_MS) -> list[RateLimitEvent]:
        """Scan existing parts modified within ``since_ms`` and mark all files as seen.

        The file modification time stands in for the incident time.
        """
        return await asyncio.to_thread(self._load_recent, since_ms)

    def _load_recent(self, since_ms: int) -> list[RateLimitEvent]:
        cutoff = self.clock() - since_ms
        events = []
        for path in record_files(self.directory, self.prefix):
            self.seen.add(path)
            try:
                mtime_ms = int(path.stat().st_mtime * 1000)
            except OSError:
                continue
            if mtime_ms < cutoff:
                continue
            part = read_record(path, PartRecord)
            if part is not None and is_rate_limit_error(part):
                events.append(event_from_part(part, mtime_ms))
        if events:
            logger.info("Found %d recent rate-limit events", len(events))
        return events

    async def _process_new_file(self, path: Path):
        await asyncio.sleep(self.settle_delay)
        part = await asyncio.to_thread(read_record, path, PartRecord)
        if part is None or not is_rate_limit_error(part) or self._stopped:
            return
        event = event_from_part(part, self.clock())
        logger.warning("Rate limit from %s: %s", event.provider_id, event.error_message[:80])
        if self.on_rate_limit is not None:
            self.on_rate_limit(event)
