"""One-shot aggregation of the whole message store for the ``stats`` command."""

import logging
import re
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from pathlib import Path

from .config import STORAGE_DIR
from .models import AggregatedUsage, SessionRecord, UsageByKey, UsageMessage
from .state import now_ms
from .storage import read_record, record_files

logger = logging.getLogger("usagepulse")

GROUP_BY_CHOICES = ["agent", "session", "model", "provider"]

_UNIT_MS = {
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
    "w": 7 * 24 * 60 * 60 * 1000,
    "m": 30 * 24 * 60 * 60 * 1000,
}
_RELATIVE_RE = re.compile(r"^(\d+)([hdwm])$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def load_all_messages(storage_dir: Path = STORAGE_DIR, since: int | None = None) -> list[UsageMessage]:
    """Messages with token data, optionally only those created at or after ``since``."""
    messages = []
    for path in record_files(Path(storage_dir) / "message", "msg_"):
        msg = read_record(path, UsageMessage)
        if msg is None or msg.tokens is None:
            continue
        if since is not None and msg.created_at < since:
            continue
        messages.append(msg)
    logger.debug("Loaded %d messages", len(messages))
    return messages


def load_all_sessions(storage_dir: Path = STORAGE_DIR) -> dict[str, SessionRecord]:
    sessions = {}
    for path in record_files(Path(storage_dir) / "session", "ses_"):
        session = read_record(path, SessionRecord)
        if session is not None:
            sessions[session.id] = session
    return sessions


def _fold(usage: AggregatedUsage, msg: UsageMessage):
    usage.total_input += msg.tokens.input
    usage.total_output += msg.tokens.output
    usage.total_reasoning += msg.tokens.reasoning
    usage.total_cache_read += msg.tokens.cache.read
    usage.total_cache_write += msg.tokens.cache.write
    usage.total_cost += msg.cost or 0
    usage.message_count += 1


def aggregate_total(messages: Iterable[UsageMessage]) -> AggregatedUsage:
    total = AggregatedUsage()
    for msg in messages:
        if msg.tokens is not None:
            _fold(total, msg)
    return total


def aggregate_by_key(messages: Iterable[UsageMessage], key_fn: Callable[[UsageMessage], str]) -> list[UsageByKey]:
    """Group messages by ``key_fn`` and sum each group, most expensive first."""
    groups: dict[str, UsageByKey] = {}
    for msg in messages:
        if msg.tokens is None:
            continue
        key = key_fn(msg)
        if key not in groups:
            groups[key] = UsageByKey(key=key)
        _fold(groups[key], msg)
    return sorted(groups.values(), key=lambda u: u.total_cost, reverse=True)


def group_key_fn(by: str) -> Callable[[UsageMessage], str]:
    if by == "session":
        return lambda msg: msg.session_id
    if by == "model":
        return lambda msg: msg.model_key
    if by == "provider":
        return lambda msg: msg.provider_key
    return lambda msg: msg.agent_key


def parse_since(value: str, now: int | None = None) -> int:
    """Turn ``7d``/``12h``/``2w``/``1m`` or ``YYYY-MM-DD`` into epoch milliseconds.

    A month counts as 30 days. Dates are taken as UTC midnight.
    """
    now = now_ms() if now is None else now
    match = _RELATIVE_RE.match(value)
    if match:
        return now - int(match.group(1)) * _UNIT_MS[match.group(2)]
    if _DATE_RE.match(value):
        day = datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
        return int(day.timestamp()) * 1000
    raise ValueError(f"Invalid --since format: {value}. Use relative (7d, 30d, 1h) or absolute (YYYY-MM-DD)")
