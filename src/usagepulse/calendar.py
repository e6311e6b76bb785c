"""Month boundaries in a fixed reference time zone.

Month-to-date figures must not depend on the zone of the machine running the
dashboard, so every calendar question is answered in ``config.TIMEZONE``.
"""

import logging
from calendar import month_name, monthrange
from datetime import datetime, timedelta, timezone, tzinfo
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import TIMEZONE

logger = logging.getLogger("usagepulse")

# Used when the zone database has no entry for the reference zone
FALLBACK_OFFSET = timezone(timedelta(hours=1))


@lru_cache(maxsize=8)
def reference_zone(name: str = TIMEZONE) -> tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Time zone %s unavailable, assuming UTC+1", name)
        return FALLBACK_OFFSET


def _local_now(now: datetime | int | None, zone: tzinfo) -> datetime:
    if now is None:
        return datetime.now(zone)
    if isinstance(now, int):
        return datetime.fromtimestamp(now / 1000, zone)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(zone)


def month_start(now: datetime | int | None = None, tz_name: str = TIMEZONE) -> int:
    """Epoch milliseconds of midnight on the 1st of the current month.

    The offset applied is the one in force at that midnight, not at ``now``,
    so a month that began in winter time keeps its winter offset after the
    switch to summer time.
    """
    zone = reference_zone(tz_name)
    local = _local_now(now, zone)
    start = datetime(local.year, local.month, 1, tzinfo=zone)
    return int(start.timestamp()) * 1000


def month_label(now: datetime | int | None = None, tz_name: str = TIMEZONE) -> str:
    """Human label such as ``"October 2026"``."""
    local = _local_now(now, reference_zone(tz_name))
    return f"{month_name[local.month]} {local.year}"


def days_in_month(now: datetime | int | None = None, tz_name: str = TIMEZONE) -> int:
    local = _local_now(now, reference_zone(tz_name))
    return monthrange(local.year, local.month)[1]


def day_of_month(now: datetime | int | None = None, tz_name: str = TIMEZONE) -> int:
    return _local_now(now, reference_zone(tz_name)).day
