"""In-memory live state: deduplicated ledgers, per-minute series and derived stats.

All operations here are synchronous and perform no I/O. Watchers hand parsed
records over through ``add_message`` / ``add_rate_limit_event`` and the
renderer reads back through the query methods or ``snapshot()``.
"""

import logging
import time
from bisect import bisect_left, insort
from collections import Counter, defaultdict
from collections.abc import Callable, Iterable

from .calendar import month_label, month_start
from .config import (
    ALERT_WINDOW_MS,
    MINUTE_MS,
    PRUNE_MAX_AGE_MS,
    RATE_LIMIT_WINDOW_MS,
    STALE_THRESHOLD_MS,
    THROTTLE_THRESHOLD,
    TIMEZONE,
)
from .models import (
    WINDOW_MS,
    DashboardSnapshot,
    HealthStatus,
    ModelHealth,
    ModelHealthStatus,
    ModelWindowStats,
    ProviderBudget,
    ProviderHealth,
    ProviderLimits,
    ProviderWindowStats,
    RateLimitEvent,
    SortMode,
    TimeSeriesPoint,
    UsageMessage,
    ViewMode,
    WindowSize,
    WindowStats,
)

logger = logging.getLogger("usagepulse")

_SORT_CYCLE = [SortMode.COST, SortMode.TOKENS, SortMode.NAME]


def now_ms() -> int:
    return int(time.time() * 1000)


def _created(msg: UsageMessage) -> int:
    return msg.created_at


def _event_time(event: RateLimitEvent) -> int:
    return event.timestamp


def _point_time(point: TimeSeriesPoint) -> int:
    return point.timestamp


def compute_window_stats(messages: Iterable[UsageMessage]) -> WindowStats:
    """Sum token and cost figures over messages that carry token data.

    Messages without ``tokens`` are skipped entirely, including from
    ``message_count``.
    """
    total_input = total_output = total_reasoning = 0
    total_cost = 0.0
    count = 0
    for msg in messages:
        if msg.tokens is None:
            continue
        total_input += msg.tokens.input
        total_output += msg.tokens.output
        total_reasoning += msg.tokens.reasoning
        total_cost += msg.cost or 0
        count += 1
    return WindowStats(
        total_tokens=total_input + total_output + total_reasoning,
        total_input=total_input,
        total_output=total_output,
        total_reasoning=total_reasoning,
        total_cost=total_cost,
        message_count=count,
    )


def compute_health_status(rate_limit_count_5m: int, last_rate_limit: int | None, now: int) -> HealthStatus:
    if rate_limit_count_5m >= THROTTLE_THRESHOLD:
        return HealthStatus.THROTTLED
    if rate_limit_count_5m >= 1:
        return HealthStatus.WARN
    # Only reachable when the count came from a different window than the timestamp
    if last_rate_limit is not None and now - last_rate_limit < RATE_LIMIT_WINDOW_MS:
        return HealthStatus.WARN
    return HealthStatus.OK


def compute_model_health_status(last_seen: int, provider_throttled: bool, now: int) -> ModelHealthStatus:
    if provider_throttled:
        return ModelHealthStatus.ERROR
    if now - last_seen > STALE_THRESHOLD_MS:
        return ModelHealthStatus.STALE
    return ModelHealthStatus.ACTIVE


def _percent(consumed: float, ceiling: float | None) -> float | None:
    if not ceiling:
        return None
    return consumed / ceiling * 100


class LiveState:
    """Aggregate root for the live dashboard.

    ``messages`` and ``rate_limit_events`` are always sorted ascending by time.
    New entries are placed by binary search after any entry with the same
    timestamp, so ties keep their arrival order.
    """

    def __init__(
        self,
        budgets: dict[str, ProviderBudget] | None = None,
        limits: dict[str, ProviderLimits] | None = None,
        clock: Callable[[], int] = now_ms,
        tz_name: str = TIMEZONE,
    ):
        self.clock = clock
        self.tz_name = tz_name
        self.message_index: dict[str, UsageMessage] = {}
        self.messages: list[UsageMessage] = []
        self.rate_limit_events: list[RateLimitEvent] = []
        self.time_series: list[TimeSeriesPoint] = []
        self.budgets: dict[str, ProviderBudget] = dict(budgets or {})
        self.limits: dict[str, ProviderLimits] = dict(limits or {})
        self.current_window = WindowSize.FIVE_HOURS
        self.view_mode = ViewMode.MTD
        self.sort_mode = SortMode.COST
        self.last_update = clock()

    # --- Ingestion ---

    def add_message(self, msg: UsageMessage) -> bool:
        """Insert a message unless its id is already known. Returns True if added."""
        if msg.id in self.message_index:
            return False
        self.message_index[msg.id] = msg
        insort(self.messages, msg, key=_created)
        self.last_update = self.clock()
        self._update_time_series(msg)
        return True

    def add_messages(self, msgs: Iterable[UsageMessage]) -> int:
        added = 0
        for msg in msgs:
            if self.add_message(msg):
                added += 1
        return added

    def add_rate_limit_event(self, event: RateLimitEvent):
        # No identity check: a re-delivered part is counted again
        insort(self.rate_limit_events, event, key=_event_time)

    def _update_time_series(self, msg: UsageMessage):
        if msg.tokens is None:
            return
        minute = msg.created_at // MINUTE_MS * MINUTE_MS
        i = bisect_left(self.time_series, minute, key=_point_time)
        if i < len(self.time_series) and self.time_series[i].timestamp == minute:
            point = self.time_series[i]
            point.tokens += msg.tokens.total
            point.cost += msg.cost or 0
        else:
            self.time_series.insert(
                i, TimeSeriesPoint(timestamp=minute, tokens=msg.tokens.total, cost=msg.cost or 0)
            )

    # --- Subsets ---

    def messages_since(self, cutoff: int) -> list[UsageMessage]:
        return self.messages[bisect_left(self.messages, cutoff, key=_created):]

    def messages_in_window(self, window_ms: int) -> list[UsageMessage]:
        return self.messages_since(self.clock() - window_ms)

    def messages_mtd(self) -> list[UsageMessage]:
        return self.messages_since(month_start(self.clock(), self.tz_name))

    def all_messages(self) -> list[UsageMessage]:
        return list(self.messages)

    def rate_limits_in_window(self, window_ms: int) -> list[RateLimitEvent]:
        cutoff = self.clock() - window_ms
        return self.rate_limit_events[bisect_left(self.rate_limit_events, cutoff, key=_event_time):]

    # --- Window stats ---

    def window_stats(self, window_ms: int) -> WindowStats:
        return compute_window_stats(self.messages_in_window(window_ms))

    def mtd_stats(self) -> WindowStats:
        return compute_window_stats(self.messages_mtd())

    def all_time_stats(self) -> WindowStats:
        return compute_window_stats(self.messages)

    # --- Providers ---

    def provider_stats(self, messages: list[UsageMessage]) -> list[ProviderWindowStats]:
        """Per-provider totals, health and budget use, most expensive first.

        Providers with recent rate limits or a configured budget are listed
        even when ``messages`` holds nothing for them.
        """
        now = self.clock()

        groups: dict[str, list[UsageMessage]] = defaultdict(list)
        for msg in messages:
            groups[msg.provider_key].append(msg)

        rate_limits: dict[str, list[RateLimitEvent]] = defaultdict(list)
        for event in self.rate_limits_in_window(RATE_LIMIT_WINDOW_MS):
            rate_limits[event.provider_id].append(event)

        provider_ids = dict.fromkeys([*groups, *rate_limits, *self.budgets])

        results = []
        for provider_id in provider_ids:
            stats = compute_window_stats(groups.get(provider_id, []))
            events = rate_limits.get(provider_id, [])
            last_rate_limit = max((e.timestamp for e in events), default=None)
            health = ProviderHealth(
                status=compute_health_status(len(events), last_rate_limit, now),
                rate_limit_count_5m=len(events),
                last_rate_limit=last_rate_limit,
            )

            budget = self.budgets.get(provider_id) or ProviderBudget()
            budget_tokens = budget.monthly_tokens or None
            budget_cost = budget.monthly_cost or None

            results.append(
                ProviderWindowStats(
                    **stats.model_dump(),
                    provider_id=provider_id,
                    health=health,
                    limit_percent=self._limit_percent(provider_id),
                    budget_tokens=budget_tokens,
                    budget_percent=_percent(stats.total_tokens, budget_tokens),
                    budget_cost=budget_cost,
                    budget_cost_percent=_percent(stats.total_cost, budget_cost),
                )
            )

        return sorted(results, key=lambda p: p.total_cost, reverse=True)

    def _limit_percent(self, provider_id: str) -> float | None:
        """Highest utilisation across the rolling limits configured for a provider."""
        limits = self.limits.get(provider_id)
        if limits is None:
            return None
        candidates = []
        for window, tokens_cap, cost_cap in (
            (WindowSize.FIVE_HOURS, limits.tokens_5h, limits.cost_5h),
            (WindowSize.ONE_DAY, limits.tokens_daily, limits.cost_daily),
        ):
            if not tokens_cap and not cost_cap:
                continue
            stats = compute_window_stats(
                m for m in self.messages_in_window(WINDOW_MS[window]) if m.provider_key == provider_id
            )
            for percent in (_percent(stats.total_tokens, tokens_cap), _percent(stats.total_cost, cost_cap)):
                if percent is not None:
                    candidates.append(percent)
        return max(candidates, default=None)

    def provider_stats_mtd(self) -> list[ProviderWindowStats]:
        return self.provider_stats(self.messages_mtd())

    def provider_stats_all(self) -> list[ProviderWindowStats]:
        return self.provider_stats(self.messages)

    # --- Models ---

    def throttled_providers(self) -> set[str]:
        counts = Counter(e.provider_id for e in self.rate_limits_in_window(RATE_LIMIT_WINDOW_MS))
        return {provider_id for provider_id, count in counts.items() if count >= THROTTLE_THRESHOLD}

    def model_stats(self, messages: list[UsageMessage], sort_mode: SortMode | None = None) -> list[ModelWindowStats]:
        now = self.clock()
        sort_mode = sort_mode or self.sort_mode
        throttled = self.throttled_providers()

        groups: dict[str, list[UsageMessage]] = defaultdict(list)
        for msg in messages:
            groups[msg.model_key].append(msg)

        subset_tokens = compute_window_stats(messages).total_tokens

        results = []
        for model_id, msgs in groups.items():
            stats = compute_window_stats(msgs)
            # Models are not expected to span providers; the first one wins
            provider_id = msgs[0].provider_key
            last_seen = max(m.created_at for m in msgs)
            provider_throttled = provider_id in throttled
            results.append(
                ModelWindowStats(
                    **stats.model_dump(),
                    model_id=model_id,
                    provider_id=provider_id,
                    health=ModelHealth(
                        status=compute_model_health_status(last_seen, provider_throttled, now),
                        last_seen=last_seen,
                        provider_throttled=provider_throttled,
                    ),
                    share_percent=stats.total_tokens / subset_tokens * 100 if subset_tokens > 0 else 0.0,
                    last_seen=last_seen,
                )
            )

        if sort_mode == SortMode.TOKENS:
            return sorted(results, key=lambda m: m.total_tokens, reverse=True)
        if sort_mode == SortMode.NAME:
            return sorted(results, key=lambda m: m.model_id)
        return sorted(results, key=lambda m: m.total_cost, reverse=True)

    def model_stats_mtd(self, sort_mode: SortMode | None = None) -> list[ModelWindowStats]:
        return self.model_stats(self.messages_mtd(), sort_mode)

    def model_stats_all(self, sort_mode: SortMode | None = None) -> list[ModelWindowStats]:
        return self.model_stats(self.messages, sort_mode)

    # --- Series and alerts ---

    def sparkline_data(self, window_ms: int, bucket_count: int = 30) -> list[int]:
        cutoff = self.clock() - window_ms
        bucket_ms = window_ms / bucket_count
        buckets = [0] * bucket_count
        for point in self.time_series[bisect_left(self.time_series, cutoff, key=_point_time):]:
            index = int((point.timestamp - cutoff) // bucket_ms)
            if 0 <= index < bucket_count:
                buckets[index] += point.tokens
        return buckets

    def recent_alerts(self, max_age_ms: int = ALERT_WINDOW_MS, limit: int = 3) -> list[RateLimitEvent]:
        """Newest rate-limit events younger than ``max_age_ms``, newest first."""
        now = self.clock()
        recent = [e for e in self.rate_limit_events if now - e.timestamp < max_age_ms]
        return list(reversed(recent[-limit:])) if limit > 0 else []

    # --- Preferences ---

    def toggle_view_mode(self) -> ViewMode:
        self.view_mode = ViewMode.ALL if self.view_mode == ViewMode.MTD else ViewMode.MTD
        return self.view_mode

    def cycle_sort_mode(self) -> SortMode:
        self.sort_mode = _SORT_CYCLE[(_SORT_CYCLE.index(self.sort_mode) + 1) % len(_SORT_CYCLE)]
        return self.sort_mode

    def set_window(self, size: WindowSize | str):
        self.current_window = WindowSize(size)

    def cycle_window(self) -> WindowSize:
        sizes = list(WindowSize)
        self.current_window = sizes[(sizes.index(self.current_window) + 1) % len(sizes)]
        return self.current_window

    def view_label(self) -> str:
        if self.view_mode == ViewMode.MTD:
            return f"Month-to-Date ({month_label(self.clock(), self.tz_name)})"
        return "All Time"

    def snapshot(self) -> DashboardSnapshot:
        messages = self.messages_mtd() if self.view_mode == ViewMode.MTD else self.all_messages()
        return DashboardSnapshot(
            view_mode=self.view_mode,
            sort_mode=self.sort_mode,
            current_window=self.current_window,
            view_label=self.view_label(),
            summary=compute_window_stats(messages),
            providers=self.provider_stats(messages),
            models=self.model_stats(messages),
            alerts=self.recent_alerts(),
            sparkline=self.sparkline_data(WINDOW_MS[self.current_window]),
            last_update=self.last_update,
        )

    # --- Maintenance ---

    def prune(self, max_age_ms: int = PRUNE_MAX_AGE_MS):
        """Drop everything older than ``max_age_ms``. Survivors keep their order."""
        cutoff = self.clock() - max_age_ms
        before = len(self.messages)
        self.messages = self.messages_since(cutoff)
        self.message_index = {m.id: m for m in self.messages}
        self.rate_limit_events = self.rate_limit_events[
            bisect_left(self.rate_limit_events, cutoff, key=_event_time):
        ]
        self.time_series = self.time_series[bisect_left(self.time_series, cutoff, key=_point_time):]
        if before != len(self.messages):
            logger.debug("Pruned %d messages older than %d", before - len(self.messages), cutoff)
