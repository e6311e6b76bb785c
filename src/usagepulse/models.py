"""Pydantic models for UsagePulse records and derived statistics."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

ERROR_MESSAGE_MAX_LENGTH = 200
UNKNOWN = "unknown"


class HealthStatus(str, Enum):
    OK = "ok"
    WARN = "warn"
    THROTTLED = "throttled"


class ModelHealthStatus(str, Enum):
    ACTIVE = "active"
    STALE = "stale"
    ERROR = "error"


class ViewMode(str, Enum):
    MTD = "mtd"
    ALL = "all"


class SortMode(str, Enum):
    COST = "cost"
    TOKENS = "tokens"
    NAME = "name"


class WindowSize(str, Enum):
    FIVE_MINUTES = "5m"
    ONE_HOUR = "1h"
    FIVE_HOURS = "5h"
    ONE_DAY = "24h"


WINDOW_MS: dict[WindowSize, int] = {
    WindowSize.FIVE_MINUTES: 5 * 60 * 1000,
    WindowSize.ONE_HOUR: 60 * 60 * 1000,
    WindowSize.FIVE_HOURS: 5 * 60 * 60 * 1000,
    WindowSize.ONE_DAY: 24 * 60 * 60 * 1000,
}


# --- Source records ---


class CacheTokens(BaseModel):
    read: int = 0
    write: int = 0


class MessageTokens(BaseModel):
    input: int = 0
    output: int = 0
    reasoning: int = 0
    cache: CacheTokens = Field(default_factory=CacheTokens)

    @property
    def total(self) -> int:
        """Input + output + reasoning. Cache traffic is reported separately."""
        return self.input + self.output + self.reasoning


class MessageTime(BaseModel):
    created: int
    completed: int | None = None


class UsageMessage(BaseModel):
    """One assistant message as written by OpenCode to message/<session>/msg_*.json."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    id: str
    session_id: str = Field("", alias="sessionID")
    role: str = ""
    time: MessageTime
    model_id: str | None = Field(None, alias="modelID")
    provider_id: str | None = Field(None, alias="providerID")
    mode: str | None = None
    agent: str | None = None
    cost: float | None = None
    tokens: MessageTokens | None = None

    @property
    def created_at(self) -> int:
        return self.time.created

    @property
    def provider_key(self) -> str:
        return self.provider_id or UNKNOWN

    @property
    def model_key(self) -> str:
        return self.model_id or UNKNOWN

    @property
    def agent_key(self) -> str:
        return self.agent or UNKNOWN


class PartState(BaseModel):
    status: str | None = None
    output: str | None = None
    error: str | None = None


class PartRecord(BaseModel):
    """A message part (tool call, text chunk...) from part/<message>/prt_*.json."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    session_id: str = Field("", alias="sessionID")
    message_id: str = Field("", alias="messageID")
    type: str = ""
    tool: str | None = None
    state: PartState | None = None


class SessionTime(BaseModel):
    created: int
    updated: int | None = None


class SessionRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    version: str | None = None
    project_id: str | None = Field(None, alias="projectID")
    directory: str | None = None
    parent_id: str | None = Field(None, alias="parentID")
    title: str | None = None
    time: SessionTime


class RateLimitEvent(BaseModel):
    """A detected throttling incident."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    timestamp: int
    provider_id: str = Field(alias="providerID")
    model_id: str | None = Field(None, alias="modelID")
    error_message: str = Field("", alias="errorMessage")
    part_id: str = Field("", alias="partID")

    @field_validator("error_message")
    @classmethod
    def _truncate(cls, v: str) -> str:
        return v[:ERROR_MESSAGE_MAX_LENGTH]


class TimeSeriesPoint(BaseModel):
    """Per-minute bucket, merged in place on repeat writes."""

    timestamp: int
    tokens: int = 0
    cost: float = 0.0


# --- Configuration ---


class ProviderBudget(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    monthly_tokens: int | None = Field(None, alias="monthlyTokens")
    monthly_cost: float | None = Field(None, alias="monthlyCost")


class ProviderLimits(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tokens_5h: int | None = Field(None, alias="tokens5h")
    tokens_daily: int | None = Field(None, alias="tokensDaily")
    cost_5h: float | None = Field(None, alias="cost5h")
    cost_daily: float | None = Field(None, alias="costDaily")


# --- Derived statistics ---


class WindowStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_tokens: int = 0
    total_input: int = 0
    total_output: int = 0
    total_reasoning: int = 0
    total_cost: float = 0.0
    message_count: int = 0


class ProviderHealth(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: HealthStatus
    rate_limit_count_5m: int = 0
    last_rate_limit: int | None = None


class ProviderWindowStats(WindowStats):
    provider_id: str
    health: ProviderHealth
    limit_percent: float | None = None
    budget_tokens: int | None = None
    budget_percent: float | None = None
    budget_cost: float | None = None
    budget_cost_percent: float | None = None


class ModelHealth(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: ModelHealthStatus
    last_seen: int
    provider_throttled: bool = False


class ModelWindowStats(WindowStats):
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_id: str
    provider_id: str
    health: ModelHealth
    share_percent: float = 0.0
    last_seen: int


class DashboardSnapshot(BaseModel):
    """Everything the live renderer needs for one frame."""

    model_config = ConfigDict(frozen=True)

    view_mode: ViewMode
    sort_mode: SortMode
    current_window: WindowSize
    view_label: str
    summary: WindowStats
    providers: list[ProviderWindowStats] = Field(default_factory=list)
    models: list[ModelWindowStats] = Field(default_factory=list)
    alerts: list[RateLimitEvent] = Field(default_factory=list)
    sparkline: list[int] = Field(default_factory=list)
    last_update: int = 0


# --- Static report ---


class AggregatedUsage(BaseModel):
    """Report totals; JSON output uses the camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_input: int = 0
    total_output: int = 0
    total_reasoning: int = 0
    total_cache_read: int = 0
    total_cache_write: int = 0
    total_cost: float = 0.0
    message_count: int = 0


class UsageByKey(AggregatedUsage):
    key: str
