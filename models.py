from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, PlainSerializer

from pricing import ModelKind, calculate_cost


class UsageRecord(BaseModel):
    """One assistant API response read from a session log."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    project: str
    model: ModelKind
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    # stop_reason present: a finished response, not a streamed fragment
    completed: bool = False

    @property
    def total_tokens(self) -> int:
        return (
            self.input_tokens + self.output_tokens
            + self.cache_creation_tokens + self.cache_read_tokens
        )

    @property
    def cost(self) -> float:
        return calculate_cost(
            self.model,
            self.input_tokens,
            self.output_tokens,
            self.cache_creation_tokens,
            self.cache_read_tokens,
        )


class WindowTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    cost: float = 0.0
    tokens: int = 0
    requests: int = 0  # completed responses only


class ModelStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    model: ModelKind
    display_name: str
    cost: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_write_tokens: int = 0
    cache_read_tokens: int = 0
    request_count: int = 0


class ProjectStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    project: str
    cost: float = 0.0
    total_tokens: int = 0
    request_count: int = 0


def _read_only(value: Mapping) -> Mapping:
    return MappingProxyType(dict(value))


def _as_dict(value: Mapping) -> dict[str, Any]:
    return dict(value)


class UsageSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True, validate_default=True)

    today: WindowTotals = WindowTotals()
    week: WindowTotals = WindowTotals()
    month: WindowTotals = WindowTotals()
    all_time: WindowTotals = WindowTotals()
    five_hour: WindowTotals = WindowTotals()
    five_hour_resets_at: datetime | None = None  # earliest in-window record + 5h
    # frozen=True does not cover dict contents
    by_model: Annotated[Mapping[str, ModelStats], AfterValidator(_read_only), PlainSerializer(_as_dict)] = {}
    by_project: Annotated[Mapping[str, ProjectStats], AfterValidator(_read_only), PlainSerializer(_as_dict)] = {}
    record_count: int = 0
    computed_at: datetime | None = None


class RemoteUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    five_hour_utilization: float | None = None  # 0.0 - 1.0
    weekly_utilization: float | None = None
    five_hour_resets_at: datetime | None = None
    weekly_resets_at: datetime | None = None


class PlanType(str, Enum):
    API = "api"
    PRO = "pro"
    MAX5 = "max5"
    MAX20 = "max20"

    @property
    def is_subscription(self) -> bool:
        return self is not PlanType.API

    @property
    def five_hour_limit(self) -> int | None:
        """Approximate completed-request ceiling per 5-hour window."""
        return _PLAN_LIMITS[self][0]

    @property
    def weekly_limit(self) -> int | None:
        return _PLAN_LIMITS[self][1]


_PLAN_LIMITS: dict[PlanType, tuple[int | None, int | None]] = {
    PlanType.API: (None, None),
    PlanType.PRO: (45, 500),
    PlanType.MAX5: (225, 2_500),
    PlanType.MAX20: (900, 10_000),
}


class AccountInfo(BaseModel):
    email: str
    display_name: str = ""
    plan: PlanType = PlanType.API
    has_extra_usage: bool = False


class PlanLimits(BaseModel):
    plan: PlanType
    five_hour_limit: int | None = None
    weekly_limit: int | None = None


class UsageSummary(BaseModel):
    snapshot: UsageSnapshot | None = None
    remote_usage: RemoteUsage | None = None
    account: AccountInfo | None = None
    limits: PlanLimits | None = None
    scan_error: str | None = None
    remote_error: str | None = None
    scanning: bool = False
    last_refreshed: str | None = None
