from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

QuotaType = Literal["tokens", "requests", "budget"]
UsageSource = Literal["scheduled", "agent", "interactive"]
Trend = Literal["increasing", "stable", "decreasing"]
AlertLevel = Literal["info", "warning", "critical", "exhausted"]


class ResetSchedule(BaseModel):
    type: Literal["daily", "weekly", "monthly", "fixed"]
    day_of_week: int | None = Field(default=None, ge=0, le=6)  # 0 = Sunday
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    fixed_date: str | None = None  # ISO 8601
    hour: int = Field(default=0, ge=0, le=23)
    timezone: str = "UTC"


class QuotaCounter(BaseModel):
    provider: str
    used: float = 0.0
    limit: float = 0.0  # 0 = unbounded / unknown
    quota_type: QuotaType = "tokens"
    last_reset_at: datetime
    next_reset_at: datetime | None = None


class BudgetCounter(BaseModel):
    provider: str
    monthly_limit: float
    current_spend: float = 0.0
    month_start: datetime


class UsageRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    provider: str
    model: str
    tokens_in: int
    tokens_out: int
    cost: float | None = None
    source: UsageSource = "interactive"
    source_id: str | None = None

    @property
    def total_tokens(self) -> int:
        return self.tokens_in + self.tokens_out


class QuotaInfo(BaseModel):
    provider: str
    quota_type: QuotaType
    limit: float
    used: float
    remaining: float
    percent_used: float
    reset_at: datetime | None = None


class BudgetInfo(BaseModel):
    provider: str
    monthly_limit: float
    current_spend: float
    remaining: float
    percent_used: float


class ThresholdAlert(BaseModel):
    provider: str
    level: AlertLevel
    percent_used: float
    message: str


class ExhaustionPrediction(BaseModel):
    provider: str
    will_exhaust: bool
    predicted_time: datetime | None = None
    hours_until: float | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    trend: Trend = "stable"
    recommendation: str = ""
