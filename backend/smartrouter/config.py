import os
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from smartrouter.quota.models import QuotaType, ResetSchedule

ProviderTier = Literal["premium", "standard", "budget", "free", "local"]
OperationMode = Literal["manual", "dry-run", "auto"]
LocalModelPreference = Literal["never", "simple-only", "when-available", "prefer"]
LocalServerType = Literal["mlx", "ollama", "vllm", "lmstudio", "generic"]


class BudgetConfig(BaseModel):
    monthly_limit: float = Field(gt=0)
    alert_threshold: float = Field(default=0.8, ge=0, le=1)


class LocalConfig(BaseModel):
    type: LocalServerType
    endpoint: str
    models: list[str] = Field(default_factory=list)


class CapabilityConfig(BaseModel):
    source: Literal["huggingface", "manual", "infer"] = "infer"
    scores: dict[str, float] | None = None


class ProviderConfig(BaseModel):
    quota_source: Literal["api", "manual", "unlimited"] = "manual"
    limit: float | None = Field(default=None, gt=0)
    quota_type: QuotaType = "tokens"
    reset_schedule: ResetSchedule | None = None
    budget: BudgetConfig | None = None
    capabilities: CapabilityConfig | None = None
    local: LocalConfig | None = None
    tier: ProviderTier | None = None
    priority: int | None = None
    models: list[str] = Field(default_factory=list)


class QualityThresholds(BaseModel):
    coding: float = Field(default=0.8, ge=0, le=1)
    reasoning: float = Field(default=0.75, ge=0, le=1)
    creative: float = Field(default=0.6, ge=0, le=1)
    simple: float = Field(default=0.4, ge=0, le=1)


class Settings(BaseSettings):
    # Operation
    mode: OperationMode = "dry-run"
    debug: bool = False

    # Providers, keyed by provider id (JSON in SMARTROUTER_PROVIDERS)
    providers: dict[str, ProviderConfig] = Field(default_factory=dict)

    # Classification
    quality_thresholds: QualityThresholds = Field(default_factory=QualityThresholds)

    # Prediction and alerts
    prediction_horizon_hours: float = 24.0
    info_threshold: float = 0.5
    warning_threshold: float = 0.8
    critical_threshold: float = 0.95

    # Optimization
    optimization_interval_minutes: int = 60
    local_model_preference: LocalModelPreference = "simple-only"

    # Data
    data_dir: str = os.path.join(os.path.expanduser("~"), ".smartrouter")
    openclaw_dir: str = os.path.join(os.path.expanduser("~"), ".openclaw")
    database_url: str | None = None
    max_usage_history: int = 10_000

    # Network collaborators
    http_timeout_seconds: float = 2.0

    model_config = SettingsConfigDict(env_prefix="SMARTROUTER_", env_file=".env", extra="ignore")

    @property
    def jobs_path(self) -> str:
        return os.path.join(self.openclaw_dir, "cron", "jobs.json")

    @property
    def runs_dir(self) -> str:
        return os.path.join(self.openclaw_dir, "cron", "runs")

    @property
    def agents_dir(self) -> str:
        return os.path.join(self.openclaw_dir, "agents")

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite+aiosqlite:///{os.path.join(self.data_dir, 'smartrouter.db')}"
