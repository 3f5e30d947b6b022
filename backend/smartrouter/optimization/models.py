from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from smartrouter.capabilities.models import Complexity, TaskCapability

TargetKind = Literal["job", "agent"]
ActionType = Literal["change_model", "add_fallback", "remove_fallback", "split_job", "route_to_local"]
ActionStatus = Literal["applied", "failed", "skipped"]
QualityRisk = Literal["none", "low", "medium", "high"]
PlanFilter = Literal["all", "jobs-only", "agents-only", "safe-only"]


class SplitOpportunity(BaseModel):
    subtask: str
    description: str
    suggested_model: str
    complexity: Complexity = "simple"
    estimated_tokens: int


class JobAnalysis(BaseModel):
    id: str
    name: str
    schedule: str
    current_model: str
    prompt: str = ""
    prompt_length: int
    complexity: Complexity
    detected_capabilities: list[TaskCapability]
    tools_used: list[str] = Field(default_factory=list)
    avg_tokens_per_run: float
    avg_duration_ms: float
    success_rate: float
    runs_per_day: float
    daily_tokens: float
    monthly_tokens: float
    can_downgrade: bool
    downgrade_reason: str
    suggested_model: str | None = None
    estimated_savings: float = 0.0
    can_split: bool = False
    split_opportunities: list[SplitOpportunity] = Field(default_factory=list)


class AgentAnalysis(BaseModel):
    id: str
    name: str
    is_default: bool = False
    primary_model: str
    fallback_models: list[str] = Field(default_factory=list)
    active_sessions: int = 0
    avg_session_tokens: float = 0.0
    dominant_task_types: list[TaskCapability] = Field(default_factory=lambda: ["instruction"])
    available_providers: list[str] = Field(default_factory=list)
    providers_in_cooldown: list[str] = Field(default_factory=list)
    can_use_cheaper_default: bool = False
    suggested_primary_model: str | None = None
    reasoning: str = ""


class ProposedSplit(BaseModel):
    name: str
    prompt: str
    model: str
    schedule: str


class JobSplitPlan(BaseModel):
    original_id: str
    original_model: str
    proposed_splits: list[ProposedSplit]
    reasoning: str
    estimated_savings: float


class WorkloadCandidate(BaseModel):
    kind: TargetKind
    id: str
    name: str
    current_model: str
    complexity: Complexity
    avg_tokens_per_run: float
    success_rate: float = 1.0
    required_capabilities: list[TaskCapability] = Field(default_factory=list)
    can_downgrade: bool
    can_split: bool = False
    suggested_model: str | None = None
    split_plan: JobSplitPlan | None = None
    estimated_savings: float
    quality_risk: QualityRisk


class ActionTarget(BaseModel):
    kind: TargetKind
    id: str


class OptimizationAction(BaseModel):
    type: ActionType
    target: ActionTarget
    description: str = ""
    changes: dict[str, Any] = Field(default_factory=dict)
    reversible: bool = True


class OptimizationPlan(BaseModel):
    id: str
    created_at: datetime
    candidates: list[WorkloadCandidate] = Field(default_factory=list)
    actions: list[OptimizationAction] = Field(default_factory=list)
    total_estimated_savings: float = 0.0
    affected_providers: list[str] = Field(default_factory=list)


class ActionResult(BaseModel):
    action: OptimizationAction
    status: ActionStatus
    error: str | None = None
    rollback_info: dict[str, Any] | None = None
    preview: bool = False


class AnalysisReport(BaseModel):
    jobs: list[JobAnalysis] = Field(default_factory=list)
    agents: list[AgentAnalysis] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    total_potential_savings: float = 0.0
