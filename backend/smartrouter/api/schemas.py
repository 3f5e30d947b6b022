from typing import Literal, Optional

from pydantic import BaseModel, Field

from smartrouter.config import OperationMode
from smartrouter.optimization.models import PlanFilter


class SetUsageRequest(BaseModel):
    provider: str
    percent: Optional[float] = Field(default=None, ge=0)
    tokens: Optional[float] = Field(default=None, ge=0)


class ResetRequest(BaseModel):
    provider: str


class OptimizeRequest(BaseModel):
    apply: bool = False
    filter: PlanFilter = "all"


class ModeUpdate(BaseModel):
    mode: OperationMode


class ModeResponse(BaseModel):
    mode: OperationMode


class RecommendRequest(BaseModel):
    prompt: str = Field(min_length=1)


class ShiftRequest(BaseModel):
    from_provider: str
    to_provider: Optional[str] = None
    apply: bool = False


class ToolCall(BaseModel):
    parameters: dict = Field(default_factory=dict)


AnalysisKind = Literal["all", "jobs", "agents"]
