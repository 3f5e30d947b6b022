from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from smartrouter.config import ProviderTier

TaskCapability = Literal["coding", "reasoning", "creative", "instruction", "context", "speed"]
CAPABILITIES: list[str] = ["coding", "reasoning", "creative", "instruction", "context", "speed"]

CapabilitySource = Literal["default", "manual", "inferred"]
LatencyClass = Literal["fast", "medium", "slow"]
ContextLength = Literal["short", "medium", "long"]
Complexity = Literal["simple", "moderate", "complex"]


class ModelCapabilities(BaseModel):
    model_id: str
    provider: str
    scores: dict[str, float]
    context_window: int
    max_output_tokens: int
    latency_class: LatencyClass
    source: CapabilitySource
    last_updated: datetime


class TaskProfile(BaseModel):
    primary_capability: TaskCapability = "instruction"
    secondary_capabilities: list[TaskCapability] = Field(default_factory=list)
    context_length: ContextLength = "medium"
    latency_sensitive: bool = False
    quality_threshold: float = Field(default=0.6, ge=0.0, le=1.0)


class ModelMatch(BaseModel):
    model: str
    provider: str
    score: float
    tier: ProviderTier
    reason: str = ""
