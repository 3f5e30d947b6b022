"""
Router commands as tools: quota status, predictions, workload analysis and
optimization for an agent runtime to call.
"""

import json

from smartrouter.core.service import SmartRouter
from smartrouter.tools.base import Tool, ToolResult

MODES = ("manual", "dry-run", "auto")
PLAN_FILTERS = ("all", "jobs-only", "agents-only", "safe-only")


def _bar(fraction: float, width: int = 20) -> str:
    filled = max(0, min(width, round(fraction * width)))
    return "█" * filled + "░" * (width - filled)


class RouterStatusTool(Tool):
    name = "router_status"
    description = "Show quota usage, health and exhaustion predictions for every provider."
    parameters = {
        "provider": {"type": "string", "description": "Limit the report to one provider"},
        "format": {"type": "string", "enum": ["json", "text"]},
    }

    def __init__(self, router: SmartRouter):
        self.router = router

    async def execute(self, provider: str | None = None, format: str = "json", **kwargs) -> ToolResult:
        report = self.router.status(provider)
        if format == "json":
            return ToolResult(success=True, output=report.model_dump_json(indent=2))

        lines = [f"Mode: {report.mode}"]
        predictions = {p.provider: p for p in report.predictions}
        for status in report.providers:
            if status.quota is None:
                lines.append(f"{status.id} [{status.tier}] unlimited ({status.status})")
                continue
            lines.append(
                f"{status.id} [{status.tier}] {_bar(status.quota.percent_used)} "
                f"{status.quota.percent_used * 100:.0f}% ({status.status})"
            )
            prediction = predictions.get(status.id)
            if prediction:
                lines.append(f"  {prediction.recommendation}")
        if report.local_models.available:
            lines.append(f"Local models: {report.local_models.count} ({', '.join(report.local_models.types)})")
        return ToolResult(success=True, output="\n".join(lines))


class RouterPredictTool(Tool):
    name = "router_predict"
    description = "Predict when provider quotas will run out."
    parameters = {
        "provider": {"type": "string"},
        "horizon": {"type": "number", "description": "Hours to look ahead"},
    }

    def __init__(self, router: SmartRouter):
        self.router = router

    async def execute(self, provider: str | None = None, horizon: float | None = None, **kwargs) -> ToolResult:
        report = self.router.predict(provider, horizon)
        return ToolResult(success=True, output=report.model_dump_json(indent=2))


class RouterProvidersTool(Tool):
    name = "router_providers"
    description = "List registered providers with tier, models and health."

    def __init__(self, router: SmartRouter):
        self.router = router

    async def execute(self, **kwargs) -> ToolResult:
        providers = [p.model_dump(mode="json") for p in self.router.providers()]
        return ToolResult(success=True, output=json.dumps(providers, indent=2))


class RouterSetUsageTool(Tool):
    name = "router_set_usage"
    description = "Manually set current usage for a provider, as a percentage or a token count."
    parameters = {
        "provider": {"type": "string", "required": True},
        "percent": {"type": "number"},
        "tokens": {"type": "number"},
    }

    def __init__(self, router: SmartRouter):
        self.router = router

    async def execute(self, provider: str = "", percent: float | None = None,
                      tokens: float | None = None, **kwargs) -> ToolResult:
        if not provider:
            return ToolResult(success=False, output="", error="provider is required")
        info = await self.router.set_usage(provider, percent=percent, tokens=tokens)
        return ToolResult(
            success=True,
            output=f"Set {provider} usage to {info.used:.0f}/{info.limit:.0f} ({info.percent_used * 100:.1f}%)",
        )


class RouterResetTool(Tool):
    name = "router_reset"
    description = "Reset a provider's quota counter to zero."
    parameters = {"provider": {"type": "string", "required": True}}

    def __init__(self, router: SmartRouter):
        self.router = router

    async def execute(self, provider: str = "", **kwargs) -> ToolResult:
        if not provider:
            return ToolResult(success=False, output="", error="provider is required")
        info = await self.router.reset(provider)
        next_reset = info.reset_at.isoformat() if info.reset_at else "none"
        return ToolResult(success=True, output=f"Reset {provider} quota (next reset: {next_reset})")


class RouterAnalyzeTool(Tool):
    name = "router_analyze"
    description = "Analyze scheduled jobs and agents for cheaper-model and split opportunities."
    parameters = {"type": {"type": "string", "enum": ["all", "jobs", "agents"]}}

    def __init__(self, router: SmartRouter):
        self.router = router

    async def execute(self, type: str = "all", **kwargs) -> ToolResult:
        if type not in ("all", "jobs", "agents"):
            return ToolResult(success=False, output="", error=f"Unknown analysis type: {type}")
        report = self.router.analyze(type)
        return ToolResult(success=True, output=report.model_dump_json(indent=2))


class RouterOptimizeTool(Tool):
    name = "router_optimize"
    description = "Generate an optimization plan and preview or apply it."
    parameters = {
        "apply": {"type": "boolean"},
        "filter": {"type": "string", "enum": list(PLAN_FILTERS)},
    }
    timeout_seconds = 30

    def __init__(self, router: SmartRouter):
        self.router = router

    async def execute(self, apply: bool = False, filter: str = "all", **kwargs) -> ToolResult:
        if filter not in PLAN_FILTERS:
            return ToolResult(success=False, output="", error=f"Unknown plan filter: {filter}")
        report = await self.router.optimize(apply=apply, plan_filter=filter)
        return ToolResult(success=True, output=report.model_dump_json(indent=2))


class RouterModeTool(Tool):
    name = "router_mode"
    description = "Get or set the operation mode (manual, dry-run, auto)."
    parameters = {"mode": {"type": "string", "enum": list(MODES)}}

    def __init__(self, router: SmartRouter):
        self.router = router

    async def execute(self, mode: str | None = None, **kwargs) -> ToolResult:
        if mode is None:
            return ToolResult(success=True, output=f"Current mode: {self.router.mode}")
        if mode not in MODES:
            return ToolResult(success=False, output="", error=f"Invalid mode: {mode}")
        await self.router.set_mode(mode)
        return ToolResult(success=True, output=f"Mode set to: {mode}")


class RouterRecommendTool(Tool):
    name = "router_recommend"
    description = "Classify a prompt and recommend the best-fitting model."
    parameters = {"prompt": {"type": "string", "required": True}}

    def __init__(self, router: SmartRouter):
        self.router = router

    async def execute(self, prompt: str = "", **kwargs) -> ToolResult:
        if not prompt:
            return ToolResult(success=False, output="", error="prompt is required")
        recommendation = self.router.recommend(prompt)
        return ToolResult(success=True, output=recommendation.model_dump_json(indent=2))


class RouterShiftTool(Tool):
    name = "router_shift"
    description = "Move jobs and agents off one provider onto another."
    parameters = {
        "from_provider": {"type": "string", "required": True},
        "to_provider": {"type": "string"},
        "apply": {"type": "boolean"},
    }
    timeout_seconds = 30

    def __init__(self, router: SmartRouter):
        self.router = router

    async def execute(self, from_provider: str = "", to_provider: str | None = None,
                      apply: bool = False, **kwargs) -> ToolResult:
        if not from_provider:
            return ToolResult(success=False, output="", error="from_provider is required")
        report = await self.router.shift(from_provider, to_provider, apply=apply)
        return ToolResult(success=True, output=report.model_dump_json(indent=2))


def router_tools(router: SmartRouter) -> list[Tool]:
    return [
        RouterStatusTool(router),
        RouterPredictTool(router),
        RouterProvidersTool(router),
        RouterSetUsageTool(router),
        RouterResetTool(router),
        RouterAnalyzeTool(router),
        RouterOptimizeTool(router),
        RouterModeTool(router),
        RouterRecommendTool(router),
        RouterShiftTool(router),
    ]
