import os
from datetime import datetime
from typing import Callable, Literal

import httpx
from pydantic import BaseModel, Field

from smartrouter.capabilities.classifier import classify_prompt, infer_complexity
from smartrouter.capabilities.matcher import ModelMatcher
from smartrouter.capabilities.models import Complexity, ModelMatch, TaskProfile
from smartrouter.capabilities.scorer import CapabilityScorer
from smartrouter.config import OperationMode, ProviderConfig, Settings
from smartrouter.context import RouterContext, utc_now
from smartrouter.core.optimizer_loop import AutoOptimizer
from smartrouter.core.state import LastOptimization, StateManager
from smartrouter.core.usage import CompletionEvent, extract_usage, infer_provider_from_model
from smartrouter.errors import ConfigError, StoreIOError, TargetNotFound
from smartrouter.optimization.analyzer import WorkloadAnalyzer
from smartrouter.optimization.applier import ActionApplier
from smartrouter.optimization.models import (
    ActionResult,
    ActionTarget,
    AnalysisReport,
    OptimizationAction,
    OptimizationPlan,
    PlanFilter,
)
from smartrouter.optimization.optimizer import Optimizer
from smartrouter.providers.fetchers import api_key_for, fetch_provider_quota, has_quota_fetcher
from smartrouter.providers.local import LocalModelDetector
from smartrouter.providers.registry import ProviderRegistry, ProviderStatus
from smartrouter.quota.ledger import UsageLedger
from smartrouter.quota.models import ExhaustionPrediction, UsageRecord
from smartrouter.quota.predictor import ExhaustionPredictor
from smartrouter.quota.reset import compute_next_reset
from smartrouter.stores.agents import AgentStore
from smartrouter.stores.files import read_json
from smartrouter.stores.jobs import JobStore, RunLog


class LocalModelsSummary(BaseModel):
    available: bool
    count: int
    types: list[str] = Field(default_factory=list)


class StatusReport(BaseModel):
    mode: OperationMode
    providers: list[ProviderStatus]
    predictions: list[ExhaustionPrediction]
    local_models: LocalModelsSummary
    last_optimization: LastOptimization | None = None


class PredictReport(BaseModel):
    horizon_hours: float
    predictions: list[ExhaustionPrediction]
    summary: str


class OptimizeReport(BaseModel):
    mode: Literal["applied", "preview"]
    plan: OptimizationPlan
    results: list[ActionResult]


class Recommendation(BaseModel):
    task: TaskProfile
    complexity: Complexity
    best: ModelMatch | None = None
    alternatives: list[ModelMatch] = Field(default_factory=list)


class ShiftReport(BaseModel):
    from_provider: str
    to_provider: str | None = None
    affected_jobs: list[str] = Field(default_factory=list)
    affected_agents: list[str] = Field(default_factory=list)
    results: list[ActionResult] = Field(default_factory=list)
    preview: bool = True
    message: str


class SmartRouter:
    """Owns the router state and wires every component around one context."""

    def __init__(
        self, settings: Settings, session_factory,
        clock: Callable[[], datetime] = utc_now,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.ctx = RouterContext(settings=settings, clock=clock, on_state_change=self._mark_dirty)
        self.log = self.ctx.get_logger("service")
        self.transport = transport
        self._dirty = False

        self.state_manager = StateManager(session_factory, settings.max_usage_history)
        self.registry = ProviderRegistry(self.ctx)
        self.ledger = UsageLedger(self.ctx)
        self.predictor = ExhaustionPredictor(self.ctx, self.ledger)
        self.scorer = CapabilityScorer(self.ctx)
        self.matcher = ModelMatcher(self.ctx, self.scorer, self.registry)

        self.jobs = JobStore(settings.jobs_path)
        self.runs = RunLog(settings.runs_dir)
        self.agents = AgentStore(settings.agents_dir)
        self.analyzer = WorkloadAnalyzer(self.ctx, self.jobs, self.runs, self.agents, self.ledger, self.matcher)
        self.optimizer = Optimizer(self.ctx, self.analyzer, self.registry, self.matcher)

        self.auto_optimizer = AutoOptimizer(
            self.ctx, self.optimizer, self.applier(preview=False), self.flush,
            interval_seconds=settings.optimization_interval_minutes * 60,
        )

    @property
    def mode(self) -> OperationMode:
        return self.ctx.mode

    def applier(self, preview: bool) -> ActionApplier:
        return ActionApplier(self.ctx, self.jobs, self.agents, preview=preview)

    def _mark_dirty(self):
        self._dirty = True

    async def flush(self, force: bool = False):
        if not (self._dirty or force):
            return
        await self.state_manager.save(self.ctx.state)
        self._dirty = False

    # Lifecycle

    async def start(self, detect_local: bool = True, fetch_quotas: bool = True):
        self.ctx.state = await self.state_manager.load()

        # Counters loaded past their reset time roll over before limits are re-applied
        reset = self.ledger.roll_over_due_resets(self._schedules())
        if reset:
            self.log.info("quotas_rolled_over", providers=reset)

        self.register_providers()

        if fetch_quotas:
            await self.refresh_api_quotas()
        if detect_local and self.settings.local_model_preference != "never":
            await self.detect_local_models()

        if self.mode == "auto":
            self.auto_optimizer.start()

        await self.flush(force=True)
        self.log.info("router_started", mode=self.mode, providers=len(self.registry.all()))

    async def stop(self):
        await self.auto_optimizer.stop()
        await self.flush(force=True)
        self.log.info("router_stopped")

    def _schedules(self):
        return {
            pid: cfg.reset_schedule
            for pid, cfg in self.settings.providers.items()
            if cfg.reset_schedule is not None
        }

    def _init_counters(self, provider_id: str, config: ProviderConfig):
        if config.limit and config.quota_source != "unlimited":
            next_reset = compute_next_reset(config.reset_schedule, self.ctx.now()) if config.reset_schedule else None
            existing = self.ctx.state.quotas.get(provider_id)
            if existing and existing.next_reset_at and existing.next_reset_at > self.ctx.now():
                next_reset = existing.next_reset_at
            quota_type = self.registry.get(provider_id).config.quota_type
            self.ledger.init_quota(provider_id, config.limit, next_reset, quota_type)
        if config.budget:
            self.ledger.init_budget(provider_id, config.budget.monthly_limit)

    def _openclaw_providers(self) -> dict[str, list[str]]:
        path = os.path.join(self.settings.openclaw_dir, "openclaw.json")
        if not os.path.exists(path):
            self.log.debug("openclaw_config_missing", path=path)
            return {}
        try:
            data = read_json(path)
        except StoreIOError as e:
            self.log.error("openclaw_config_unreadable", error=str(e))
            return {}

        providers = ((data.get("models") or {}).get("providers") or {}) if isinstance(data, dict) else {}
        result = {}
        for provider_id, entry in providers.items():
            models = entry.get("models") if isinstance(entry, dict) else None
            result[provider_id] = [m["id"] for m in models or [] if isinstance(m, dict) and "id" in m]
        return result

    def register_providers(self):
        for provider_id, models in self._openclaw_providers().items():
            self.registry.register(provider_id, self.settings.providers.get(provider_id), models)

        for provider_id, config in self.settings.providers.items():
            if self.registry.get(provider_id) is None:
                self.registry.register(provider_id, config)

        for provider_id, config in self.settings.providers.items():
            self._init_counters(provider_id, config)

    async def refresh_api_quotas(self):
        for provider_id, config in self.settings.providers.items():
            if config.quota_source != "api":
                continue
            if not has_quota_fetcher(provider_id):
                self.log.warning("quota_fetcher_missing", provider=provider_id)
                continue
            api_key = api_key_for(provider_id)
            if not api_key:
                self.log.debug("quota_fetch_no_api_key", provider=provider_id)
                continue

            result = await fetch_provider_quota(
                provider_id, api_key,
                timeout=self.settings.http_timeout_seconds, transport=self.transport,
            )
            if not result.success:
                self.log.warning("quota_fetch_failed", provider=provider_id, error=result.error)
                continue

            quota = self.ledger.init_quota(
                provider_id, result.quota.limit,
                self.ctx.state.quotas[provider_id].next_reset_at if provider_id in self.ctx.state.quotas else None,
                result.quota.quota_type,
            )
            self.ledger.set_usage(provider_id, result.quota.used, quota.limit)
            self.log.info("quota_fetched", provider=provider_id,
                          remaining=result.quota.remaining, limit=result.quota.limit)

    async def detect_local_models(self):
        detector = LocalModelDetector(timeout=self.settings.http_timeout_seconds, transport=self.transport)
        custom = [
            cfg.local.endpoint for cfg in self.settings.providers.values()
            if cfg.local and cfg.local.type == "generic"
        ]
        servers = await detector.detect(custom)

        for server in servers:
            self.registry.register(
                f"local-{server.type}",
                ProviderConfig(
                    quota_source="unlimited", tier="local", priority=30,
                    local={"type": server.type, "endpoint": server.endpoint, "models": server.models},
                ),
                server.models,
            )
        self.ctx.state.local_models = servers
        self.ctx.state.local_models_checked_at = self.ctx.now()
        self.ctx.state_changed()

    # Completion hook

    async def record_completion(self, event: CompletionEvent) -> UsageRecord | None:
        usage = extract_usage(event.usage if event.usage is not None else event.response)
        if usage is None:
            self.log.debug("completion_without_usage", model=event.model)
            return None

        provider = self.registry.provider_for_model(event.model)
        provider_id = provider.id if provider else infer_provider_from_model(event.model)
        record = self.ledger.record(
            provider_id, event.model,
            usage.tokens_in, usage.tokens_out,
            source=event.source, source_id=event.source_id, cost=event.cost,
        )
        await self.flush()
        return record

    # Queries and commands

    def status(self, provider: str | None = None) -> StatusReport:
        providers = self.registry.status()
        predictions = self.predictor.predict_all()
        if provider:
            providers = [p for p in providers if p.id == provider]
            predictions = [p for p in predictions if p.provider == provider]

        local = self.registry.local()
        return StatusReport(
            mode=self.mode,
            providers=providers,
            predictions=predictions,
            local_models=LocalModelsSummary(
                available=bool(local),
                count=sum(len(p.models) for p in local),
                types=[p.config.local.type for p in local if p.config.local],
            ),
            last_optimization=self.ctx.state.last_optimization,
        )

    def predict(self, provider: str | None = None, horizon_hours: float | None = None) -> PredictReport:
        horizon = horizon_hours if horizon_hours is not None else self.settings.prediction_horizon_hours
        if provider:
            predictions = [self.predictor.predict(provider)]
        else:
            predictions = self.predictor.predict_all()

        # Non-exhausting providers stay in the report for context
        within = [
            p for p in predictions
            if not p.will_exhaust or p.hours_until is None or p.hours_until <= horizon
        ]
        exhausting = sum(1 for p in within if p.will_exhaust)
        if exhausting:
            summary = f"{exhausting} provider(s) will exhaust within {horizon:g}h"
        else:
            summary = "No providers will exhaust within the prediction horizon"
        return PredictReport(horizon_hours=horizon, predictions=within, summary=summary)

    def providers(self) -> list[ProviderStatus]:
        return self.registry.status()

    async def set_usage(self, provider: str, percent: float | None = None, tokens: float | None = None):
        if percent is None and tokens is None:
            raise ConfigError("Must specify either percent or tokens")
        quota = self.ctx.state.quotas.get(provider)
        if quota is None:
            raise TargetNotFound("provider", provider)

        used = percent / 100 * quota.limit if percent is not None else tokens
        self.ledger.set_usage(provider, used)
        await self.flush()
        return self.ledger.quota_info(provider)

    async def reset(self, provider: str):
        config = self.settings.providers.get(provider)
        next_reset = None
        if config and config.reset_schedule:
            next_reset = compute_next_reset(config.reset_schedule, self.ctx.now())
        if not self.ledger.reset_quota(provider, next_reset):
            raise TargetNotFound("provider", provider)
        await self.flush()
        return self.ledger.quota_info(provider)

    def analyze(self, kind: Literal["all", "jobs", "agents"] = "all") -> AnalysisReport:
        return self.analyzer.analyze(kind)

    async def optimize(self, apply: bool = False, plan_filter: PlanFilter = "all") -> OptimizeReport:
        plan = self.optimizer.filter_plan(self.optimizer.generate_plan(), plan_filter)

        live = apply and self.mode != "dry-run"
        if apply and not live:
            self.log.info("apply_blocked_by_mode", mode=self.mode, plan_id=plan.id)

        results = await self.applier(preview=not live).apply_plan(plan)
        if live:
            self.ctx.state.last_optimization = LastOptimization(
                timestamp=self.ctx.now(),
                plan_id=plan.id,
                applied=any(r.status == "applied" for r in results),
                savings=plan.total_estimated_savings,
            )
            self.ctx.state_changed()
            await self.flush()

        return OptimizeReport(mode="applied" if live else "preview", plan=plan, results=results)

    async def rollback(self, result: ActionResult) -> ActionResult:
        return await self.applier(preview=False).rollback(result)

    async def set_mode(self, mode: OperationMode) -> OperationMode:
        previous = self.ctx.mode
        self.ctx.mode = mode
        if mode == "auto":
            self.auto_optimizer.start()
        elif previous == "auto":
            await self.auto_optimizer.stop()
        self.log.info("mode_changed", previous=previous, mode=mode)
        return mode

    def recommend(self, prompt: str) -> Recommendation:
        task = classify_prompt(prompt, self.settings.quality_thresholds)
        matches = self.matcher.find_suitable_models(task)
        return Recommendation(
            task=task,
            complexity=infer_complexity(prompt),
            best=matches[0] if matches else None,
            alternatives=matches[1:4],
        )

    def _uses_provider(self, model: str, provider_id: str) -> bool:
        provider = self.registry.get(provider_id)
        if provider and model in provider.models:
            return True
        return provider_id in model or infer_provider_from_model(model) == provider_id

    async def shift(self, from_provider: str, to_provider: str | None = None, apply: bool = False) -> ShiftReport:
        """Move jobs and agents off one provider onto another one's best model."""
        jobs = [j for j in self.analyzer.analyze_jobs() if self._uses_provider(j.current_model, from_provider)]
        agents = [a for a in self.analyzer.analyze_agents() if self._uses_provider(a.primary_model, from_provider)]

        if to_provider:
            target = self.registry.get(to_provider)
            candidates = [target] if target else []
        else:
            candidates = [p for p in self.registry.sorted_by_priority()
                          if p.id != from_provider and p in self.registry.available() and p.models]
        if not candidates:
            return ShiftReport(
                from_provider=from_provider,
                affected_jobs=[j.name for j in jobs],
                affected_agents=[a.name for a in agents],
                message="No alternative providers available",
            )

        target = candidates[0]
        actions = []
        for kind, item_id, name, model, prompt in (
            [("job", j.id, j.name, j.current_model, j.prompt) for j in jobs]
            + [("agent", a.id, a.name, a.primary_model, "") for a in agents]
        ):
            matches = self.matcher.find_suitable_models(classify_prompt(prompt, self.settings.quality_thresholds), providers=[target])
            to_model = matches[0].model if matches else (target.models[0] if target.models else None)
            if not to_model:
                continue
            actions.append(OptimizationAction(
                type="change_model",
                target=ActionTarget(kind=kind, id=item_id),
                description=f"Shift {name} from {model} to {to_model}",
                changes={"from": model, "to": to_model, "provider": target.id},
            ))

        plan = OptimizationPlan(id=f"shift-{from_provider}-{target.id}", created_at=self.ctx.now(), actions=actions)
        live = apply and self.mode != "dry-run"
        results = await self.applier(preview=not live).apply_plan(plan)
        if live:
            await self.flush()

        count = len(jobs) + len(agents)
        verb = "Shifted" if live else "Would shift"
        return ShiftReport(
            from_provider=from_provider,
            to_provider=target.id,
            affected_jobs=[j.name for j in jobs],
            affected_agents=[a.name for a in agents],
            results=results,
            preview=not live,
            message=f"{verb} {count} items from {from_provider} to {target.id}",
        )
