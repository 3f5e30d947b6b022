import uuid

from smartrouter.capabilities.classifier import classify_prompt
from smartrouter.capabilities.matcher import ModelMatcher
from smartrouter.capabilities.models import Complexity
from smartrouter.context import RouterContext
from smartrouter.core.usage import infer_provider_from_model
from smartrouter.optimization.analyzer import WorkloadAnalyzer
from smartrouter.optimization.models import (
    ActionTarget,
    AgentAnalysis,
    JobAnalysis,
    JobSplitPlan,
    OptimizationAction,
    OptimizationPlan,
    PlanFilter,
    ProposedSplit,
    QualityRisk,
    WorkloadCandidate,
)
from smartrouter.providers.registry import ProviderRegistry


def assess_quality_risk(complexity: Complexity, success_rate: float) -> QualityRisk:
    if complexity == "simple" and success_rate >= 0.95:
        return "none"
    if complexity == "simple" and success_rate >= 0.85:
        return "low"
    if complexity == "moderate" and success_rate >= 0.9:
        return "low"
    if complexity == "moderate" and success_rate >= 0.8:
        return "medium"
    return "high"


class Optimizer:
    """Turns a workload analysis into an ordered, mostly reversible action plan."""

    def __init__(
        self, ctx: RouterContext,
        analyzer: WorkloadAnalyzer,
        registry: ProviderRegistry,
        matcher: ModelMatcher | None = None,
    ):
        self.ctx = ctx
        self.analyzer = analyzer
        self.registry = registry
        self.matcher = matcher
        self.log = ctx.get_logger("optimization.optimizer")

    def _local_model_for(self, job: JobAnalysis) -> str | None:
        preference = self.ctx.settings.local_model_preference
        if self.matcher is None or preference == "never":
            return None
        if self.analyzer.is_local_model(job.current_model):
            return None
        eligible = job.complexity != "complex" and job.success_rate > 0.9
        if preference == "simple-only" and not (eligible and job.complexity == "simple"):
            return None
        if preference == "when-available" and not eligible:
            return None

        profile = classify_prompt(job.prompt, self.ctx.settings.quality_thresholds)
        matches = self.matcher.find_suitable_models(profile, tier_filter=["local"])
        if not matches or matches[0].model == job.current_model:
            return None
        return matches[0].model

    def _job_candidate(self, job: JobAnalysis, local_model: str | None) -> WorkloadCandidate:
        split_plan = None
        savings = job.estimated_savings
        if job.can_split:
            split_savings = sum(o.estimated_tokens for o in job.split_opportunities)
            savings += split_savings
            split_plan = JobSplitPlan(
                original_id=job.id,
                original_model=job.current_model,
                proposed_splits=[
                    ProposedSplit(
                        name=f"{job.name}-part-{i + 1}",
                        prompt=o.description,
                        model=o.suggested_model,
                        schedule=job.schedule,
                    )
                    for i, o in enumerate(job.split_opportunities)
                ],
                reasoning=f"Split complex job into {len(job.split_opportunities)} simpler tasks",
                estimated_savings=split_savings,
            )
        if local_model and not job.can_downgrade:
            # Routed to local without a downgrade: the whole run leaves metered quota
            savings += job.avg_tokens_per_run

        return WorkloadCandidate(
            kind="job",
            id=job.id,
            name=job.name,
            current_model=job.current_model,
            complexity=job.complexity,
            avg_tokens_per_run=job.avg_tokens_per_run,
            success_rate=job.success_rate,
            required_capabilities=job.detected_capabilities,
            can_downgrade=job.can_downgrade,
            can_split=job.can_split,
            suggested_model=local_model or job.suggested_model,
            split_plan=split_plan,
            estimated_savings=savings,
            quality_risk=assess_quality_risk(job.complexity, job.success_rate),
        )

    def _job_actions(self, job: JobAnalysis, local_model: str | None) -> list[OptimizationAction]:
        target = ActionTarget(kind="job", id=job.id)
        actions = []

        if local_model:
            provider = self.registry.provider_for_model(local_model)
            actions.append(OptimizationAction(
                type="route_to_local",
                target=target,
                description=f"Route {job.name} from {job.current_model} to local model {local_model}",
                changes={
                    "from": job.current_model,
                    "to": local_model,
                    "provider": provider.id if provider else "local",
                },
                reversible=True,
            ))
        elif job.can_downgrade and job.suggested_model:
            actions.append(OptimizationAction(
                type="change_model",
                target=target,
                description=f"Change {job.name} from {job.current_model} to {job.suggested_model}",
                changes={"from": job.current_model, "to": job.suggested_model},
                reversible=True,
            ))

        if job.can_split:
            actions.append(OptimizationAction(
                type="split_job",
                target=target,
                description=f"Split {job.name} into {len(job.split_opportunities)} sub-jobs",
                changes={
                    "original_id": job.id,
                    "splits": [
                        {"name": o.subtask, "model": o.suggested_model, "prompt": o.description}
                        for o in job.split_opportunities
                    ],
                },
                reversible=False,
            ))
        return actions

    def _agent_candidate(self, agent: AgentAnalysis) -> WorkloadCandidate:
        return WorkloadCandidate(
            kind="agent",
            id=agent.id,
            name=agent.name,
            current_model=agent.primary_model,
            complexity="moderate",
            avg_tokens_per_run=agent.avg_session_tokens,
            required_capabilities=agent.dominant_task_types,
            can_downgrade=True,
            suggested_model=agent.suggested_primary_model,
            estimated_savings=agent.avg_session_tokens * 0.2,
            quality_risk="low",
        )

    def _agent_actions(self, agent: AgentAnalysis) -> list[OptimizationAction]:
        if not agent.suggested_primary_model:
            return []

        target = ActionTarget(kind="agent", id=agent.id)
        actions = [OptimizationAction(
            type="change_model",
            target=target,
            description=f"Change {agent.name} default from {agent.primary_model} to {agent.suggested_primary_model}",
            changes={"from": agent.primary_model, "to": agent.suggested_primary_model},
            reversible=True,
        )]
        if agent.primary_model not in agent.fallback_models:
            actions.append(OptimizationAction(
                type="add_fallback",
                target=target,
                description=f"Add {agent.primary_model} as fallback for {agent.name}",
                changes={"model": agent.primary_model, "position": 0},
                reversible=True,
            ))
        return actions

    def _provider_of(self, model: str) -> str:
        provider = self.registry.provider_for_model(model)
        return provider.id if provider else infer_provider_from_model(model)

    def _affected_providers(self, actions: list[OptimizationAction]) -> list[str]:
        providers = []
        for action in actions:
            changes = action.changes
            names = [changes.get("provider")]
            names += [self._provider_of(changes[k]) for k in ("from", "to", "model") if changes.get(k)]
            for name in names:
                if name and name not in providers:
                    providers.append(name)
        return providers

    def generate_plan(self) -> OptimizationPlan:
        candidates: list[WorkloadCandidate] = []
        actions: list[OptimizationAction] = []

        for job in self.analyzer.analyze_jobs():
            local_model = self._local_model_for(job)
            if not (job.can_downgrade or job.can_split or local_model):
                continue
            candidates.append(self._job_candidate(job, local_model))
            actions.extend(self._job_actions(job, local_model))

        for agent in self.analyzer.analyze_agents():
            if not agent.can_use_cheaper_default:
                continue
            candidates.append(self._agent_candidate(agent))
            actions.extend(self._agent_actions(agent))

        plan = OptimizationPlan(
            id=f"opt-{uuid.uuid4().hex[:8]}",
            created_at=self.ctx.now(),
            candidates=candidates,
            actions=actions,
            total_estimated_savings=sum(c.estimated_savings for c in candidates),
            affected_providers=self._affected_providers(actions),
        )
        self.log.info("plan_generated",
                      plan_id=plan.id, candidates=len(candidates), actions=len(actions),
                      savings=round(plan.total_estimated_savings))
        return plan

    def filter_plan(self, plan: OptimizationPlan, plan_filter: PlanFilter = "all") -> OptimizationPlan:
        if plan_filter == "all":
            return plan

        if plan_filter == "jobs-only":
            actions = [a for a in plan.actions if a.target.kind == "job"]
        elif plan_filter == "agents-only":
            actions = [a for a in plan.actions if a.target.kind == "agent"]
        else:
            actions = [a for a in plan.actions if a.reversible]

        targets = {(a.target.kind, a.target.id) for a in actions}
        candidates = [c for c in plan.candidates if (c.kind, c.id) in targets]
        return plan.model_copy(update={
            "candidates": candidates,
            "actions": actions,
            "total_estimated_savings": sum(c.estimated_savings for c in candidates),
            "affected_providers": self._affected_providers(actions),
        })

    def quick_recommendations(self) -> list[str]:
        jobs = self.analyzer.analyze_jobs()
        agents = self.analyzer.analyze_agents()
        recommendations = []

        downgradeable = sum(1 for j in jobs if j.can_downgrade)
        splittable = sum(1 for j in jobs if j.can_split)
        cheaper_agents = sum(1 for a in agents if a.can_use_cheaper_default)
        if downgradeable:
            recommendations.append(f"{downgradeable} scheduled job(s) can use cheaper models")
        if splittable:
            recommendations.append(f"{splittable} scheduled job(s) can be split into simpler tasks")
        if cheaper_agents:
            recommendations.append(f"{cheaper_agents} agent(s) can use cheaper default models")

        settings = self.ctx.settings
        for provider, quota in self.ctx.state.quotas.items():
            percent = quota.used / quota.limit if quota.limit > 0 else 0.0
            if percent >= settings.critical_threshold:
                recommendations.append(f"CRITICAL: {provider} at {percent * 100:.0f}% - shift workload now")
            elif percent >= settings.warning_threshold:
                recommendations.append(f"WARNING: {provider} at {percent * 100:.0f}% - consider alternatives")

        return recommendations or ["No optimization opportunities found"]
