"""Workload analysis for scheduled jobs and agents.

Everything here degrades instead of raising: missing stores yield empty
analyses, missing run history yields fixed default estimates.
"""

import re
from datetime import timedelta
from typing import Literal

from smartrouter.capabilities.classifier import classify_prompt, detect_tools_used, infer_complexity
from smartrouter.capabilities.matcher import ModelMatcher
from smartrouter.capabilities.models import Complexity, TaskProfile
from smartrouter.context import RouterContext
from smartrouter.observability.logger import get_logger
from smartrouter.optimization.models import AgentAnalysis, AnalysisReport, JobAnalysis, SplitOpportunity
from smartrouter.quota.ledger import UsageLedger
from smartrouter.stores.agents import AgentStore
from smartrouter.stores.jobs import CronJob, JobStore, RunLog

log = get_logger("optimization.analyzer")

DEFAULT_TOKENS_PER_RUN = 500
DEFAULT_DURATION_MS = 30_000
FALLBACK_CHEAP_MODEL = "gemini-2.5-flash-lite"
MAX_SPLITS = 5
MAX_ACTIVE_SESSIONS = 5
EVERY_MINUTE = 24 * 60
SESSION_GAP = timedelta(minutes=30)

DOWNGRADES = {
    "claude-opus-4-5": "claude-sonnet-4-5",
    "claude-opus-4-6": "claude-sonnet-4-5",
    "claude-sonnet-4-5": "claude-haiku-4-5",
    "gpt-5.3-codex": "gpt-5.2",
    "gpt-5.2": "gpt-5-mini",
    "gpt-5-mini": "gpt-5-nano",
    "gemini-3-flash-preview": "gemini-2.5-flash",
    "gemini-2.5-flash": "gemini-2.5-flash-lite",
}

TOP_TIER_MODELS = {"gpt-5.3-codex"}

STEP_PATTERNS = [
    re.compile(r"first[,\s]+([^.]+)"),
    re.compile(r"then[,\s]+([^.]+)"),
    re.compile(r"after that[,\s]+([^.]+)"),
    re.compile(r"finally[,\s]+([^.]+)"),
    re.compile(r"step \d+[:\s]+([^.]+)"),
    re.compile(r"\d+\.\s+([^.]+)"),
]

EVERY_N = re.compile(r"^\*/(\d+)$")
NUMBER_LIST = re.compile(r"^\d+(,\d+)*$")

# Sub-tasks are simple chores
SUBTASK_PROFILE = TaskProfile(primary_capability="instruction", quality_threshold=0.4)
SUBTASK_TIERS = ["local", "free", "budget"]


def suggest_cheaper_model(model: str) -> str:
    return DOWNGRADES.get(model, FALLBACK_CHEAP_MODEL)


def is_top_tier(model: str) -> bool:
    return "opus" in model or model in TOP_TIER_MODELS


def runs_per_day(schedule: str) -> float:
    """Runs per day for the narrow cron subset this project understands.

    Recognized: `*`, `*/N` and plain comma lists in the minute and hour
    fields. Everything else, including ranges, expressions that do not have
    exactly five fields and `*/0`, counts as every minute.
    """
    parts = (schedule or "").split()
    if len(parts) != 5:
        log.warning("cron_unrecognized", schedule=schedule, assumed_runs_per_day=EVERY_MINUTE)
        return float(EVERY_MINUTE)

    minute, hour = parts[0], parts[1]
    minute_step, hour_step = EVERY_N.match(minute), EVERY_N.match(hour)
    understood = all(field == "*" or EVERY_N.match(field) or NUMBER_LIST.match(field) for field in (minute, hour))

    if not understood or (minute_step and int(minute_step.group(1)) == 0) or (hour_step and int(hour_step.group(1)) == 0):
        log.warning("cron_unrecognized", schedule=schedule, assumed_runs_per_day=EVERY_MINUTE)
        return float(EVERY_MINUTE)

    if minute_step:
        return EVERY_MINUTE / int(minute_step.group(1))

    if hour_step:
        return 24 / int(hour_step.group(1))

    if hour != "*" and NUMBER_LIST.match(hour):
        return float(len(hour.split(",")))

    if minute != "*" and NUMBER_LIST.match(minute):
        return float(len(minute.split(",")) * 24)

    # "* *"
    return float(EVERY_MINUTE)


class WorkloadAnalyzer:
    def __init__(
        self, ctx: RouterContext,
        jobs: JobStore, runs: RunLog, agents: AgentStore,
        ledger: UsageLedger,
        matcher: ModelMatcher | None = None,
    ):
        self.ctx = ctx
        self.jobs = jobs
        self.runs = runs
        self.agents = agents
        self.ledger = ledger
        self.matcher = matcher

    def _tier_of(self, model: str) -> str | None:
        if self.matcher is None:
            return None
        provider = self.matcher.registry.provider_for_model(model)
        return provider.tier if provider else None

    def is_local_model(self, model: str) -> bool:
        return model.startswith("local") or self._tier_of(model) == "local"

    def downgrade_target(self, model: str) -> str | None:
        """The cheaper model to move `model` to, or None when nothing on the ladder is cheaper."""
        if self.is_local_model(model):
            return None
        suggested = suggest_cheaper_model(model)
        if suggested == model:
            return None
        # Off-ladder models already on a free provider gain nothing from the fallback
        if model not in DOWNGRADES and self._tier_of(model) == "free":
            return None
        return suggested

    def _subtask_model(self, default: str) -> str:
        if self.matcher is None:
            return default
        matches = self.matcher.find_suitable_models(SUBTASK_PROFILE, tier_filter=SUBTASK_TIERS)
        return matches[0].model if matches else default

    def split_opportunities(self, prompt: str, complexity: Complexity) -> list[SplitOpportunity]:
        if complexity == "simple":
            return []

        lower = prompt.lower()
        found = []
        for pattern in STEP_PATTERNS:
            for match in pattern.finditer(lower):
                step = match.group(1)
                if len(step) <= 20:
                    continue
                found.append(SplitOpportunity(
                    subtask=f"{step[:50]}...",
                    description=f'Identified sub-step: "{step[:100]}"',
                    suggested_model=self._subtask_model(FALLBACK_CHEAP_MODEL),
                    estimated_tokens=DEFAULT_TOKENS_PER_RUN,
                ))

        if "read" in lower and "write" in lower:
            found.append(SplitOpportunity(
                subtask="Data retrieval phase",
                description="Separate read operations from write operations",
                suggested_model=self._subtask_model(FALLBACK_CHEAP_MODEL),
                estimated_tokens=300,
            ))

        if "summarize" in lower and "analyze" in lower:
            found.append(SplitOpportunity(
                subtask="Summary generation",
                description="Simple summarization can use cheaper model",
                suggested_model=self._subtask_model("gpt-5-nano"),
                estimated_tokens=400,
            ))

        return found[:MAX_SPLITS]

    def analyze_job(self, job: CronJob) -> JobAnalysis:
        prompt = job.prompt or ""
        profile = classify_prompt(prompt, self.ctx.settings.quality_thresholds)
        complexity = infer_complexity(prompt)
        history = self.runs.load(job.id)

        successful = [r for r in history if r.success]
        if successful:
            avg_tokens = sum(r.total_tokens for r in successful) / len(successful)
            avg_duration = sum(r.duration_ms for r in successful) / len(successful)
        else:
            avg_tokens = DEFAULT_TOKENS_PER_RUN
            avg_duration = DEFAULT_DURATION_MS
        success_rate = len(successful) / len(history) if history else 1.0

        frequency = runs_per_day(job.schedule)
        splits = self.split_opportunities(prompt, complexity)
        current_model = job.model or "default"
        target = self.downgrade_target(current_model)
        eligible = complexity != "complex" and success_rate > 0.9
        can_downgrade = eligible and target is not None

        if can_downgrade:
            reason = f"{complexity} complexity with {success_rate * 100:.0f}% success rate"
        elif eligible:
            reason = "Already on the cheapest suitable model"
        else:
            reason = "Complex task or low success rate"

        return JobAnalysis(
            id=job.id,
            name=job.name or job.id,
            schedule=job.schedule,
            current_model=current_model,
            prompt=prompt,
            prompt_length=len(prompt),
            complexity=complexity,
            detected_capabilities=[profile.primary_capability, *profile.secondary_capabilities],
            tools_used=detect_tools_used(prompt),
            avg_tokens_per_run=avg_tokens,
            avg_duration_ms=avg_duration,
            success_rate=success_rate,
            runs_per_day=frequency,
            daily_tokens=avg_tokens * frequency,
            monthly_tokens=avg_tokens * frequency * 30,
            can_downgrade=can_downgrade,
            downgrade_reason=reason,
            suggested_model=target if can_downgrade else None,
            estimated_savings=avg_tokens * 0.3 if can_downgrade else 0.0,
            can_split=bool(splits),
            split_opportunities=splits,
        )

    def analyze_jobs(self) -> list[JobAnalysis]:
        return [self.analyze_job(job) for job in self.jobs.load_jobs() if job.enabled]

    def _avg_session_tokens(self, agent_id: str) -> float:
        records = [
            r for r in self.ctx.state.usage_history
            if r.source == "agent" and r.source_id == agent_id
        ]
        if not records:
            return 0.0

        # A pause longer than SESSION_GAP starts a new session
        totals = []
        last_seen = None
        for r in sorted(records, key=lambda r: r.timestamp):
            if last_seen is None or r.timestamp - last_seen > SESSION_GAP:
                totals.append(0)
            totals[-1] += r.total_tokens
            last_seen = r.timestamp
        return sum(totals) / len(totals)

    def analyze_agent(self, agent_id: str) -> AgentAnalysis | None:
        config = self.agents.load(agent_id)
        if config is None:
            return None

        sessions = self.agents.session_count(agent_id)
        target = self.downgrade_target(config.primary_model)
        eligible = sessions < MAX_ACTIVE_SESSIONS and not is_top_tier(config.primary_model) and target is not None
        task_type = classify_prompt(config.system_prompt).primary_capability

        return AgentAnalysis(
            id=agent_id,
            name=agent_id,
            is_default=agent_id in ("generalist", "main"),
            primary_model=config.primary_model,
            fallback_models=config.fallback_models,
            active_sessions=sessions,
            avg_session_tokens=self._avg_session_tokens(agent_id),
            dominant_task_types=[task_type],
            available_providers=config.available_providers,
            providers_in_cooldown=config.providers_in_cooldown,
            can_use_cheaper_default=eligible,
            suggested_primary_model=target if eligible else None,
            reasoning="Low session count allows cheaper model" if eligible else "Current model appropriate for workload",
        )

    def analyze_agents(self) -> list[AgentAnalysis]:
        analyses = []
        for agent_id in self.agents.list_agents():
            analysis = self.analyze_agent(agent_id)
            if analysis:
                analyses.append(analysis)
        return analyses

    def analyze(self, kind: Literal["all", "jobs", "agents"] = "all") -> AnalysisReport:
        jobs = self.analyze_jobs() if kind in ("all", "jobs") else []
        agents = self.analyze_agents() if kind in ("all", "agents") else []

        recommendations = []
        for job in jobs:
            if job.can_downgrade:
                recommendations.append(
                    f"{job.name}: switch {job.current_model} to {job.suggested_model} "
                    f"(~{job.estimated_savings:.0f} tokens/run saved)"
                )
            if job.can_split:
                recommendations.append(f"{job.name}: can be split into {len(job.split_opportunities)} simpler tasks")
        for agent in agents:
            if agent.can_use_cheaper_default:
                recommendations.append(
                    f"Agent {agent.name}: switch default {agent.primary_model} to {agent.suggested_primary_model}"
                )

        total = sum(j.estimated_savings * j.runs_per_day for j in jobs)
        total += sum(a.avg_session_tokens * 0.2 for a in agents if a.can_use_cheaper_default)

        log.info("workload_analyzed", jobs=len(jobs), agents=len(agents), recommendations=len(recommendations))
        return AnalysisReport(
            jobs=jobs,
            agents=agents,
            recommendations=recommendations,
            total_potential_savings=total,
        )
