from smartrouter.capabilities.models import ModelCapabilities, ModelMatch, TaskProfile
from smartrouter.capabilities.scorer import CapabilityScorer
from smartrouter.config import ProviderTier
from smartrouter.context import RouterContext
from smartrouter.providers.registry import TIER_ORDER, ProviderRegistry, RegisteredProvider, tier_rank


def score_for_task(caps: ModelCapabilities, task: TaskProfile) -> float:
    score = caps.scores[task.primary_capability] * 0.6

    if task.secondary_capabilities:
        secondary = [caps.scores[c] for c in task.secondary_capabilities]
        score += sum(secondary) / len(secondary) * 0.2

    if task.context_length == "long" and caps.scores["context"] < 0.7:
        score *= 0.8

    if task.latency_sensitive:
        score *= 0.8 + caps.scores["speed"] * 0.2

    return min(1.0, score)


def explain_match(caps: ModelCapabilities, task: TaskProfile) -> str:
    primary = task.primary_capability
    parts = [f"{caps.scores[primary] * 100:.0f}% {primary}"]
    if task.latency_sensitive and caps.latency_class == "fast":
        parts.append("fast")
    if task.context_length == "long" and caps.scores["context"] >= 0.8:
        parts.append("good context")
    return ", ".join(parts)


class ModelMatcher:
    """Ranks available provider models against a task profile."""

    def __init__(self, ctx: RouterContext, scorer: CapabilityScorer, registry: ProviderRegistry):
        self.ctx = ctx
        self.scorer = scorer
        self.registry = registry
        self.log = ctx.get_logger("capabilities.matcher")

    def _capabilities(self, provider: RegisteredProvider, model: str) -> ModelCapabilities:
        overrides = None
        if provider.config.capabilities and provider.config.capabilities.scores:
            overrides = provider.config.capabilities.scores
        return self.scorer.get_capabilities(model, provider.id, overrides)

    def find_suitable_models(
        self, task: TaskProfile,
        providers: list[RegisteredProvider] | None = None,
        tier_filter: list[ProviderTier] | None = None,
    ) -> list[ModelMatch]:
        if providers is None:
            providers = self.registry.available()

        matches = []
        for provider in providers:
            if tier_filter and provider.tier not in tier_filter:
                continue
            for model in provider.models:
                caps = self._capabilities(provider, model)
                primary = caps.scores[task.primary_capability]
                score = score_for_task(caps, task)
                if score < task.quality_threshold or primary < task.quality_threshold:
                    continue
                matches.append(ModelMatch(
                    model=model,
                    provider=provider.id,
                    score=score,
                    tier=provider.tier,
                    reason=explain_match(caps, task),
                ))

        matches.sort(key=lambda m: (-m.score, tier_rank(m.tier)))
        return matches

    def find_best_model(self, task: TaskProfile) -> ModelMatch | None:
        matches = self.find_suitable_models(task)
        return matches[0] if matches else None

    def find_cheaper_alternative(self, current_model: str, task: TaskProfile) -> ModelMatch | None:
        current_tier = self.registry.tier_for_model(current_model)
        cheaper = TIER_ORDER[:tier_rank(current_tier)]
        if not cheaper:
            return None

        matches = self.find_suitable_models(task, tier_filter=cheaper)
        if not matches:
            self.log.debug("no_cheaper_alternative", model=current_model, tier=current_tier)
            return None
        return matches[0]

    def meets_quality_requirements(self, model: str, provider_id: str, task: TaskProfile) -> bool:
        provider = self.registry.get(provider_id)
        if provider:
            caps = self._capabilities(provider, model)
        else:
            caps = self.scorer.get_capabilities(model, provider_id)
        return (
            score_for_task(caps, task) >= task.quality_threshold
            and caps.scores[task.primary_capability] >= task.quality_threshold
        )
