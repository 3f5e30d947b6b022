from typing import Literal

from pydantic import BaseModel, Field

from smartrouter.config import ProviderConfig, ProviderTier
from smartrouter.context import RouterContext
from smartrouter.quota.models import BudgetInfo, QuotaInfo

# Cheapest first
TIER_ORDER: list[ProviderTier] = ["local", "free", "budget", "standard", "premium"]

KNOWN_PROVIDERS: dict[str, dict] = {
    "anthropic": {"tier": "premium", "priority": 100, "quota_type": "tokens"},
    "openai-codex": {"tier": "premium", "priority": 95, "quota_type": "tokens"},
    "openai": {"tier": "standard", "priority": 80, "quota_type": "tokens"},
    "google": {"tier": "free", "priority": 60, "quota_type": "requests"},
    "openrouter": {"tier": "budget", "priority": 50, "quota_type": "tokens"},
    "zai": {"tier": "free", "priority": 40, "quota_type": "tokens"},
    "kimi": {"tier": "free", "priority": 35, "quota_type": "tokens"},
    "local": {"tier": "local", "priority": 30, "quota_source": "unlimited"},
}

ProviderHealth = Literal["ok", "warning", "critical", "exhausted"]


def tier_rank(tier: ProviderTier | None) -> int:
    return TIER_ORDER.index(tier or "standard")


class RegisteredProvider(BaseModel):
    id: str
    config: ProviderConfig
    models: list[str] = Field(default_factory=list)
    is_local: bool = False
    is_available: bool = True

    @property
    def tier(self) -> ProviderTier:
        return self.config.tier or "standard"

    @property
    def priority(self) -> int:
        return self.config.priority if self.config.priority is not None else 50


class ProviderStatus(BaseModel):
    id: str
    tier: ProviderTier
    is_local: bool
    is_available: bool
    models: list[str]
    quota: QuotaInfo | None = None
    budget: BudgetInfo | None = None
    status: ProviderHealth = "ok"


class ProviderRegistry:
    """Configured providers merged over the built-in defaults for well-known ids."""

    def __init__(self, ctx: RouterContext):
        self.ctx = ctx
        self.log = ctx.get_logger("providers.registry")
        self._providers: dict[str, RegisteredProvider] = {}

    def register(self, provider_id: str, config: ProviderConfig | None = None, models: list[str] | None = None) -> RegisteredProvider:
        overrides = config.model_dump(exclude_unset=True) if config else {}
        merged = ProviderConfig(**{**KNOWN_PROVIDERS.get(provider_id, {}), **overrides})

        model_ids = list(dict.fromkeys((models or []) + merged.models + (merged.local.models if merged.local else [])))
        provider = RegisteredProvider(
            id=provider_id,
            config=merged,
            models=model_ids,
            is_local=merged.tier == "local" or merged.local is not None,
        )
        self._providers[provider_id] = provider
        self.log.debug("provider_registered", provider=provider_id, tier=provider.tier, models=len(model_ids))
        return provider

    def get(self, provider_id: str) -> RegisteredProvider | None:
        return self._providers.get(provider_id)

    def all(self) -> list[RegisteredProvider]:
        return list(self._providers.values())

    def by_tier(self, tier: ProviderTier) -> list[RegisteredProvider]:
        return [p for p in self._providers.values() if p.tier == tier]

    def sorted_by_priority(self) -> list[RegisteredProvider]:
        return sorted(self._providers.values(), key=lambda p: p.priority, reverse=True)

    def local(self) -> list[RegisteredProvider]:
        return [p for p in self._providers.values() if p.is_local]

    def available(self) -> list[RegisteredProvider]:
        """Providers not marked down and not past their quota."""
        result = []
        for p in self._providers.values():
            if not p.is_available:
                continue
            quota = self.ctx.state.quotas.get(p.id)
            if quota and quota.limit > 0 and quota.used >= quota.limit:
                continue
            result.append(p)
        return result

    def set_available(self, provider_id: str, available: bool):
        provider = self._providers.get(provider_id)
        if provider:
            provider.is_available = available
            self.log.debug("provider_availability", provider=provider_id, available=available)

    def provider_for_model(self, model: str) -> RegisteredProvider | None:
        for p in self._providers.values():
            if model in p.models:
                return p
        return None

    def tier_for_model(self, model: str) -> ProviderTier:
        provider = self.provider_for_model(model)
        return provider.tier if provider else "standard"

    def quota_info(self, provider_id: str) -> QuotaInfo | None:
        quota = self.ctx.state.quotas.get(provider_id)
        if provider_id not in self._providers or not quota:
            return None
        return QuotaInfo(
            provider=provider_id,
            quota_type=quota.quota_type,
            limit=quota.limit,
            used=quota.used,
            remaining=max(0.0, quota.limit - quota.used),
            percent_used=quota.used / quota.limit if quota.limit > 0 else 0.0,
            reset_at=quota.next_reset_at,
        )

    def budget_info(self, provider_id: str) -> BudgetInfo | None:
        provider = self._providers.get(provider_id)
        budget = self.ctx.state.budgets.get(provider_id)
        if not provider or not provider.config.budget or not budget:
            return None
        limit = provider.config.budget.monthly_limit
        return BudgetInfo(
            provider=provider_id,
            monthly_limit=limit,
            current_spend=budget.current_spend,
            remaining=max(0.0, limit - budget.current_spend),
            percent_used=budget.current_spend / limit if limit > 0 else 0.0,
        )

    def _health(self, percent: float) -> ProviderHealth:
        settings = self.ctx.settings
        if percent >= 1:
            return "exhausted"
        if percent >= settings.critical_threshold:
            return "critical"
        if percent >= settings.warning_threshold:
            return "warning"
        return "ok"

    def status(self) -> list[ProviderStatus]:
        severity = ["ok", "warning", "critical", "exhausted"]
        statuses = []
        for p in self._providers.values():
            quota = self.quota_info(p.id)
            budget = self.budget_info(p.id)

            health = "ok"
            if quota and quota.limit > 0:
                health = self._health(quota.percent_used)
            if budget:
                budget_health = self._health(budget.percent_used)
                if severity.index(budget_health) > severity.index(health):
                    health = budget_health

            statuses.append(ProviderStatus(
                id=p.id,
                tier=p.tier,
                is_local=p.is_local,
                is_available=p.is_available,
                models=p.models,
                quota=quota,
                budget=budget,
                status=health,
            ))
        return statuses
