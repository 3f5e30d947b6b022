from datetime import datetime, timezone

from pydantic import BaseModel, Field
from sqlalchemy import delete, select

from smartrouter.models import BudgetSnapshot, QuotaSnapshot, RouterMeta, UsageHistory
from smartrouter.observability.logger import get_logger
from smartrouter.quota.models import BudgetCounter, QuotaCounter, UsageRecord

log = get_logger("state")

STATE_VERSION = 1


class LastOptimization(BaseModel):
    timestamp: datetime
    plan_id: str
    applied: bool
    savings: float = 0.0


class DetectedLocalServer(BaseModel):
    type: str
    endpoint: str
    models: list[str] = Field(default_factory=list)


class RouterState(BaseModel):
    """Mutable in-memory state shared by the ledger, predictor and optimizer."""

    version: int = STATE_VERSION
    last_updated: datetime | None = None
    quotas: dict[str, QuotaCounter] = Field(default_factory=dict)
    budgets: dict[str, BudgetCounter] = Field(default_factory=dict)
    usage_history: list[UsageRecord] = Field(default_factory=list)
    last_optimization: LastOptimization | None = None
    local_models: list[DetectedLocalServer] = Field(default_factory=list)
    local_models_checked_at: datetime | None = None


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class StateManager:
    """Loads and flushes the quota snapshot and usage ledger."""

    def __init__(self, session_factory, max_usage_history: int = 10_000):
        self.session_factory = session_factory
        self.max_usage_history = max_usage_history

    async def load(self) -> RouterState:
        async with self.session_factory() as session:
            quotas = (await session.execute(select(QuotaSnapshot))).scalars().all()
            budgets = (await session.execute(select(BudgetSnapshot))).scalars().all()
            history = (
                await session.execute(select(UsageHistory).order_by(UsageHistory.id))
            ).scalars().all()
            meta = await session.get(RouterMeta, 1)

        state = RouterState()
        for q in quotas:
            state.quotas[q.provider] = QuotaCounter(
                provider=q.provider,
                used=q.used or 0.0,
                limit=q.limit or 0.0,
                quota_type=q.quota_type or "tokens",
                last_reset_at=_as_utc(q.last_reset_at),
                next_reset_at=_as_utc(q.next_reset_at),
            )
        for b in budgets:
            state.budgets[b.provider] = BudgetCounter(
                provider=b.provider,
                monthly_limit=b.monthly_limit,
                current_spend=b.current_spend or 0.0,
                month_start=_as_utc(b.month_start),
            )
        state.usage_history = [
            UsageRecord(
                timestamp=_as_utc(r.timestamp),
                provider=r.provider,
                model=r.model,
                tokens_in=r.tokens_in or 0,
                tokens_out=r.tokens_out or 0,
                cost=r.cost,
                source=r.source or "interactive",
                source_id=r.source_id,
            )
            for r in history
        ][-self.max_usage_history:]

        if meta:
            if meta.version != STATE_VERSION:
                log.info("state_migrated", from_version=meta.version, to_version=STATE_VERSION)
            state.last_updated = _as_utc(meta.last_updated)
            if meta.last_plan_id and meta.last_optimization_at:
                state.last_optimization = LastOptimization(
                    timestamp=_as_utc(meta.last_optimization_at),
                    plan_id=meta.last_plan_id,
                    applied=bool(meta.last_plan_applied),
                    savings=meta.last_plan_savings or 0.0,
                )
            state.local_models = [DetectedLocalServer(**s) for s in (meta.local_models or [])]
            state.local_models_checked_at = _as_utc(meta.local_models_checked_at)

        log.info("state_loaded", quotas=len(state.quotas), usage_records=len(state.usage_history))
        return state

    async def save(self, state: RouterState):
        """Replace the persisted snapshot with `state` in a single transaction."""
        if len(state.usage_history) > self.max_usage_history:
            state.usage_history = state.usage_history[-self.max_usage_history:]

        async with self.session_factory() as session:
            await session.execute(delete(QuotaSnapshot))
            await session.execute(delete(BudgetSnapshot))
            await session.execute(delete(UsageHistory))

            for q in state.quotas.values():
                session.add(QuotaSnapshot(
                    provider=q.provider,
                    used=q.used,
                    limit=q.limit,
                    quota_type=q.quota_type,
                    last_reset_at=q.last_reset_at,
                    next_reset_at=q.next_reset_at,
                ))
            for b in state.budgets.values():
                session.add(BudgetSnapshot(
                    provider=b.provider,
                    monthly_limit=b.monthly_limit,
                    current_spend=b.current_spend,
                    month_start=b.month_start,
                ))
            session.add_all([
                UsageHistory(
                    timestamp=r.timestamp,
                    provider=r.provider,
                    model=r.model,
                    tokens_in=r.tokens_in,
                    tokens_out=r.tokens_out,
                    cost=r.cost,
                    source=r.source,
                    source_id=r.source_id,
                )
                for r in state.usage_history
            ])

            meta = await session.get(RouterMeta, 1)
            if not meta:
                meta = RouterMeta(id=1)
                session.add(meta)
            meta.version = STATE_VERSION
            meta.last_updated = state.last_updated
            if state.last_optimization:
                meta.last_optimization_at = state.last_optimization.timestamp
                meta.last_plan_id = state.last_optimization.plan_id
                meta.last_plan_applied = state.last_optimization.applied
                meta.last_plan_savings = state.last_optimization.savings
            meta.local_models = [s.model_dump() for s in state.local_models]
            meta.local_models_checked_at = state.local_models_checked_at

            await session.commit()

        log.debug("state_saved", quotas=len(state.quotas), usage_records=len(state.usage_history))
