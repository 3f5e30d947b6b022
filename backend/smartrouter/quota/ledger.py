from datetime import datetime, timedelta

from smartrouter.context import RouterContext
from smartrouter.quota.models import (
    AlertLevel,
    BudgetCounter,
    BudgetInfo,
    QuotaCounter,
    QuotaInfo,
    QuotaType,
    ResetSchedule,
    ThresholdAlert,
    Trend,
    UsageRecord,
    UsageSource,
)
from smartrouter.quota.reset import compute_next_reset, is_due

DAY = timedelta(days=1)


class UsageLedger:
    """Records usage events and keeps per-provider quota counters current."""

    def __init__(self, ctx: RouterContext):
        self.ctx = ctx
        self.log = ctx.get_logger("quota.ledger")

    @property
    def state(self):
        return self.ctx.state

    def record(
        self, provider: str, model: str,
        tokens_in: int, tokens_out: int,
        source: UsageSource = "interactive",
        source_id: str = None,
        cost: float = None,
    ) -> UsageRecord:
        record = UsageRecord(
            timestamp=self.ctx.now(),
            provider=provider, model=model,
            tokens_in=max(0, int(tokens_in)), tokens_out=max(0, int(tokens_out)),
            cost=cost, source=source, source_id=source_id,
        )
        self.state.usage_history.append(record)

        quota = self.state.quotas.get(provider)
        if quota:
            quota.used += self._quota_increment(quota.quota_type, record)

        budget = self.state.budgets.get(provider)
        if budget and cost:
            self._roll_budget_month(budget)
            budget.current_spend += cost

        overflow = len(self.state.usage_history) - self.ctx.settings.max_usage_history
        if overflow > 0:
            del self.state.usage_history[:overflow]

        self.log.debug("usage_recorded",
                       provider=provider, model=model,
                       tokens_in=record.tokens_in, tokens_out=record.tokens_out,
                       source=source)

        self.ctx.state_changed()
        self.check_thresholds(provider)
        return record

    @staticmethod
    def _quota_increment(quota_type: QuotaType, record: UsageRecord) -> float:
        # Request quotas count calls, budget quotas count money
        if quota_type == "requests":
            return 1
        if quota_type == "budget":
            return record.cost or 0.0
        return record.total_tokens

    def _roll_budget_month(self, budget: BudgetCounter):
        month_start = self.ctx.now().replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        if budget.month_start < month_start:
            budget.current_spend = 0.0
            budget.month_start = month_start
            self.log.info("budget_month_reset", provider=budget.provider)

    def threshold_level(self, provider: str) -> AlertLevel | None:
        quota = self.state.quotas.get(provider)
        if not quota or quota.limit == 0:
            return None

        settings = self.ctx.settings
        percent = quota.used / quota.limit
        if percent >= 1:
            return "exhausted"
        if percent >= settings.critical_threshold:
            return "critical"
        if percent >= settings.warning_threshold:
            return "warning"
        if percent >= settings.info_threshold:
            return "info"
        return None

    def check_thresholds(self, provider: str) -> ThresholdAlert | None:
        level = self.threshold_level(provider)
        if level is None:
            return None

        quota = self.state.quotas[provider]
        percent = quota.used / quota.limit
        if level == "exhausted":
            message = f"{provider} has exhausted its quota"
        else:
            message = f"{provider} quota {level}: {percent * 100:.1f}% used"

        alert = ThresholdAlert(provider=provider, level=level, percent_used=percent, message=message)
        if level in ("critical", "exhausted"):
            self.log.warning("quota_threshold", provider=provider, level=level, percent_used=round(percent, 4))
        else:
            self.log.info("quota_threshold", provider=provider, level=level, percent_used=round(percent, 4))
        self.ctx.emit_alert(alert)
        return alert

    # Windows and aggregates

    def usage_in_window(self, provider: str | None, window: timedelta) -> list[UsageRecord]:
        cutoff = self.ctx.now() - window
        return [
            r for r in self.state.usage_history
            if r.timestamp >= cutoff and (provider is None or r.provider == provider)
        ]

    def total_tokens_in_window(self, provider: str, window: timedelta) -> int:
        return sum(r.total_tokens for r in self.usage_in_window(provider, window))

    def usage_by_source(self, provider: str, window: timedelta) -> dict[str, int]:
        breakdown = {"scheduled": 0, "agent": 0, "interactive": 0}
        for r in self.usage_in_window(provider, window):
            breakdown[r.source] = breakdown.get(r.source, 0) + r.total_tokens
        return breakdown

    def average_daily_usage(self, provider: str, days: int = 7) -> float:
        """Tokens per day, averaged over the days actually covered by data.

        The divisor is the time since the earliest record in the window (at
        least one day), not the nominal window length.
        """
        records = self.usage_in_window(provider, timedelta(days=days))
        if not records:
            return 0.0

        total = sum(r.total_tokens for r in records)
        first = min(r.timestamp for r in records)
        days_covered = max(1.0, (self.ctx.now() - first) / DAY)
        return total / days_covered

    def trend(self, provider: str) -> Trend:
        recent = self.average_daily_usage(provider, 3)
        older = self.average_daily_usage(provider, 7)
        if older == 0:
            return "stable"

        ratio = recent / older
        if ratio > 1.2:
            return "increasing"
        if ratio < 0.8:
            return "decreasing"
        return "stable"

    # Explicit counter mutations

    def init_quota(
        self, provider: str, limit: float,
        next_reset: datetime | None = None,
        quota_type: QuotaType = "tokens",
    ) -> QuotaCounter:
        quota = self.state.quotas.get(provider)
        if not quota:
            quota = QuotaCounter(
                provider=provider, used=0.0, limit=limit,
                quota_type=quota_type,
                last_reset_at=self.ctx.now(), next_reset_at=next_reset,
            )
            self.state.quotas[provider] = quota
        else:
            quota.limit = limit
            quota.quota_type = quota_type
            quota.next_reset_at = next_reset
        return quota

    def init_budget(self, provider: str, monthly_limit: float) -> BudgetCounter:
        month_start = self.ctx.now().replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        budget = self.state.budgets.get(provider)
        if not budget:
            budget = BudgetCounter(provider=provider, monthly_limit=monthly_limit, month_start=month_start)
            self.state.budgets[provider] = budget
        else:
            budget.monthly_limit = monthly_limit
            self._roll_budget_month(budget)
        return budget

    def set_usage(self, provider: str, used: float, limit: float = None) -> QuotaCounter:
        quota = self.state.quotas.get(provider)
        if not quota:
            quota = QuotaCounter(
                provider=provider, used=0.0, limit=limit or 0.0,
                last_reset_at=self.ctx.now(),
            )
            self.state.quotas[provider] = quota

        quota.used = max(0.0, used)
        if limit is not None:
            quota.limit = limit

        self.log.info("quota_usage_set", provider=provider, used=quota.used, limit=quota.limit)
        self.ctx.state_changed()
        self.check_thresholds(provider)
        return quota

    def reset_quota(self, provider: str, next_reset: datetime | None = None) -> bool:
        quota = self.state.quotas.get(provider)
        if not quota:
            self.log.warning("quota_reset_unknown_provider", provider=provider)
            return False

        quota.used = 0.0
        quota.last_reset_at = self.ctx.now()
        if next_reset is not None:
            quota.next_reset_at = next_reset
        self.log.info("quota_reset", provider=provider)
        self.ctx.state_changed()
        return True

    def roll_over_due_resets(self, schedules: dict[str, ResetSchedule]) -> list[str]:
        """Reset every counter whose reset time has passed; returns the providers reset."""
        now = self.ctx.now()
        reset = []
        for provider, quota in self.state.quotas.items():
            if not is_due(quota.next_reset_at, now):
                continue
            schedule = schedules.get(provider)
            next_reset = compute_next_reset(schedule, now) if schedule else None
            if next_reset is not None and next_reset <= now:
                # Fixed dates in the past do not recur
                next_reset = None
            self.reset_quota(provider, next_reset)
            if next_reset is None:
                quota.next_reset_at = None
            reset.append(provider)
        return reset

    # Views

    def quota_info(self, provider: str) -> QuotaInfo | None:
        quota = self.state.quotas.get(provider)
        if not quota:
            return None
        return QuotaInfo(
            provider=provider,
            quota_type=quota.quota_type,
            limit=quota.limit,
            used=quota.used,
            remaining=max(0.0, quota.limit - quota.used),
            percent_used=quota.used / quota.limit if quota.limit > 0 else 0.0,
            reset_at=quota.next_reset_at,
        )

    def all_quota_info(self) -> list[QuotaInfo]:
        return [self.quota_info(p) for p in self.state.quotas]

    def budget_info(self, provider: str) -> BudgetInfo | None:
        budget = self.state.budgets.get(provider)
        if not budget:
            return None
        return BudgetInfo(
            provider=provider,
            monthly_limit=budget.monthly_limit,
            current_spend=budget.current_spend,
            remaining=max(0.0, budget.monthly_limit - budget.current_spend),
            percent_used=budget.current_spend / budget.monthly_limit if budget.monthly_limit > 0 else 0.0,
        )
