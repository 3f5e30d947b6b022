from dataclasses import dataclass
from datetime import timedelta

from smartrouter.context import RouterContext
from smartrouter.quota.ledger import UsageLedger
from smartrouter.quota.models import ExhaustionPrediction, QuotaType, Trend, UsageRecord

RATE_WINDOW = timedelta(hours=24)
TREND_WINDOW = timedelta(hours=4)
MIN_SPAN_HOURS = 0.1  # six minutes


@dataclass
class UsageRate:
    per_hour: float
    confidence: float
    samples: int = 0
    insufficient: bool = False


def _units(quota_type: QuotaType, records: list[UsageRecord]) -> float:
    # Rates are measured in the same unit the counter is kept in
    if quota_type == "requests":
        return float(len(records))
    if quota_type == "budget":
        return sum(r.cost or 0.0 for r in records)
    return float(sum(r.total_tokens for r in records))


class ExhaustionPredictor:
    """Forecasts when each provider's quota runs out.

    Never raises for missing data: a provider without counters or history
    gets a prediction with low confidence and an explanatory recommendation.
    """

    def __init__(self, ctx: RouterContext, ledger: UsageLedger):
        self.ctx = ctx
        self.ledger = ledger
        self.log = ctx.get_logger("quota.predictor")

    def predict(self, provider: str) -> ExhaustionPrediction:
        now = self.ctx.now()
        quota = self.ctx.state.quotas.get(provider)

        if not quota:
            return ExhaustionPrediction(
                provider=provider, will_exhaust=False, confidence=0.0,
                recommendation=f"No quota tracking for {provider}",
            )

        if quota.limit == 0:
            return ExhaustionPrediction(
                provider=provider, will_exhaust=False, confidence=1.0,
                recommendation="Unlimited quota",
            )

        if quota.used >= quota.limit:
            if quota.next_reset_at:
                recommendation = f"Quota exhausted. Resets at {quota.next_reset_at.isoformat()}"
            else:
                recommendation = "Quota exhausted. Consider upgrading or using fallback providers."
            return ExhaustionPrediction(
                provider=provider, will_exhaust=True,
                predicted_time=now, hours_until=0.0, confidence=1.0,
                recommendation=recommendation,
            )

        rate = self.usage_rate(provider)
        trend = self.trend(provider)

        if rate.samples == 0:
            return ExhaustionPrediction(
                provider=provider, will_exhaust=False, confidence=0.0,
                trend=trend, recommendation="No usage history",
            )
        if rate.insufficient:
            return ExhaustionPrediction(
                provider=provider, will_exhaust=False, confidence=rate.confidence,
                trend=trend, recommendation="Insufficient data to predict",
            )
        if rate.per_hour == 0:
            return ExhaustionPrediction(
                provider=provider, will_exhaust=False, confidence=0.5,
                trend=trend, recommendation="No recent usage to predict from",
            )

        remaining = quota.limit - quota.used
        hours = remaining / rate.per_hour
        predicted_time = now + timedelta(hours=hours)

        if quota.next_reset_at is not None and predicted_time >= quota.next_reset_at:
            return ExhaustionPrediction(
                provider=provider, will_exhaust=False, confidence=rate.confidence,
                trend=trend, recommendation="Quota will reset before exhaustion",
            )

        if hours < 1:
            recommendation = "CRITICAL: Less than 1 hour until exhaustion. Shift workload now."
        elif hours < 6:
            recommendation = f"WARNING: ~{hours:.1f}h until exhaustion. Consider routing to alternatives."
        elif hours < 24:
            recommendation = f"Will exhaust in ~{hours:.0f}h. Monitor usage."
        else:
            recommendation = f"On track to exhaust in {hours / 24:.1f} days."

        return ExhaustionPrediction(
            provider=provider, will_exhaust=True,
            predicted_time=predicted_time, hours_until=hours,
            confidence=rate.confidence, trend=trend,
            recommendation=recommendation,
        )

    def predict_all(self) -> list[ExhaustionPrediction]:
        return [self.predict(p) for p in self.ctx.state.quotas]

    def needing_attention(self, horizon_hours: float = None) -> list[ExhaustionPrediction]:
        if horizon_hours is None:
            horizon_hours = self.ctx.settings.prediction_horizon_hours
        cutoff = self.ctx.now() + timedelta(hours=horizon_hours)

        flagged = []
        for p in self.predict_all():
            if not p.will_exhaust:
                continue
            if p.predicted_time is None or p.predicted_time <= cutoff:
                flagged.append(p)
        if flagged:
            self.log.info("providers_need_attention", providers=[p.provider for p in flagged])
        return flagged

    def usage_rate(self, provider: str) -> UsageRate:
        """Usage per hour over the trailing 24h, in the counter's unit."""
        records = self.ledger.usage_in_window(provider, RATE_WINDOW)
        if not records:
            return UsageRate(per_hour=0.0, confidence=0.0)

        quota = self.ctx.state.quotas.get(provider)
        quota_type = quota.quota_type if quota else "tokens"

        first = min(r.timestamp for r in records)
        span_hours = (self.ctx.now() - first).total_seconds() / 3600
        if span_hours < MIN_SPAN_HOURS:
            return UsageRate(per_hour=0.0, confidence=0.1, samples=len(records), insufficient=True)

        per_hour = _units(quota_type, records) / span_hours
        confidence = (min(1.0, len(records) / 10) + min(1.0, span_hours / 6)) / 2
        return UsageRate(per_hour=per_hour, confidence=confidence, samples=len(records))

    def trend(self, provider: str) -> Trend:
        now = self.ctx.now()
        recent, older = [], []
        for r in self.ctx.state.usage_history:
            if r.provider != provider:
                continue
            age = now - r.timestamp
            if timedelta(0) <= age < TREND_WINDOW:
                recent.append(r)
            elif TREND_WINDOW <= age < 2 * TREND_WINDOW:
                older.append(r)

        if len(recent) < 3 or len(older) < 3:
            return "stable"

        older_total = sum(r.total_tokens for r in older)
        if older_total == 0:
            return "stable"

        ratio = sum(r.total_tokens for r in recent) / older_total
        if ratio > 1.3:
            return "increasing"
        if ratio < 0.7:
            return "decreasing"
        return "stable"

    def estimate_tokens_until_reset(self, provider: str) -> float:
        quota = self.ctx.state.quotas.get(provider)
        if not quota or quota.next_reset_at is None:
            return 0.0

        hours = (quota.next_reset_at - self.ctx.now()).total_seconds() / 3600
        if hours <= 0:
            return 0.0
        return self.usage_rate(provider).per_hour * hours

    def recommendation(self, provider: str) -> str:
        return self.predict(provider).recommendation or "No recommendation available"
