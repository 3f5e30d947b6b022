from sqlalchemy import Column, String, Float, Integer, DateTime, Boolean, JSON
from smartrouter.database import Base


class QuotaSnapshot(Base):
    __tablename__ = "quota_snapshots"

    provider = Column(String(100), primary_key=True)
    used = Column(Float, default=0.0)
    limit = Column(Float, default=0.0)  # 0 = unbounded
    quota_type = Column(String(20), default="tokens")
    last_reset_at = Column(DateTime(timezone=True), nullable=False)
    next_reset_at = Column(DateTime(timezone=True), nullable=True)


class BudgetSnapshot(Base):
    __tablename__ = "budget_snapshots"

    provider = Column(String(100), primary_key=True)
    monthly_limit = Column(Float, nullable=False)
    current_spend = Column(Float, default=0.0)
    month_start = Column(DateTime(timezone=True), nullable=False)


class UsageHistory(Base):
    __tablename__ = "usage_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    provider = Column(String(100), nullable=False)
    model = Column(String(200), nullable=False)
    tokens_in = Column(Integer, default=0)
    tokens_out = Column(Integer, default=0)
    cost = Column(Float, nullable=True)
    source = Column(String(20), default="interactive")
    source_id = Column(String(200), nullable=True)


class RouterMeta(Base):
    __tablename__ = "router_meta"

    id = Column(Integer, primary_key=True, default=1)
    version = Column(Integer, default=1)
    last_updated = Column(DateTime(timezone=True), nullable=True)
    last_optimization_at = Column(DateTime(timezone=True), nullable=True)
    last_plan_id = Column(String(50), nullable=True)
    last_plan_applied = Column(Boolean, default=False)
    last_plan_savings = Column(Float, default=0.0)
    local_models = Column(JSON, default=list)
    local_models_checked_at = Column(DateTime(timezone=True), nullable=True)
