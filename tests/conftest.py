import json
import os
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from smartrouter.config import BudgetConfig, ProviderConfig, Settings
from smartrouter.context import RouterContext
from smartrouter.core.service import SmartRouter
from smartrouter.database import Base
from smartrouter.optimization.analyzer import WorkloadAnalyzer
from smartrouter.quota.ledger import UsageLedger
from smartrouter.quota.models import ResetSchedule
from smartrouter.stores.agents import AgentStore
from smartrouter.stores.jobs import JobStore, RunLog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import smartrouter.models  # noqa: F401

# A Wednesday
NOW = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def openclaw_dir(tmp_path):
    path = tmp_path / "openclaw"
    (path / "cron" / "runs").mkdir(parents=True)
    (path / "agents").mkdir()
    return path


@pytest.fixture
def settings(tmp_path, openclaw_dir):
    return Settings(
        _env_file=None,
        data_dir=str(tmp_path / "data"),
        openclaw_dir=str(openclaw_dir),
        local_model_preference="never",
    )


@pytest.fixture
def ctx(settings, clock):
    return RouterContext(settings=settings, clock=clock)


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory SQLite database for each test."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False, poolclass=StaticPool)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield factory
    await engine.dispose()


def write_jobs(openclaw_dir, jobs) -> str:
    path = os.path.join(openclaw_dir, "cron", "jobs.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(jobs, f, indent=2)
    return path


def write_runs(openclaw_dir, job_id: str, runs: list[dict]):
    path = os.path.join(openclaw_dir, "cron", "runs", f"{job_id}.jsonl")
    with open(path, "w", encoding="utf-8") as f:
        f.write("\n".join(json.dumps(r) for r in runs))


def make_agent(openclaw_dir, agent_id: str, models: dict | None = None, sessions: int = 0) -> str:
    agent_dir = os.path.join(openclaw_dir, "agents", agent_id, "agent")
    os.makedirs(agent_dir, exist_ok=True)
    path = os.path.join(agent_dir, "models.json")
    if models is not None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(models, f, indent=2)
    if sessions:
        sessions_dir = os.path.join(openclaw_dir, "agents", agent_id, "sessions")
        os.makedirs(sessions_dir, exist_ok=True)
        for i in range(sessions):
            open(os.path.join(sessions_dir, f"s{i}.jsonl"), "w").close()
    return path


def read_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


RESEARCH_PROMPT = (
    "First, gather the comprehensive market data from all sources. "
    "Then, analyze the competitive landscape in detail. "
    "Finally, write a detailed summary report for the team."
)


def seed_workload(openclaw_dir):
    """Two enabled jobs (one simple, one splittable), one paused job and three agents."""
    write_jobs(openclaw_dir, {"jobs": [
        {"id": "digest", "name": "Daily digest", "schedule": "0 9 * * *",
         "model": "claude-sonnet-4-5", "prompt": "Summarize and list the open items"},
        {"id": "research", "schedule": "*/30 * * * *", "model": "claude-opus-4-6", "prompt": RESEARCH_PROMPT},
        {"id": "paused", "schedule": "0 * * * *", "model": "gpt-5.2", "prompt": "check", "enabled": False},
    ]})
    write_runs(openclaw_dir, "digest", [
        {"tokensIn": 800, "tokensOut": 200, "durationMs": 2000, "success": True} for _ in range(3)
    ])
    make_agent(openclaw_dir, "main", {"primary": "claude-sonnet-4-5", "fallbacks": []}, sessions=1)
    make_agent(openclaw_dir, "boss", {"primary": "claude-opus-4-6"})
    make_agent(openclaw_dir, "busy", {"primary": "gpt-5.2"}, sessions=5)


def build_analyzer(ctx, settings, matcher=None) -> WorkloadAnalyzer:
    return WorkloadAnalyzer(
        ctx,
        JobStore(settings.jobs_path),
        RunLog(settings.runs_dir),
        AgentStore(settings.agents_dir),
        UsageLedger(ctx),
        matcher,
    )


WEEKLY = ResetSchedule(type="weekly", day_of_week=3, hour=7)


def make_settings(tmp_path, openclaw_dir, **overrides) -> Settings:
    values = {
        "data_dir": str(tmp_path / "data"),
        "openclaw_dir": str(openclaw_dir),
        "local_model_preference": "never",
        "mode": "manual",
        "providers": {
            "anthropic": ProviderConfig(limit=100_000, reset_schedule=WEEKLY),
            "openrouter": ProviderConfig(quota_source="api", budget=BudgetConfig(monthly_limit=50)),
        },
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def write_openclaw_config(openclaw_dir):
    with open(os.path.join(openclaw_dir, "openclaw.json"), "w", encoding="utf-8") as f:
        json.dump({"models": {"providers": {
            "anthropic": {"models": [{"id": "claude-sonnet-4-5"}, {"id": "claude-haiku-4-5"}]},
            "openai": {"models": [{"id": "gpt-5-mini"}]},
        }}}, f)


@pytest.fixture(autouse=True)
def no_api_keys(monkeypatch):
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)


@pytest.fixture
def router_settings(tmp_path, openclaw_dir):
    write_openclaw_config(openclaw_dir)
    return make_settings(tmp_path, openclaw_dir)


@pytest_asyncio.fixture
async def router(router_settings, session_factory, clock):
    """A started router with anthropic and openai models from openclaw.json."""
    router = SmartRouter(router_settings, session_factory, clock=clock)
    await router.start()
    yield router
    await router.stop()
