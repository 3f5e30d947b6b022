import asyncio

import pytest
from conftest import build_analyzer, make_agent, read_bytes, seed_workload, write_jobs
from smartrouter.capabilities.matcher import ModelMatcher
from smartrouter.capabilities.scorer import CapabilityScorer
from smartrouter.config import CapabilityConfig, ProviderConfig
from smartrouter.core.optimizer_loop import AutoOptimizer
from smartrouter.optimization.applier import ActionApplier
from smartrouter.optimization.optimizer import Optimizer, assess_quality_risk
from smartrouter.providers.registry import ProviderRegistry


def build_optimizer(ctx, settings, registry=None):
    registry = registry or ProviderRegistry(ctx)
    matcher = ModelMatcher(ctx, CapabilityScorer(ctx), registry)
    return Optimizer(ctx, build_analyzer(ctx, settings, matcher), registry, matcher)


def register_local(registry):
    registry.register("local", ProviderConfig(
        models=["qwen3-8b"],
        capabilities=CapabilityConfig(source="manual", scores={"instruction": 0.8}),
    ))


class TestQualityRisk:
    @pytest.mark.parametrize("complexity,success_rate,risk", [
        ("simple", 0.99, "none"),
        ("simple", 0.9, "low"),
        ("moderate", 0.95, "low"),
        ("moderate", 0.85, "medium"),
        ("complex", 1.0, "high"),
        ("simple", 0.5, "high"),
    ])
    def test_levels(self, complexity, success_rate, risk):
        assert assess_quality_risk(complexity, success_rate) == risk


class TestGeneratePlan:
    def test_plan_contents(self, ctx, settings, openclaw_dir):
        seed_workload(openclaw_dir)
        plan = build_optimizer(ctx, settings).generate_plan()

        assert plan.id.startswith("opt-")
        assert [(a.type, a.target.id) for a in plan.actions] == [
            ("change_model", "digest"),
            ("split_job", "research"),
            ("change_model", "main"),
            ("add_fallback", "main"),
        ]
        assert plan.actions[0].changes == {"from": "claude-sonnet-4-5", "to": "claude-haiku-4-5"}
        assert plan.actions[1].reversible is False
        assert plan.actions[3].changes == {"model": "claude-sonnet-4-5", "position": 0}
        assert plan.affected_providers == ["anthropic"]

    def test_savings(self, ctx, settings, openclaw_dir):
        seed_workload(openclaw_dir)
        plan = build_optimizer(ctx, settings).generate_plan()
        savings = {c.id: c.estimated_savings for c in plan.candidates}
        # research: three sub-steps at the default 500 tokens each
        assert savings == pytest.approx({"digest": 300, "research": 1500, "main": 0})
        assert plan.total_estimated_savings == pytest.approx(1800)

    def test_split_plan_attached_to_candidate(self, ctx, settings, openclaw_dir):
        seed_workload(openclaw_dir)
        plan = build_optimizer(ctx, settings).generate_plan()
        research = next(c for c in plan.candidates if c.id == "research")
        assert research.quality_risk == "high"
        assert [s.name for s in research.split_plan.proposed_splits] == [
            "research-part-1", "research-part-2", "research-part-3",
        ]

    def test_agent_fallback_skipped_when_present(self, ctx, settings, openclaw_dir):
        make_agent(openclaw_dir, "main", {"primary": "gpt-5.2", "fallbacks": ["gpt-5.2"]})
        plan = build_optimizer(ctx, settings).generate_plan()
        assert [a.type for a in plan.actions] == ["change_model"]

    @pytest.mark.parametrize("model", ["gemini-2.5-flash-lite", "glm-4.7"])
    def test_cheapest_models_left_alone(self, ctx, settings, openclaw_dir, model):
        write_jobs(openclaw_dir, {"jobs": [
            {"id": "tidy", "schedule": "0 9 * * *", "model": model, "prompt": "List the open items"},
        ]})
        registry = ProviderRegistry(ctx)
        registry.register("zai", ProviderConfig(models=["glm-4.7"]))
        plan = build_optimizer(ctx, settings, registry).generate_plan()
        assert plan.actions == [] and plan.total_estimated_savings == 0

    def test_empty_workload(self, ctx, settings):
        plan = build_optimizer(ctx, settings).generate_plan()
        assert plan.actions == [] and plan.total_estimated_savings == 0


class TestLocalRouting:
    def test_never_keeps_cloud_downgrade(self, ctx, settings, openclaw_dir):
        seed_workload(openclaw_dir)
        registry = ProviderRegistry(ctx)
        register_local(registry)
        plan = build_optimizer(ctx, settings, registry).generate_plan()
        assert plan.actions[0].type == "change_model"

    @pytest.mark.parametrize("preference", ["simple-only", "when-available", "prefer"])
    def test_simple_job_routed_to_local(self, ctx, settings, openclaw_dir, preference):
        settings.local_model_preference = preference
        seed_workload(openclaw_dir)
        registry = ProviderRegistry(ctx)
        register_local(registry)

        plan = build_optimizer(ctx, settings, registry).generate_plan()
        action = plan.actions[0]
        assert action.type == "route_to_local"
        assert action.changes == {"from": "claude-sonnet-4-5", "to": "qwen3-8b", "provider": "local"}
        assert "local" in plan.affected_providers
        digest = next(c for c in plan.candidates if c.id == "digest")
        assert digest.suggested_model == "qwen3-8b"

    def test_no_suitable_local_model(self, ctx, settings, openclaw_dir):
        settings.local_model_preference = "prefer"
        seed_workload(openclaw_dir)
        registry = ProviderRegistry(ctx)
        registry.register("local", ProviderConfig(models=["local-default"]))
        plan = build_optimizer(ctx, settings, registry).generate_plan()
        assert "route_to_local" not in [a.type for a in plan.actions]

    def test_job_already_on_local_model(self, ctx, settings, openclaw_dir):
        settings.local_model_preference = "prefer"
        write_jobs(openclaw_dir, {"jobs": [
            {"id": "tidy", "schedule": "0 9 * * *", "model": "qwen3-8b", "prompt": "List the open items"},
        ]})
        registry = ProviderRegistry(ctx)
        register_local(registry)
        plan = build_optimizer(ctx, settings, registry).generate_plan()
        assert plan.actions == [] and plan.candidates == []


class TestFilterPlan:
    @pytest.mark.parametrize("plan_filter,expected", [
        ("jobs-only", ["digest", "research"]),
        ("agents-only", ["main", "main"]),
        ("safe-only", ["digest", "main", "main"]),
    ])
    def test_filters(self, ctx, settings, openclaw_dir, plan_filter, expected):
        seed_workload(openclaw_dir)
        optimizer = build_optimizer(ctx, settings)
        plan = optimizer.filter_plan(optimizer.generate_plan(), plan_filter)
        assert [a.target.id for a in plan.actions] == expected

    def test_safe_only_recomputes_savings(self, ctx, settings, openclaw_dir):
        seed_workload(openclaw_dir)
        optimizer = build_optimizer(ctx, settings)
        plan = optimizer.filter_plan(optimizer.generate_plan(), "safe-only")
        assert {c.id for c in plan.candidates} == {"digest", "main"}
        assert plan.total_estimated_savings == pytest.approx(300)

    def test_all_is_identity(self, ctx, settings, openclaw_dir):
        seed_workload(openclaw_dir)
        optimizer = build_optimizer(ctx, settings)
        plan = optimizer.generate_plan()
        assert optimizer.filter_plan(plan, "all") is plan


class TestQuickRecommendations:
    def test_lists_opportunities_and_pressure(self, ctx, settings, openclaw_dir):
        seed_workload(openclaw_dir)
        optimizer = build_optimizer(ctx, settings)
        optimizer.analyzer.ledger.set_usage("anthropic", 960, limit=1000)

        recommendations = optimizer.quick_recommendations()
        assert "1 scheduled job(s) can use cheaper models" in recommendations
        assert "1 scheduled job(s) can be split into simpler tasks" in recommendations
        assert "1 agent(s) can use cheaper default models" in recommendations
        assert "CRITICAL: anthropic at 96% - shift workload now" in recommendations

    def test_nothing_to_do(self, ctx, settings):
        assert build_optimizer(ctx, settings).quick_recommendations() == ["No optimization opportunities found"]


@pytest.mark.asyncio
class TestAutoOptimizer:
    @pytest.fixture
    def saves(self):
        return []

    @pytest.fixture
    def auto(self, ctx, settings, openclaw_dir, saves):
        seed_workload(openclaw_dir)

        async def save_state():
            saves.append(ctx.state.last_optimization)

        optimizer = build_optimizer(ctx, settings)
        applier = ActionApplier(ctx, optimizer.analyzer.jobs, optimizer.analyzer.agents, preview=False)
        return AutoOptimizer(ctx, optimizer, applier, save_state, interval_seconds=3600)

    async def test_cycle_applies_only_reversible_actions(self, auto, ctx, settings, saves):
        before = read_bytes(settings.jobs_path)
        results = await auto.run_cycle()

        assert [r.action.type for r in results] == ["change_model", "change_model", "add_fallback"]
        assert all(r.status == "applied" for r in results)
        assert read_bytes(settings.jobs_path) != before
        assert ctx.state.last_optimization.applied is True
        assert saves == [ctx.state.last_optimization]

    async def test_cycles_do_not_overlap(self, auto):
        async with auto._cycle_lock:
            assert await auto.run_cycle() == []

    async def test_start_and_stop(self, auto):
        auto.start()
        assert auto.running
        await asyncio.wait_for(auto.stop(), timeout=1)
        assert not auto.running

    async def test_nothing_to_apply(self, ctx, settings):
        optimizer = build_optimizer(ctx, settings)
        applier = ActionApplier(ctx, optimizer.analyzer.jobs, optimizer.analyzer.agents, preview=False)

        async def save_state():
            raise AssertionError("nothing should be saved")

        auto = AutoOptimizer(ctx, optimizer, applier, save_state, interval_seconds=3600)
        assert await auto.run_cycle() == []
        assert ctx.state.last_optimization is None

    async def test_failing_cycle_keeps_loop_alive(self, ctx, settings):
        optimizer = build_optimizer(ctx, settings)
        applier = ActionApplier(ctx, optimizer.analyzer.jobs, optimizer.analyzer.agents, preview=False)
        calls = []

        def broken_plan():
            calls.append(1)
            raise RuntimeError("boom")

        optimizer.generate_plan = broken_plan

        async def save_state():
            pass

        auto = AutoOptimizer(ctx, optimizer, applier, save_state, interval_seconds=0.01)
        auto.start()
        await asyncio.sleep(0.1)

        assert len(calls) >= 2
        assert auto.running
        await asyncio.wait_for(auto.stop(), timeout=1)
        assert not auto.running

    async def test_stop_after_task_crash(self, auto):
        async def crash():
            raise RuntimeError("boom")

        auto._task = asyncio.create_task(crash())
        await asyncio.sleep(0)
        await auto.stop()
        assert auto._task is None
