import json
import os

import pytest
from conftest import make_agent, read_bytes, write_jobs, write_runs
from smartrouter.errors import StoreIOError, TargetNotFound
from smartrouter.stores.agents import AgentStore
from smartrouter.stores.files import read_json, write_json_atomic
from smartrouter.stores.jobs import JobStore, RunLog


@pytest.fixture
def jobs(settings):
    return JobStore(settings.jobs_path)


class TestJobStore:
    @pytest.mark.parametrize("layout", ["list", "wrapped", "keyed"])
    def test_accepts_all_layouts(self, openclaw_dir, jobs, layout):
        entries = [{"id": "a", "schedule": "0 9 * * *", "model": "gpt-5.2"}, {"id": "b", "enabled": False}]
        data = {
            "list": entries,
            "wrapped": {"jobs": entries},
            "keyed": {e["id"]: e for e in entries},
        }[layout]
        write_jobs(openclaw_dir, data)
        loaded = jobs.load_jobs()
        assert [j.id for j in loaded] == ["a", "b"]
        assert loaded[1].enabled is False
        assert loaded[1].schedule == "* * * * *"

    def test_missing_or_broken_file_is_empty(self, openclaw_dir, jobs):
        assert jobs.load_jobs() == []
        with open(jobs.path, "w") as f:
            f.write("{not json")
        assert jobs.load_jobs() == []

    def test_invalid_entries_skipped(self, openclaw_dir, jobs):
        write_jobs(openclaw_dir, [{"id": "a"}, {"name": "no id"}])
        assert [j.id for j in jobs.load_jobs()] == ["a"]

    @pytest.mark.asyncio
    async def test_update_changes_only_target(self, openclaw_dir, jobs):
        write_jobs(openclaw_dir, {"jobs": [
            {"id": "a", "model": "m1", "custom": 1},
            {"id": "b", "model": "m2"},
        ]})

        previous = await jobs.update("a", lambda job: job.__setitem__("model", "m3") or "m1")

        assert previous == "m1"
        data = read_json(jobs.path)
        assert data == {"jobs": [{"id": "a", "model": "m3", "custom": 1}, {"id": "b", "model": "m2"}]}
        assert not os.path.exists(f"{jobs.path}.tmp")

    @pytest.mark.asyncio
    async def test_update_unknown_job(self, openclaw_dir, jobs):
        path = write_jobs(openclaw_dir, [{"id": "a"}])
        before = read_bytes(path)
        with pytest.raises(TargetNotFound):
            await jobs.update("zzz", lambda job: None)
        assert read_bytes(path) == before

    @pytest.mark.asyncio
    async def test_update_without_file(self, jobs):
        with pytest.raises(StoreIOError):
            await jobs.update("a", lambda job: None)


class TestRunLog:
    def test_load(self, openclaw_dir, settings):
        write_runs(openclaw_dir, "a", [
            {"timestamp": 1, "tokensIn": 100, "tokensOut": 50, "durationMs": 1200, "success": True},
            {"timestamp": 2, "tokensIn": 10, "tokensOut": 0, "success": False},
        ])
        with open(os.path.join(settings.runs_dir, "a.jsonl"), "a") as f:
            f.write("\nnot json\n")

        runs = RunLog(settings.runs_dir).load("a")
        assert [r.total_tokens for r in runs] == [150, 10]
        assert runs[0].duration_ms == 1200
        assert runs[1].success is False

    def test_ids_contained_in_other_ids(self, openclaw_dir, settings):
        write_runs(openclaw_dir, "daily-report", [{"tokensIn": 10_000, "success": False}])
        write_runs(openclaw_dir, "report", [{"tokensIn": 150, "tokensOut": 50, "success": True}])
        log = RunLog(settings.runs_dir)

        assert [r.total_tokens for r in log.load("report")] == [200]
        assert [r.total_tokens for r in log.load("daily-report")] == [10_000]
        assert log.load("daily") == []

    def test_missing(self, settings, tmp_path):
        assert RunLog(settings.runs_dir).load("nope") == []
        assert RunLog(str(tmp_path / "absent")).load("a") == []


class TestAgentStore:
    def test_load(self, openclaw_dir, settings):
        make_agent(openclaw_dir, "main", {"primary": "claude-sonnet-4-5", "fallbacks": ["gpt-5.2", 3]}, sessions=2)
        with open(os.path.join(openclaw_dir, "agents", "main", "agent", "auth-profiles.json"), "w") as f:
            json.dump({"anthropic:default": {}, "openai:work": {"inCooldown": True}}, f)

        store = AgentStore(settings.agents_dir)
        config = store.load("main")
        assert config.primary_model == "claude-sonnet-4-5"
        assert config.fallback_models == ["gpt-5.2"]
        assert config.available_providers == ["anthropic", "openai"]
        assert config.providers_in_cooldown == ["openai"]
        assert store.session_count("main") == 2

    def test_model_key_and_defaults(self, openclaw_dir, settings):
        make_agent(openclaw_dir, "legacy", {"model": "gpt-5-mini"})
        make_agent(openclaw_dir, "bare")
        store = AgentStore(settings.agents_dir)
        assert store.load("legacy").primary_model == "gpt-5-mini"
        assert store.load("bare").primary_model == "default"
        assert store.load("ghost") is None
        assert store.list_agents() == ["bare", "legacy"]

    @pytest.mark.asyncio
    async def test_update_adds_fallbacks_list(self, openclaw_dir, settings):
        path = make_agent(openclaw_dir, "main", {"primary": "a"})
        store = AgentStore(settings.agents_dir)
        await store.update("main", lambda config: config["fallbacks"].append("b"))
        assert read_json(path) == {"primary": "a", "fallbacks": ["b"]}

    @pytest.mark.asyncio
    async def test_update_missing_agent(self, settings):
        with pytest.raises(TargetNotFound):
            await AgentStore(settings.agents_dir).update("ghost", lambda config: None)


class TestFiles:
    def test_write_then_read(self, tmp_path):
        path = str(tmp_path / "x.json")
        write_json_atomic(path, {"a": [1, 2]})
        assert read_json(path) == {"a": [1, 2]}

    def test_unserializable_leaves_target_untouched(self, tmp_path):
        path = str(tmp_path / "x.json")
        write_json_atomic(path, {"a": 1})
        with pytest.raises(StoreIOError):
            write_json_atomic(path, {"a": object()})
        assert read_json(path) == {"a": 1}
        assert not os.path.exists(f"{path}.tmp")

    def test_read_missing(self, tmp_path):
        with pytest.raises(StoreIOError):
            read_json(str(tmp_path / "missing.json"))
