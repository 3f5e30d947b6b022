import asyncio
import json

import pytest
from conftest import seed_workload
from smartrouter.tools.base import Tool, ToolResult
from smartrouter.tools.registry import ToolRegistry


class SlowTool(Tool):
    name = "slow"
    timeout_seconds = 0.01

    async def execute(self, **kwargs) -> ToolResult:
        await asyncio.sleep(1)
        return ToolResult(success=True, output="done")


class BrokenTool(Tool):
    name = "broken"

    async def execute(self, **kwargs) -> ToolResult:
        raise RuntimeError("boom")


@pytest.fixture
def tools(router):
    return ToolRegistry(router)


@pytest.mark.asyncio
class TestRegistry:
    async def test_router_tools_registered(self, tools):
        assert set(tools.get_tool_names()) == {
            "router_status", "router_predict", "router_providers", "router_set_usage",
            "router_reset", "router_analyze", "router_optimize", "router_mode",
            "router_recommend", "router_shift",
        }

    async def test_schemas(self, tools):
        schema = next(s for s in tools.get_tool_schemas() if s["name"] == "router_mode")
        assert schema["parameters"]["mode"]["enum"] == ["manual", "dry-run", "auto"]

    async def test_unknown_tool(self, tools):
        result = await tools.execute("nope", {})
        assert result.success is False
        assert result.error == "Unknown tool: nope"

    async def test_timeout(self):
        tools = ToolRegistry()
        tools.register(SlowTool())
        result = await tools.execute("slow", {})
        assert result.success is False
        assert "timed out" in result.error

    async def test_unexpected_error_captured(self):
        tools = ToolRegistry()
        tools.register(BrokenTool())
        result = await tools.execute("broken", {})
        assert result.success is False
        assert result.error == "boom"


@pytest.mark.asyncio
class TestRouterTools:
    async def test_status_json(self, tools):
        result = await tools.execute("router_status", {})
        report = json.loads(result.output)
        assert result.success
        assert report["mode"] == "manual"
        assert {p["id"] for p in report["providers"]} == {"anthropic", "openai", "openrouter"}

    async def test_status_text(self, tools):
        await tools.execute("router_set_usage", {"provider": "anthropic", "percent": 25})
        result = await tools.execute("router_status", {"provider": "anthropic", "format": "text"})
        lines = result.output.splitlines()
        assert lines[0] == "Mode: manual"
        assert lines[1] == "anthropic [premium] " + "█" * 5 + "░" * 15 + " 25% (ok)"

    async def test_set_usage(self, tools):
        result = await tools.execute("router_set_usage", {"provider": "anthropic", "tokens": 40_000})
        assert result.output == "Set anthropic usage to 40000/100000 (40.0%)"

    async def test_set_usage_unknown_provider(self, tools):
        result = await tools.execute("router_set_usage", {"provider": "nobody", "percent": 10})
        assert result.success is False
        assert result.error == "provider not found: nobody"

    async def test_set_usage_needs_provider(self, tools):
        result = await tools.execute("router_set_usage", {"percent": 10})
        assert result.error == "provider is required"

    async def test_reset(self, tools):
        result = await tools.execute("router_reset", {"provider": "anthropic"})
        assert result.output.startswith("Reset anthropic quota (next reset: 2026-03-11T07:00:00")

    async def test_predict(self, tools):
        result = await tools.execute("router_predict", {"horizon": 6})
        assert json.loads(result.output)["horizon_hours"] == 6

    async def test_analyze_rejects_unknown_type(self, tools):
        result = await tools.execute("router_analyze", {"type": "everything"})
        assert result.success is False

    async def test_analyze(self, tools, openclaw_dir):
        seed_workload(openclaw_dir)
        result = await tools.execute("router_analyze", {"type": "jobs"})
        report = json.loads(result.output)
        assert [j["id"] for j in report["jobs"]] == ["digest", "research"]
        assert report["agents"] == []

    async def test_optimize_preview(self, tools, openclaw_dir):
        seed_workload(openclaw_dir)
        result = await tools.execute("router_optimize", {"filter": "safe-only"})
        report = json.loads(result.output)
        assert report["mode"] == "preview"
        assert all(a["reversible"] for a in report["plan"]["actions"])

    async def test_mode(self, tools, router):
        assert (await tools.execute("router_mode", {})).output == "Current mode: manual"
        assert (await tools.execute("router_mode", {"mode": "dry-run"})).output == "Mode set to: dry-run"
        assert router.mode == "dry-run"
        assert (await tools.execute("router_mode", {"mode": "turbo"})).success is False

    async def test_recommend(self, tools):
        result = await tools.execute("router_recommend", {"prompt": "Summarize and list the open items"})
        assert json.loads(result.output)["task"]["primary_capability"] == "instruction"

    async def test_shift(self, tools, openclaw_dir):
        seed_workload(openclaw_dir)
        result = await tools.execute("router_shift", {"from_provider": "anthropic"})
        assert json.loads(result.output)["message"] == "Would shift 4 items from anthropic to openai"
