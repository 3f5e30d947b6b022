import asyncio
import time

from smartrouter.core.service import SmartRouter
from smartrouter.errors import SmartRouterError
from smartrouter.observability.logger import get_logger
from smartrouter.tools.base import Tool, ToolResult
from smartrouter.tools.router_tools import router_tools

log = get_logger("tools")


class ToolRegistry:
    """Registers router tools and executes them with timing and error capture."""

    def __init__(self, router: SmartRouter | None = None):
        self.tools: dict[str, Tool] = {}
        if router is not None:
            for tool in router_tools(router):
                self.register(tool)

    def register(self, tool: Tool):
        self.tools[tool.name] = tool
        log.info("tool_registered", tool=tool.name)

    async def execute(self, tool_name: str, parameters: dict) -> ToolResult:
        if tool_name not in self.tools:
            return ToolResult(success=False, output="", error=f"Unknown tool: {tool_name}")

        tool = self.tools[tool_name]
        start = time.time()

        try:
            result = await asyncio.wait_for(
                tool.execute(**parameters),
                timeout=tool.timeout_seconds,
            )
        except asyncio.TimeoutError:
            log.error("tool_timeout", tool=tool_name, timeout=tool.timeout_seconds)
            return ToolResult(success=False, output="", error=f"Tool timed out after {tool.timeout_seconds}s")
        except SmartRouterError as e:
            log.warning("tool_failed", tool=tool_name, error=str(e))
            return ToolResult(success=False, output="", error=str(e))
        except Exception as e:
            log.error("tool_error", tool=tool_name, error=str(e))
            return ToolResult(success=False, output="", error=str(e))

        duration_ms = int((time.time() - start) * 1000)
        log.info("tool_executed", tool=tool_name, success=result.success, duration_ms=duration_ms)
        return result

    def get_tool_schemas(self) -> list[dict]:
        return [tool.get_schema() for tool in self.tools.values()]

    def get_tool_names(self) -> list[str]:
        return list(self.tools.keys())
