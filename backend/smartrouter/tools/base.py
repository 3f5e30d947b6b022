from abc import ABC, abstractmethod

from pydantic import BaseModel


class ToolResult(BaseModel):
    success: bool
    output: str
    error: str | None = None


class Tool(ABC):
    """Base class for router commands exposed to an agent runtime."""

    name: str = "base_tool"
    description: str = "A tool"
    parameters: dict = {}
    timeout_seconds: int = 10

    @abstractmethod
    async def execute(self, **kwargs) -> ToolResult:
        pass

    def get_schema(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }
