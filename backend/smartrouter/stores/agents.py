import asyncio
import os
from typing import Any, Callable

from pydantic import BaseModel, Field

from smartrouter.errors import StoreIOError, TargetNotFound
from smartrouter.observability.logger import get_logger
from smartrouter.stores.files import read_json, write_json_atomic

log = get_logger("stores.agents")


class AgentConfig(BaseModel):
    id: str
    primary_model: str = "default"
    fallback_models: list[str] = Field(default_factory=list)
    system_prompt: str = ""
    available_providers: list[str] = Field(default_factory=list)
    providers_in_cooldown: list[str] = Field(default_factory=list)


class AgentStore:
    """Per-agent model settings under `<agents_dir>/<id>/agent/models.json`."""

    def __init__(self, agents_dir: str):
        self.agents_dir = agents_dir
        self.lock = asyncio.Lock()

    def models_path(self, agent_id: str) -> str:
        return os.path.join(self.agents_dir, agent_id, "agent", "models.json")

    def list_agents(self) -> list[str]:
        if not os.path.isdir(self.agents_dir):
            log.debug("agents_dir_missing", path=self.agents_dir)
            return []
        try:
            names = sorted(os.listdir(self.agents_dir))
        except OSError as e:
            log.error("agents_dir_unreadable", path=self.agents_dir, error=str(e))
            return []
        return [n for n in names if os.path.isdir(os.path.join(self.agents_dir, n, "agent"))]

    def load(self, agent_id: str) -> AgentConfig | None:
        if not os.path.isdir(os.path.join(self.agents_dir, agent_id, "agent")):
            return None

        config = AgentConfig(id=agent_id)
        path = self.models_path(agent_id)
        if os.path.exists(path):
            try:
                data = read_json(path)
            except StoreIOError as e:
                log.error("agent_config_unreadable", agent_id=agent_id, error=str(e))
                return None
            if isinstance(data, dict):
                config.primary_model = data.get("primary") or data.get("model") or "default"
                config.fallback_models = [f for f in data.get("fallbacks") or [] if isinstance(f, str)]
                config.system_prompt = data.get("systemPrompt") or ""

        auth_path = os.path.join(self.agents_dir, agent_id, "agent", "auth-profiles.json")
        if os.path.exists(auth_path):
            try:
                profiles = read_json(auth_path)
            except StoreIOError as e:
                log.debug("auth_profiles_unreadable", agent_id=agent_id, error=str(e))
                profiles = {}
            for key, profile in (profiles.items() if isinstance(profiles, dict) else []):
                provider = key.split(":")[0]
                if provider not in config.available_providers:
                    config.available_providers.append(provider)
                if isinstance(profile, dict) and profile.get("inCooldown") and provider not in config.providers_in_cooldown:
                    config.providers_in_cooldown.append(provider)

        return config

    def session_count(self, agent_id: str) -> int:
        sessions_dir = os.path.join(self.agents_dir, agent_id, "sessions")
        if not os.path.isdir(sessions_dir):
            return 0
        try:
            return sum(1 for f in os.listdir(sessions_dir) if f.endswith(".jsonl"))
        except OSError:
            return 0

    async def update(self, agent_id: str, mutate: Callable[[dict], Any]) -> Any:
        """Read-modify-write of the agent's models.json under the store lock."""
        async with self.lock:
            path = self.models_path(agent_id)
            if not os.path.exists(path):
                raise TargetNotFound("agent", agent_id)
            data = read_json(path)
            if not isinstance(data, dict):
                raise StoreIOError(f"unexpected agent config format: {path}")
            if not isinstance(data.get("fallbacks"), list):
                data["fallbacks"] = []
            result = mutate(data)
            write_json_atomic(path, data)
            return result
