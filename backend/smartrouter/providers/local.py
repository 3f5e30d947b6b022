"""Detection of local model servers (Ollama, MLX, LM Studio, vLLM, generic OpenAI-compatible).

Every check uses a short timeout and treats any error as "not running".
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from smartrouter.core.state import DetectedLocalServer
from smartrouter.observability.logger import get_logger

log = get_logger("providers.local")


def _is_openai_listing(data: Any) -> bool:
    return isinstance(data, dict) and isinstance(data.get("data"), list)


@dataclass(frozen=True)
class LocalServerCheck:
    type: str
    port: int
    health_path: str
    models_path: str
    detect: Callable[[Any], bool]


LOCAL_SERVERS = [
    LocalServerCheck("ollama", 11434, "/", "/api/tags", lambda data: isinstance(data, str) and "Ollama" in data),
    LocalServerCheck("mlx", 8080, "/v1/models", "/v1/models", _is_openai_listing),
    LocalServerCheck("lmstudio", 1234, "/v1/models", "/v1/models", _is_openai_listing),
    LocalServerCheck("vllm", 8000, "/health", "/v1/models", lambda data: data == "" or isinstance(data, dict)),
]


def extract_model_ids(data: Any) -> list[str]:
    if not isinstance(data, dict):
        return []
    if isinstance(data.get("data"), list):
        return [m["id"] for m in data["data"] if isinstance(m, dict) and isinstance(m.get("id"), str)]
    if isinstance(data.get("models"), list):
        return [m["name"] for m in data["models"] if isinstance(m, dict) and isinstance(m.get("name"), str)]
    return []


async def _get(client: httpx.AsyncClient, url: str) -> tuple[bool, Any]:
    try:
        resp = await client.get(url, headers={"Accept": "application/json"})
    except httpx.HTTPError as e:
        log.debug("local_check_failed", url=url, error=str(e))
        return False, None

    if resp.status_code >= 400:
        return False, None
    if "application/json" in resp.headers.get("content-type", ""):
        try:
            return True, resp.json()
        except ValueError:
            return False, None
    return True, resp.text


class LocalModelDetector:
    def __init__(self, host: str = "localhost", timeout: float = 2.0, transport: httpx.AsyncBaseTransport | None = None):
        self.host = host
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def _check(self, client: httpx.AsyncClient, check: LocalServerCheck) -> DetectedLocalServer | None:
        base_url = f"http://{self.host}:{check.port}"
        ok, data = await _get(client, f"{base_url}{check.health_path}")
        if not ok or not check.detect(data):
            return None

        if check.models_path == check.health_path:
            models = extract_model_ids(data)
        else:
            ok, listing = await _get(client, f"{base_url}{check.models_path}")
            models = extract_model_ids(listing) if ok else []

        return DetectedLocalServer(type=check.type, endpoint=base_url, models=models)

    async def _check_custom(self, client: httpx.AsyncClient, endpoint: str) -> DetectedLocalServer | None:
        ok, data = await _get(client, f"{endpoint.rstrip('/')}/v1/models")
        if not ok:
            return None
        models = extract_model_ids(data)
        if not models:
            return None
        return DetectedLocalServer(type="generic", endpoint=endpoint, models=models)

    async def detect(self, custom_endpoints: list[str] | None = None) -> list[DetectedLocalServer]:
        async with self._client() as client:
            found = await asyncio.gather(*(self._check(client, p) for p in LOCAL_SERVERS))
            servers = [s for s in found if s]
            for endpoint in custom_endpoints or []:
                server = await self._check_custom(client, endpoint)
                if server:
                    servers.append(server)

        for s in servers:
            log.info("local_server_detected", type=s.type, endpoint=s.endpoint, models=len(s.models))
        log.debug("local_detection_complete", servers=len(servers))
        return servers

    async def is_healthy(self, endpoint: str, server_type: str) -> bool:
        check = next((p for p in LOCAL_SERVERS if p.type == server_type), None)
        async with self._client() as client:
            if check is None:
                ok, _ = await _get(client, f"{endpoint.rstrip('/')}/v1/models")
                return ok
            ok, data = await _get(client, f"{endpoint.rstrip('/')}{check.health_path}")
            return ok and check.detect(data)

    async def refresh_models(self, endpoint: str, server_type: str) -> list[str]:
        check = next((p for p in LOCAL_SERVERS if p.type == server_type), None)
        path = check.models_path if check else "/v1/models"
        async with self._client() as client:
            ok, data = await _get(client, f"{endpoint.rstrip('/')}{path}")
        return extract_model_ids(data) if ok else []
