import os

import httpx
from pydantic import BaseModel

from smartrouter.observability.logger import get_logger
from smartrouter.quota.models import QuotaType

log = get_logger("providers.fetchers")

OPENROUTER_KEY_URL = "https://openrouter.ai/api/v1/auth/key"


class FetchedQuota(BaseModel):
    limit: float
    used: float
    remaining: float
    quota_type: QuotaType


class QuotaFetchResult(BaseModel):
    success: bool
    quota: FetchedQuota | None = None
    error: str | None = None


async def fetch_openrouter(api_key: str, client: httpx.AsyncClient) -> QuotaFetchResult:
    """OpenRouter reports credit in USD, so the quota is a budget."""
    try:
        resp = await client.get(OPENROUTER_KEY_URL, headers={"Authorization": f"Bearer {api_key}"})
    except httpx.HTTPError as e:
        return QuotaFetchResult(success=False, error=str(e))

    if resp.status_code >= 400:
        return QuotaFetchResult(success=False, error=f"API returned {resp.status_code}: {resp.reason_phrase}")

    try:
        data = resp.json().get("data")
    except (ValueError, AttributeError):
        data = None
    if not isinstance(data, dict):
        return QuotaFetchResult(success=False, error="Unexpected response format")

    return QuotaFetchResult(success=True, quota=FetchedQuota(
        limit=data.get("limit") or 0.0,
        used=data.get("usage") or 0.0,
        remaining=data.get("limit_remaining") or 0.0,
        quota_type="budget",
    ))


FETCHERS = {
    "openrouter": fetch_openrouter,
}


def has_quota_fetcher(provider: str) -> bool:
    return provider in FETCHERS


def api_key_for(provider: str) -> str | None:
    for name in (f"{provider.upper().replace('-', '_')}_API_KEY", f"{provider.upper()}_API_KEY"):
        if os.environ.get(name):
            return os.environ[name]
    return None


async def fetch_provider_quota(
    provider: str, api_key: str,
    timeout: float = 2.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> QuotaFetchResult:
    fetcher = FETCHERS.get(provider)
    if not fetcher:
        return QuotaFetchResult(success=False, error=f"No quota fetcher available for provider: {provider}")

    log.debug("fetching_provider_quota", provider=provider)
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        return await fetcher(api_key, client)
