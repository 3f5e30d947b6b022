"""Normalization of completion events into token counts."""

from typing import Any, Callable

from pydantic import BaseModel

from smartrouter.quota.models import UsageSource


class TokenUsage(BaseModel):
    tokens_in: int
    tokens_out: int


class CompletionEvent(BaseModel):
    model: str = "unknown"
    response: dict[str, Any] | None = None
    usage: dict[str, Any] | None = None
    source: UsageSource = "interactive"
    source_id: str | None = None
    cost: float | None = None


def _int(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


def _openai(usage: dict) -> TokenUsage | None:
    if "prompt_tokens" not in usage:
        return None
    return TokenUsage(tokens_in=_int(usage["prompt_tokens"]), tokens_out=_int(usage.get("completion_tokens")))


def _anthropic(usage: dict) -> TokenUsage | None:
    if "input_tokens" not in usage:
        return None
    return TokenUsage(tokens_in=_int(usage["input_tokens"]), tokens_out=_int(usage.get("output_tokens")))


def _total_only(usage: dict) -> TokenUsage | None:
    if "total_tokens" not in usage:
        return None
    total = _int(usage["total_tokens"])
    half = total // 2
    return TokenUsage(tokens_in=half, tokens_out=total - half)


# Checked in order; first match wins
USAGE_SHAPES: list[Callable[[dict], TokenUsage | None]] = [_openai, _anthropic, _total_only]


def extract_usage(payload: Any) -> TokenUsage | None:
    """Token counts from a provider response or a bare usage mapping.

    Returns None when no known shape matches; callers skip recording.
    """
    if not isinstance(payload, dict):
        return None
    usage = payload.get("usage", payload)
    if not isinstance(usage, dict):
        return None

    for shape in USAGE_SHAPES:
        result = shape(usage)
        if result is not None:
            return result
    return None


def infer_provider_from_model(model: str) -> str:
    if "/" in model:
        return model.split("/", 1)[0]
    if model.startswith("claude"):
        return "anthropic"
    if model.startswith(("gpt-", "o1", "o3")):
        return "openai"
    if model.startswith("gemini"):
        return "google"
    if model.startswith("glm"):
        return "zai"
    if model.startswith("kimi"):
        return "kimi"
    return "unknown"
