import re

from smartrouter.capabilities.models import CAPABILITIES, CapabilitySource, LatencyClass, ModelCapabilities
from smartrouter.context import RouterContext

# 0-1, higher is better
DEFAULT_MODEL_SCORES: dict[str, dict[str, float]] = {
    # Anthropic
    "claude-opus-4-5": {"coding": 0.95, "reasoning": 0.98, "creative": 0.92, "instruction": 0.95, "context": 0.90, "speed": 0.50},
    "claude-opus-4-6": {"coding": 0.96, "reasoning": 0.98, "creative": 0.93, "instruction": 0.96, "context": 0.92, "speed": 0.55},
    "claude-sonnet-4-5": {"coding": 0.90, "reasoning": 0.92, "creative": 0.88, "instruction": 0.90, "context": 0.88, "speed": 0.75},
    "claude-haiku-4-5": {"coding": 0.75, "reasoning": 0.78, "creative": 0.72, "instruction": 0.80, "context": 0.70, "speed": 0.95},
    # OpenAI
    "gpt-5.3-codex": {"coding": 0.97, "reasoning": 0.95, "creative": 0.85, "instruction": 0.92, "context": 0.95, "speed": 0.60},
    "gpt-5.2": {"coding": 0.94, "reasoning": 0.93, "creative": 0.88, "instruction": 0.90, "context": 0.92, "speed": 0.65},
    "gpt-5-mini": {"coding": 0.82, "reasoning": 0.80, "creative": 0.75, "instruction": 0.82, "context": 0.80, "speed": 0.90},
    "gpt-5-nano": {"coding": 0.70, "reasoning": 0.68, "creative": 0.65, "instruction": 0.72, "context": 0.65, "speed": 0.98},
    "gpt-4o": {"coding": 0.88, "reasoning": 0.88, "creative": 0.85, "instruction": 0.88, "context": 0.85, "speed": 0.80},
    "gpt-4o-mini": {"coding": 0.78, "reasoning": 0.75, "creative": 0.72, "instruction": 0.78, "context": 0.72, "speed": 0.92},
    # Google
    "gemini-2.5-flash": {"coding": 0.85, "reasoning": 0.83, "creative": 0.80, "instruction": 0.85, "context": 0.88, "speed": 0.85},
    "gemini-2.5-flash-lite": {"coding": 0.72, "reasoning": 0.70, "creative": 0.68, "instruction": 0.72, "context": 0.70, "speed": 0.95},
    "gemini-3-flash-preview": {"coding": 0.88, "reasoning": 0.86, "creative": 0.82, "instruction": 0.88, "context": 0.90, "speed": 0.82},
    # Z.ai
    "glm-4.7": {"coding": 0.65, "reasoning": 0.62, "creative": 0.60, "instruction": 0.65, "context": 0.75, "speed": 0.70},
    # Kimi
    "kimi-code/kimi-for-coding": {"coding": 0.80, "reasoning": 0.75, "creative": 0.65, "instruction": 0.78, "context": 0.85, "speed": 0.72},
    # Typical local MLX / Ollama model
    "local-default": {"coding": 0.60, "reasoning": 0.55, "creative": 0.50, "instruction": 0.58, "context": 0.40, "speed": 0.98},
}

OVERALL_WEIGHTS = {
    "coding": 0.25,
    "reasoning": 0.25,
    "creative": 0.15,
    "instruction": 0.20,
    "context": 0.10,
    "speed": 0.05,
}

NEUTRAL_SCORE = 0.5


def normalize_model_id(model_id: str) -> str:
    normalized = re.sub(r"^[^/]+/", "", model_id)
    normalized = re.sub(r"-\d{8}$", "", normalized)
    return re.sub(r"-\d+$", "", normalized)


def find_default_scores(model_id: str) -> dict[str, float] | None:
    if model_id in DEFAULT_MODEL_SCORES:
        return DEFAULT_MODEL_SCORES[model_id]

    normalized = normalize_model_id(model_id)
    if normalized in DEFAULT_MODEL_SCORES:
        return DEFAULT_MODEL_SCORES[normalized]

    for key, scores in DEFAULT_MODEL_SCORES.items():
        if key in model_id or model_id in key:
            return scores
    return None


def estimate_context_window(model_id: str) -> int:
    name = model_id.lower()
    if "128k" in name:
        return 128_000
    if "200k" in name:
        return 200_000
    if "1m" in name:
        return 1_000_000
    if "2m" in name:
        return 2_000_000

    if "claude" in name:
        return 200_000
    if "gpt-5" in name or "gpt-4" in name:
        return 128_000
    if "gemini" in name:
        return 1_000_000
    return 32_000


def estimate_max_output_tokens(model_id: str) -> int:
    name = model_id.lower()
    if "opus" in name or "sonnet" in name:
        return 8192
    if "haiku" in name:
        return 4096
    if "gpt-5" in name or "gpt-4" in name:
        return 16_384
    if "gemini" in name:
        return 8192
    return 4096


def latency_class(speed: float) -> LatencyClass:
    if speed >= 0.85:
        return "fast"
    if speed >= 0.6:
        return "medium"
    return "slow"


class CapabilityScorer:
    """Per-model capability vectors, cached by (provider, model).

    The cache has no eviction; `clear_cache` drops everything.
    """

    def __init__(self, ctx: RouterContext):
        self.ctx = ctx
        self.log = ctx.get_logger("capabilities.scorer")
        self._cache: dict[tuple[str, str], ModelCapabilities] = {}

    def get_capabilities(
        self, model_id: str, provider: str,
        manual_overrides: dict[str, float] | None = None,
    ) -> ModelCapabilities:
        key = (provider, model_id)
        if manual_overrides is None and key in self._cache:
            return self._cache[key]

        defaults = find_default_scores(model_id)
        if defaults is None:
            self.log.debug("no_default_scores", model=model_id, provider=provider)

        scores = {cap: NEUTRAL_SCORE for cap in CAPABILITIES}
        if defaults:
            scores.update({cap: v for cap, v in defaults.items() if cap in scores})
        if manual_overrides:
            scores.update({cap: float(v) for cap, v in manual_overrides.items() if cap in scores})

        if manual_overrides:
            source: CapabilitySource = "manual"
        elif defaults:
            source = "default"
        else:
            source = "inferred"

        caps = ModelCapabilities(
            model_id=model_id,
            provider=provider,
            scores=scores,
            context_window=estimate_context_window(model_id),
            max_output_tokens=estimate_max_output_tokens(model_id),
            latency_class=latency_class(scores["speed"]),
            source=source,
            last_updated=self.ctx.now(),
        )
        self._cache[key] = caps
        return caps

    def overall_score(self, model_id: str, provider: str) -> float:
        caps = self.get_capabilities(model_id, provider)
        return sum(caps.scores[cap] * weight for cap, weight in OVERALL_WEIGHTS.items())

    def compare(self, model_a: str, model_b: str, capability: str) -> float:
        """Positive when model_a is stronger on `capability`."""
        a = self.get_capabilities(model_a, "unknown")
        b = self.get_capabilities(model_b, "unknown")
        return a.scores[capability] - b.scores[capability]

    def update_from_external(
        self, model_id: str, provider: str,
        scores: dict[str, float], source: CapabilitySource,
    ) -> ModelCapabilities:
        existing = self.get_capabilities(model_id, provider)
        merged = {**existing.scores, **{k: float(v) for k, v in scores.items() if k in existing.scores}}
        updated = existing.model_copy(update={
            "scores": merged,
            "latency_class": latency_class(merged["speed"]),
            "source": source,
            "last_updated": self.ctx.now(),
        })
        self._cache[(provider, model_id)] = updated
        self.log.debug("capabilities_updated", model=model_id, provider=provider, source=source)
        return updated

    def clear_cache(self):
        self._cache.clear()
        self.log.debug("capability_cache_cleared")
