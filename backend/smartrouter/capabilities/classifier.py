"""Keyword-based task classification.

Signals are matched as lowercase substrings, so "classify" counts as a hit
for "class". The classifier is intentionally crude: it only needs to tell
code from prose from trivial chores well enough to pick a model tier.
"""

import re

from smartrouter.capabilities.models import Complexity, TaskProfile
from smartrouter.config import QualityThresholds

CODING_SIGNALS = [
    "code", "function", "class", "implement", "debug", "fix bug",
    "write a script", "api", "endpoint", "database", "sql",
    "typescript", "javascript", "python", "```",
]

REASONING_SIGNALS = [
    "analyze", "design", "architect", "plan", "strategy", "evaluate",
    "compare", "consider", "trade-off", "pros and cons", "reasoning",
    "think through", "step by step",
]

CREATIVE_SIGNALS = [
    "write", "story", "blog", "article", "creative", "brainstorm",
    "ideas", "suggest", "generate content", "marketing",
]

SIMPLE_SIGNALS = [
    "summarize", "list", "check", "status", "count", "format",
    "convert", "extract", "parse",
]

LATENCY_SIGNALS = ["interactive", "real-time", "quick", "fast response"]

COMPLEXITY_INDICATORS = [
    "multi-step", "complex", "detailed", "comprehensive", "in-depth",
    "first,", "then,", "after that", "step 1", "step 2", "finally",
]

TOOL_PATTERNS = [
    (re.compile(r"\bmessage\s*\("), "message"),
    (re.compile(r"\bread\s*\("), "read"),
    (re.compile(r"\bwrite\s*\("), "write"),
    (re.compile(r"\bexec\s*\("), "exec"),
    (re.compile(r"\bfetch\s*\("), "fetch"),
    (re.compile(r"\bsearch\s*\("), "search"),
    (re.compile(r"use the message tool"), "message"),
    (re.compile(r"use the read tool"), "read"),
    (re.compile(r"use the write tool"), "write"),
]

SHORT_PROMPT_CHARS = 500
LONG_PROMPT_CHARS = 5000


def _hits(text: str, signals: list[str]) -> int:
    return sum(1 for s in signals if s in text)


def classify_prompt(text: str, thresholds: QualityThresholds | None = None) -> TaskProfile:
    thresholds = thresholds or QualityThresholds()
    lower = (text or "").lower()

    coding = _hits(lower, CODING_SIGNALS)
    reasoning = _hits(lower, REASONING_SIGNALS)
    creative = _hits(lower, CREATIVE_SIGNALS)
    simple = _hits(lower, SIMPLE_SIGNALS)
    best = max(coding, reasoning, creative, simple)

    if best == 0:
        primary, threshold, winner = "instruction", 0.6, None
    elif simple == best and simple >= 2:
        primary, threshold, winner = "instruction", thresholds.simple, "simple"
    elif coding == best:
        primary, threshold, winner = "coding", thresholds.coding, "coding"
    elif reasoning == best:
        primary, threshold, winner = "reasoning", thresholds.reasoning, "reasoning"
    elif creative == best:
        primary, threshold, winner = "creative", thresholds.creative, "creative"
    else:
        # A lone "simple" hit ties the max but cannot win
        primary, threshold, winner = "instruction", 0.6, None

    secondary = []
    for bucket, count, capability in (
        ("coding", coding, "coding"),
        ("reasoning", reasoning, "reasoning"),
        ("creative", creative, "creative"),
        ("simple", simple, "instruction"),
    ):
        if count and bucket != winner and capability != primary and capability not in secondary:
            secondary.append(capability)

    if len(text or "") < SHORT_PROMPT_CHARS:
        context_length = "short"
    elif len(text) > LONG_PROMPT_CHARS:
        context_length = "long"
    else:
        context_length = "medium"

    return TaskProfile(
        primary_capability=primary,
        secondary_capabilities=secondary,
        context_length=context_length,
        latency_sensitive=any(s in lower for s in LATENCY_SIGNALS),
        quality_threshold=threshold,
    )


def infer_complexity(text: str) -> Complexity:
    text = text or ""
    score = _hits(text.lower(), COMPLEXITY_INDICATORS)

    if len(text) > 3000:
        score += 2
    elif len(text) > 1000:
        score += 1

    if score >= 3:
        return "complex"
    if score >= 1:
        return "moderate"
    return "simple"


def detect_tools_used(text: str) -> list[str]:
    lower = (text or "").lower()
    tools = []
    for pattern, name in TOOL_PATTERNS:
        if pattern.search(lower) and name not in tools:
            tools.append(name)
    return tools
