"""Coarse heuristics for response quality, task complexity and token counts.

These are reporting proxies only. Nothing in dispatch depends on them.
"""

from __future__ import annotations

import math
import re

from multishot.orchestrator.models import EngineResponse

CHARS_PER_TOKEN = 4
MIN_SCORE = 1
MAX_SCORE = 10

_ENGINE_QUALITY_PRIORS: dict[str, float] = {
    "gpt-4o": 2.0,
    "gpt-4o-mini": 1.0,
    "claude-sonnet": 2.0,
    "claude-haiku": 1.0,
    "tinyllama": -1.0,
}
COMPLEXITY_KEYWORDS: tuple[str, ...] = (
    "architecture",
    "design",
    "implement",
    "system",
    "algorithm",
    "optimiz",
    "performance",
    "scalability",
    "security",
    "integration",
    "analysis",
    "strategy",
    "framework",
)
# list markers count only at the start of a word: `(see Kafka)` is not `a)`
_MULTI_PART_PATTERN = re.compile(r"(?:^|\s)(?:1\)|a\))|\bfirst\b")


def estimate_tokens(text: str) -> int:
    """Rough token count, about four characters per token."""

    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_quality_score(engine_name: str, response: EngineResponse) -> float | None:
    """Score a successful response in `[1, 10]`; error responses have no score."""

    if not response.ok:
        return None

    score = 5.0
    length = len(response.content)
    if 100 < length < 5000:
        score += 1
    elif length < 50:
        score -= 1

    if 1000 < response.execution_time_ms < 30_000:
        score += 1
    elif response.execution_time_ms > 60_000:
        score -= 1

    score += _ENGINE_QUALITY_PRIORS.get(engine_name.strip().lower(), 0.0)

    if "```" in response.content:
        score += 0.5
    if "\n-" in response.content or "\n*" in response.content:
        score += 0.5
    if length > 500:
        score += 0.5

    return _clamp(score)


def estimate_task_complexity(prompt: str) -> int:
    """Score how demanding a prompt looks, in `[1, 10]`."""

    complexity = 3
    if len(prompt) > 500:
        complexity += 1
    if len(prompt) > 1000:
        complexity += 1

    lowered = prompt.lower()
    keyword_matches = sum(1 for keyword in COMPLEXITY_KEYWORDS if keyword in lowered)
    complexity += min(3, keyword_matches)

    if prompt.count("?") > 2:
        complexity += 1
    if _MULTI_PART_PATTERN.search(lowered):
        complexity += 2

    return int(_clamp(complexity))


def _clamp(value: float) -> float:
    return min(MAX_SCORE, max(MIN_SCORE, value))
