"""Token cost estimation for engine responses."""

from __future__ import annotations

import os
from dataclasses import dataclass

FREE_ENGINE_KINDS: frozenset[str] = frozenset({"local", "echo"})


@dataclass(slots=True)
class ModelPricing:
    """Per-model input/output pricing in USD per 1M tokens."""

    input_per_1m: float
    output_per_1m: float


BUILTIN_PRICING: dict[str, ModelPricing] = {
    "gpt-4o": ModelPricing(input_per_1m=5.0, output_per_1m=15.0),
    "gpt-4o-mini": ModelPricing(input_per_1m=0.15, output_per_1m=0.6),
    "claude-sonnet": ModelPricing(input_per_1m=3.0, output_per_1m=15.0),
    "claude-3-5-sonnet-20241022": ModelPricing(input_per_1m=3.0, output_per_1m=15.0),
    "claude-haiku": ModelPricing(input_per_1m=0.25, output_per_1m=1.25),
    "claude-3-haiku-20240307": ModelPricing(input_per_1m=0.25, output_per_1m=1.25),
}
DEFAULT_PRICING = ModelPricing(input_per_1m=1.0, output_per_1m=2.0)
ZERO_PRICING = ModelPricing(input_per_1m=0.0, output_per_1m=0.0)


def estimate_cost_usd(
    *,
    engine: str,
    model: str,
    kind: str | None,
    prompt_tokens: int,
    completion_tokens: int,
) -> float:
    """Estimate the cost of one response in USD from token counts."""

    pricing = lookup_pricing(engine=engine, model=model, kind=kind)
    return (prompt_tokens / 1_000_000) * pricing.input_per_1m + (
        completion_tokens / 1_000_000
    ) * pricing.output_per_1m


def lookup_pricing(*, engine: str, model: str, kind: str | None = None) -> ModelPricing:
    """Resolve pricing: env override, built-in table, free local kinds, default rate."""

    engine_key = engine.strip().lower()
    mapping = _parse_pricing_mapping(os.getenv("MULTISHOT_LLM_PRICING", ""))
    for key in ((engine_key, model.strip()), (engine_key, "*"), ("*", model.strip()), ("*", "*")):
        override = mapping.get(key)
        if override is not None:
            return override

    builtin = BUILTIN_PRICING.get(engine_key) or BUILTIN_PRICING.get(model.strip().lower())
    if builtin is not None:
        return builtin
    if kind in FREE_ENGINE_KINDS:
        return ZERO_PRICING
    return DEFAULT_PRICING


def _parse_pricing_mapping(raw: str) -> dict[tuple[str, str], ModelPricing]:
    """Parse `MULTISHOT_LLM_PRICING` mapping.

    Format:
    - `engine:model:input_per_1m:output_per_1m`
    - `engine=model:input_per_1m:output_per_1m` when the engine name has a colon
      (`ollama:llama3=llama3:8b:0:0`)
    - multiple entries separated by `,`
    - supports wildcards in engine/model (`*`)

    Prices are the last two `:` fields, so model ids may contain colons. Without
    `=` the engine name ends at the first colon.
    """

    parsed: dict[tuple[str, str], ModelPricing] = {}
    if not raw.strip():
        return parsed

    for entry in raw.split(","):
        value = entry.strip()
        if not value:
            continue
        parts = value.rsplit(":", 2)
        if len(parts) != 3:
            continue
        key, input_price, output_price = parts
        separator = "=" if "=" in key else ":"
        engine, found, model = (part.strip() for part in key.partition(separator))
        if not found or not engine or not model:
            continue
        try:
            input_per_1m = float(input_price)
            output_per_1m = float(output_price)
        except ValueError:
            continue
        if input_per_1m < 0 or output_per_1m < 0:
            continue
        parsed[(engine.lower(), model)] = ModelPricing(
            input_per_1m=input_per_1m,
            output_per_1m=output_per_1m,
        )
    return parsed
