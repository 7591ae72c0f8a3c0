"""Remote engine for the Anthropic messages API."""

from __future__ import annotations

from typing import Any

from multishot.orchestrator.engines.base import (
    BaseEngine,
    EngineCallError,
    EngineKind,
    GenerationOutput,
)
from multishot.orchestrator.models import PromptRequest, TokenUsage

DEFAULT_ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1"
ANTHROPIC_API_VERSION = "2023-06-01"


class AnthropicEngine(BaseEngine):
    kind = EngineKind.ANTHROPIC

    async def _generate(self, request: PromptRequest) -> GenerationOutput:
        if not self.config.api_key:
            raise EngineCallError("Anthropic API key not configured (set ANTHROPIC_API_KEY).")

        payload: dict[str, Any] = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": [{"role": "user", "content": request.prompt}],
        }
        if request.system_prompt:
            payload["system"] = request.system_prompt

        base_url = (self.config.endpoint or DEFAULT_ANTHROPIC_BASE_URL).rstrip("/")
        data = await self._post_json(
            f"{base_url}/messages",
            payload=payload,
            headers={
                "x-api-key": self.config.api_key,
                "anthropic-version": ANTHROPIC_API_VERSION,
            },
        )

        text_blocks = [
            block["text"] for block in data["content"] if block.get("type") == "text"
        ]
        if not text_blocks:
            raise EngineCallError(f"No text content in response from {self.config.name}.")
        return GenerationOutput(
            content="".join(text_blocks),
            model=data.get("model"),
            token_usage=_parse_usage(data.get("usage")),
            metadata={
                "stop_reason": data.get("stop_reason"),
                "response_id": data.get("id"),
            },
        )

    async def is_available(self) -> bool:
        return bool(self.config.api_key)


def _parse_usage(usage: Any) -> TokenUsage | None:
    if not isinstance(usage, dict):
        return None
    input_tokens = int(usage.get("input_tokens") or 0)
    output_tokens = int(usage.get("output_tokens") or 0)
    return TokenUsage(
        prompt_tokens=input_tokens,
        completion_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
    )
