"""Remote engine for OpenAI-compatible chat completion APIs."""

from __future__ import annotations

from typing import Any

from multishot.orchestrator.engines.base import (
    BaseEngine,
    EngineCallError,
    EngineKind,
    GenerationOutput,
)
from multishot.orchestrator.models import PromptRequest, TokenUsage

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"


class OpenAIEngine(BaseEngine):
    """Chat completions engine (`gpt-4o`, `gpt-4o-mini`, compatible gateways)."""

    kind = EngineKind.OPENAI

    async def _generate(self, request: PromptRequest) -> GenerationOutput:
        if not self.config.api_key:
            raise EngineCallError("OpenAI API key not configured (set OPENAI_API_KEY).")

        messages: list[dict[str, str]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.prompt})

        base_url = (self.config.endpoint or DEFAULT_OPENAI_BASE_URL).rstrip("/")
        data = await self._post_json(
            f"{base_url}/chat/completions",
            payload={
                "model": self.config.model,
                "messages": messages,
                "max_tokens": self.config.max_tokens,
                "temperature": self.config.temperature,
            },
            headers={"Authorization": f"Bearer {self.config.api_key}"},
        )

        choice = data["choices"][0]
        return GenerationOutput(
            content=choice["message"].get("content") or "",
            model=data.get("model"),
            token_usage=_parse_usage(data.get("usage")),
            metadata={
                "finish_reason": choice.get("finish_reason"),
                "response_id": data.get("id"),
            },
        )

    async def is_available(self) -> bool:
        return bool(self.config.api_key)


def _parse_usage(usage: Any) -> TokenUsage | None:
    if not isinstance(usage, dict):
        return None
    prompt_tokens = int(usage.get("prompt_tokens") or 0)
    completion_tokens = int(usage.get("completion_tokens") or 0)
    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=int(usage.get("total_tokens") or prompt_tokens + completion_tokens),
    )
