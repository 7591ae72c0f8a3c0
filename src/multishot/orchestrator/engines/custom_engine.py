"""Engine for user-defined HTTP JSON endpoints."""

from __future__ import annotations

from typing import Any

from multishot.orchestrator.engines.base import (
    BaseEngine,
    EngineCallError,
    EngineKind,
    GenerationOutput,
)
from multishot.orchestrator.models import PromptRequest, TokenUsage

DEFAULT_RESPONSE_FIELDS: tuple[str, ...] = ("content", "response", "text", "output")


class CustomEngine(BaseEngine):
    """POSTs `{prompt, system, model, ...}` to `endpoint` and reads a text field back.

    Options: `response_field` pins the JSON key holding the text, and
    `health_path` is appended to the endpoint for availability probes.
    """

    kind = EngineKind.CUSTOM

    async def _generate(self, request: PromptRequest) -> GenerationOutput:
        if not self.config.endpoint:
            raise EngineCallError(
                f"No endpoint configured for custom engine {self.config.name} "
                "(set MULTISHOT_CUSTOM_ENDPOINT).",
            )

        payload: dict[str, Any] = {
            "model": self.config.model,
            "prompt": request.prompt,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }
        if request.system_prompt:
            payload["system"] = request.system_prompt
        headers = None
        if self.config.api_key:
            headers = {"Authorization": f"Bearer {self.config.api_key}"}
        data = await self._post_json(self.config.endpoint, payload=payload, headers=headers)

        content = _extract_content(data, self.config.options.get("response_field"))
        if content is None:
            raise EngineCallError(f"No text content in response from {self.config.name}.")
        return GenerationOutput(
            content=content,
            model=data.get("model") if isinstance(data.get("model"), str) else None,
            token_usage=_parse_usage(data.get("usage")),
            metadata={"endpoint": self.config.endpoint},
        )

    async def is_available(self) -> bool:
        if not self.config.endpoint:
            return False
        health_path = str(self.config.options.get("health_path", ""))
        return await self._probe(self.config.endpoint.rstrip("/") + health_path)


def _extract_content(data: dict[str, Any], response_field: Any) -> str | None:
    fields = (str(response_field),) if response_field else DEFAULT_RESPONSE_FIELDS
    for key in fields:
        value = data.get(key)
        if isinstance(value, str):
            return value
    return None


def _parse_usage(usage: Any) -> TokenUsage | None:
    if not isinstance(usage, dict):
        return None
    prompt_tokens = int(usage.get("prompt_tokens") or usage.get("input_tokens") or 0)
    completion_tokens = int(usage.get("completion_tokens") or usage.get("output_tokens") or 0)
    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=int(usage.get("total_tokens") or prompt_tokens + completion_tokens),
    )
