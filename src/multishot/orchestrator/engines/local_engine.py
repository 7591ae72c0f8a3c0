"""Engine for locally hosted models (ollama, llama.cpp or a raw JSON endpoint)."""

from __future__ import annotations

from typing import Any

from multishot.orchestrator.engines.base import (
    BaseEngine,
    EngineCallError,
    EngineCapabilities,
    EngineKind,
    GenerationOutput,
)
from multishot.orchestrator.models import PromptRequest, TokenUsage

DEFAULT_LOCAL_ENDPOINT = "http://localhost:11434"
LOCAL_FORMATS: tuple[str, ...] = ("ollama", "llamacpp", "raw")
_LLAMACPP_STOP = ["</s>", "\n\nUser:", "\n\nAssistant:"]


class LocalEngine(BaseEngine):
    """Locally hosted model; the `format` option picks the server dialect."""

    kind = EngineKind.LOCAL

    @property
    def format(self) -> str:
        value = str(self.config.options.get("format", "ollama"))
        if value not in LOCAL_FORMATS:
            raise ValueError(
                f"Unsupported local engine format: {value!r}. "
                f"Expected one of: {', '.join(LOCAL_FORMATS)}.",
            )
        return value

    @property
    def endpoint(self) -> str:
        return (self.config.endpoint or DEFAULT_LOCAL_ENDPOINT).rstrip("/")

    async def _generate(self, request: PromptRequest) -> GenerationOutput:
        fmt = self.format
        if fmt == "ollama":
            return await self._call_ollama(request)
        if fmt == "llamacpp":
            return await self._call_llamacpp(request)
        return await self._call_raw(request)

    async def _call_ollama(self, request: PromptRequest) -> GenerationOutput:
        payload: dict[str, Any] = {
            "model": self.config.model,
            "prompt": request.prompt,
            "stream": False,
            "options": {
                "num_predict": self.config.max_tokens,
                "temperature": self.config.temperature,
            },
        }
        if request.system_prompt:
            payload["system"] = request.system_prompt
        data = await self._post_json(f"{self.endpoint}/api/generate", payload=payload)

        usage = None
        prompt_tokens = data.get("prompt_eval_count")
        completion_tokens = data.get("eval_count")
        if prompt_tokens is not None and completion_tokens is not None:
            usage = TokenUsage(
                prompt_tokens=int(prompt_tokens),
                completion_tokens=int(completion_tokens),
                total_tokens=int(prompt_tokens) + int(completion_tokens),
            )
        return GenerationOutput(
            content=data["response"],
            model=data.get("model"),
            token_usage=usage,
            metadata={"format": "ollama", "endpoint": self.endpoint},
        )

    async def _call_llamacpp(self, request: PromptRequest) -> GenerationOutput:
        data = await self._post_json(
            f"{self.endpoint}/completion",
            payload={
                "prompt": _chat_prompt(request),
                "temperature": self.config.temperature,
                "n_predict": self.config.max_tokens,
                "stop": _LLAMACPP_STOP,
            },
        )
        usage = None
        if "tokens_evaluated" in data and "tokens_predicted" in data:
            usage = TokenUsage(
                prompt_tokens=int(data["tokens_evaluated"]),
                completion_tokens=int(data["tokens_predicted"]),
                total_tokens=int(data["tokens_evaluated"]) + int(data["tokens_predicted"]),
            )
        return GenerationOutput(
            content=data["content"],
            token_usage=usage,
            metadata={"format": "llamacpp", "endpoint": self.endpoint},
        )

    async def _call_raw(self, request: PromptRequest) -> GenerationOutput:
        data = await self._post_json(
            self.endpoint,
            payload={
                "prompt": _chat_prompt(request),
                "temperature": self.config.temperature,
                "max_tokens": self.config.max_tokens,
            },
        )
        content = data.get("response") or data.get("content") or data.get("text")
        if content is None:
            raise EngineCallError(f"No text content in response from {self.config.name}.")
        return GenerationOutput(
            content=str(content),
            metadata={"format": "raw", "endpoint": self.endpoint},
        )

    async def is_available(self) -> bool:
        fmt = self.format
        if fmt == "ollama":
            return await self._probe(f"{self.endpoint}/api/tags")
        if fmt == "llamacpp":
            return await self._probe(f"{self.endpoint}/health")
        return await self._probe(self.endpoint)

    def capabilities(self) -> EngineCapabilities:
        return EngineCapabilities(
            max_tokens=self.config.max_tokens,
            supports_streaming=self.format == "ollama",
            free=True,
        )

    def get_config(self) -> dict[str, Any]:
        config = super().get_config()
        config["format"] = self.format
        return config


def _chat_prompt(request: PromptRequest) -> str:
    if request.system_prompt:
        return f"System: {request.system_prompt}\n\nUser: {request.prompt}\n\nAssistant:"
    return request.prompt
