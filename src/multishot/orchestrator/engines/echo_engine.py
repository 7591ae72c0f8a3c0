"""Offline deterministic engine for smoke runs and tests."""

from __future__ import annotations

import asyncio

import httpx

from multishot.orchestrator.engines.base import (
    BaseEngine,
    EngineCallError,
    EngineCapabilities,
    EngineConfig,
    EngineKind,
    GenerationOutput,
)
from multishot.orchestrator.models import PromptRequest, TokenUsage
from multishot.orchestrator.scoring import estimate_tokens


class EchoEngine(BaseEngine):
    """Echoes the prompt back without any network call.

    Options:
    - `latency_ms`: simulated response time (cancellable sleep).
    - `fail_attempts`: number of leading calls that fail.
    - `error`: error text for failing calls.
    """

    kind = EngineKind.ECHO

    def __init__(
        self,
        config: EngineConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config, transport=transport)
        self.calls = 0

    async def _generate(self, request: PromptRequest) -> GenerationOutput:
        self.calls += 1
        latency_ms = int(self.config.options.get("latency_ms", 0))
        if latency_ms > 0:
            await asyncio.sleep(latency_ms / 1000)

        if self.calls <= int(self.config.options.get("fail_attempts", 0)):
            raise EngineCallError(
                str(self.config.options.get("error", "HTTP 503: echo engine unavailable")),
            )

        content = f"[{self.config.name}] {request.prompt}"
        prompt_tokens = estimate_tokens(request.prompt)
        completion_tokens = estimate_tokens(content)
        return GenerationOutput(
            content=content,
            token_usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            metadata={"call": self.calls},
        )

    async def is_available(self) -> bool:
        return True

    def capabilities(self) -> EngineCapabilities:
        return EngineCapabilities(max_tokens=self.config.max_tokens, free=True)
