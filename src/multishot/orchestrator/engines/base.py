"""Engine interface and shared HTTP plumbing for engine variants."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

import httpx

from multishot.orchestrator.models import EngineResponse, PromptRequest, TokenUsage
from multishot.storage.common import utc_now

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT_SECONDS = 10.0
PROBE_TIMEOUT_SECONDS = 5.0


class EngineKind(str, Enum):
    """Closed set of engine variants the factory can build."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    LOCAL = "local"
    CUSTOM = "custom"
    ECHO = "echo"


class EngineCallError(RuntimeError):
    """Engine-level failure with a message suitable for `EngineResponse.error`."""


@dataclass(slots=True, frozen=True)
class EngineConfig:
    """Construction parameters shared by all engine variants."""

    name: str
    model: str
    api_key: str | None = None
    endpoint: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7
    timeout_seconds: float = 120.0
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class EngineCapabilities:
    """Static engine limits shown by `multishot models`."""

    max_tokens: int
    supports_system_prompts: bool = True
    supports_streaming: bool = False
    free: bool = False


@dataclass(slots=True)
class GenerationOutput:
    """What a variant returns from one successful generation call."""

    content: str
    model: str | None = None
    token_usage: TokenUsage | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class Engine(Protocol):
    """Protocol implemented by everything the runner can dispatch to."""

    async def execute(self, request: PromptRequest) -> EngineResponse:
        """Run one generation attempt; failures come back as error-bearing responses."""

    async def is_available(self) -> bool:
        """Cheap liveness check."""

    def get_config(self) -> dict[str, Any]:
        """Non-secret configuration; always includes `model`."""


class BaseEngine(ABC):
    """Template for HTTP-backed engines.

    `execute` times the variant's `_generate` call and folds transport errors,
    HTTP error statuses and malformed payloads into an error-bearing response.
    Cancellation is not intercepted: when the runner's timeout cancels
    `execute`, the in-flight httpx request is cancelled with it.
    """

    kind: EngineKind

    def __init__(
        self,
        config: EngineConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport

    @property
    def name(self) -> str:
        return self.config.name

    async def execute(self, request: PromptRequest) -> EngineResponse:
        timestamp = utc_now()
        started = time.perf_counter()
        try:
            output = await self._generate(request)
        except httpx.HTTPError as error:
            return self._failure(f"{type(error).__name__}: {error}", timestamp, started)
        except EngineCallError as error:
            return self._failure(str(error), timestamp, started)
        except (KeyError, IndexError, TypeError, ValueError) as error:
            return self._failure(
                f"Malformed response from {self.config.name}: {error!r}",
                timestamp,
                started,
            )

        return EngineResponse(
            content=output.content,
            model=output.model or self.config.model,
            engine=self.config.name,
            timestamp=timestamp,
            execution_time_ms=_elapsed_ms(started),
            token_usage=output.token_usage,
            metadata={**request.metadata, **output.metadata},
        )

    @abstractmethod
    async def _generate(self, request: PromptRequest) -> GenerationOutput:
        """Perform the variant-specific generation call."""

    @abstractmethod
    async def is_available(self) -> bool: ...

    def capabilities(self) -> EngineCapabilities:
        return EngineCapabilities(max_tokens=self.config.max_tokens)

    def get_config(self) -> dict[str, Any]:
        return {
            "name": self.config.name,
            "kind": self.kind.value,
            "model": self.config.model,
            "endpoint": self.config.endpoint,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "timeout_seconds": self.config.timeout_seconds,
            "has_api_key": bool(self.config.api_key),
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(
                self.config.timeout_seconds,
                connect=DEFAULT_CONNECT_TIMEOUT_SECONDS,
            ),
            transport=self._transport,
        )

    async def _post_json(
        self,
        url: str,
        *,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        async with self._client() as client:
            response = await client.post(url, json=payload, headers=headers)
        if response.is_error:
            raise EngineCallError(f"HTTP {response.status_code}: {_error_detail(response)}")
        data = response.json()
        if not isinstance(data, dict):
            raise EngineCallError(
                f"Unexpected response payload from {self.config.name}: {type(data).__name__}",
            )
        return data

    async def _probe(self, url: str, *, headers: dict[str, str] | None = None) -> bool:
        try:
            async with self._client() as client:
                response = await client.get(url, headers=headers, timeout=PROBE_TIMEOUT_SECONDS)
        except httpx.HTTPError as error:
            logger.debug("Availability probe for %s failed: %s", self.config.name, error)
            return False
        return response.is_success

    def _failure(self, message: str, timestamp: datetime, started: float) -> EngineResponse:
        logger.debug("Engine %s call failed: %s", self.config.name, message)
        return EngineResponse(
            content="",
            model=self.config.model,
            engine=self.config.name,
            timestamp=timestamp,
            execution_time_ms=_elapsed_ms(started),
            error=message,
        )


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _error_detail(response: httpx.Response, limit: int = 300) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:limit] or response.reason_phrase
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])[:limit]
        if isinstance(error, str):
            return error[:limit]
    return response.text[:limit]
