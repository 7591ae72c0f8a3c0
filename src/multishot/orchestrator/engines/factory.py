"""Engine registry: resolves engine names to variants and builds them."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from multishot.config import EngineSettings
from multishot.orchestrator.engines.anthropic_engine import AnthropicEngine
from multishot.orchestrator.engines.base import BaseEngine, Engine, EngineConfig, EngineKind
from multishot.orchestrator.engines.custom_engine import CustomEngine
from multishot.orchestrator.engines.echo_engine import EchoEngine
from multishot.orchestrator.engines.local_engine import LOCAL_FORMATS, LocalEngine
from multishot.orchestrator.engines.openai_engine import OpenAIEngine

logger = logging.getLogger(__name__)

ENGINE_CLASSES: dict[EngineKind, type[BaseEngine]] = {
    EngineKind.OPENAI: OpenAIEngine,
    EngineKind.ANTHROPIC: AnthropicEngine,
    EngineKind.LOCAL: LocalEngine,
    EngineKind.CUSTOM: CustomEngine,
    EngineKind.ECHO: EchoEngine,
}

DEFAULT_ENGINE_MODELS: dict[str, tuple[EngineKind, str]] = {
    "gpt-4o": (EngineKind.OPENAI, "gpt-4o"),
    "gpt-4o-mini": (EngineKind.OPENAI, "gpt-4o-mini"),
    "claude-sonnet": (EngineKind.ANTHROPIC, "claude-3-5-sonnet-20241022"),
    "claude-haiku": (EngineKind.ANTHROPIC, "claude-3-haiku-20240307"),
}
DEFAULT_RUN_ENGINES: tuple[str, ...] = ("gpt-4o", "gpt-4o-mini", "claude-sonnet")

_LOCAL_MARKERS: tuple[str, ...] = ("local", "ollama", "llama", "qwen", "mistral", ":")
_OPENAI_MARKERS: tuple[str, ...] = ("gpt", "openai", "o1-", "o3-")
_ANTHROPIC_MARKERS: tuple[str, ...] = ("claude", "anthropic")
# `ollama:llama3` and `ollama/llama3` name the `llama3` model; tags like `llama3:8b` stay
_OLLAMA_PREFIX = re.compile(r"^ollama[:/]", re.IGNORECASE)


@dataclass(slots=True, frozen=True)
class EngineDefinition:
    """A named engine with everything needed to build it."""

    name: str
    kind: EngineKind
    model: str
    api_key: str | None = None
    endpoint: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7
    timeout_seconds: float = 120.0
    options: dict[str, Any] = field(default_factory=dict)


def infer_engine_kind(name: str) -> EngineKind:
    """Guess the variant from naming conventions; unknown names are custom engines."""

    lowered = name.strip().lower()
    if lowered in DEFAULT_ENGINE_MODELS:
        return DEFAULT_ENGINE_MODELS[lowered][0]
    if lowered.startswith("echo"):
        return EngineKind.ECHO
    if any(marker in lowered for marker in _LOCAL_MARKERS):
        return EngineKind.LOCAL
    if any(lowered.startswith(marker) for marker in _OPENAI_MARKERS):
        return EngineKind.OPENAI
    if any(marker in lowered for marker in _ANTHROPIC_MARKERS):
        return EngineKind.ANTHROPIC
    return EngineKind.CUSTOM


def resolve_definition(name: str, settings: EngineSettings) -> EngineDefinition:
    """Definition for one engine name, from defaults or inferred from the name."""

    key = name.strip()
    if not key:
        raise ValueError("Engine name must not be empty.")

    default = DEFAULT_ENGINE_MODELS.get(key.lower())
    kind, model = default if default is not None else (infer_engine_kind(key), key)

    common: dict[str, Any] = {"timeout_seconds": settings.http_timeout_seconds}
    match kind:
        case EngineKind.OPENAI:
            return EngineDefinition(
                name=key,
                kind=kind,
                model=model,
                api_key=settings.openai_api_key,
                endpoint=settings.openai_base_url,
                **common,
            )
        case EngineKind.ANTHROPIC:
            return EngineDefinition(
                name=key,
                kind=kind,
                model=model,
                api_key=settings.anthropic_api_key,
                endpoint=settings.anthropic_base_url,
                **common,
            )
        case EngineKind.LOCAL:
            local_model = _OLLAMA_PREFIX.sub("", model)
            return EngineDefinition(
                name=key,
                kind=kind,
                model=local_model,
                endpoint=settings.local_endpoint,
                options={"format": "ollama"},
                **common,
            )
        case EngineKind.CUSTOM:
            return EngineDefinition(
                name=key,
                kind=kind,
                model=model,
                endpoint=settings.custom_endpoint,
                **common,
            )
        case EngineKind.ECHO:
            return EngineDefinition(name=key, kind=kind, model="echo", **common)
    raise ValueError(f"Unsupported engine kind: {kind!r}.")


def resolve_definitions(names: Iterable[str], settings: EngineSettings) -> list[EngineDefinition]:
    definitions = [resolve_definition(name, settings) for name in names]
    seen: set[str] = set()
    for definition in definitions:
        if definition.name in seen:
            raise ValueError(f"Duplicate engine name: {definition.name!r}.")
        seen.add(definition.name)
    return definitions


def create_engine(
    definition: EngineDefinition,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> BaseEngine:
    """Build the engine variant for a definition."""

    if definition.kind == EngineKind.LOCAL:
        fmt = definition.options.get("format", "ollama")
        if fmt not in LOCAL_FORMATS:
            raise ValueError(
                f"Unsupported local engine format for {definition.name}: {fmt!r}. "
                f"Expected one of: {', '.join(LOCAL_FORMATS)}.",
            )

    engine_class = ENGINE_CLASSES[definition.kind]
    return engine_class(
        EngineConfig(
            name=definition.name,
            model=definition.model,
            api_key=definition.api_key,
            endpoint=definition.endpoint,
            max_tokens=definition.max_tokens,
            temperature=definition.temperature,
            timeout_seconds=definition.timeout_seconds,
            options=dict(definition.options),
        ),
        transport=transport,
    )


def create_engines(
    definitions: Iterable[EngineDefinition],
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, BaseEngine]:
    """Build engines in order; definitions that cannot be built are logged and skipped."""

    engines: dict[str, BaseEngine] = {}
    for definition in definitions:
        if definition.name in engines:
            raise ValueError(f"Duplicate engine name: {definition.name!r}.")
        try:
            engines[definition.name] = create_engine(definition, transport=transport)
        except ValueError as error:
            logger.warning("Skipping engine %s: %s", definition.name, error)
    return engines


async def check_engines(engines: Mapping[str, Engine]) -> dict[str, bool]:
    """Probe availability of every engine concurrently; probe errors count as unavailable."""

    names = list(engines)
    outcomes = await asyncio.gather(
        *(engines[name].is_available() for name in names),
        return_exceptions=True,
    )
    status: dict[str, bool] = {}
    for name, outcome in zip(names, outcomes, strict=True):
        if isinstance(outcome, BaseException):
            logger.debug("Availability check for %s raised: %r", name, outcome)
            status[name] = False
        else:
            status[name] = bool(outcome)
    return status

