"""Engine variants and the registry that builds them."""

from multishot.orchestrator.engines.anthropic_engine import AnthropicEngine
from multishot.orchestrator.engines.base import (
    BaseEngine,
    Engine,
    EngineCallError,
    EngineCapabilities,
    EngineConfig,
    EngineKind,
    GenerationOutput,
)
from multishot.orchestrator.engines.custom_engine import CustomEngine
from multishot.orchestrator.engines.echo_engine import EchoEngine
from multishot.orchestrator.engines.factory import (
    DEFAULT_ENGINE_MODELS,
    DEFAULT_RUN_ENGINES,
    EngineDefinition,
    check_engines,
    create_engine,
    create_engines,
    infer_engine_kind,
    resolve_definition,
    resolve_definitions,
)
from multishot.orchestrator.engines.local_engine import LocalEngine
from multishot.orchestrator.engines.openai_engine import OpenAIEngine

__all__ = [
    "DEFAULT_ENGINE_MODELS",
    "DEFAULT_RUN_ENGINES",
    "AnthropicEngine",
    "BaseEngine",
    "CustomEngine",
    "EchoEngine",
    "Engine",
    "EngineCallError",
    "EngineCapabilities",
    "EngineConfig",
    "EngineDefinition",
    "EngineKind",
    "GenerationOutput",
    "LocalEngine",
    "OpenAIEngine",
    "check_engines",
    "create_engine",
    "create_engines",
    "infer_engine_kind",
    "resolve_definition",
    "resolve_definitions",
]
