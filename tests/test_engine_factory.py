from __future__ import annotations

import allure
import pytest

from multishot.config import EngineSettings
from multishot.orchestrator.engines import (
    AnthropicEngine,
    EchoEngine,
    EngineDefinition,
    EngineKind,
    LocalEngine,
    OpenAIEngine,
    check_engines,
    create_engine,
    create_engines,
    infer_engine_kind,
    resolve_definition,
    resolve_definitions,
)

pytestmark = [
    allure.epic("Engines"),
    allure.feature("Engine Registry"),
]


@pytest.mark.parametrize(
    ("name", "kind"),
    [
        ("gpt-4o", EngineKind.OPENAI),
        ("o1-preview", EngineKind.OPENAI),
        ("claude-haiku", EngineKind.ANTHROPIC),
        ("claude-3-opus-20240229", EngineKind.ANTHROPIC),
        ("ollama:llama3", EngineKind.LOCAL),
        ("qwen2.5-coder", EngineKind.LOCAL),
        ("echo-fast", EngineKind.ECHO),
        ("house-model", EngineKind.CUSTOM),
    ],
)
def test_infer_engine_kind(name: str, kind: EngineKind) -> None:
    assert infer_engine_kind(name) == kind


def test_default_names_resolve_to_full_model_ids() -> None:
    settings = EngineSettings(anthropic_api_key="ak")

    definition = resolve_definition("claude-sonnet", settings)

    assert definition.kind == EngineKind.ANTHROPIC
    assert definition.model == "claude-3-5-sonnet-20241022"
    assert definition.api_key == "ak"
    assert definition.endpoint == "https://api.anthropic.com/v1"


def test_local_definition_strips_ollama_prefix_and_uses_local_endpoint() -> None:
    settings = EngineSettings(local_endpoint="http://gpu-box:11434")

    definition = resolve_definition("ollama/llama3", settings)

    assert definition.kind == EngineKind.LOCAL
    assert definition.model == "llama3"
    assert definition.endpoint == "http://gpu-box:11434"
    assert definition.options == {"format": "ollama"}


@pytest.mark.parametrize(
    ("name", "model"),
    [
        ("ollama:llama3", "llama3"),
        ("Ollama/llama3", "llama3"),
        ("ollama:llama3:8b", "llama3:8b"),
        ("llama3:8b", "llama3:8b"),
    ],
)
def test_local_model_id_drops_only_the_ollama_prefix(name: str, model: str) -> None:
    definition = resolve_definition(name, EngineSettings())

    assert definition.name == name
    assert definition.model == model


def test_resolve_definitions_rejects_duplicates_and_blank_names() -> None:
    with pytest.raises(ValueError, match="Duplicate"):
        resolve_definitions(["gpt-4o", "gpt-4o"], EngineSettings())
    with pytest.raises(ValueError, match="empty"):
        resolve_definition("  ", EngineSettings())


def test_create_engine_dispatches_on_kind() -> None:
    settings = EngineSettings(openai_api_key="sk", anthropic_api_key="ak")
    engines = create_engines(
        resolve_definitions(["gpt-4o", "claude-haiku", "ollama:llama3", "echo"], settings),
    )

    assert [type(engine) for engine in engines.values()] == [
        OpenAIEngine,
        AnthropicEngine,
        LocalEngine,
        EchoEngine,
    ]
    assert engines["gpt-4o"].get_config()["has_api_key"] is True
    assert "sk" not in engines["gpt-4o"].get_config().values()


def test_create_engine_rejects_unknown_local_format() -> None:
    definition = EngineDefinition(
        name="local-x",
        kind=EngineKind.LOCAL,
        model="x",
        options={"format": "vllm"},
    )

    with pytest.raises(ValueError, match="local engine format"):
        create_engine(definition)
    assert create_engines([definition]) == {}


@pytest.mark.asyncio
async def test_check_engines_treats_probe_errors_as_unavailable(make_engine) -> None:
    class BrokenProbe:
        async def is_available(self) -> bool:
            raise RuntimeError("probe crashed")

    status = await check_engines(
        {"up": make_engine("up"), "down": make_engine("down", available=False), "x": BrokenProbe()},
    )

    assert status == {"up": True, "down": False, "x": False}
