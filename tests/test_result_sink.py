from __future__ import annotations

import json
import os
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path

import allure
import pytest

from multishot.orchestrator.models import EngineResponse, SinkConfig, TokenUsage
from multishot.orchestrator.sink import (
    FolderResultSink,
    NullResultSink,
    build_result_sink,
    run_folder_name,
    topic_slug,
)

pytestmark = [
    allure.epic("Prompt Orchestration"),
    allure.feature("Result Sinks"),
]

TIMESTAMP = datetime(2026, 10, 16, 9, 5, tzinfo=UTC)


def _results() -> dict[str, EngineResponse]:
    return {
        "gpt-4o": EngineResponse(
            content="Use a write-through cache.",
            model="gpt-4o",
            engine="gpt-4o",
            timestamp=TIMESTAMP,
            execution_time_ms=1_200,
            token_usage=TokenUsage(prompt_tokens=12, completion_tokens=6, total_tokens=18),
        ),
        "ollama:llama3": EngineResponse(
            content="",
            model="llama3",
            engine="ollama:llama3",
            timestamp=TIMESTAMP,
            execution_time_ms=30,
            error="ConnectError: connection refused",
        ),
    }


def test_topic_slug_keeps_first_meaningful_words() -> None:
    assert topic_slug("How to design a cache for the API layer?") == "design-cache-api-layer"
    assert topic_slug("?? !!") == "prompt"


def test_run_folder_name_combines_time_topic_and_run_id() -> None:
    name = run_folder_name(
        prompt="Explain event sourcing",
        run_id="0123456789abcdef",
        timestamp=TIMESTAMP,
    )
    assert name == "2026-10-16_09-05_explain-event-sourcing_01234567"


@pytest.mark.asyncio
async def test_folder_sink_writes_results_metadata_and_comparison(tmp_path: Path) -> None:
    sink = FolderResultSink(SinkConfig(base_dir=tmp_path / "results"))
    await sink.initialize()

    saved = await sink.save_results(
        run_id="run-0001-xyz",
        prompt="Explain cache invalidation",
        engine_names=["gpt-4o", "ollama:llama3"],
        results=_results(),
    )

    run_dir = Path(saved.location or "")
    assert run_dir.parent == tmp_path / "results"
    assert sorted(path.name for path in run_dir.iterdir()) == [
        "comparison.md",
        "gpt-4o-result.md",
        "metadata.json",
        "ollama_llama3-result.md",
    ]
    metadata = json.loads((run_dir / "metadata.json").read_text(encoding="utf-8"))
    assert metadata["engines"] == ["gpt-4o", "ollama:llama3"]
    assert metadata["summary"]["success_count"] == 1
    assert metadata["summary"]["error_count"] == 1
    assert "**Prompt tokens**: 12" in (run_dir / "gpt-4o-result.md").read_text(encoding="utf-8")
    comparison = (run_dir / "comparison.md").read_text(encoding="utf-8")
    assert "### ollama:llama3 - ERROR" in comparison
    assert "Use a write-through cache." in comparison
    assert sink.list_results() == [run_dir]


@pytest.mark.asyncio
async def test_cleanup_removes_only_expired_runs(tmp_path: Path) -> None:
    config = SinkConfig(base_dir=tmp_path, max_age_days=7)
    sink = FolderResultSink(config)
    old = await sink.save_results(
        run_id="old-run-0001",
        prompt="old prompt",
        engine_names=["gpt-4o"],
        results=_results(),
    )
    fresh = await sink.save_results(
        run_id="new-run-0002",
        prompt="new prompt",
        engine_names=["gpt-4o"],
        results=_results(),
    )
    expired = (datetime.now(UTC) - timedelta(days=10)).timestamp()
    os.utime(Path(old.location or "") / "metadata.json", (expired, expired))

    removed = sink.cleanup_old_results()

    assert removed == [Path(old.location or "")]
    assert sink.list_results() == [Path(fresh.location or "")]


@pytest.mark.asyncio
async def test_folder_sink_writes_off_the_event_loop_thread(tmp_path: Path) -> None:
    sink = FolderResultSink(SinkConfig(base_dir=tmp_path))
    writer_threads: list[int] = []
    write_run = sink._write_run

    def _tracking_write_run(**kwargs):
        writer_threads.append(threading.get_ident())
        return write_run(**kwargs)

    sink._write_run = _tracking_write_run
    await sink.initialize()
    saved = await sink.save_results(
        run_id="thread-run-01",
        prompt="p",
        engine_names=["gpt-4o"],
        results=_results(),
    )

    assert saved.location is not None
    assert writer_threads
    assert threading.get_ident() not in writer_threads


@pytest.mark.asyncio
async def test_null_sink_keeps_nothing() -> None:
    sink = build_result_sink(SinkConfig(strategy="none"))

    assert isinstance(sink, NullResultSink)
    saved = await sink.save_results(
        run_id="r",
        prompt="p",
        engine_names=["gpt-4o"],
        results=_results(),
    )
    assert saved.location is None


def test_unknown_output_strategy_is_rejected() -> None:
    with pytest.raises(ValueError, match="output strategy"):
        build_result_sink(SinkConfig(strategy="git"))
