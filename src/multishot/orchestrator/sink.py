"""Result sinks: where a finished run's responses are persisted."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import shutil
from collections.abc import Mapping
from datetime import datetime, timedelta
from pathlib import Path
from typing import Protocol

from multishot.orchestrator.models import EngineResponse, SavedRun, SinkConfig
from multishot.storage.common import utc_now

logger = logging.getLogger(__name__)

RUN_METADATA_FILE = "metadata.json"
COMPARISON_FILE = "comparison.md"
_SLUG_STOPWORDS = frozenset(
    {"a", "an", "and", "the", "to", "of", "for", "in", "on", "with", "how", "what", "is", "me"},
)
_SLUG_MAX_WORDS = 4


class ResultSink(Protocol):
    """Narrow persistence contract the runner depends on."""

    async def initialize(self) -> None:
        """Prepare storage before dispatch starts."""

    async def save_results(
        self,
        *,
        run_id: str,
        prompt: str,
        engine_names: list[str],
        results: Mapping[str, EngineResponse],
    ) -> SavedRun:
        """Persist the run and report where it went."""


class NullResultSink:
    """Sink for runs whose responses are not kept."""

    async def initialize(self) -> None:
        return None

    async def save_results(
        self,
        *,
        run_id: str,
        prompt: str,
        engine_names: list[str],
        results: Mapping[str, EngineResponse],
    ) -> SavedRun:
        return SavedRun(location=None)


class FolderResultSink:
    """Writes one human-readable directory per run under `base_dir`.

    Each run directory holds `<engine>-result.md` per engine, a
    `metadata.json` summary and a side-by-side `comparison.md`. File system
    work runs in a worker thread so it never blocks the event loop.
    """

    def __init__(self, config: SinkConfig) -> None:
        self.config = config

    async def initialize(self) -> None:
        await asyncio.to_thread(self._prepare)

    def _prepare(self) -> None:
        self.config.base_dir.mkdir(parents=True, exist_ok=True)
        if self.config.cleanup_old:
            removed = self.cleanup_old_results()
            if removed:
                logger.info(
                    "Removed %d run directories older than %d days",
                    len(removed),
                    self.config.max_age_days,
                )

    async def save_results(
        self,
        *,
        run_id: str,
        prompt: str,
        engine_names: list[str],
        results: Mapping[str, EngineResponse],
    ) -> SavedRun:
        return await asyncio.to_thread(
            self._write_run,
            run_id=run_id,
            prompt=prompt,
            engine_names=list(engine_names),
            results=dict(results),
        )

    def _write_run(
        self,
        *,
        run_id: str,
        prompt: str,
        engine_names: list[str],
        results: Mapping[str, EngineResponse],
    ) -> SavedRun:
        timestamp = utc_now()
        run_dir = self.config.base_dir / run_folder_name(
            prompt=prompt,
            run_id=run_id,
            timestamp=timestamp,
        )
        run_dir.mkdir(parents=True, exist_ok=True)

        files: list[str] = []
        for engine_name, response in results.items():
            path = run_dir / f"{_safe_file_stem(engine_name)}-result.md"
            path.write_text(
                _format_result(
                    engine_name=engine_name,
                    response=response,
                    run_id=run_id,
                    prompt=prompt,
                    timestamp=timestamp,
                ),
                encoding="utf-8",
            )
            files.append(str(path))

        metadata_path = run_dir / RUN_METADATA_FILE
        metadata_path.write_text(
            json.dumps(
                {
                    "run_id": run_id,
                    "timestamp": timestamp.isoformat(),
                    "prompt": prompt,
                    "engines": engine_names,
                    "summary": {
                        "total_engines": len(results),
                        "success_count": sum(1 for item in results.values() if item.ok),
                        "error_count": sum(1 for item in results.values() if not item.ok),
                        "total_execution_time_ms": sum(
                            item.execution_time_ms for item in results.values()
                        ),
                    },
                },
                indent=2,
            ),
            encoding="utf-8",
        )
        files.append(str(metadata_path))

        comparison_path = run_dir / COMPARISON_FILE
        comparison_path.write_text(
            _format_comparison(run_id=run_id, prompt=prompt, timestamp=timestamp, results=results),
            encoding="utf-8",
        )
        files.append(str(comparison_path))

        logger.info("Results for run %s saved to %s", run_id, run_dir)
        return SavedRun(location=str(run_dir), files=files)

    def list_results(self) -> list[Path]:
        """Run directories written by this sink, oldest name first."""

        if not self.config.base_dir.is_dir():
            return []
        return sorted(
            entry
            for entry in self.config.base_dir.iterdir()
            if entry.is_dir() and (entry / RUN_METADATA_FILE).is_file()
        )

    def cleanup_old_results(self, *, now: datetime | None = None) -> list[Path]:
        """Delete run directories whose metadata is older than `max_age_days`."""

        if self.config.max_age_days <= 0:
            return []
        cutoff = (now or utc_now()) - timedelta(days=self.config.max_age_days)
        removed: list[Path] = []
        for run_dir in self.list_results():
            try:
                mtime = (run_dir / RUN_METADATA_FILE).stat().st_mtime
            except FileNotFoundError:
                # removed by a concurrent cleanup
                continue
            modified = datetime.fromtimestamp(mtime, tz=cutoff.tzinfo)
            if modified < cutoff:
                shutil.rmtree(run_dir)
                removed.append(run_dir)
        return removed


def build_result_sink(config: SinkConfig) -> ResultSink:
    """Build the sink for an output strategy."""

    if config.strategy == "folders":
        return FolderResultSink(config)
    if config.strategy == "none":
        return NullResultSink()
    raise ValueError(
        f"Unsupported output strategy: {config.strategy!r}. Expected folders or none.",
    )


def run_folder_name(*, prompt: str, run_id: str, timestamp: datetime) -> str:
    """`<date>_<hh-mm>_<topic-slug>_<run-id-prefix>` for a run directory."""

    return f"{timestamp:%Y-%m-%d}_{timestamp:%H-%M}_{topic_slug(prompt)}_{run_id[:8]}"


def topic_slug(prompt: str) -> str:
    words = [
        word
        for word in re.findall(r"[a-z0-9]+", prompt.lower())
        if word not in _SLUG_STOPWORDS and len(word) > 1
    ]
    return "-".join(words[:_SLUG_MAX_WORDS]) or "prompt"


def _safe_file_stem(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("_") or "engine"


def _format_result(
    *,
    engine_name: str,
    response: EngineResponse,
    run_id: str,
    prompt: str,
    timestamp: datetime,
) -> str:
    lines = [
        f"# Multishot result: {engine_name}",
        "",
        "## Run information",
        f"- **Run ID**: {run_id}",
        f"- **Timestamp**: {timestamp.isoformat()}",
        f"- **Engine**: {response.engine} ({response.model})",
        f"- **Execution time**: {response.execution_time_ms}ms",
        "",
        "## Prompt",
        "```",
        prompt,
        "```",
        "",
        "## Response",
        f"**Error**: {response.error}" if response.error is not None else response.content,
        "",
    ]
    if response.token_usage is not None:
        lines.extend(
            [
                "## Token usage",
                f"- **Prompt tokens**: {response.token_usage.prompt_tokens}",
                f"- **Completion tokens**: {response.token_usage.completion_tokens}",
                f"- **Total tokens**: {response.token_usage.total_tokens}",
                "",
            ],
        )
    lines.extend(
        [
            "## Metadata",
            "```json",
            json.dumps(response.metadata, indent=2, default=str),
            "```",
            "",
        ],
    )
    return "\n".join(lines)


def _format_comparison(
    *,
    run_id: str,
    prompt: str,
    timestamp: datetime,
    results: Mapping[str, EngineResponse],
) -> str:
    successful = [(name, item) for name, item in results.items() if item.ok]
    failed = [(name, item) for name, item in results.items() if not item.ok]
    lines = [
        "# Multishot comparison",
        "",
        f"- **Run ID**: {run_id}",
        f"- **Timestamp**: {timestamp.isoformat()}",
        f"- **Total engines**: {len(results)}",
        f"- **Successful**: {len(successful)}",
        f"- **Failed**: {len(failed)}",
        "",
        "## Prompt",
        "```",
        prompt,
        "```",
        "",
    ]
    if successful:
        lines.extend(["## Successful results", ""])
        for name, item in successful:
            lines.extend(
                [
                    f"### {name} ({item.model})",
                    f"**Execution time**: {item.execution_time_ms}ms",
                    "",
                    item.content,
                    "",
                    "---",
                    "",
                ],
            )
    if failed:
        lines.extend(["## Failed results", ""])
        for name, item in failed:
            lines.extend(
                [
                    f"### {name} - ERROR",
                    f"**Error**: {item.error}",
                    f"**Execution time**: {item.execution_time_ms}ms",
                    "",
                ],
            )
    return "\n".join(lines)
