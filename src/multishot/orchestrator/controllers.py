"""Controllers for multishot CLI commands."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import timedelta
from pathlib import Path

from multishot.config import Settings
from multishot.orchestrator.engines.factory import (
    DEFAULT_RUN_ENGINES,
    check_engines,
    create_engines,
    resolve_definitions,
)
from multishot.orchestrator.metrics import (
    TREND_METRICS,
    analyze_cost_efficiency,
    compute_trend,
    export_records,
    quality_insights,
    render_cost_lines,
    render_summary_lines,
    render_trend_lines,
    summarize_performance,
)
from multishot.orchestrator.models import (
    DispatchStatus,
    ProgressUpdate,
    PromptRequest,
    RunConfig,
    SinkConfig,
)
from multishot.orchestrator.repository import MetricsRepository
from multishot.orchestrator.runner import PromptRunner
from multishot.storage.common import utc_now


@dataclass(slots=True)
class RunCommand:
    """CLI input for one multishot run."""

    message: str
    system_prompt: str | None
    engines: tuple[str, ...]
    db_path: Path | None = None
    concurrent: bool | None = None
    max_concurrency: int | None = None
    timeout_ms: int | None = None
    retries: int | None = None
    continue_on_error: bool | None = None
    output: str | None = None
    output_dir: Path | None = None
    cleanup_old: bool | None = None
    max_age_days: int | None = None
    check_availability: bool = True
    dry_run: bool = False


@dataclass(slots=True)
class RunCommandResult:
    """Run report to render in CLI."""

    lines: list[str]
    success: bool


@dataclass(slots=True)
class ModelsCommand:
    engines: tuple[str, ...]
    check: bool


@dataclass(slots=True)
class StatsCommand:
    """CLI input for windowed run statistics."""

    db_path: Path | None
    hours: int


@dataclass(slots=True)
class CostCommand:
    db_path: Path | None
    hours: int


@dataclass(slots=True)
class ExportCommand:
    """CLI input for run metrics export."""

    db_path: Path | None
    hours: int
    output_format: str
    output_path: Path | None


class MultishotCliController:
    """Coordinates run, model listing and metrics reporting CLI operations."""

    def run(self, command: RunCommand) -> RunCommandResult:
        settings = _apply_overrides(Settings.from_env(db_path=command.db_path), command)
        settings.validate_for_run()

        engines = create_engines(
            resolve_definitions(command.engines or DEFAULT_RUN_ENGINES, settings.engines),
        )
        if not engines:
            raise ValueError("No engines could be configured for this run.")

        lines: list[str] = []
        if command.check_availability and not command.dry_run:
            status = asyncio.run(check_engines(engines))
            unavailable = [name for name, available in status.items() if not available]
            for name in unavailable:
                lines.append(f"Skipping unavailable engine: {name}")
            engines = {name: engine for name, engine in engines.items() if status[name]}
            if not engines:
                raise ValueError("None of the requested engines is available.")

        runner_settings = settings.runner
        config = RunConfig(
            engines=dict(engines),
            concurrent=runner_settings.concurrent,
            max_concurrency=runner_settings.max_concurrency,
            timeout_ms=runner_settings.timeout_ms,
            retries=runner_settings.retries,
            continue_on_error=runner_settings.continue_on_error,
            output=SinkConfig(
                strategy=settings.output.strategy,
                base_dir=settings.output.base_dir,
                cleanup_old=settings.output.cleanup_old,
                max_age_days=settings.output.max_age_days,
            ),
            progress_callback=lambda update: _append_progress(lines, update),
            retry_base_delay_ms=runner_settings.retry_base_delay_ms,
            retry_max_delay_ms=runner_settings.retry_max_delay_ms,
            sequential_delay_ms=runner_settings.sequential_delay_ms,
        )
        request = PromptRequest(prompt=command.message, system_prompt=command.system_prompt)

        if command.dry_run:
            runner = PromptRunner(config)
            return RunCommandResult(
                lines=["Dry run, no engine was called.", *runner.config_summary()],
                success=True,
            )

        with _repository(settings) as repository:
            runner = PromptRunner(config, metrics_repository=repository)
            lines.extend(runner.config_summary())
            result = asyncio.run(runner.run(request))

        lines.append(
            f"Run {result.run_id}: success={'yes' if result.success else 'no'} "
            f"time={result.execution_time_ms}ms",
        )
        for name, response in result.results.items():
            if response.ok:
                lines.append(
                    f"--- {name} ({response.model}, {response.execution_time_ms}ms, "
                    f"attempts={result.attempts.get(name, 1)}) ---",
                )
                lines.append(response.content)
            else:
                lines.append(f"--- {name} FAILED: {response.error} ---")
        if result.performance is not None:
            performance = result.performance
            quality = (
                "n/a"
                if performance.avg_quality_score is None
                else f"{performance.avg_quality_score:.1f}/10"
            )
            lines.append(
                f"Cost: ${performance.total_cost_usd:.4f} "
                f"success_rate={performance.success_rate * 100:.0f}% "
                f"avg_quality={quality} complexity={performance.task_complexity}/10",
            )
        if result.output_location:
            lines.append(f"Results saved to: {result.output_location}")
        return RunCommandResult(lines=lines, success=result.success)

    def models(self, command: ModelsCommand) -> list[str]:
        settings = Settings.from_env()
        engines = create_engines(
            resolve_definitions(command.engines or DEFAULT_RUN_ENGINES, settings.engines),
        )
        status = asyncio.run(check_engines(engines)) if command.check else {}

        lines = []
        for name, engine in engines.items():
            config = engine.get_config()
            capabilities = engine.capabilities()
            line = (
                f"{name}: kind={config['kind']} model={config['model']} "
                f"max_tokens={capabilities.max_tokens} free={'yes' if capabilities.free else 'no'}"
            )
            if command.check:
                line += f" available={'yes' if status.get(name) else 'no'}"
            lines.append(line)
        return lines

    def stats(self, command: StatsCommand) -> list[str]:
        """Show run statistics, quality insights and trends for a time window."""

        settings = Settings.from_env(db_path=command.db_path)
        now = utc_now()
        with _repository(settings) as repository:
            records = repository.list_runs(since=now - timedelta(hours=max(1, command.hours)))

        lines = render_summary_lines(summary=summarize_performance(records), hours=command.hours)
        insights = quality_insights(records)
        lines.extend(f"Recommendation: {item}" for item in insights.recommendations)
        period = "day" if command.hours <= 24 else "week"
        lines.extend(
            render_trend_lines(
                [
                    compute_trend(records, metric=metric, period=period, now=now)
                    for metric in TREND_METRICS
                ],
            ),
        )
        return lines

    def cost(self, command: CostCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        now = utc_now()
        with _repository(settings) as repository:
            records = repository.list_runs(since=now - timedelta(hours=max(1, command.hours)))
        return render_cost_lines(
            analysis=analyze_cost_efficiency(records, now=now),
            hours=command.hours,
        )

    def export(self, command: ExportCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            records = repository.list_runs(
                since=utc_now() - timedelta(hours=max(1, command.hours)),
            )

        payload = export_records(records, output_format=command.output_format)
        if command.output_path is None:
            return [payload]
        command.output_path.parent.mkdir(parents=True, exist_ok=True)
        command.output_path.write_text(payload, encoding="utf-8")
        return [f"Exported {len(records)} run(s) to {command.output_path}"]


def _apply_overrides(settings: Settings, command: RunCommand) -> Settings:
    runner_overrides = {
        key: value
        for key, value in (
            ("concurrent", command.concurrent),
            ("max_concurrency", command.max_concurrency),
            ("timeout_ms", command.timeout_ms),
            ("retries", command.retries),
            ("continue_on_error", command.continue_on_error),
        )
        if value is not None
    }
    output_overrides = {
        key: value
        for key, value in (
            ("strategy", command.output),
            ("base_dir", command.output_dir),
            ("cleanup_old", command.cleanup_old),
            ("max_age_days", command.max_age_days),
        )
        if value is not None
    }
    return replace(
        settings,
        runner=replace(settings.runner, **runner_overrides),
        output=replace(settings.output, **output_overrides),
    )


def _append_progress(lines: list[str], update: ProgressUpdate) -> None:
    if update.status == DispatchStatus.SUCCEEDED and update.result is not None:
        lines.append(
            f"[{update.completed}/{update.total}] {update.engine_name} succeeded "
            f"in {update.result.execution_time_ms}ms",
        )
    elif update.status == DispatchStatus.FAILED:
        lines.append(
            f"[{update.completed}/{update.total}] {update.engine_name} failed: {update.error}",
        )
    elif update.status == DispatchStatus.RETRYING:
        lines.append(f"Retrying {update.engine_name} after attempt {update.attempt}")


@contextmanager
def _repository(settings: Settings) -> Iterator[MetricsRepository]:
    repository = MetricsRepository(db_path=settings.db_path)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
