"""CLI entrypoint for multishot."""

from pathlib import Path

import rich_click as click

from multishot import __version__
from multishot.config import OUTPUT_STRATEGIES, Settings
from multishot.logging_setup import setup_logging
from multishot.orchestrator.controllers import (
    CostCommand,
    ExportCommand,
    ModelsCommand,
    MultishotCliController,
    RunCommand,
    StatsCommand,
)
from multishot.orchestrator.metrics import EXPORT_FORMATS
from multishot.orchestrator.models import RunAbortedError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = MultishotCliController()


@click.group()
@click.version_option(version=__version__, prog_name="multishot")
def multishot() -> None:
    """Run one prompt against many text-generation engines and compare the results."""

    settings = Settings.from_env()
    setup_logging(settings.log_level, settings.log_file)


@multishot.command("run")
@click.option("-m", "--message", required=True, help="Prompt to send to every engine.")
@click.option("-s", "--system", "system_prompt", default=None, help="Optional system prompt.")
@click.option(
    "--models",
    default=None,
    help="Comma-separated engine names, for example gpt-4o,claude-sonnet,ollama:llama3.",
)
@click.option(
    "--concurrent/--sequential",
    default=None,
    help="Dispatch engines in parallel (default) or one after another.",
)
@click.option("--max-concurrency", type=click.IntRange(min=1), default=None)
@click.option(
    "--timeout-ms",
    type=click.IntRange(min=0),
    default=None,
    help="Per-attempt timeout; 0 disables it.",
)
@click.option("--retries", type=click.IntRange(min=0), default=None)
@click.option(
    "--continue-on-error/--fail-fast",
    default=None,
    help="Keep going when an engine fails, or abort the run on the first failure.",
)
@click.option("--output", type=click.Choice(OUTPUT_STRATEGIES), default=None)
@click.option("--output-dir", type=click.Path(path_type=Path), default=None)
@click.option(
    "--cleanup-old/--no-cleanup-old",
    default=None,
    help="Delete run directories older than --max-age-days.",
)
@click.option("--max-age-days", type=click.IntRange(min=0), default=None)
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--check-availability/--no-check-availability",
    default=True,
    show_default=True,
    help="Probe engines first and skip the unavailable ones.",
)
@click.option("--dry-run", is_flag=True, default=False, help="Show the run plan only.")
def run(  # noqa: PLR0913
    message: str,
    system_prompt: str | None,
    models: str | None,
    concurrent: bool | None,
    max_concurrency: int | None,
    timeout_ms: int | None,
    retries: int | None,
    continue_on_error: bool | None,
    output: str | None,
    output_dir: Path | None,
    cleanup_old: bool | None,
    max_age_days: int | None,
    db_path: Path | None,
    check_availability: bool,
    dry_run: bool,
) -> None:
    """Run a prompt against several engines at once."""

    engines = tuple(name.strip() for name in (models or "").split(",") if name.strip())
    try:
        result = CONTROLLER.run(
            RunCommand(
                message=message,
                system_prompt=system_prompt,
                engines=engines,
                db_path=db_path,
                concurrent=concurrent,
                max_concurrency=max_concurrency,
                timeout_ms=timeout_ms,
                retries=retries,
                continue_on_error=continue_on_error,
                output=output,
                output_dir=output_dir,
                cleanup_old=cleanup_old,
                max_age_days=max_age_days,
                check_availability=check_availability,
                dry_run=dry_run,
            ),
        )
    except (ValueError, RunAbortedError) as error:
        raise click.ClickException(str(error)) from error

    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("All engines failed.")


@multishot.command("models")
@click.option("--models", default=None, help="Comma-separated engine names to describe.")
@click.option("--check/--no-check", default=False, show_default=True, help="Probe availability.")
def models_command(models: str | None, check: bool) -> None:
    """List configured engines."""

    engines = tuple(name.strip() for name in (models or "").split(",") if name.strip())
    try:
        lines = CONTROLLER.models(ModelsCommand(engines=engines, check=check))
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@multishot.command("stats")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--hours",
    type=click.IntRange(min=1),
    default=24,
    show_default=True,
    help="Time window for aggregation.",
)
def stats(db_path: Path | None, hours: int) -> None:
    """Show run statistics, quality insights and trends."""

    _emit_lines(CONTROLLER.stats(StatsCommand(db_path=db_path, hours=hours)))


@multishot.command("cost")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--hours", type=click.IntRange(min=1), default=24 * 30, show_default=True)
def cost(db_path: Path | None, hours: int) -> None:
    """Show cost breakdown and projections."""

    _emit_lines(CONTROLLER.cost(CostCommand(db_path=db_path, hours=hours)))


@multishot.command("export")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--hours", type=click.IntRange(min=1), default=24 * 30, show_default=True)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(EXPORT_FORMATS),
    default="json",
    show_default=True,
)
@click.option(
    "--output",
    "output_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Write to a file instead of stdout.",
)
def export(db_path: Path | None, hours: int, output_format: str, output_path: Path | None) -> None:
    """Export stored run metrics as JSON or CSV."""

    _emit_lines(
        CONTROLLER.export(
            ExportCommand(
                db_path=db_path,
                hours=hours,
                output_format=output_format,
                output_path=output_path,
            ),
        ),
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    multishot()
