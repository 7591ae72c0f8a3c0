"""Runtime configuration for prompt runs, engines and result output."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

OUTPUT_STRATEGIES: tuple[str, ...] = ("folders", "none")


@dataclass(slots=True)
class RunnerSettings:
    """Dispatch policy for one run."""

    concurrent: bool = True
    max_concurrency: int = 5
    timeout_ms: int = 60_000
    retries: int = 1
    continue_on_error: bool = True
    retry_base_delay_ms: int = 1_000
    retry_max_delay_ms: int = 30_000
    sequential_delay_ms: int = 100


@dataclass(slots=True)
class OutputSettings:
    """Where run responses are persisted."""

    strategy: str = "folders"
    base_dir: Path = Path("multishot-results")
    cleanup_old: bool = False
    max_age_days: int = 30


@dataclass(slots=True)
class EngineSettings:
    """Credentials and endpoints for engine variants."""

    openai_api_key: str | None = None
    anthropic_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    local_endpoint: str = "http://localhost:11434"
    custom_endpoint: str | None = None
    http_timeout_seconds: float = 120.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".multishot.db")
    log_level: str = "WARNING"
    log_file: str | None = None
    runner: RunnerSettings = field(default_factory=RunnerSettings)
    output: OutputSettings = field(default_factory=OutputSettings)
    engines: EngineSettings = field(default_factory=EngineSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("MULTISHOT_DB_PATH", ".multishot.db")),
            log_level=os.getenv("MULTISHOT_LOG_LEVEL", "WARNING").strip().upper(),
            log_file=_env_optional("MULTISHOT_LOG_FILE"),
            runner=RunnerSettings(
                concurrent=_env_bool("MULTISHOT_CONCURRENT", default=True),
                max_concurrency=_env_int("MULTISHOT_MAX_CONCURRENCY", 5),
                timeout_ms=_env_int("MULTISHOT_TIMEOUT_MS", 60_000),
                retries=_env_int("MULTISHOT_RETRIES", 1),
                continue_on_error=_env_bool("MULTISHOT_CONTINUE_ON_ERROR", default=True),
                retry_base_delay_ms=_env_int("MULTISHOT_RETRY_BASE_DELAY_MS", 1_000),
                retry_max_delay_ms=_env_int("MULTISHOT_RETRY_MAX_DELAY_MS", 30_000),
                sequential_delay_ms=_env_int("MULTISHOT_SEQUENTIAL_DELAY_MS", 100),
            ),
            output=OutputSettings(
                strategy=os.getenv("MULTISHOT_OUTPUT", "folders").strip().lower(),
                base_dir=Path(os.getenv("MULTISHOT_OUTPUT_DIR", "multishot-results")),
                cleanup_old=_env_bool("MULTISHOT_CLEANUP_OLD", default=False),
                max_age_days=_env_int("MULTISHOT_MAX_AGE_DAYS", 30),
            ),
            engines=EngineSettings(
                openai_api_key=_env_optional("OPENAI_API_KEY"),
                anthropic_api_key=_env_optional("ANTHROPIC_API_KEY"),
                openai_base_url=os.getenv(
                    "MULTISHOT_OPENAI_BASE_URL",
                    "https://api.openai.com/v1",
                ).rstrip("/"),
                anthropic_base_url=os.getenv(
                    "MULTISHOT_ANTHROPIC_BASE_URL",
                    "https://api.anthropic.com/v1",
                ).rstrip("/"),
                local_endpoint=os.getenv(
                    "MULTISHOT_LOCAL_ENDPOINT",
                    "http://localhost:11434",
                ).rstrip("/"),
                custom_endpoint=_env_optional("MULTISHOT_CUSTOM_ENDPOINT"),
                http_timeout_seconds=float(
                    os.getenv("MULTISHOT_HTTP_TIMEOUT_SECONDS", "120.0"),
                ),
            ),
        )

    def validate_for_run(self) -> None:
        """Raise configuration error if run settings are out of range."""

        runner = self.runner
        if runner.max_concurrency < 1:
            raise ValueError("MULTISHOT_MAX_CONCURRENCY must be >= 1.")
        if runner.timeout_ms < 0:
            raise ValueError("MULTISHOT_TIMEOUT_MS must be >= 0 (0 disables the timeout).")
        if runner.retries < 0:
            raise ValueError("MULTISHOT_RETRIES must be >= 0.")
        if runner.retry_base_delay_ms < 0 or runner.retry_max_delay_ms < 0:
            raise ValueError("Retry delays must be >= 0.")
        if runner.sequential_delay_ms < 0:
            raise ValueError("MULTISHOT_SEQUENTIAL_DELAY_MS must be >= 0.")

        if self.output.strategy not in OUTPUT_STRATEGIES:
            raise ValueError(
                f"Unsupported MULTISHOT_OUTPUT value: {self.output.strategy!r}. "
                f"Expected one of: {', '.join(OUTPUT_STRATEGIES)}.",
            )
        if self.output.max_age_days < 0:
            raise ValueError("MULTISHOT_MAX_AGE_DAYS must be >= 0.")

        if self.engines.http_timeout_seconds <= 0:
            raise ValueError("MULTISHOT_HTTP_TIMEOUT_SECONDS must be > 0.")
        _validate_endpoint("MULTISHOT_LOCAL_ENDPOINT", self.engines.local_endpoint)
        if self.engines.custom_endpoint:
            _validate_endpoint("MULTISHOT_CUSTOM_ENDPOINT", self.engines.custom_endpoint)


def _validate_endpoint(name: str, value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_optional(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {raw!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
