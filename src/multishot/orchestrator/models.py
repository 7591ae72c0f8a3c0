"""Domain models for prompt runs, engine responses and run metrics."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from multishot.orchestrator.engines.base import Engine


class DispatchStatus(str, Enum):
    """Per-engine dispatch lifecycle states reported through progress updates."""

    PENDING = "pending"
    RUNNING = "running"
    RETRYING = "retrying"
    TIMED_OUT = "timed_out"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureClass(str, Enum):
    """Normalized failure classes for terminal engine errors."""

    TIMEOUT = "timeout"
    ENGINE_ERROR = "engine_error"
    TRANSPORT_ERROR = "transport_error"
    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"


@dataclass(slots=True, frozen=True)
class PromptRequest:
    """One prompt to run against every engine of a run."""

    prompt: str
    system_prompt: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.prompt or not self.prompt.strip():
            raise ValueError("Prompt must be a non-empty string.")


@dataclass(slots=True, frozen=True)
class TokenUsage:
    """Token accounting reported by an engine (or estimated from text length)."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(slots=True, frozen=True)
class EngineResponse:
    """Outcome of a single engine attempt: content on success, error text otherwise."""

    content: str
    model: str
    engine: str
    timestamp: datetime
    execution_time_ms: int = 0
    token_usage: TokenUsage | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.execution_time_ms < 0:
            object.__setattr__(self, "execution_time_ms", 0)

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True, frozen=True)
class SinkConfig:
    """Result output settings for one run."""

    strategy: str = "folders"
    base_dir: Path = Path("multishot-results")
    cleanup_old: bool = False
    max_age_days: int = 30


@dataclass(slots=True, frozen=True)
class ProgressUpdate:
    """Progress event emitted on every dispatch state change."""

    engine_name: str
    status: DispatchStatus
    attempt: int
    completed: int
    total: int
    result: EngineResponse | None = None
    error: str | None = None

    @property
    def percentage(self) -> float:
        if self.total <= 0:
            return 0.0
        return round(self.completed / self.total * 100, 1)


ProgressCallback = Callable[[ProgressUpdate], None]


@dataclass(slots=True, frozen=True)
class RunConfig:
    """Engines and dispatch policy for one run."""

    engines: dict[str, Engine]
    concurrent: bool = True
    max_concurrency: int = 5
    timeout_ms: int = 60_000
    retries: int = 1
    continue_on_error: bool = True
    output: SinkConfig = field(default_factory=SinkConfig)
    progress_callback: ProgressCallback | None = None
    retry_base_delay_ms: int = 1_000
    retry_max_delay_ms: int = 30_000
    sequential_delay_ms: int = 100

    def __post_init__(self) -> None:
        if not self.engines:
            raise ValueError("At least one engine is required for a run.")
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {self.max_concurrency}.")
        if self.timeout_ms < 0:
            raise ValueError(f"timeout_ms must be >= 0, got {self.timeout_ms}.")
        if self.retries < 0:
            raise ValueError(f"retries must be >= 0, got {self.retries}.")
        if self.retry_base_delay_ms < 0 or self.retry_max_delay_ms < 0:
            raise ValueError("Retry delays must be >= 0.")
        if self.sequential_delay_ms < 0:
            raise ValueError(f"sequential_delay_ms must be >= 0, got {self.sequential_delay_ms}.")

    def context(self) -> dict[str, Any]:
        """Dispatch policy snapshot stored alongside run metrics."""

        return {
            "concurrent": self.concurrent,
            "max_concurrency": self.max_concurrency,
            "timeout_ms": self.timeout_ms,
            "retries": self.retries,
        }


@dataclass(slots=True)
class ModelPerformance:
    """Per-engine metrics of one run."""

    engine: str
    model: str
    execution_time_ms: int
    cost_usd: float
    success: bool
    timestamp: datetime
    token_usage: TokenUsage | None = None
    cost_estimated: bool = False
    quality_score: float | None = None
    error: str | None = None
    failure_class: FailureClass | None = None


@dataclass(slots=True)
class PerformanceRecord:
    """Metrics derived from one completed run."""

    run_id: str
    timestamp: datetime
    prompt: str
    per_engine: list[ModelPerformance]
    total_cost_usd: float
    total_time_ms: int
    success_rate: float
    avg_quality_score: float | None
    task_complexity: int
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class RunResult:
    """Aggregated outcome of one run."""

    success: bool
    run_id: str
    results: dict[str, EngineResponse]
    execution_time_ms: int
    errors: list[str] = field(default_factory=list)
    attempts: dict[str, int] = field(default_factory=dict)
    output_location: str | None = None
    performance: PerformanceRecord | None = None


@dataclass(slots=True)
class SavedRun:
    """Where a result sink stored a run."""

    location: str | None
    files: list[str] = field(default_factory=list)


class RunAbortedError(RuntimeError):
    """Raised when a fail-fast run stops on the first terminal engine failure."""

    def __init__(
        self,
        *,
        run_id: str,
        engine_name: str,
        error: str,
        results: dict[str, EngineResponse],
    ) -> None:
        super().__init__(f"Engine {engine_name} failed: {error}")
        self.run_id = run_id
        self.engine_name = engine_name
        self.error = error
        self.results = results
