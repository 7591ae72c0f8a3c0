"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

import pytest

from multishot.orchestrator.models import EngineResponse, PromptRequest, TokenUsage
from multishot.storage.common import utc_now

MULTISHOT_ENV_VARS = (
    "MULTISHOT_DB_PATH",
    "MULTISHOT_LOG_LEVEL",
    "MULTISHOT_LOG_FILE",
    "MULTISHOT_CONCURRENT",
    "MULTISHOT_MAX_CONCURRENCY",
    "MULTISHOT_TIMEOUT_MS",
    "MULTISHOT_RETRIES",
    "MULTISHOT_CONTINUE_ON_ERROR",
    "MULTISHOT_RETRY_BASE_DELAY_MS",
    "MULTISHOT_RETRY_MAX_DELAY_MS",
    "MULTISHOT_SEQUENTIAL_DELAY_MS",
    "MULTISHOT_OUTPUT",
    "MULTISHOT_OUTPUT_DIR",
    "MULTISHOT_CLEANUP_OLD",
    "MULTISHOT_MAX_AGE_DAYS",
    "MULTISHOT_LLM_PRICING",
    "MULTISHOT_OPENAI_BASE_URL",
    "MULTISHOT_ANTHROPIC_BASE_URL",
    "MULTISHOT_LOCAL_ENDPOINT",
    "MULTISHOT_CUSTOM_ENDPOINT",
    "MULTISHOT_HTTP_TIMEOUT_SECONDS",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
)


@pytest.fixture(autouse=True)
def clean_multishot_env(monkeypatch):
    """Keep developer shell settings out of the tests."""
    for name in MULTISHOT_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@dataclass
class InFlightTracker:
    """Counts engine calls that are running at the same time."""

    current: int = 0
    peak: int = 0

    def enter(self) -> None:
        self.current += 1
        self.peak = max(self.peak, self.current)

    def exit(self) -> None:
        self.current -= 1


@dataclass
class ScriptedEngine:
    """In-memory engine that plays back one outcome per call.

    Outcomes: `"ok"`, `"error:<text>"`, `"raise"` (raises RuntimeError),
    `"socket-timeout"` (raises its own TimeoutError) or `"hang"` (sleeps far
    past any test timeout). The last outcome repeats.
    """

    name: str
    outcomes: list[str] = field(default_factory=lambda: ["ok"])
    delay: float = 0.0
    tracker: InFlightTracker | None = None
    available: bool = True
    calls: int = 0
    cancelled: int = 0
    started_at: list[float] = field(default_factory=list)

    async def execute(self, request: PromptRequest) -> EngineResponse:
        outcome = self.outcomes[min(self.calls, len(self.outcomes) - 1)]
        self.calls += 1
        self.started_at.append(time.monotonic())
        timestamp = utc_now()
        if self.tracker is not None:
            self.tracker.enter()
        try:
            if outcome == "hang":
                await asyncio.sleep(30)
            elif self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        finally:
            if self.tracker is not None:
                self.tracker.exit()

        if outcome == "raise":
            raise RuntimeError(f"{self.name} exploded")
        if outcome == "socket-timeout":
            raise TimeoutError("socket read")
        if outcome.startswith("error:"):
            return EngineResponse(
                content="",
                model=f"{self.name}-model",
                engine=self.name,
                timestamp=timestamp,
                execution_time_ms=1,
                error=outcome.removeprefix("error:"),
            )
        return EngineResponse(
            content=f"{self.name} answer to: {request.prompt}",
            model=f"{self.name}-model",
            engine=self.name,
            timestamp=timestamp,
            execution_time_ms=int(self.delay * 1000),
            token_usage=TokenUsage(prompt_tokens=10, completion_tokens=20, total_tokens=30),
        )

    async def is_available(self) -> bool:
        return self.available

    def get_config(self) -> dict[str, Any]:
        return {"name": self.name, "kind": "custom", "model": f"{self.name}-model"}


@pytest.fixture()
def prompt_request() -> PromptRequest:
    return PromptRequest(prompt="Explain the trade-offs of event sourcing.")


@pytest.fixture()
def make_engine() -> type[ScriptedEngine]:
    return ScriptedEngine


@pytest.fixture()
def in_flight() -> InFlightTracker:
    return InFlightTracker()
