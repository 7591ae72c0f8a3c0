"""Prompt runner: dispatches one request to every engine of a run."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError

from multishot.orchestrator.engines.factory import check_engines
from multishot.orchestrator.metrics import build_performance_record
from multishot.orchestrator.models import (
    DispatchStatus,
    EngineResponse,
    PerformanceRecord,
    ProgressUpdate,
    PromptRequest,
    RunAbortedError,
    RunConfig,
    RunResult,
)
from multishot.orchestrator.semaphore import ConcurrencyGate
from multishot.orchestrator.sink import NullResultSink, ResultSink, build_result_sink
from multishot.storage.common import utc_now

if TYPE_CHECKING:
    from multishot.orchestrator.engines.base import Engine
    from multishot.orchestrator.repository import MetricsRepository

logger = logging.getLogger(__name__)


def backoff_delay_ms(attempt: int, *, base_delay_ms: int, max_delay_ms: int) -> int:
    """Delay before the retry that follows failed attempt number `attempt` (1-based)."""

    return min(attempt * base_delay_ms, max_delay_ms)


class _EngineFailed(Exception):
    """Internal signal: a fail-fast run hit its first terminal failure."""

    def __init__(self, engine_name: str, error: str) -> None:
        super().__init__(error)
        self.engine_name = engine_name
        self.error = error


@dataclass(slots=True)
class _RunState:
    run_id: str
    total: int
    results: dict[str, EngineResponse] = field(default_factory=dict)
    attempts: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    completed: int = 0
    first_failure: _EngineFailed | None = None


class PromptRunner:
    """Runs a `PromptRequest` against the engines of a `RunConfig`.

    Concurrent runs gate every dispatch through this runner's own
    `ConcurrencyGate`; sequential runs dispatch in caller order with a fixed
    pause in between. Each dispatch makes at most `retries + 1` attempts, and
    every attempt is bounded by `timeout_ms`. A timed-out attempt cancels the
    engine coroutine, which cancels the in-flight HTTP request for the
    httpx-backed engines; an engine built on a transport that ignores
    cancellation may keep working remotely after the runner gives up on it.
    """

    def __init__(
        self,
        config: RunConfig,
        *,
        sink: ResultSink | None = None,
        metrics_repository: MetricsRepository | None = None,
    ) -> None:
        self.config = config
        self.sink = sink if sink is not None else build_result_sink(config.output)
        self.metrics_repository = metrics_repository
        self.gate = ConcurrencyGate(config.max_concurrency)

    async def run(self, request: PromptRequest) -> RunResult:
        """Execute one run; raises `RunAbortedError` only for fail-fast runs."""

        state = _RunState(run_id=str(uuid4()), total=len(self.config.engines))
        started_at = utc_now()
        started = time.perf_counter()
        logger.info(
            "Run %s started: engines=%s concurrent=%s max_concurrency=%d",
            state.run_id,
            ",".join(self.config.engines),
            self.config.concurrent,
            self.config.max_concurrency,
        )

        sink = self.sink
        try:
            await sink.initialize()
        except OSError:
            logger.warning(
                "Result sink setup failed for run %s; results will not be saved",
                state.run_id,
                exc_info=True,
            )
            sink = NullResultSink()

        try:
            if self.config.concurrent:
                await self._run_concurrent(request, state)
            else:
                await self._run_sequential(request, state)
        except _EngineFailed as failure:
            logger.warning(
                "Run %s aborted after engine %s failed: %s",
                state.run_id,
                failure.engine_name,
                failure.error,
            )
            raise RunAbortedError(
                run_id=state.run_id,
                engine_name=failure.engine_name,
                error=failure.error,
                results=self._ordered_results(state),
            ) from None

        execution_time_ms = int((time.perf_counter() - started) * 1000)
        results = self._ordered_results(state)
        performance = build_performance_record(
            run_id=state.run_id,
            timestamp=started_at,
            request=request,
            results=results,
            total_time_ms=execution_time_ms,
            engine_kinds=self._engine_kinds(),
            context=self.config.context(),
        )

        output_location = None
        try:
            saved = await sink.save_results(
                run_id=state.run_id,
                prompt=request.prompt,
                engine_names=list(self.config.engines),
                results=results,
            )
            output_location = saved.location
        except OSError:
            logger.warning("Failed to save results for run %s", state.run_id, exc_info=True)

        await self._record_performance(performance)

        success = any(response.ok for response in results.values())
        logger.info(
            "Run %s finished: success=%s succeeded=%d/%d time=%dms",
            state.run_id,
            success,
            sum(1 for response in results.values() if response.ok),
            state.total,
            execution_time_ms,
        )
        return RunResult(
            success=success,
            run_id=state.run_id,
            results=results,
            execution_time_ms=execution_time_ms,
            errors=list(state.errors),
            attempts=dict(state.attempts),
            output_location=output_location,
            performance=performance,
        )

    async def get_engine_status(self) -> dict[str, bool]:
        """Availability of every engine in the run configuration."""

        return await check_engines(self.config.engines)

    def config_summary(self) -> list[str]:
        config = self.config
        mode = (
            f"concurrent (max {config.max_concurrency})" if config.concurrent else "sequential"
        )
        timeout = f"{config.timeout_ms}ms" if config.timeout_ms > 0 else "disabled"
        return [
            f"Engines: {', '.join(config.engines)}",
            f"Mode: {mode}",
            f"Timeout: {timeout}",
            f"Retries: {config.retries}",
            f"Continue on error: {'yes' if config.continue_on_error else 'no'}",
            f"Output: {config.output.strategy}",
        ]

    async def _run_concurrent(self, request: PromptRequest, state: _RunState) -> None:
        tasks = [
            asyncio.create_task(
                self._dispatch(name, engine, request, state),
                name=f"multishot-{name}",
            )
            for name, engine in self.config.engines.items()
        ]
        try:
            if self.config.continue_on_error:
                await asyncio.gather(*tasks)
                return

            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            raised = [task.exception() for task in done if task.exception() is not None]
            if state.first_failure is not None:
                raise state.first_failure
            if raised:
                raise raised[0]
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

    async def _run_sequential(self, request: PromptRequest, state: _RunState) -> None:
        for index, (name, engine) in enumerate(self.config.engines.items()):
            if index > 0 and self.config.sequential_delay_ms > 0:
                await asyncio.sleep(self.config.sequential_delay_ms / 1000)
            await self._dispatch(name, engine, request, state)

    async def _dispatch(
        self,
        name: str,
        engine: Engine,
        request: PromptRequest,
        state: _RunState,
    ) -> None:
        if self.config.concurrent:
            self._emit(state, name, DispatchStatus.PENDING, attempt=0)
            async with self.gate:
                # a fail-fast abort may have handed us the failed dispatch's permit
                if state.first_failure is not None:
                    return
                response = await self._execute_with_retries(name, engine, request, state)
        else:
            response = await self._execute_with_retries(name, engine, request, state)

        state.results[name] = response
        state.completed += 1
        if response.ok:
            self._emit(state, name, DispatchStatus.SUCCEEDED, state.attempts[name], result=response)
            return

        state.errors.append(f"{name}: {response.error}")
        logger.warning(
            "Engine %s failed after %d attempt(s): %s",
            name,
            state.attempts[name],
            response.error,
        )
        self._emit(
            state,
            name,
            DispatchStatus.FAILED,
            state.attempts[name],
            result=response,
            error=response.error,
        )
        if not self.config.continue_on_error:
            failure = _EngineFailed(name, response.error or "unknown error")
            if state.first_failure is None:
                state.first_failure = failure
            raise failure

    async def _execute_with_retries(
        self,
        name: str,
        engine: Engine,
        request: PromptRequest,
        state: _RunState,
    ) -> EngineResponse:
        max_attempts = self.config.retries + 1
        attempt = 0
        while True:
            attempt += 1
            state.attempts[name] = attempt
            self._emit(state, name, DispatchStatus.RUNNING, attempt)
            response = await self._attempt(name, engine, request, state, attempt)
            if response.ok or attempt >= max_attempts:
                return response

            delay_ms = backoff_delay_ms(
                attempt,
                base_delay_ms=self.config.retry_base_delay_ms,
                max_delay_ms=self.config.retry_max_delay_ms,
            )
            logger.warning(
                "Engine %s attempt %d/%d failed: %s; retrying in %dms",
                name,
                attempt,
                max_attempts,
                response.error,
                delay_ms,
            )
            self._emit(state, name, DispatchStatus.RETRYING, attempt, error=response.error)
            if delay_ms > 0:
                await asyncio.sleep(delay_ms / 1000)

    async def _attempt(
        self,
        name: str,
        engine: Engine,
        request: PromptRequest,
        state: _RunState,
        attempt: int,
    ) -> EngineResponse:
        timestamp = utc_now()
        started = time.perf_counter()
        timeout_ms = self.config.timeout_ms
        try:
            if timeout_ms > 0:
                return await asyncio.wait_for(engine.execute(request), timeout_ms / 1000)
            return await engine.execute(request)
        except TimeoutError as error:
            if timeout_ms <= 0:
                # raised by the engine itself, not by the attempt deadline
                logger.debug("Engine %s raised during attempt %d", name, attempt, exc_info=True)
                return _synthetic_failure(
                    name,
                    engine,
                    f"{type(error).__name__}: {error}",
                    timestamp,
                    started,
                )
            message = f"Engine {name} timed out after {timeout_ms}ms"
            self._emit(state, name, DispatchStatus.TIMED_OUT, attempt, error=message)
            return _synthetic_failure(name, engine, message, timestamp, started)
        except Exception as error:  # noqa: BLE001
            logger.debug("Engine %s raised during attempt %d", name, attempt, exc_info=True)
            return _synthetic_failure(
                name,
                engine,
                f"{type(error).__name__}: {error}",
                timestamp,
                started,
            )

    def _emit(  # noqa: PLR0913
        self,
        state: _RunState,
        name: str,
        status: DispatchStatus,
        attempt: int,
        *,
        result: EngineResponse | None = None,
        error: str | None = None,
    ) -> None:
        callback = self.config.progress_callback
        if callback is None:
            return
        update = ProgressUpdate(
            engine_name=name,
            status=status,
            attempt=attempt,
            completed=state.completed,
            total=state.total,
            result=result,
            error=error,
        )
        try:
            callback(update)
        except Exception:  # noqa: BLE001
            logger.warning("Progress callback failed for %s", name, exc_info=True)

    async def _record_performance(self, performance: PerformanceRecord) -> None:
        if self.metrics_repository is None:
            return
        try:
            await asyncio.to_thread(self.metrics_repository.record_run, performance)
        except SQLAlchemyError:
            logger.warning(
                "Failed to record performance metrics for run %s",
                performance.run_id,
                exc_info=True,
            )

    def _ordered_results(self, state: _RunState) -> dict[str, EngineResponse]:
        return {name: state.results[name] for name in self.config.engines if name in state.results}

    def _engine_kinds(self) -> Mapping[str, str]:
        kinds: dict[str, str] = {}
        for name, engine in self.config.engines.items():
            kind = engine.get_config().get("kind")
            if kind:
                kinds[name] = str(kind)
        return kinds


def _synthetic_failure(
    name: str,
    engine: Engine,
    message: str,
    timestamp: datetime,
    started: float,
) -> EngineResponse:
    return EngineResponse(
        content="",
        model=str(engine.get_config().get("model", name)),
        engine=name,
        timestamp=timestamp,
        execution_time_ms=int((time.perf_counter() - started) * 1000),
        error=message,
    )
