"""Append-only store of run performance records."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

from sqlmodel import Session, col, select

from multishot.orchestrator.models import (
    FailureClass,
    ModelPerformance,
    PerformanceRecord,
    TokenUsage,
)
from multishot.storage.alembic_runner import upgrade_head
from multishot.storage.common import build_sqlite_engine
from multishot.storage.sqlmodel_models import ModelPerformanceRow, PerformanceRun


class MetricsRepository:
    """Run metrics persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def record_run(self, record: PerformanceRecord) -> None:
        """Append one run record with its per-engine rows."""

        with Session(self.engine) as session:
            session.add(
                PerformanceRun(
                    run_id=record.run_id,
                    recorded_at=_to_db_datetime(record.timestamp),
                    prompt=record.prompt,
                    total_cost_usd=record.total_cost_usd,
                    total_time_ms=record.total_time_ms,
                    success_rate=record.success_rate,
                    avg_quality_score=record.avg_quality_score,
                    task_complexity=record.task_complexity,
                    context_json=json.dumps(record.context, sort_keys=True, default=str),
                ),
            )
            # parent row must exist before the foreign keys are checked
            session.flush()
            for position, item in enumerate(record.per_engine):
                usage = item.token_usage
                session.add(
                    ModelPerformanceRow(
                        run_id=record.run_id,
                        position=position,
                        engine=item.engine,
                        model=item.model,
                        execution_time_ms=item.execution_time_ms,
                        prompt_tokens=usage.prompt_tokens if usage else None,
                        completion_tokens=usage.completion_tokens if usage else None,
                        total_tokens=usage.total_tokens if usage else None,
                        cost_usd=item.cost_usd,
                        cost_estimated=item.cost_estimated,
                        quality_score=item.quality_score,
                        success=item.success,
                        error=item.error,
                        failure_class=item.failure_class.value if item.failure_class else None,
                        responded_at=_to_db_datetime(item.timestamp),
                    ),
                )
            session.commit()

    def get_run(self, run_id: str) -> PerformanceRecord | None:
        with Session(self.engine) as session:
            row = session.get(PerformanceRun, run_id)
            if row is None:
                return None
            return self._to_record(session, row)

    def list_runs(
        self,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[PerformanceRecord]:
        """Stored runs within `[since, until]`, oldest first."""

        with Session(self.engine) as session:
            statement = select(PerformanceRun)
            recorded_at = col(PerformanceRun.recorded_at)
            if since is not None:
                statement = statement.where(recorded_at >= _to_db_datetime(since))
            if until is not None:
                statement = statement.where(recorded_at <= _to_db_datetime(until))
            statement = statement.order_by(recorded_at, col(PerformanceRun.run_id))
            return [self._to_record(session, row) for row in session.exec(statement).all()]

    def _to_record(self, session: Session, row: PerformanceRun) -> PerformanceRecord:
        model_rows = session.exec(
            select(ModelPerformanceRow)
            .where(ModelPerformanceRow.run_id == row.run_id)
            .order_by(col(ModelPerformanceRow.position)),
        ).all()
        return PerformanceRecord(
            run_id=row.run_id,
            timestamp=_to_utc_aware_datetime(row.recorded_at),
            prompt=row.prompt,
            per_engine=[_to_model_performance(item) for item in model_rows],
            total_cost_usd=row.total_cost_usd,
            total_time_ms=row.total_time_ms,
            success_rate=row.success_rate,
            avg_quality_score=row.avg_quality_score,
            task_complexity=row.task_complexity,
            context=json.loads(row.context_json or "{}"),
        )


def _to_model_performance(row: ModelPerformanceRow) -> ModelPerformance:
    usage = None
    if row.prompt_tokens is not None and row.completion_tokens is not None:
        usage = TokenUsage(
            prompt_tokens=row.prompt_tokens,
            completion_tokens=row.completion_tokens,
            total_tokens=row.total_tokens or row.prompt_tokens + row.completion_tokens,
        )
    return ModelPerformance(
        engine=row.engine,
        model=row.model,
        execution_time_ms=row.execution_time_ms,
        cost_usd=row.cost_usd,
        success=row.success,
        timestamp=_to_utc_aware_datetime(row.responded_at),
        token_usage=usage,
        cost_estimated=row.cost_estimated,
        quality_score=row.quality_score,
        error=row.error,
        failure_class=FailureClass(row.failure_class) if row.failure_class else None,
    )


def _to_db_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _to_utc_aware_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
