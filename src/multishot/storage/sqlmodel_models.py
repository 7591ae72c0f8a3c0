"""SQLModel ORM tables for the run metrics store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class PerformanceRun(SQLModel, table=True):
    __tablename__ = "performance_runs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_performance_runs_time", "recorded_at"),)

    run_id: str = Field(primary_key=True)
    recorded_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    prompt: str = Field(sa_column=Column(Text, nullable=False))
    total_cost_usd: float = 0.0
    total_time_ms: int = 0
    success_rate: float = 0.0
    avg_quality_score: float | None = None
    task_complexity: int = 1
    context_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))


class ModelPerformanceRow(SQLModel, table=True):
    __tablename__ = "model_performance"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_model_performance_run", "run_id", "position"),)

    id: int | None = Field(default=None, primary_key=True)
    run_id: str = Field(
        sa_column=Column(
            ForeignKey("performance_runs.run_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    position: int = 0
    engine: str = Field(index=True)
    model: str = Field(index=True)
    execution_time_ms: int = 0
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    cost_usd: float = 0.0
    cost_estimated: bool = False
    quality_score: float | None = None
    success: bool = False
    error: str | None = Field(default=None, sa_column=Column(Text))
    failure_class: str | None = Field(default=None, index=True)
    responded_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
