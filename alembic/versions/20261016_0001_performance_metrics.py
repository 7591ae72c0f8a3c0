"""Run performance metrics tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261016_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "performance_runs",
        sa.Column("run_id", sa.String(), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("total_cost_usd", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_time_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("success_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("avg_quality_score", sa.Float(), nullable=True),
        sa.Column("task_complexity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("context_json", sa.Text(), nullable=False, server_default="{}"),
        sa.PrimaryKeyConstraint("run_id"),
    )
    op.create_index("idx_performance_runs_time", "performance_runs", ["recorded_at"])

    op.create_table(
        "model_performance",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("run_id", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("engine", sa.String(), nullable=False),
        sa.Column("model", sa.String(), nullable=False),
        sa.Column("execution_time_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("prompt_tokens", sa.Integer(), nullable=True),
        sa.Column("completion_tokens", sa.Integer(), nullable=True),
        sa.Column("total_tokens", sa.Integer(), nullable=True),
        sa.Column("cost_usd", sa.Float(), nullable=False, server_default="0"),
        sa.Column("cost_estimated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("quality_score", sa.Float(), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("failure_class", sa.String(), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["run_id"],
            ["performance_runs.run_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_model_performance_run",
        "model_performance",
        ["run_id", "position"],
    )
    op.create_index("ix_model_performance_engine", "model_performance", ["engine"])
    op.create_index("ix_model_performance_model", "model_performance", ["model"])
    op.create_index(
        "ix_model_performance_failure_class",
        "model_performance",
        ["failure_class"],
    )


def downgrade() -> None:
    op.drop_index("ix_model_performance_failure_class", table_name="model_performance")
    op.drop_index("ix_model_performance_model", table_name="model_performance")
    op.drop_index("ix_model_performance_engine", table_name="model_performance")
    op.drop_index("idx_model_performance_run", table_name="model_performance")
    op.drop_table("model_performance")
    op.drop_index("idx_performance_runs_time", table_name="performance_runs")
    op.drop_table("performance_runs")
