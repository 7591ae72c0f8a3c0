from pathlib import Path

import allure
from sqlalchemy import inspect, text

from multishot.orchestrator.repository import MetricsRepository

pytestmark = [
    allure.epic("Run Metrics"),
    allure.feature("Persist & Migrations"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = MetricsRepository(tmp_path / "migrations.db")
    repository.init_schema()

    with repository.engine.connect() as connection:
        version = connection.execute(
            text("SELECT version_num FROM alembic_version LIMIT 1"),
        ).scalar_one()
    assert version == "20261016_0001"

    tables = set(inspect(repository.engine).get_table_names())
    assert {"performance_runs", "model_performance"} <= tables
    repository.close()


def test_init_schema_is_idempotent(tmp_path: Path) -> None:
    repository = MetricsRepository(tmp_path / "twice.db")
    repository.init_schema()
    repository.init_schema()

    assert repository.list_runs() == []
    repository.close()
