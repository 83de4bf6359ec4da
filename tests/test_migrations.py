import sqlite3
from pathlib import Path

import allure

from osint_ai.investigations.repository import InvestigationRepository
from osint_ai.jobs.repository import AiJobRepository
from osint_ai.storage.alembic_runner import current_revision

pytestmark = [
    allure.epic("Storage"),
    allure.feature("Schema Migrations"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    db_path = tmp_path / "migrations.db"
    assert current_revision(db_path) is None
    repository = AiJobRepository(db_path)
    repository.init_schema()
    repository.init_schema()
    repository.close()

    connection = sqlite3.connect(db_path)
    try:
        version = connection.execute("SELECT version_num FROM alembic_version").fetchall()
        tables = connection.execute(
            """
            SELECT name
            FROM sqlite_master
            WHERE type = 'table' AND name != 'alembic_version'
            ORDER BY name
            """,
        ).fetchall()
        job_columns = {row[1] for row in connection.execute("PRAGMA table_info(ai_jobs)")}
    finally:
        connection.close()

    assert version == [("20261019_0001",)]
    assert current_revision(db_path) == "20261019_0001"
    assert [row[0] for row in tables] == [
        "ai_job_events",
        "ai_jobs",
        "investigations",
        "osint_results",
    ]
    assert {
        "status",
        "attempt_count",
        "max_attempts",
        "run_after",
        "worker_id",
        "structured_result_json",
        "error_info_json",
        "debug_info_json",
    } <= job_columns


def test_engine_enables_wal_and_foreign_keys(tmp_path: Path) -> None:
    repository = InvestigationRepository(tmp_path / "pragmas.db")
    repository.init_schema()
    try:
        with repository.engine.connect() as connection:
            journal_mode = connection.exec_driver_sql("PRAGMA journal_mode").scalar()
            foreign_keys = connection.exec_driver_sql("PRAGMA foreign_keys").scalar()
    finally:
        repository.close()

    assert str(journal_mode).lower() == "wal"
    assert foreign_keys == 1
