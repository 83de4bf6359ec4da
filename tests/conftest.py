"""Shared test fixtures."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from osint_ai.config import QueueSettings
from osint_ai.investigations.models import FindingCreate, InvestigationCreate
from osint_ai.investigations.repository import InvestigationRepository
from osint_ai.jobs.repository import AiJobRepository


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "osint.db"


@pytest.fixture()
def investigations(db_path: Path):
    repository = InvestigationRepository(db_path)
    repository.init_schema()
    yield repository
    repository.close()


@pytest.fixture()
def job_repository(db_path: Path, investigations: InvestigationRepository):
    """Queue with three attempts and no retry backoff."""
    repository = AiJobRepository(
        db_path,
        queue_settings=QueueSettings(max_attempts=3, retry_backoff_seconds=0),
    )
    yield repository
    repository.close()


@pytest.fixture()
def investigation_id(investigations: InvestigationRepository) -> int:
    """Investigation of example.com with three findings of two data types."""
    investigation = investigations.create_investigation(
        InvestigationCreate(target="example.com", investigation_type="domain"),
    )
    collected = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)
    for offset, (tool, data_type, summary) in enumerate(
        [
            ("dnsrecon", "dns", "MX records point to a shared hosting provider."),
            ("theharvester", "email", "Found admin@example.com in public breach data."),
            ("dnsrecon", "dns", "Wildcard DNS is enabled for *.example.com."),
        ],
    ):
        investigations.add_finding(
            FindingCreate(
                investigation_id=investigation.investigation_id,
                tool_name=tool,
                data_type=data_type,
                summary=summary,
                collected_at=collected + timedelta(minutes=offset),
            ),
        )
    return investigation.investigation_id
