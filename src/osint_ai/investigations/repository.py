"""SQLModel-backed store for investigations and their findings."""

from __future__ import annotations

import logging
from pathlib import Path

from sqlmodel import Session, col, delete, select

from osint_ai.errors import InvestigationNotFoundError
from osint_ai.investigations.models import (
    FindingCreate,
    FindingView,
    InvestigationCreate,
    InvestigationView,
)
from osint_ai.storage.alembic_runner import upgrade_head
from osint_ai.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from osint_ai.storage.sqlmodel_models import Investigation, OsintResult

logger = logging.getLogger(__name__)


class InvestigationRepository:
    """Persistence facade for the collaborators of the AI job pipeline."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def create_investigation(self, payload: InvestigationCreate) -> InvestigationView:
        with Session(self.engine) as session:
            row = Investigation(
                target=payload.target,
                investigation_type=payload.investigation_type,
                status="pending",
                requested_by=payload.requested_by,
                requested_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            logger.info("Created investigation %s for target %s", row.id, row.target)
            return _to_investigation_view(row)

    def delete_investigation(self, investigation_id: int) -> bool:
        """Delete an investigation; findings and AI jobs go with it."""

        with Session(self.engine) as session:
            result = session.exec(
                delete(Investigation).where(col(Investigation.id) == investigation_id),
            )
            session.commit()
            deleted = result.rowcount == 1
        if deleted:
            logger.info("Deleted investigation %s", investigation_id)
        return deleted

    def add_finding(self, payload: FindingCreate) -> FindingView:
        with Session(self.engine) as session:
            if session.get(Investigation, payload.investigation_id) is None:
                raise InvestigationNotFoundError(payload.investigation_id)
            row = OsintResult(
                investigation_id=payload.investigation_id,
                tool_name=payload.tool_name,
                data_type=payload.data_type,
                raw_data=payload.raw_data,
                summary=payload.summary,
                confidence_score=payload.confidence_score,
                collected_at=to_db_datetime(payload.collected_at or utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_finding_view(row)

    def list_findings(self, investigation_id: int) -> list[FindingView]:
        """Findings of one investigation in collection order."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(OsintResult)
                .where(col(OsintResult.investigation_id) == investigation_id)
                .order_by(col(OsintResult.collected_at).asc(), col(OsintResult.id).asc()),
            ).all()
        return [_to_finding_view(row) for row in rows]


def _to_investigation_view(row: Investigation) -> InvestigationView:
    return InvestigationView(
        investigation_id=row.id or 0,
        target=row.target,
        investigation_type=row.investigation_type,
        status=row.status,
        requested_by=row.requested_by,
        requested_at=to_utc_aware_datetime(row.requested_at),
    )


def _to_finding_view(row: OsintResult) -> FindingView:
    return FindingView(
        finding_id=row.id or 0,
        investigation_id=row.investigation_id,
        tool_name=row.tool_name,
        data_type=row.data_type,
        raw_data=row.raw_data,
        summary=row.summary,
        confidence_score=row.confidence_score,
        collected_at=to_utc_aware_datetime(row.collected_at),
    )
