"""Persistent AI job queue backed by SQLModel + SQLite."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from osint_ai.config import QueueSettings
from osint_ai.errors import InvestigationNotFoundError, UnsupportedJobTypeError
from osint_ai.jobs.models import (
    MARKDOWN_SECTIONS_V1,
    AiJobCompletionPayload,
    AiJobCreate,
    AiJobDebugInfo,
    AiJobErrorInfo,
    AiJobEventView,
    AiJobFailurePayload,
    AiJobStatus,
    AiJobType,
    AiJobView,
    StructuredResult,
)
from osint_ai.storage.alembic_runner import upgrade_head
from osint_ai.storage.common import (
    build_sqlite_engine,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from osint_ai.storage.sqlmodel_models import AiJob, AiJobEvent, Investigation

logger = logging.getLogger(__name__)

SUPPORTED_JOB_TYPES = frozenset(item.value for item in AiJobType)
LEASE_EXPIRED_CODE = "lease_expired"


class AiJobRepository:
    """Queue persistence facade.

    Every status change is a conditional ``UPDATE`` that names the expected
    source status, so concurrent workers and operators sharing one database
    never apply two transitions from the same state.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        queue_settings: QueueSettings | None = None,
        busy_timeout_ms: int = 5_000,
    ) -> None:
        self.db_path = db_path
        self.queue_settings = queue_settings or QueueSettings()
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def enqueue_job(self, payload: AiJobCreate) -> AiJobView:
        """Create a queued job for an existing investigation."""

        job_type = (payload.job_type or "").strip().lower()
        if job_type not in SUPPORTED_JOB_TYPES:
            raise UnsupportedJobTypeError(payload.job_type)

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            if session.get(Investigation, payload.investigation_id) is None:
                raise InvestigationNotFoundError(payload.investigation_id)

            row = AiJob(
                investigation_id=payload.investigation_id,
                job_type=job_type,
                status=AiJobStatus.QUEUED.value,
                model=payload.model or None,
                prompt=payload.prompt or None,
                debug=payload.debug,
                attempt_count=0,
                max_attempts=self.queue_settings.max_attempts,
                run_after=now,
                result_format=MARKDOWN_SECTIONS_V1,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.flush()
            job_id = _row_id(row)
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="enqueued",
                status_from=None,
                status_to=AiJobStatus.QUEUED,
                details={
                    "job_type": job_type,
                    "model": row.model,
                    "debug": row.debug,
                    "max_attempts": row.max_attempts,
                },
            )
            session.commit()
            session.refresh(row)
            logger.info(
                "AI job %s queued for investigation %s (%s) [debug: %s]",
                job_id,
                payload.investigation_id,
                job_type,
                payload.debug,
            )
            return _to_job_view(row)

    def claim_next_job(self, *, worker_id: str) -> AiJobView | None:
        """Atomically claim the oldest eligible queued job."""

        while True:
            now = to_db_datetime(utc_now())
            with Session(self.engine) as session:
                candidate = session.exec(
                    select(AiJob)
                    .where(
                        AiJob.status == AiJobStatus.QUEUED.value,
                        col(AiJob.attempt_count) < col(AiJob.max_attempts),
                        col(AiJob.run_after) <= now,
                    )
                    .order_by(col(AiJob.created_at).asc(), col(AiJob.id).asc())
                    .limit(1),
                ).one_or_none()
                if candidate is None:
                    return None

                job_id = _row_id(candidate)
                seen_attempts = candidate.attempt_count
                result = session.exec(
                    sa_update(AiJob)
                    .where(
                        col(AiJob.id) == job_id,
                        col(AiJob.status) == AiJobStatus.QUEUED.value,
                        col(AiJob.attempt_count) == seen_attempts,
                    )
                    .values(
                        status=AiJobStatus.RUNNING.value,
                        attempt_count=seen_attempts + 1,
                        worker_id=worker_id,
                        started_at=now,
                        last_attempt_started_at=now,
                        last_attempt_completed_at=None,
                        last_duration_ms=None,
                        completed_at=None,
                        result=None,
                        result_format=MARKDOWN_SECTIONS_V1,
                        structured_result_json=None,
                        error=None,
                        last_error=None,
                        error_info_json=None,
                        debug_info_json=None,
                        updated_at=now,
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue

                self._add_event(
                    session=session,
                    job_id=job_id,
                    event_type="claimed",
                    status_from=AiJobStatus.QUEUED,
                    status_to=AiJobStatus.RUNNING,
                    details={"worker_id": worker_id, "attempt": seen_attempts + 1},
                )
                claimed = _to_job_view(
                    session.exec(select(AiJob).where(AiJob.id == job_id)).one(),
                )
                session.commit()
                logger.debug("Claimed AI job %s (%s) for %s", job_id, claimed.job_type, worker_id)
                return claimed

    def mark_job_succeeded(self, job_id: int, payload: AiJobCompletionPayload) -> bool:
        """Store the result of a running job; returns False when the outcome was not applied."""

        now = utc_now()
        with Session(self.engine) as session:
            row = session.get(AiJob, job_id)
            if row is None:
                logger.warning("Attempted to mark job %s as succeeded but it was not found", job_id)
                return False
            reason = _stale_outcome_reason(row, payload.worker_id, payload.attempt)
            if reason is not None:
                self._drop_outcome(session=session, row=row, outcome="succeeded", reason=reason)
                session.commit()
                return False

            values: dict[str, Any] = {
                "status": AiJobStatus.SUCCEEDED.value,
                "result": payload.raw_result,
                "result_format": payload.result_format or MARKDOWN_SECTIONS_V1,
                "structured_result_json": _dump_json(
                    payload.structured_result.to_dict()
                    if payload.structured_result is not None
                    else None,
                ),
                "debug_info_json": _dump_json(
                    payload.debug_info.to_dict() if payload.debug_info is not None else None,
                ),
                "error": None,
                "last_error": None,
                "error_info_json": None,
                "completed_at": to_db_datetime(now),
                "last_attempt_completed_at": to_db_datetime(now),
                "last_duration_ms": _duration_ms(row, now),
                "started_at": None,
                "updated_at": to_db_datetime(now),
            }
            if payload.prompt_used and payload.prompt_used.strip():
                values["prompt"] = payload.prompt_used

            result = session.exec(
                sa_update(AiJob)
                .where(
                    *_claim_conditions(job_id, payload.worker_id, payload.attempt),
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                logger.warning("AI job %s changed state while storing its result", job_id)
                return False
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="succeeded",
                status_from=AiJobStatus.RUNNING,
                status_to=AiJobStatus.SUCCEEDED,
                details={
                    "attempt": row.attempt_count,
                    "duration_ms": values["last_duration_ms"],
                    "result_chars": len(payload.raw_result),
                },
            )
            session.commit()

        logger.info("AI job %s completed successfully", job_id)
        return True

    def mark_job_failed(self, job_id: int, payload: AiJobFailurePayload) -> bool:
        """Record a failed attempt; returns True when the job will not run again."""

        now = utc_now()
        error = payload.error
        with Session(self.engine) as session:
            row = session.get(AiJob, job_id)
            if row is None:
                logger.warning("Attempted to mark job %s as failed but it was not found", job_id)
                return True
            reason = _stale_outcome_reason(row, payload.worker_id, payload.attempt)
            if reason is not None:
                self._drop_outcome(session=session, row=row, outcome="failed", reason=reason)
                session.commit()
                return True

            attempt_count = row.attempt_count
            max_attempts = row.max_attempts
            has_remaining_attempts = error.is_retryable and attempt_count < max_attempts
            values: dict[str, Any] = {
                "error": error.message,
                "last_error": error.message,
                "error_info_json": _dump_json(error.to_dict()),
                "last_attempt_completed_at": to_db_datetime(now),
                "last_duration_ms": _duration_ms(row, now),
                "started_at": None,
                "result": None,
                "result_format": MARKDOWN_SECTIONS_V1,
                "structured_result_json": None,
                "debug_info_json": None,
                "updated_at": to_db_datetime(now),
            }
            if payload.prompt_used and payload.prompt_used.strip():
                values["prompt"] = payload.prompt_used

            if has_remaining_attempts:
                run_after = now + timedelta(seconds=self.queue_settings.retry_backoff_seconds)
                values.update(
                    status=AiJobStatus.QUEUED.value,
                    completed_at=None,
                    run_after=to_db_datetime(run_after),
                )
                status_to = AiJobStatus.QUEUED
                event_type = "retry_scheduled"
            else:
                values.update(
                    status=AiJobStatus.FAILED.value,
                    completed_at=to_db_datetime(now),
                    attempt_count=min(attempt_count, max_attempts),
                )
                status_to = AiJobStatus.FAILED
                event_type = "failed"

            result = session.exec(
                sa_update(AiJob)
                .where(
                    *_claim_conditions(job_id, payload.worker_id, payload.attempt),
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                logger.warning("AI job %s changed state while recording its failure", job_id)
                return True
            details: dict[str, object] = {
                "attempt": attempt_count,
                "max_attempts": max_attempts,
                "code": error.code,
                "is_retryable": error.is_retryable,
            }
            if has_remaining_attempts:
                details["run_after"] = values["run_after"].isoformat()
            self._add_event(
                session=session,
                job_id=job_id,
                event_type=event_type,
                status_from=AiJobStatus.RUNNING,
                status_to=status_to,
                details=details,
            )
            session.commit()

        if has_remaining_attempts:
            logger.warning(
                "AI job %s failed (attempt %d/%d) and will be retried. Reason: %s",
                job_id,
                attempt_count,
                max_attempts,
                error.message,
            )
        else:
            logger.error(
                "AI job %s failed after %d attempts: %s",
                job_id,
                min(attempt_count, max_attempts),
                error.message,
            )
        return not has_remaining_attempts

    def retry_job(self, job_id: int) -> AiJobView | None:
        """Operator retry for failed or cancelled jobs."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.get(AiJob, job_id)
            if row is None:
                logger.warning("Attempted to retry job %s but it was not found", job_id)
                return None

            previous = AiJobStatus(row.status)
            if previous not in {AiJobStatus.FAILED, AiJobStatus.CANCELLED}:
                logger.warning(
                    "Attempted to retry job %s but it is currently %s",
                    job_id,
                    previous.value,
                )
                return _to_job_view(row)

            max_attempts = row.attempt_count + self.queue_settings.max_attempts
            result = session.exec(
                sa_update(AiJob)
                .where(
                    col(AiJob.id) == job_id,
                    col(AiJob.status) == previous.value,
                )
                .values(
                    status=AiJobStatus.QUEUED.value,
                    max_attempts=max_attempts,
                    run_after=now,
                    started_at=None,
                    completed_at=None,
                    last_attempt_started_at=None,
                    last_attempt_completed_at=None,
                    last_duration_ms=None,
                    worker_id=None,
                    error=None,
                    last_error=None,
                    error_info_json=None,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                logger.warning("AI job %s changed state concurrently while retrying", job_id)
                return self.get_job(job_id)

            self._add_event(
                session=session,
                job_id=job_id,
                event_type="manual_retry",
                status_from=previous,
                status_to=AiJobStatus.QUEUED,
                details={"attempt_count": row.attempt_count, "max_attempts": max_attempts},
            )
            session.commit()

        logger.info("AI job %s has been re-queued for retry", job_id)
        return self.get_job(job_id)

    def cancel_job(self, job_id: int) -> AiJobView | None:
        """Cancel a queued or running job."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.get(AiJob, job_id)
            if row is None:
                logger.warning("Attempted to cancel job %s but it was not found", job_id)
                return None

            previous = AiJobStatus(row.status)
            if previous not in {AiJobStatus.QUEUED, AiJobStatus.RUNNING}:
                logger.warning("AI job %s cannot be cancelled from status %s", job_id, row.status)
                return _to_job_view(row)

            result = session.exec(
                sa_update(AiJob)
                .where(
                    col(AiJob.id) == job_id,
                    col(AiJob.status) == previous.value,
                )
                .values(
                    status=AiJobStatus.CANCELLED.value,
                    completed_at=now,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                logger.warning("AI job %s changed state concurrently while cancelling", job_id)
                return self.get_job(job_id)

            self._add_event(
                session=session,
                job_id=job_id,
                event_type="cancelled",
                status_from=previous,
                status_to=AiJobStatus.CANCELLED,
                details={},
            )
            session.commit()

        logger.info("AI job %s cancelled", job_id)
        return self.get_job(job_id)

    def recover_stale_running_jobs(self, *, stale_after: timedelta) -> int:
        """Requeue or fail running jobs whose lease has expired."""

        now = utc_now()
        cutoff = to_db_datetime(now - stale_after)
        recovered = 0
        with Session(self.engine) as session:
            stale_rows = session.exec(
                select(AiJob)
                .where(
                    AiJob.status == AiJobStatus.RUNNING.value,
                    col(AiJob.last_attempt_started_at) <= cutoff,
                )
                .order_by(col(AiJob.created_at).asc(), col(AiJob.id).asc()),
            ).all()

            for row in stale_rows:
                job_id = _row_id(row)
                worker_id = row.worker_id
                attempt_count = row.attempt_count
                max_attempts = row.max_attempts
                error = AiJobErrorInfo(
                    message="Worker lease expired before the job completed.",
                    code=LEASE_EXPIRED_CODE,
                    details=f"Running since {optional_utc(row.last_attempt_started_at)} "
                    f"on worker {worker_id or 'unknown'}.",
                    is_retryable=True,
                    occurred_at=now,
                )
                requeue = attempt_count < max_attempts
                values: dict[str, Any] = {
                    "error": error.message,
                    "last_error": error.message,
                    "error_info_json": _dump_json(error.to_dict()),
                    "started_at": None,
                    "updated_at": to_db_datetime(now),
                }
                if requeue:
                    values.update(
                        status=AiJobStatus.QUEUED.value,
                        run_after=to_db_datetime(now),
                        worker_id=None,
                    )
                else:
                    values.update(
                        status=AiJobStatus.FAILED.value,
                        completed_at=to_db_datetime(now),
                        attempt_count=min(attempt_count, max_attempts),
                    )
                result = session.exec(
                    sa_update(AiJob)
                    .where(
                        col(AiJob.id) == job_id,
                        col(AiJob.status) == AiJobStatus.RUNNING.value,
                        col(AiJob.attempt_count) == attempt_count,
                    )
                    .values(**values),
                )
                if result.rowcount != 1:
                    continue
                self._add_event(
                    session=session,
                    job_id=job_id,
                    event_type="lease_expired",
                    status_from=AiJobStatus.RUNNING,
                    status_to=AiJobStatus.QUEUED if requeue else AiJobStatus.FAILED,
                    details={"worker_id": worker_id, "attempt": attempt_count},
                )
                recovered += 1
                logger.warning(
                    "Recovered stale AI job %s from worker %s (%s)",
                    job_id,
                    worker_id,
                    "requeued" if requeue else "failed",
                )
            session.commit()
        return recovered

    def get_job(self, job_id: int) -> AiJobView | None:
        with Session(self.engine) as session:
            row = session.get(AiJob, job_id)
            return _to_job_view(row) if row is not None else None

    def list_jobs_for_investigation(self, investigation_id: int, take: int = 10) -> list[AiJobView]:
        """Most recent jobs of one investigation, newest first."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(AiJob)
                .where(col(AiJob.investigation_id) == investigation_id)
                .order_by(col(AiJob.created_at).desc(), col(AiJob.id).desc())
                .limit(take),
            ).all()
        return [_to_job_view(row) for row in rows]

    def list_jobs(
        self,
        *,
        status: AiJobStatus | None = None,
        investigation_id: int | None = None,
        limit: int = 50,
    ) -> list[AiJobView]:
        """List recent jobs, optionally filtered by status and investigation."""

        with Session(self.engine) as session:
            statement = (
                select(AiJob).order_by(col(AiJob.created_at).desc(), col(AiJob.id).desc())
            ).limit(limit)
            if status is not None:
                statement = statement.where(AiJob.status == status.value)
            if investigation_id is not None:
                statement = statement.where(col(AiJob.investigation_id) == investigation_id)
            rows = session.exec(statement).all()
        return [_to_job_view(row) for row in rows]

    def list_job_events(self, job_id: int) -> list[AiJobEventView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(AiJobEvent)
                .where(col(AiJobEvent.job_id) == job_id)
                .order_by(col(AiJobEvent.created_at).asc(), col(AiJobEvent.id).asc()),
            ).all()

        events: list[AiJobEventView] = []
        for row in rows:
            events.append(
                AiJobEventView(
                    event_id=row.id or 0,
                    job_id=row.job_id,
                    event_type=row.event_type,
                    status_from=(
                        AiJobStatus(row.status_from) if row.status_from is not None else None
                    ),
                    status_to=AiJobStatus(row.status_to) if row.status_to is not None else None,
                    created_at=to_utc_aware_datetime(row.created_at),
                    details=_load_json(row.details_json) or {},
                ),
            )
        return events

    def _drop_outcome(
        self,
        *,
        session: Session,
        row: AiJob,
        outcome: str,
        reason: str,
    ) -> None:
        logger.warning("Dropping %s outcome for AI job %s: %s", outcome, row.id, reason)
        status = AiJobStatus(row.status)
        self._add_event(
            session=session,
            job_id=_row_id(row),
            event_type="dropped",
            status_from=status,
            status_to=status,
            details={"outcome": outcome, "reason": reason},
        )

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        job_id: int,
        event_type: str,
        status_from: AiJobStatus | None,
        status_to: AiJobStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            AiJobEvent(
                job_id=job_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=_dump_json(details) if details else None,
                created_at=to_db_datetime(utc_now()),
            ),
        )


def _row_id(row: AiJob) -> int:
    if row.id is None:
        raise RuntimeError("AI job row has no primary key")
    return row.id


def _claim_conditions(job_id: int, worker_id: str | None, attempt: int | None) -> list[Any]:
    conditions: list[Any] = [
        col(AiJob.id) == job_id,
        col(AiJob.status) == AiJobStatus.RUNNING.value,
    ]
    if worker_id is not None:
        conditions.append(col(AiJob.worker_id) == worker_id)
    if attempt is not None:
        conditions.append(col(AiJob.attempt_count) == attempt)
    return conditions


def _stale_outcome_reason(row: AiJob, worker_id: str | None, attempt: int | None) -> str | None:
    """Why an outcome no longer belongs to the row's current claim, or None when it does."""

    if row.status != AiJobStatus.RUNNING.value:
        return f"job is {row.status}, not running"
    if worker_id is not None and row.worker_id != worker_id:
        return f"job is now claimed by {row.worker_id or 'no worker'}, not {worker_id}"
    if attempt is not None and row.attempt_count != attempt:
        return f"job is on attempt {row.attempt_count}, not {attempt}"
    return None


def _duration_ms(row: AiJob, now: datetime) -> float | None:
    if row.started_at is None:
        return None
    return (now - to_utc_aware_datetime(row.started_at)).total_seconds() * 1000.0


def _dump_json(value: dict[str, Any] | None) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def _load_json(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    parsed = json.loads(raw)
    return parsed if isinstance(parsed, dict) else None


def _to_job_view(row: AiJob) -> AiJobView:
    structured = _load_json(row.structured_result_json)
    error_info = _load_json(row.error_info_json)
    debug_info = _load_json(row.debug_info_json)
    return AiJobView(
        job_id=_row_id(row),
        investigation_id=row.investigation_id,
        job_type=row.job_type,
        status=AiJobStatus(row.status),
        model=row.model,
        prompt=row.prompt,
        debug=bool(row.debug),
        attempt_count=row.attempt_count,
        max_attempts=row.max_attempts,
        run_after=to_utc_aware_datetime(row.run_after),
        worker_id=row.worker_id,
        created_at=to_utc_aware_datetime(row.created_at),
        started_at=optional_utc(row.started_at),
        completed_at=optional_utc(row.completed_at),
        last_attempt_started_at=optional_utc(row.last_attempt_started_at),
        last_attempt_completed_at=optional_utc(row.last_attempt_completed_at),
        last_duration_ms=row.last_duration_ms,
        result=row.result,
        result_format=row.result_format,
        structured_result=StructuredResult.from_dict(structured) if structured else None,
        error=row.error,
        last_error=row.last_error,
        error_info=AiJobErrorInfo.from_dict(error_info) if error_info else None,
        debug_info=AiJobDebugInfo.from_dict(debug_info) if debug_info else None,
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
