"""Controllers for investigation, AI job and Ollama CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from osint_ai.config import Settings
from osint_ai.investigations.models import FindingCreate, InvestigationCreate
from osint_ai.investigations.repository import InvestigationRepository
from osint_ai.jobs.models import AiJobCreate, AiJobStatus, AiJobView
from osint_ai.jobs.repository import AiJobRepository
from osint_ai.jobs.worker import AiJobWorker
from osint_ai.ollama import build_generation_client, check_health

RESULT_PREVIEW_CHARS = 400


@dataclass(slots=True)
class InvestigationCreateCommand:
    db_path: Path | None
    target: str
    investigation_type: str
    requested_by: str | None


@dataclass(slots=True)
class FindingAddCommand:
    """CLI input for recording one finding."""

    db_path: Path | None
    investigation_id: int
    tool_name: str
    data_type: str
    raw_data: str
    summary: str | None
    confidence_score: str | None
    collected_at: datetime | None


@dataclass(slots=True)
class InvestigationDeleteCommand:
    db_path: Path | None
    investigation_id: int


@dataclass(slots=True)
class JobEnqueueCommand:
    """CLI input for AI job enqueue."""

    db_path: Path | None
    investigation_id: int
    job_type: str
    model: str | None
    prompt: str | None
    debug: bool


@dataclass(slots=True)
class JobWorkerCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    once: bool
    max_jobs: int | None
    max_idle_polls: int | None


@dataclass(slots=True)
class JobListCommand:
    db_path: Path | None
    status: str | None
    investigation_id: int | None
    limit: int


@dataclass(slots=True)
class JobShowCommand:
    db_path: Path | None
    job_id: int
    full_result: bool = False


@dataclass(slots=True)
class JobMutateCommand:
    """CLI input for retry/cancel operations."""

    db_path: Path | None
    job_id: int


class InvestigationCliController:
    """Minimal investigation bookkeeping needed to feed AI jobs."""

    def create(self, command: InvestigationCreateCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _investigations(settings) as repository:
            investigation = repository.create_investigation(
                InvestigationCreate(
                    target=command.target,
                    investigation_type=command.investigation_type,
                    requested_by=command.requested_by,
                ),
            )
        return [
            "Investigation created: "
            f"id={investigation.investigation_id} target={investigation.target} "
            f"type={investigation.investigation_type}",
        ]

    def add_finding(self, command: FindingAddCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _investigations(settings) as repository:
            finding = repository.add_finding(
                FindingCreate(
                    investigation_id=command.investigation_id,
                    tool_name=command.tool_name,
                    data_type=command.data_type,
                    raw_data=command.raw_data,
                    summary=command.summary,
                    confidence_score=command.confidence_score,
                    collected_at=command.collected_at,
                ),
            )
        return [
            "Finding recorded: "
            f"id={finding.finding_id} investigation={finding.investigation_id} "
            f"tool={finding.tool_name} data_type={finding.data_type}",
        ]

    def delete(self, command: InvestigationDeleteCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _investigations(settings) as repository:
            deleted = repository.delete_investigation(command.investigation_id)
        if not deleted:
            return [f"Investigation not found: {command.investigation_id}"]
        return [f"Investigation deleted: {command.investigation_id}"]


class AiJobCliController:
    """Coordinates queue, worker, and inspection CLI operations."""

    def enqueue(self, command: JobEnqueueCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _jobs(settings) as repository:
            job = repository.enqueue_job(
                AiJobCreate(
                    investigation_id=command.investigation_id,
                    job_type=command.job_type,
                    model=command.model,
                    prompt=command.prompt,
                    debug=command.debug,
                ),
            )
        return [
            "Job enqueued: "
            f"job_id={job.job_id} investigation={job.investigation_id} "
            f"type={job.job_type} status={job.status.value} debug={job.debug}",
        ]

    def run_worker(self, command: JobWorkerCommand) -> list[str]:
        settings = _settings(command.db_path)
        client = build_generation_client(settings.ollama)
        try:
            with _jobs(settings) as repository, _investigations(settings) as investigations:
                worker = AiJobWorker(
                    repository=repository,
                    investigations=investigations,
                    client=client,
                    worker_id=settings.worker.worker_id,
                    idle_poll_seconds=settings.worker.idle_poll_seconds,
                    success_pause_seconds=settings.worker.success_pause_seconds,
                    retry_backoff_seconds=settings.queue.retry_backoff_seconds,
                    lease_timeout_seconds=settings.worker.lease_timeout_seconds,
                    inference_model=settings.ollama.inference_model,
                )
                with worker.signal_handlers():
                    summary = (
                        worker.run_once()
                        if command.once
                        else worker.run_loop(
                            max_jobs=command.max_jobs,
                            max_idle_polls=command.max_idle_polls,
                        )
                    )
        finally:
            client.close()

        return [
            "Worker summary: "
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} retried={summary.retried} "
            f"dropped={summary.dropped} idle_polls={summary.idle_polls}",
        ]

    def list_jobs(self, command: JobListCommand) -> list[str]:
        settings = _settings(command.db_path)
        status_filter = _parse_status(command.status)
        with _jobs(settings) as repository:
            jobs = repository.list_jobs(
                status=status_filter,
                investigation_id=command.investigation_id,
                limit=command.limit,
            )

        lines = [f"Jobs: {len(jobs)}"]
        for job in jobs:
            lines.append(
                f"  {job.job_id} investigation={job.investigation_id} type={job.job_type} "
                f"status={job.status.value} attempt={job.attempt_count}/{job.max_attempts} "
                f"created_at={job.created_at.isoformat()}",
            )
        return lines

    def show(self, command: JobShowCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _jobs(settings) as repository:
            job = repository.get_job(command.job_id)
            events = repository.list_job_events(command.job_id) if job is not None else []
        if job is None:
            return [f"Job not found: {command.job_id}"]

        lines = _job_summary_lines(job)
        lines.extend(_job_result_lines(job, full_result=command.full_result))
        lines.append(f"Events: {len(events)}")
        for event in events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def retry(self, command: JobMutateCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _jobs(settings) as repository:
            before = repository.get_job(command.job_id)
            job = repository.retry_job(command.job_id)
        if job is None or before is None:
            return [f"Job not found: {command.job_id}"]
        if before.status not in {AiJobStatus.FAILED, AiJobStatus.CANCELLED}:
            return [f"Job {job.job_id} is {job.status.value}; only failed or cancelled jobs retry."]
        return [f"Job re-queued: {job.job_id} status={job.status.value}"]

    def cancel(self, command: JobMutateCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _jobs(settings) as repository:
            job = repository.cancel_job(command.job_id)
        if job is None:
            return [f"Job not found: {command.job_id}"]
        if job.status != AiJobStatus.CANCELLED:
            return [f"Job {job.job_id} is {job.status.value}; it cannot be cancelled."]
        return [f"Job cancelled: {job.job_id}"]


@dataclass(slots=True)
class OllamaHealthResult:
    lines: list[str]
    success: bool


class OllamaCliController:
    def health(self) -> OllamaHealthResult:
        settings = _settings(None)
        client = build_generation_client(settings.ollama)
        try:
            health = check_health(client)
        finally:
            client.close()
        lines = [
            f"Ollama ({health.service_type}): {health.base_url}",
            f"Available: {'yes' if health.is_available else 'no'}",
            f"Status: {health.status_message}",
            f"Latency: {health.latency_ms:.0f} ms",
            f"Models: {', '.join(health.models) if health.models else '-'}",
        ]
        return OllamaHealthResult(lines=lines, success=health.is_available)


def _job_summary_lines(job: AiJobView) -> list[str]:
    return [
        f"Job: {job.job_id}",
        f"Investigation: {job.investigation_id}",
        f"Type: {job.job_type}",
        f"Status: {job.status.value}",
        f"Model: {job.model or '-'}",
        f"Attempt: {job.attempt_count}/{job.max_attempts}",
        f"Run after: {job.run_after.isoformat()}",
        f"Worker: {job.worker_id or '-'}",
        f"Duration: {f'{job.last_duration_ms:.0f} ms' if job.last_duration_ms else '-'}",
        f"Error: {job.error or '-'}",
    ]


def _job_result_lines(job: AiJobView, *, full_result: bool) -> list[str]:
    lines: list[str] = []
    if job.error_info is not None:
        lines.append(
            f"Error code: {job.error_info.code} retryable={job.error_info.is_retryable}",
        )
        if job.error_info.details:
            lines.append(f"Error details: {job.error_info.details}")
    if job.structured_result is not None:
        keys = ", ".join(section.key for section in job.structured_result.sections)
        lines.append(f"Sections: {keys or '-'}")
        missing = job.structured_result.missing_sections
        if missing:
            lines.append(f"Missing sections: {', '.join(missing)}")
    if job.debug_info is not None and job.debug_info.http_metrics is not None:
        http = job.debug_info.http_metrics
        lines.append(
            f"HTTP: status={http.status_code} attempts={http.retry_attempts} "
            f"endpoint={http.endpoint_url or '-'}",
        )
    if job.result:
        text = job.result
        if not full_result and len(text) > RESULT_PREVIEW_CHARS:
            text = f"{text[:RESULT_PREVIEW_CHARS]}..."
        lines.append("Result:")
        lines.extend(f"  {line}" for line in text.splitlines())
    return lines


def _parse_status(value: str | None) -> AiJobStatus | None:
    if value is None:
        return None
    return AiJobStatus(value.strip().lower())


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


@contextmanager
def _jobs(settings: Settings) -> Iterator[AiJobRepository]:
    repository = AiJobRepository(
        settings.db_path,
        queue_settings=settings.queue,
        busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@contextmanager
def _investigations(settings: Settings) -> Iterator[InvestigationRepository]:
    repository = InvestigationRepository(
        settings.db_path,
        busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
