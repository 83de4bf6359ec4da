from __future__ import annotations

import threading
from datetime import timedelta

import allure
from sqlalchemy import update as sa_update
from sqlmodel import Session, col

from osint_ai.investigations.repository import InvestigationRepository
from osint_ai.jobs.models import AiJobCreate, AiJobStatus
from osint_ai.jobs.repository import AiJobRepository
from osint_ai.jobs.worker import AiJobWorker, tokens_per_second
from osint_ai.ollama import OllamaCompletion, OllamaResponse, OllamaServiceError
from osint_ai.storage.common import to_db_datetime, utc_now
from osint_ai.storage.sqlmodel_models import AiJob

pytestmark = [
    allure.epic("AI Jobs"),
    allure.feature("Background Worker"),
]

ANALYSIS_TEXT = """## Executive Summary
Low risk.

## Key Findings
- Shared hosting.

## Risks & Red Flags
- Exposed admin mailbox.

## Recommended Next Steps
1. Confirm MX ownership.

## Confidence & Caveats
Medium.
"""


def _completion(text: str = ANALYSIS_TEXT) -> OllamaCompletion:
    return OllamaCompletion(
        response=OllamaResponse(
            text=text,
            model="llama2",
            done=True,
            done_reason="stop",
            total_duration=3_000_000_000,
            prompt_eval_count=40,
            prompt_eval_duration=500_000_000,
            eval_count=100,
            eval_duration=2_000_000_000,
        ),
        status_code=200,
        attempt_count=2,
        request_body_bytes=512,
        response_body_bytes=2048,
        endpoint_url="http://ollama.test/api/generate",
        request_duration_ms=2500.0,
    )


class FakeGenerationClient:
    """Generation client replaying queued completions or errors."""

    base_url = "http://ollama.test"
    service_type = "local"

    def __init__(self, *outcomes, on_generate=None) -> None:
        self.outcomes = list(outcomes)
        self.on_generate = on_generate
        self.calls: list[tuple[str, str | None]] = []

    def generate(self, prompt: str, model: str | None = None) -> OllamaCompletion:
        self.calls.append((prompt, model))
        if self.on_generate is not None:
            self.on_generate()
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def list_models(self) -> list[str]:
        return ["llama2"]

    def is_available(self) -> bool:
        return True

    def close(self) -> None:
        return None


def _worker(
    job_repository: AiJobRepository,
    investigations: InvestigationRepository,
    client: FakeGenerationClient,
) -> AiJobWorker:
    return AiJobWorker(
        repository=job_repository,
        investigations=investigations,
        client=client,
        worker_id="test-worker",
        idle_poll_seconds=0,
        success_pause_seconds=0,
        retry_backoff_seconds=0,
    )


def test_worker_processes_analysis_job_with_built_prompt(
    job_repository: AiJobRepository,
    investigations: InvestigationRepository,
    investigation_id: int,
) -> None:
    job = job_repository.enqueue_job(AiJobCreate(investigation_id=investigation_id))
    client = FakeGenerationClient(_completion())

    summary = _worker(job_repository, investigations, client).run_once()

    assert summary.processed == 1
    assert summary.succeeded == 1
    prompt, model = client.calls[0]
    assert model is None
    assert "Perform a comprehensive analysis" in prompt
    assert "Found admin@example.com in public breach data." in prompt

    done = job_repository.get_job(job.job_id)
    assert done is not None
    assert done.status == AiJobStatus.SUCCEEDED
    assert done.result == ANALYSIS_TEXT
    assert done.prompt == prompt
    assert done.structured_result is not None
    assert len(done.structured_result.sections) == 5
    assert done.structured_result.missing_sections == []
    assert done.debug_info is None


def test_worker_uses_explicit_prompt_and_model(
    job_repository: AiJobRepository,
    investigations: InvestigationRepository,
    investigation_id: int,
) -> None:
    job_repository.enqueue_job(
        AiJobCreate(
            investigation_id=investigation_id,
            model="mistral",
            prompt="Summarise the target in one line.",
        ),
    )
    client = FakeGenerationClient(_completion("Just one line."))

    summary = _worker(job_repository, investigations, client).run_once()

    assert summary.succeeded == 1
    assert client.calls == [("Summarise the target in one line.", "mistral")]


def test_inference_job_defaults_to_inference_model(
    job_repository: AiJobRepository,
    investigations: InvestigationRepository,
    investigation_id: int,
) -> None:
    job = job_repository.enqueue_job(
        AiJobCreate(investigation_id=investigation_id, job_type="inference"),
    )
    client = FakeGenerationClient(_completion("## Working Hypotheses\nShared owner."))

    _worker(job_repository, investigations, client).run_once()

    prompt, model = client.calls[0]
    assert model == "llama2:13b"
    assert prompt.startswith("You are an OSINT inference engine")
    done = job_repository.get_job(job.job_id)
    assert done is not None
    assert done.structured_result is not None
    assert done.structured_result.metadata["template"] == "inference_v1"
    assert "supporting_evidence" in done.structured_result.missing_sections


def test_debug_job_records_generation_metrics(
    job_repository: AiJobRepository,
    investigations: InvestigationRepository,
    investigation_id: int,
) -> None:
    job = job_repository.enqueue_job(AiJobCreate(investigation_id=investigation_id, debug=True))

    _worker(job_repository, investigations, FakeGenerationClient(_completion())).run_once()

    done = job_repository.get_job(job.job_id)
    assert done is not None
    debug = done.debug_info
    assert debug is not None
    assert debug.prompt_text == done.prompt
    assert debug.prompt_length == len(done.prompt or "")
    assert debug.request_sent_at is not None
    assert debug.response_received_at is not None
    assert debug.response_received_at >= debug.request_sent_at
    assert debug.ollama_metrics is not None
    assert debug.ollama_metrics.model == "llama2"
    assert debug.ollama_metrics.eval_count == 100
    assert debug.ollama_metrics.response_tokens_per_second == 50.0
    assert debug.ollama_metrics.prompt_tokens_per_second == 80.0
    assert debug.ollama_metrics.done_reason == "stop"
    assert debug.http_metrics is not None
    assert debug.http_metrics.status_code == 200
    assert debug.http_metrics.retry_attempts == 2
    assert debug.http_metrics.request_body_size == 512
    assert debug.http_metrics.response_body_size == 2048
    assert debug.http_metrics.endpoint_url == "http://ollama.test/api/generate"


def test_retryable_failures_exhaust_attempts_in_loop(
    job_repository: AiJobRepository,
    investigations: InvestigationRepository,
    investigation_id: int,
) -> None:
    job = job_repository.enqueue_job(AiJobCreate(investigation_id=investigation_id))
    client = FakeGenerationClient(
        OllamaServiceError("Network error while contacting Ollama.", code="ollama_network"),
    )

    summary = _worker(job_repository, investigations, client).run_loop(max_idle_polls=1)

    assert summary.processed == 3
    assert summary.retried == 2
    assert summary.failed == 1
    assert summary.idle_polls == 1
    assert len(client.calls) == 3
    failed = job_repository.get_job(job.job_id)
    assert failed is not None
    assert failed.status == AiJobStatus.FAILED
    assert failed.attempt_count == 3
    assert failed.error == "Network error while contacting Ollama."
    assert failed.error_info is not None
    assert failed.error_info.code == "ollama_network"
    assert failed.prompt is not None


def test_non_retryable_failure_fails_after_one_attempt(
    job_repository: AiJobRepository,
    investigations: InvestigationRepository,
    investigation_id: int,
) -> None:
    job = job_repository.enqueue_job(AiJobCreate(investigation_id=investigation_id))
    client = FakeGenerationClient(RuntimeError("template exploded"))

    summary = _worker(job_repository, investigations, client).run_loop(max_idle_polls=1)

    assert summary.processed == 1
    assert summary.failed == 1
    failed = job_repository.get_job(job.job_id)
    assert failed is not None
    assert failed.status == AiJobStatus.FAILED
    assert failed.attempt_count == 1
    assert failed.error_info is not None
    assert failed.error_info.code == "unexpected_error"
    assert failed.error == "template exploded"


def test_cancel_during_generation_drops_result(
    job_repository: AiJobRepository,
    investigations: InvestigationRepository,
    investigation_id: int,
) -> None:
    job = job_repository.enqueue_job(AiJobCreate(investigation_id=investigation_id))
    client = FakeGenerationClient(
        _completion(),
        on_generate=lambda: job_repository.cancel_job(job.job_id),
    )

    summary = _worker(job_repository, investigations, client).run_once()

    assert summary.processed == 1
    assert summary.dropped == 1
    assert summary.succeeded == 0
    cancelled = job_repository.get_job(job.job_id)
    assert cancelled is not None
    assert cancelled.status == AiJobStatus.CANCELLED
    assert cancelled.result is None


def test_loop_stops_at_max_jobs_and_on_stop_event(
    job_repository: AiJobRepository,
    investigations: InvestigationRepository,
    investigation_id: int,
) -> None:
    for _ in range(3):
        job_repository.enqueue_job(AiJobCreate(investigation_id=investigation_id))
    worker = _worker(job_repository, investigations, FakeGenerationClient(_completion()))

    summary = worker.run_loop(max_jobs=2)

    assert summary.processed == 2
    assert len(job_repository.list_jobs(status=AiJobStatus.QUEUED)) == 1

    stop_event = threading.Event()
    stop_event.set()
    stopped = worker.run_loop(stop_event)
    assert stopped.processed == 0
    assert len(job_repository.list_jobs(status=AiJobStatus.QUEUED)) == 1


def test_worker_recovers_stale_job_before_claiming(
    job_repository: AiJobRepository,
    investigations: InvestigationRepository,
    investigation_id: int,
) -> None:
    job = job_repository.enqueue_job(AiJobCreate(investigation_id=investigation_id))
    job_repository.claim_next_job(worker_id="crashed-worker")
    client = FakeGenerationClient(_completion())

    disabled = _worker(job_repository, investigations, client)
    disabled.lease_timeout_seconds = 0
    assert disabled.run_once().processed == 0

    with Session(job_repository.engine) as session:
        session.exec(
            sa_update(AiJob)
            .where(col(AiJob.id) == job.job_id)
            .values(last_attempt_started_at=to_db_datetime(utc_now() - timedelta(hours=2))),
        )
        session.commit()

    summary = _worker(job_repository, investigations, client).run_once()

    assert summary.succeeded == 1
    done = job_repository.get_job(job.job_id)
    assert done is not None
    assert done.attempt_count == 2
    assert done.worker_id == "test-worker"
    events = job_repository.list_job_events(job.job_id)
    assert "lease_expired" in [event.event_type for event in events]


def test_tokens_per_second() -> None:
    assert tokens_per_second(100, 2_000_000_000) == 50.0
    assert tokens_per_second(None, 2_000_000_000) is None
    assert tokens_per_second(10, 0) is None
