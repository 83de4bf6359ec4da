"""Background worker that executes queued AI jobs against a generation client."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta

from osint_ai.investigations.repository import InvestigationRepository
from osint_ai.jobs.failure_classifier import classify_failure
from osint_ai.jobs.models import (
    AiJobCompletionPayload,
    AiJobDebugInfo,
    AiJobFailurePayload,
    AiJobType,
    AiJobView,
    HttpDebugMetrics,
    OllamaDebugMetrics,
)
from osint_ai.jobs.parser import parse_completion
from osint_ai.jobs.prompts import build_prompt
from osint_ai.jobs.repository import AiJobRepository
from osint_ai.ollama.base import GenerationClient, OllamaCompletion
from osint_ai.storage.common import utc_now

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    dropped: int = 0
    idle_polls: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.retried += other.retried
        self.dropped += other.dropped
        self.idle_polls += other.idle_polls


class AiJobWorker:
    """Claims queued jobs one at a time and drives them to an outcome.

    Shutdown is cooperative: the stop event is checked between jobs and
    interrupts every wait, but a job that was already claimed is never
    handed back. If the process dies mid-job, the lease sweep run before each
    claim recovers it.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: AiJobRepository,
        investigations: InvestigationRepository,
        client: GenerationClient,
        worker_id: str,
        idle_poll_seconds: float = 3.0,
        success_pause_seconds: float = 0.25,
        retry_backoff_seconds: float = 5.0,
        lease_timeout_seconds: int = 1_800,
        inference_model: str = "llama2:13b",
        stop_event: threading.Event | None = None,
    ) -> None:
        self.repository = repository
        self.investigations = investigations
        self.client = client
        self.worker_id = worker_id
        self.idle_poll_seconds = idle_poll_seconds
        self.success_pause_seconds = success_pause_seconds
        self.retry_backoff_seconds = retry_backoff_seconds
        self.lease_timeout_seconds = lease_timeout_seconds
        self.inference_model = inference_model
        self.stop_event = stop_event or threading.Event()

    def stop(self) -> None:
        self.stop_event.set()

    def run_once(self) -> WorkerRunSummary:
        """Process at most one job from the queue."""

        summary = WorkerRunSummary()
        if self.stop_event.is_set():
            summary.idle_polls = 1
            return summary

        job = self._claim_job()
        if job is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        logger.info(
            "Processing AI job %s (%s, attempt %d/%d) [debug: %s]",
            job.job_id,
            job.job_type,
            job.attempt_count,
            job.max_attempts,
            job.debug,
        )
        self._process_job(job, summary)
        return summary

    def run_loop(
        self,
        stop_event: threading.Event | None = None,
        *,
        max_jobs: int | None = None,
        max_idle_polls: int | None = None,
    ) -> WorkerRunSummary:
        """Run until the stop event is set or an optional limit is reached.

        Args:
            stop_event: Replaces the worker's stop event when given.
            max_jobs: Stop after processing this many jobs (None = unlimited).
            max_idle_polls: Stop after this many consecutive empty polls
                (None = keep polling).
        """

        if stop_event is not None:
            self.stop_event = stop_event
        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        logger.info("AI job worker %s started", self.worker_id)
        while not self.stop_event.is_set():
            if max_jobs is not None and aggregate.processed >= max_jobs:
                break
            try:
                summary = self.run_once()
            except Exception:
                logger.exception("Unexpected error in AI job worker %s", self.worker_id)
                self._wait(self.idle_poll_seconds)
                continue

            aggregate.add(summary)
            if summary.processed == 0:
                consecutive_idle += 1
                if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                    break
                self._wait(self.idle_poll_seconds)
                continue

            consecutive_idle = 0
            if summary.retried:
                self._wait(self.retry_backoff_seconds)
            elif summary.succeeded:
                self._wait(self.success_pause_seconds)
        logger.info("AI job worker %s stopping", self.worker_id)
        return aggregate

    @contextmanager
    def signal_handlers(self) -> Iterator[None]:
        """Set the stop event on SIGINT/SIGTERM while the context is active."""

        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info(
                "Received %s, worker %s will stop after the current job",
                name,
                self.worker_id,
            )
            self.stop_event.set()

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            yield
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
        finally:
            try:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)
            except ValueError:
                pass

    def _claim_job(self) -> AiJobView | None:
        self._recover_stale_jobs()
        if self.stop_event.is_set():
            return None
        return self.repository.claim_next_job(worker_id=self.worker_id)

    def _recover_stale_jobs(self) -> None:
        if self.lease_timeout_seconds <= 0:
            return
        self.repository.recover_stale_running_jobs(
            stale_after=timedelta(seconds=self.lease_timeout_seconds),
        )

    def _process_job(self, job: AiJobView, summary: WorkerRunSummary) -> None:
        prompt_used = job.prompt
        try:
            model = job.model
            if not prompt_used or not prompt_used.strip():
                findings = self.investigations.list_findings(job.investigation_id)
                prompt_used = build_prompt(findings, job.job_type)
                if job.job_type == AiJobType.INFERENCE.value and not model:
                    model = self.inference_model

            request_sent_at = utc_now()
            completion = self.client.generate(prompt_used, model)
            response_received_at = utc_now()

            raw_text = completion.response.text
            structured = parse_completion(job.job_type, raw_text)
            debug_info = (
                build_debug_info(
                    completion,
                    prompt=prompt_used,
                    request_sent_at=request_sent_at,
                    response_received_at=response_received_at,
                )
                if job.debug
                else None
            )
        except Exception as error:  # noqa: BLE001
            logger.exception("AI job %s failed", job.job_id)
            terminal = self.repository.mark_job_failed(
                job.job_id,
                AiJobFailurePayload(
                    error=classify_failure(error),
                    prompt_used=prompt_used,
                    worker_id=job.worker_id,
                    attempt=job.attempt_count,
                ),
            )
            if terminal:
                summary.failed = 1
            else:
                summary.retried = 1
            return

        stored = self.repository.mark_job_succeeded(
            job.job_id,
            AiJobCompletionPayload(
                raw_result=raw_text,
                structured_result=structured,
                result_format=structured.format_version,
                prompt_used=prompt_used,
                debug_info=debug_info,
                worker_id=job.worker_id,
                attempt=job.attempt_count,
            ),
        )
        if stored:
            summary.succeeded = 1
        else:
            summary.dropped = 1

    def _wait(self, seconds: float) -> None:
        if seconds > 0:
            self.stop_event.wait(seconds)


def build_debug_info(
    completion: OllamaCompletion,
    *,
    prompt: str,
    request_sent_at: datetime,
    response_received_at: datetime,
) -> AiJobDebugInfo:
    """Assemble diagnostics for a job enqueued with the debug flag."""

    response = completion.response
    return AiJobDebugInfo(
        prompt_text=prompt,
        prompt_length=len(prompt),
        request_sent_at=request_sent_at,
        response_received_at=response_received_at,
        ollama_metrics=OllamaDebugMetrics(
            model=response.model or None,
            total_duration_ns=response.total_duration,
            load_duration_ns=response.load_duration,
            prompt_eval_count=response.prompt_eval_count,
            prompt_eval_duration_ns=response.prompt_eval_duration,
            eval_count=response.eval_count,
            eval_duration_ns=response.eval_duration,
            prompt_tokens_per_second=tokens_per_second(
                response.prompt_eval_count,
                response.prompt_eval_duration,
            ),
            response_tokens_per_second=tokens_per_second(
                response.eval_count,
                response.eval_duration,
            ),
            done_reason=response.done_reason,
        ),
        http_metrics=HttpDebugMetrics(
            request_duration_ms=(response_received_at - request_sent_at).total_seconds() * 1000.0,
            status_code=completion.status_code,
            request_body_size=completion.request_body_bytes,
            response_body_size=completion.response_body_bytes,
            endpoint_url=completion.endpoint_url,
            retry_attempts=completion.attempt_count,
        ),
    )


def tokens_per_second(tokens: int | None, duration_ns: int | None) -> float | None:
    if tokens is None or duration_ns is None or duration_ns <= 0:
        return None
    return tokens / (duration_ns / 1_000_000_000)
