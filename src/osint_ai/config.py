"""Runtime configuration for the AI job queue, worker and Ollama client."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from osint_ai.retry import RetryPolicy

SUPPORTED_SERVICE_TYPES = ("local", "remote")


@dataclass(slots=True)
class QueueSettings:
    """Attempt ceiling and retry backoff enforced by the job queue."""

    max_attempts: int = 3
    retry_backoff_seconds: float = 5.0


@dataclass(slots=True)
class WorkerSettings:
    """Background worker pacing and lease policy."""

    idle_poll_seconds: float = 3.0
    success_pause_seconds: float = 0.25
    lease_timeout_seconds: int = 1_800
    worker_id: str = field(default_factory=lambda: f"{socket.gethostname()}-{os.getpid()}")


@dataclass(slots=True)
class OllamaSettings:
    """Text-generation service connection settings."""

    base_url: str = "http://localhost:11434"
    default_model: str = "llama2"
    inference_model: str = "llama2:13b"
    timeout_seconds: float = 300.0
    service_type: str = "local"
    max_retries: int = 3
    retry_initial_delay_seconds: float = 1.0

    def max_generation_seconds(self) -> float:
        """Longest one generation call can take, counting every attempt and backoff delay."""

        if self.service_type != "remote":
            return self.timeout_seconds
        policy = RetryPolicy(
            max_attempts=self.max_retries,
            initial_delay_seconds=self.retry_initial_delay_seconds,
        )
        delays = sum(policy.delay_for(attempt) for attempt in range(1, policy.max_attempts))
        return self.timeout_seconds * policy.max_attempts + delays


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".osint_ai.db")
    sqlite_busy_timeout_ms: int = 5_000
    queue: QueueSettings = field(default_factory=QueueSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    ollama: OllamaSettings = field(default_factory=OllamaSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        worker_defaults = WorkerSettings()
        return cls(
            db_path=db_path or Path(os.getenv("OSINT_AI_DB_PATH", ".osint_ai.db")),
            sqlite_busy_timeout_ms=int(os.getenv("OSINT_AI_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            queue=QueueSettings(
                max_attempts=int(os.getenv("OSINT_AI_QUEUE_MAX_ATTEMPTS", "3")),
                retry_backoff_seconds=float(
                    os.getenv("OSINT_AI_QUEUE_RETRY_BACKOFF_SECONDS", "5"),
                ),
            ),
            worker=WorkerSettings(
                idle_poll_seconds=float(os.getenv("OSINT_AI_WORKER_IDLE_POLL_SECONDS", "3")),
                success_pause_seconds=float(
                    os.getenv("OSINT_AI_WORKER_SUCCESS_PAUSE_SECONDS", "0.25"),
                ),
                lease_timeout_seconds=int(
                    os.getenv("OSINT_AI_WORKER_LEASE_TIMEOUT_SECONDS", "1800"),
                ),
                worker_id=os.getenv("OSINT_AI_WORKER_ID", worker_defaults.worker_id),
            ),
            ollama=OllamaSettings(
                base_url=os.getenv("OSINT_AI_OLLAMA_BASE_URL", "http://localhost:11434"),
                default_model=os.getenv("OSINT_AI_OLLAMA_DEFAULT_MODEL", "llama2"),
                inference_model=os.getenv("OSINT_AI_OLLAMA_INFERENCE_MODEL", "llama2:13b"),
                timeout_seconds=float(os.getenv("OSINT_AI_OLLAMA_TIMEOUT_SECONDS", "300")),
                service_type=os.getenv("OSINT_AI_OLLAMA_SERVICE_TYPE", "local").strip().lower(),
                max_retries=int(os.getenv("OSINT_AI_OLLAMA_MAX_RETRIES", "3")),
                retry_initial_delay_seconds=float(
                    os.getenv("OSINT_AI_OLLAMA_RETRY_INITIAL_DELAY_SECONDS", "1"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the queue cannot operate with."""

        if self.queue.max_attempts < 1:
            raise ValueError("OSINT_AI_QUEUE_MAX_ATTEMPTS must be >= 1.")
        if self.queue.retry_backoff_seconds < 0:
            raise ValueError("OSINT_AI_QUEUE_RETRY_BACKOFF_SECONDS must be >= 0.")
        if self.worker.idle_poll_seconds < 0:
            raise ValueError("OSINT_AI_WORKER_IDLE_POLL_SECONDS must be >= 0.")
        if self.worker.success_pause_seconds < 0:
            raise ValueError("OSINT_AI_WORKER_SUCCESS_PAUSE_SECONDS must be >= 0.")
        if self.worker.lease_timeout_seconds < 0:
            raise ValueError("OSINT_AI_WORKER_LEASE_TIMEOUT_SECONDS must be >= 0.")
        if self.ollama.timeout_seconds <= 0:
            raise ValueError("OSINT_AI_OLLAMA_TIMEOUT_SECONDS must be > 0.")
        if self.ollama.max_retries < 1:
            raise ValueError("OSINT_AI_OLLAMA_MAX_RETRIES must be >= 1.")
        if self.ollama.service_type not in SUPPORTED_SERVICE_TYPES:
            supported = ", ".join(SUPPORTED_SERVICE_TYPES)
            raise ValueError(
                "Invalid OSINT_AI_OLLAMA_SERVICE_TYPE: "
                f"{self.ollama.service_type!r}. Expected one of: {supported}.",
            )
        _validate_base_url(self.ollama.base_url)
        generation_seconds = self.ollama.max_generation_seconds()
        if 0 < self.worker.lease_timeout_seconds <= generation_seconds:
            raise ValueError(
                "OSINT_AI_WORKER_LEASE_TIMEOUT_SECONDS must exceed the longest generation call "
                f"({generation_seconds:.0f}s with the Ollama timeout and retries), "
                "otherwise running jobs are recovered while still in progress.",
            )


def _validate_base_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid Ollama base URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )
