"""Domain models for the AI job queue and its JSON-valued columns."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from osint_ai.storage.common import to_utc_aware_datetime

MARKDOWN_SECTIONS_V1 = "markdown_sections_v1"


class AiJobStatus(str, Enum):
    """Durable job lifecycle states."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AiJobType(str, Enum):
    """Closed set of supported job types."""

    ANALYSIS = "analysis"
    INFERENCE = "inference"


TERMINAL_STATUSES = frozenset(
    {AiJobStatus.SUCCEEDED, AiJobStatus.FAILED, AiJobStatus.CANCELLED},
)


@dataclass(slots=True)
class StructuredResultSection:
    key: str
    heading: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"key": self.key, "heading": self.heading, "content": self.content}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> StructuredResultSection:
        return cls(
            key=str(payload.get("key", "")),
            heading=str(payload.get("heading", "")),
            content=str(payload.get("content", "")),
        )


@dataclass(slots=True)
class StructuredResult:
    """Section-keyed representation of raw generated text."""

    format_version: str = MARKDOWN_SECTIONS_V1
    sections: list[StructuredResultSection] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def missing_sections(self) -> list[str]:
        raw = self.metadata.get("missingSections", "")
        return [key for key in raw.split(",") if key]

    def to_dict(self) -> dict[str, Any]:
        return {
            "formatVersion": self.format_version,
            "sections": [section.to_dict() for section in self.sections],
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> StructuredResult:
        return cls(
            format_version=str(payload.get("formatVersion", MARKDOWN_SECTIONS_V1)),
            sections=[
                StructuredResultSection.from_dict(item) for item in payload.get("sections") or []
            ],
            metadata={str(k): str(v) for k, v in (payload.get("metadata") or {}).items()},
        )


@dataclass(slots=True)
class AiJobErrorInfo:
    """Typed, retryability-tagged failure record."""

    message: str
    code: str
    details: str | None
    is_retryable: bool
    occurred_at: datetime
    metadata: dict[str, str] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "isRetryable": self.is_retryable,
            "occurredAt": to_utc_aware_datetime(self.occurred_at).isoformat(),
            "metadata": dict(self.metadata) if self.metadata else None,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> AiJobErrorInfo:
        metadata = payload.get("metadata")
        return cls(
            message=str(payload.get("message", "")),
            code=str(payload.get("code", "unexpected_error")),
            details=payload.get("details"),
            is_retryable=bool(payload.get("isRetryable", False)),
            occurred_at=_parse_datetime(payload.get("occurredAt")),
            metadata={str(k): str(v) for k, v in metadata.items()} if metadata else None,
        )


@dataclass(slots=True)
class OllamaDebugMetrics:
    model: str | None = None
    total_duration_ns: int | None = None
    load_duration_ns: int | None = None
    prompt_eval_count: int | None = None
    prompt_eval_duration_ns: int | None = None
    eval_count: int | None = None
    eval_duration_ns: int | None = None
    prompt_tokens_per_second: float | None = None
    response_tokens_per_second: float | None = None
    done_reason: str | None = None


@dataclass(slots=True)
class HttpDebugMetrics:
    request_duration_ms: float | None = None
    status_code: int | None = None
    request_body_size: int | None = None
    response_body_size: int | None = None
    endpoint_url: str | None = None
    retry_attempts: int | None = None


_OLLAMA_METRIC_KEYS = {
    "model": "model",
    "total_duration_ns": "totalDurationNs",
    "load_duration_ns": "loadDurationNs",
    "prompt_eval_count": "promptEvalCount",
    "prompt_eval_duration_ns": "promptEvalDurationNs",
    "eval_count": "evalCount",
    "eval_duration_ns": "evalDurationNs",
    "prompt_tokens_per_second": "promptTokensPerSecond",
    "response_tokens_per_second": "responseTokensPerSecond",
    "done_reason": "doneReason",
}
_HTTP_METRIC_KEYS = {
    "request_duration_ms": "requestDurationMs",
    "status_code": "statusCode",
    "request_body_size": "requestBodySize",
    "response_body_size": "responseBodySize",
    "endpoint_url": "endpointUrl",
    "retry_attempts": "retryAttempts",
}


@dataclass(slots=True)
class AiJobDebugInfo:
    """Diagnostics captured only for jobs enqueued with the debug flag."""

    prompt_text: str | None = None
    prompt_length: int | None = None
    request_sent_at: datetime | None = None
    response_received_at: datetime | None = None
    ollama_metrics: OllamaDebugMetrics | None = None
    http_metrics: HttpDebugMetrics | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "promptText": self.prompt_text,
            "promptLength": self.prompt_length,
            "requestSentAt": _format_datetime(self.request_sent_at),
            "responseReceivedAt": _format_datetime(self.response_received_at),
            "ollamaMetrics": (
                {
                    json_key: getattr(self.ollama_metrics, attr)
                    for attr, json_key in _OLLAMA_METRIC_KEYS.items()
                }
                if self.ollama_metrics is not None
                else None
            ),
            "httpMetrics": (
                {
                    json_key: getattr(self.http_metrics, attr)
                    for attr, json_key in _HTTP_METRIC_KEYS.items()
                }
                if self.http_metrics is not None
                else None
            ),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> AiJobDebugInfo:
        ollama_raw = payload.get("ollamaMetrics")
        http_raw = payload.get("httpMetrics")
        return cls(
            prompt_text=payload.get("promptText"),
            prompt_length=payload.get("promptLength"),
            request_sent_at=_parse_optional_datetime(payload.get("requestSentAt")),
            response_received_at=_parse_optional_datetime(payload.get("responseReceivedAt")),
            ollama_metrics=(
                OllamaDebugMetrics(
                    **{
                        attr: ollama_raw.get(json_key)
                        for attr, json_key in _OLLAMA_METRIC_KEYS.items()
                    },
                )
                if isinstance(ollama_raw, dict)
                else None
            ),
            http_metrics=(
                HttpDebugMetrics(
                    **{
                        attr: http_raw.get(json_key)
                        for attr, json_key in _HTTP_METRIC_KEYS.items()
                    },
                )
                if isinstance(http_raw, dict)
                else None
            ),
        )


@dataclass(slots=True)
class AiJobCreate:
    """Input payload for enqueuing an AI job."""

    investigation_id: int
    job_type: str = AiJobType.ANALYSIS.value
    model: str | None = None
    prompt: str | None = None
    debug: bool = False


@dataclass(slots=True)
class AiJobCompletionPayload:
    """Result of one claimed attempt.

    ``worker_id`` and ``attempt`` identify the claim that produced the outcome;
    when set, the outcome is only stored while that claim still holds the job.
    """

    raw_result: str
    structured_result: StructuredResult | None = None
    result_format: str = MARKDOWN_SECTIONS_V1
    prompt_used: str | None = None
    debug_info: AiJobDebugInfo | None = None
    worker_id: str | None = None
    attempt: int | None = None


@dataclass(slots=True)
class AiJobFailurePayload:
    error: AiJobErrorInfo
    prompt_used: str | None = None
    worker_id: str | None = None
    attempt: int | None = None


@dataclass(slots=True)
class AiJobView:
    """Readable job view for CLI and worker logic."""

    job_id: int
    investigation_id: int
    job_type: str
    status: AiJobStatus
    model: str | None
    prompt: str | None
    debug: bool
    attempt_count: int
    max_attempts: int
    run_after: datetime
    worker_id: str | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    last_attempt_started_at: datetime | None
    last_attempt_completed_at: datetime | None
    last_duration_ms: float | None
    result: str | None
    result_format: str
    structured_result: StructuredResult | None
    error: str | None
    last_error: str | None
    error_info: AiJobErrorInfo | None
    debug_info: AiJobDebugInfo | None
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(slots=True)
class AiJobEventView:
    """Job event entry for audit trail."""

    event_id: int
    job_id: int
    event_type: str
    status_from: AiJobStatus | None
    status_to: AiJobStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


def _format_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return to_utc_aware_datetime(value).isoformat()


def _parse_datetime(value: object) -> datetime:
    if isinstance(value, datetime):
        return to_utc_aware_datetime(value)
    return to_utc_aware_datetime(datetime.fromisoformat(str(value)))


def _parse_optional_datetime(value: object) -> datetime | None:
    if value is None:
        return None
    return _parse_datetime(value)
