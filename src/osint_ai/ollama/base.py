"""Generation client interface and the data it exchanges with the worker."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol


class OllamaServiceError(Exception):
    """Generation fault carrying an error code and a retryability flag."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        is_retryable: bool = True,
        metadata: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.is_retryable = is_retryable
        self.metadata = dict(metadata) if metadata else {}


@dataclass(slots=True)
class OllamaResponse:
    """Body of a non-streaming `/api/generate` response."""

    text: str
    model: str = ""
    created_at: str | None = None
    done: bool = False
    done_reason: str | None = None
    total_duration: int | None = None
    load_duration: int | None = None
    prompt_eval_count: int | None = None
    prompt_eval_duration: int | None = None
    eval_count: int | None = None
    eval_duration: int | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> OllamaResponse:
        return cls(
            text=str(payload.get("response") or ""),
            model=str(payload.get("model") or ""),
            created_at=payload.get("created_at"),
            done=bool(payload.get("done", False)),
            done_reason=payload.get("done_reason"),
            total_duration=_optional_int(payload.get("total_duration")),
            load_duration=_optional_int(payload.get("load_duration")),
            prompt_eval_count=_optional_int(payload.get("prompt_eval_count")),
            prompt_eval_duration=_optional_int(payload.get("prompt_eval_duration")),
            eval_count=_optional_int(payload.get("eval_count")),
            eval_duration=_optional_int(payload.get("eval_duration")),
        )


@dataclass(slots=True)
class OllamaCompletion:
    """Generated text plus transport metrics of the successful attempt."""

    response: OllamaResponse
    status_code: int = 200
    attempt_count: int = 1
    request_body_bytes: int = 0
    response_body_bytes: int = 0
    endpoint_url: str | None = None
    request_duration_ms: float | None = None


@dataclass(slots=True)
class OllamaHealth:
    base_url: str
    service_type: str
    is_available: bool
    status_message: str
    latency_ms: float
    checked_at: datetime
    models: list[str] = field(default_factory=list)


class GenerationClient(Protocol):
    """Protocol implemented by text-generation service clients."""

    base_url: str
    service_type: str

    def generate(self, prompt: str, model: str | None = None) -> OllamaCompletion:
        """Run one completion and return the response with transport metrics."""

    def list_models(self) -> list[str]:
        """Return model names known to the service."""

    def is_available(self) -> bool:
        """Return True when the service answers its model listing endpoint."""

    def close(self) -> None:
        """Release network resources."""


def _optional_int(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return None
