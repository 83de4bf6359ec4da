"""Map job processing exceptions to typed, retryability-tagged error records."""

from __future__ import annotations

import json
from datetime import datetime
from http import HTTPStatus

import httpx

from osint_ai.jobs.models import AiJobErrorInfo
from osint_ai.ollama.base import OllamaServiceError
from osint_ai.storage.common import utc_now


def classify_failure(error: BaseException, *, now: datetime | None = None) -> AiJobErrorInfo:
    """Classify one exception raised while processing a job."""

    occurred_at = now or utc_now()
    message = str(error) or type(error).__name__
    details = _details(error)
    metadata: dict[str, str] = {}

    if isinstance(error, OllamaServiceError):
        code = error.code or "ollama_error"
        is_retryable = error.is_retryable
        metadata.update(error.metadata)
    elif isinstance(error, (httpx.TimeoutException, TimeoutError)):
        message = "The request to the AI service timed out."
        code = "ollama_timeout"
        is_retryable = True
        details = str(error) or type(error).__name__
    elif isinstance(error, (httpx.HTTPError, ConnectionError)):
        message = "Network error while contacting the AI service."
        code = "ollama_network"
        is_retryable = True
        details = str(error) or type(error).__name__
        if isinstance(error, httpx.HTTPStatusError):
            status_code = error.response.status_code
            metadata["statusCode"] = str(status_code)
            metadata["statusName"] = _status_name(status_code)
    elif isinstance(error, json.JSONDecodeError):
        message = "Unable to parse the AI service response."
        code = "ollama_parse_error"
        is_retryable = False
        details = str(error)
    else:
        code = "unexpected_error"
        is_retryable = False

    return AiJobErrorInfo(
        message=message,
        code=code,
        details=details,
        is_retryable=is_retryable,
        occurred_at=occurred_at,
        metadata=metadata or None,
    )


def _details(error: BaseException) -> str:
    cause = error.__cause__
    if cause is not None:
        return str(cause) or type(cause).__name__
    return str(error) or type(error).__name__


def _status_name(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Unknown"
