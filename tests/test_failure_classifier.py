from __future__ import annotations

import json
from datetime import UTC, datetime

import allure
import httpx

from osint_ai.jobs.failure_classifier import classify_failure
from osint_ai.ollama import OllamaServiceError

pytestmark = [
    allure.epic("AI Jobs"),
    allure.feature("Failure Classification"),
]

_REQUEST = httpx.Request("POST", "http://ollama.test/api/generate")


def test_service_error_keeps_code_retryability_and_metadata() -> None:
    try:
        try:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        except ValueError as cause:
            raise OllamaServiceError(
                "Failed to parse Ollama response.",
                code="ollama_parse_error",
                is_retryable=False,
                metadata={"responseBody": "<html>"},
            ) from cause
    except OllamaServiceError as error:
        info = classify_failure(error)

    assert info.message == "Failed to parse Ollama response."
    assert info.code == "ollama_parse_error"
    assert info.is_retryable is False
    assert info.details == "Expecting value: line 1 column 1 (char 0)"
    assert info.metadata == {"responseBody": "<html>"}


def test_service_error_without_code_gets_generic_code() -> None:
    info = classify_failure(OllamaServiceError("Ollama returned an empty response."))

    assert info.code == "ollama_error"
    assert info.is_retryable is True
    assert info.details == "Ollama returned an empty response."
    assert info.metadata is None


def test_timeouts_are_retryable() -> None:
    info = classify_failure(httpx.ReadTimeout("read timed out", request=_REQUEST))

    assert info.code == "ollama_timeout"
    assert info.message == "The request to the AI service timed out."
    assert info.details == "read timed out"
    assert info.is_retryable is True

    assert classify_failure(TimeoutError()).code == "ollama_timeout"


def test_network_errors_are_retryable() -> None:
    info = classify_failure(httpx.ConnectError("connection refused", request=_REQUEST))

    assert info.code == "ollama_network"
    assert info.message == "Network error while contacting the AI service."
    assert info.is_retryable is True
    assert classify_failure(ConnectionResetError("reset")).code == "ollama_network"


def test_http_status_error_records_status_metadata() -> None:
    response = httpx.Response(503, request=_REQUEST)
    error = httpx.HTTPStatusError("server error", request=_REQUEST, response=response)

    info = classify_failure(error)

    assert info.code == "ollama_network"
    assert info.metadata == {"statusCode": "503", "statusName": "Service Unavailable"}


def test_json_decode_error_is_not_retryable() -> None:
    info = classify_failure(json.JSONDecodeError("Expecting value", "", 0))

    assert info.code == "ollama_parse_error"
    assert info.message == "Unable to parse the AI service response."
    assert info.is_retryable is False


def test_unexpected_errors_are_not_retryable() -> None:
    occurred_at = datetime(2026, 10, 19, 8, 0, tzinfo=UTC)

    info = classify_failure(RuntimeError(), now=occurred_at)

    assert info.code == "unexpected_error"
    assert info.message == "RuntimeError"
    assert info.details == "RuntimeError"
    assert info.is_retryable is False
    assert info.occurred_at == occurred_at
    assert info.to_dict()["occurredAt"] == "2026-10-19T08:00:00+00:00"
