from __future__ import annotations

import json

import allure
import httpx
import pytest

from osint_ai.config import OllamaSettings
from osint_ai.ollama import (
    OllamaClient,
    OllamaServiceError,
    RemoteOllamaClient,
    build_generation_client,
    check_health,
)

pytestmark = [
    allure.epic("Ollama Integration"),
    allure.feature("Generation Client"),
]

BASE_URL = "http://ollama.test"

_GENERATE_PAYLOAD = {
    "model": "llama2",
    "created_at": "2026-10-19T08:00:00Z",
    "response": "## Executive Summary\nAll good.",
    "done": True,
    "done_reason": "stop",
    "total_duration": 5_000_000_000,
    "prompt_eval_count": 42,
    "prompt_eval_duration": 1_000_000_000,
    "eval_count": 100,
    "eval_duration": 2_000_000_000,
}


class _Recorder:
    """MockTransport handler replaying queued responses or errors."""

    def __init__(self, *outcomes: httpx.Response | type[httpx.TransportError]) -> None:
        self.outcomes = list(outcomes)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, type):
            raise outcome("simulated failure", request=request)
        return httpx.Response(
            outcome.status_code,
            content=outcome.content,
            headers=outcome.headers,
        )


def _local(recorder: _Recorder) -> OllamaClient:
    return OllamaClient(
        base_url=f"{BASE_URL}/",
        default_model="llama2",
        timeout_seconds=30,
        transport=httpx.MockTransport(recorder),
    )


def _remote(recorder: _Recorder, sleeps: list[float]) -> RemoteOllamaClient:
    return RemoteOllamaClient(
        base_url=BASE_URL,
        default_model="llama2",
        timeout_seconds=30,
        max_retries=3,
        retry_initial_delay_seconds=1.0,
        transport=httpx.MockTransport(recorder),
        sleep=sleeps.append,
    )


def test_local_generate_posts_non_streaming_request() -> None:
    recorder = _Recorder(httpx.Response(200, json=_GENERATE_PAYLOAD))

    with _local(recorder) as client:
        completion = client.generate("Analyse this", None)

    request = recorder.requests[0]
    assert request.method == "POST"
    assert str(request.url) == f"{BASE_URL}/api/generate"
    assert json.loads(request.content) == {
        "model": "llama2",
        "prompt": "Analyse this",
        "stream": False,
    }
    assert completion.response.text == "## Executive Summary\nAll good."
    assert completion.response.eval_count == 100
    assert completion.response.done_reason == "stop"
    assert completion.status_code == 200
    assert completion.attempt_count == 1
    assert completion.request_body_bytes == len(request.content)
    assert completion.response_body_bytes > 0
    assert completion.endpoint_url == f"{BASE_URL}/api/generate"


def test_explicit_model_overrides_default() -> None:
    recorder = _Recorder(httpx.Response(200, json=_GENERATE_PAYLOAD))

    with _local(recorder) as client:
        client.generate("prompt", "llama2:13b")

    assert json.loads(recorder.requests[0].content)["model"] == "llama2:13b"


def test_local_client_does_not_retry_server_errors() -> None:
    recorder = _Recorder(httpx.Response(503, text="overloaded"))

    with _local(recorder) as client, pytest.raises(OllamaServiceError) as raised:
        client.generate("prompt")

    error = raised.value
    assert len(recorder.requests) == 1
    assert error.code == "ollama_http_error"
    assert error.is_retryable is True
    assert str(error) == "Ollama returned HTTP 503 while generating analysis."
    assert error.metadata["statusCode"] == "503"
    assert error.metadata["statusName"] == "Service Unavailable"
    assert error.metadata["responseBody"] == "overloaded"
    assert "requestBodyBytes" in error.metadata


@pytest.mark.parametrize(
    ("response", "code", "retryable"),
    [
        (httpx.Response(200, text="not json"), "ollama_parse_error", False),
        (
            httpx.Response(200, json={"response": "   ", "done": True}),
            "ollama_empty_response",
            True,
        ),
        (httpx.Response(404, json={"error": "model not found"}), "ollama_http_error", False),
    ],
)
def test_generate_error_codes(response: httpx.Response, code: str, retryable: bool) -> None:
    with _local(_Recorder(response)) as client, pytest.raises(OllamaServiceError) as raised:
        client.generate("prompt")

    assert raised.value.code == code
    assert raised.value.is_retryable is retryable


def test_transport_errors_map_to_network_and_timeout_codes() -> None:
    client = _local(_Recorder(httpx.ConnectError))
    with client, pytest.raises(OllamaServiceError) as raised:
        client.generate("prompt")
    assert raised.value.code == "ollama_network"
    assert isinstance(raised.value.__cause__, httpx.ConnectError)

    client = _local(_Recorder(httpx.ReadTimeout))
    with client, pytest.raises(OllamaServiceError) as raised:
        client.generate("prompt")
    assert raised.value.code == "ollama_timeout"
    assert raised.value.message == "Timed out waiting for Ollama to respond."


def test_remote_client_sends_options_and_retries_transient_failures() -> None:
    recorder = _Recorder(
        httpx.Response(502, text="bad gateway"),
        httpx.ConnectError,
        httpx.Response(200, json=_GENERATE_PAYLOAD),
    )
    sleeps: list[float] = []

    with _remote(recorder, sleeps) as client:
        completion = client.generate("prompt")

    assert len(recorder.requests) == 3
    assert completion.attempt_count == 3
    assert sleeps == [1.0, 2.0]
    body = json.loads(recorder.requests[0].content)
    assert body["options"] == {"temperature": 0.7, "top_p": 0.9}
    assert recorder.requests[0].headers["User-Agent"] == "OSINT-Framework/1.0"


def test_remote_client_stops_on_non_retryable_error() -> None:
    recorder = _Recorder(httpx.Response(400, text="bad request"))
    sleeps: list[float] = []

    with _remote(recorder, sleeps) as client, pytest.raises(OllamaServiceError) as raised:
        client.generate("prompt")

    assert raised.value.is_retryable is False
    assert len(recorder.requests) == 1
    assert sleeps == []


def test_remote_client_gives_up_after_max_retries() -> None:
    recorder = _Recorder(httpx.Response(500, text="boom"))
    sleeps: list[float] = []

    with _remote(recorder, sleeps) as client, pytest.raises(OllamaServiceError) as raised:
        client.generate("prompt")

    assert raised.value.code == "ollama_http_error"
    assert len(recorder.requests) == 3
    assert sleeps == [1.0, 2.0]


def test_list_models_and_health() -> None:
    recorder = _Recorder(
        httpx.Response(200, json={"models": [{"name": "llama2"}, {"name": "mistral"}, {}]}),
    )

    with _local(recorder) as client:
        assert client.list_models() == ["llama2", "mistral"]
        assert client.is_available() is True
        health = check_health(client)

    assert str(recorder.requests[0].url) == f"{BASE_URL}/api/tags"
    assert health.is_available is True
    assert health.models == ["llama2", "mistral"]
    assert health.service_type == "local"
    assert health.base_url == BASE_URL
    assert health.latency_ms >= 0


def test_health_reports_unavailable_service() -> None:
    with _local(_Recorder(httpx.ConnectError)) as client:
        assert client.is_available() is False
        health = check_health(client)

    assert health.is_available is False
    assert health.status_message == "Network error while contacting Ollama."
    assert health.models == []


def test_build_generation_client_follows_service_type() -> None:
    remote = build_generation_client(OllamaSettings(service_type="remote", base_url=BASE_URL))
    local = build_generation_client(OllamaSettings(base_url=BASE_URL))
    try:
        assert isinstance(remote, RemoteOllamaClient)
        assert remote.service_type == "remote"
        assert type(local) is OllamaClient
        assert not isinstance(remote, OllamaClient)
        assert not isinstance(local, RemoteOllamaClient)
    finally:
        remote.close()
        local.close()

    with pytest.raises(ValueError, match="Unsupported Ollama service type"):
        build_generation_client(OllamaSettings(service_type="cloud"))
