"""httpx clients for local and remote Ollama instances."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from http import HTTPStatus

import httpx

from osint_ai.config import OllamaSettings
from osint_ai.ollama.base import (
    GenerationClient,
    OllamaCompletion,
    OllamaHealth,
    OllamaResponse,
    OllamaServiceError,
)
from osint_ai.retry import RetryPolicy
from osint_ai.storage.common import utc_now

logger = logging.getLogger(__name__)

GENERATE_PATH = "/api/generate"
TAGS_PATH = "/api/tags"
REMOTE_USER_AGENT = "OSINT-Framework/1.0"
REMOTE_GENERATION_OPTIONS = {"temperature": 0.7, "top_p": 0.9}
MAX_ERROR_BODY_CHARS = 1000


class OllamaHttpApi:
    """The two Ollama endpoints the clients use, mapped to `OllamaServiceError`."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        base_url: str,
        timeout_seconds: float,
        user_agent: str | None = None,
        options: dict[str, float] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._options = dict(options) if options else None
        headers = {"User-Agent": user_agent} if user_agent else None
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds)),
            headers=headers,
            transport=transport,
        )

    def generate(self, *, prompt: str, model: str, attempt: int) -> OllamaCompletion:
        body: dict[str, object] = {"model": model, "prompt": prompt, "stream": False}
        if self._options:
            body["options"] = self._options
        encoded = json.dumps(body, ensure_ascii=False).encode("utf-8")
        endpoint = f"{self.base_url}{GENERATE_PATH}"

        logger.debug("Sending generation request to %s with model %s", endpoint, model)
        started = time.perf_counter()
        try:
            response = self._client.post(
                GENERATE_PATH,
                content=encoded,
                headers={"Content-Type": "application/json"},
            )
        except httpx.TimeoutException as exc:
            raise OllamaServiceError(
                "Timed out waiting for Ollama to respond.",
                code="ollama_timeout",
                metadata={"endpoint": endpoint, "model": model},
            ) from exc
        except httpx.HTTPError as exc:
            raise OllamaServiceError(
                "Network error while contacting Ollama.",
                code="ollama_network",
                metadata={"endpoint": endpoint, "model": model},
            ) from exc
        duration_ms = (time.perf_counter() - started) * 1000.0

        if not response.is_success:
            error = _http_status_error(response, action="generating analysis")
            error.metadata["requestBodyBytes"] = str(len(encoded))
            raise error

        try:
            payload = response.json()
        except json.JSONDecodeError as exc:
            raise OllamaServiceError(
                "Failed to parse Ollama response.",
                code="ollama_parse_error",
                is_retryable=False,
                metadata={"responseBody": response.text[:MAX_ERROR_BODY_CHARS]},
            ) from exc
        if not isinstance(payload, dict):
            raise OllamaServiceError(
                "Failed to parse Ollama response.",
                code="ollama_parse_error",
                is_retryable=False,
            )

        parsed = OllamaResponse.from_payload(payload)
        if not parsed.text.strip():
            raise OllamaServiceError(
                "Ollama returned an empty response.",
                code="ollama_empty_response",
                metadata={"model": model},
            )

        logger.info(
            "Generation completed with model %s in %.0f ms (attempt %d)",
            parsed.model or model,
            duration_ms,
            attempt,
        )
        return OllamaCompletion(
            response=parsed,
            status_code=response.status_code,
            attempt_count=attempt,
            request_body_bytes=len(encoded),
            response_body_bytes=len(response.content),
            endpoint_url=str(response.request.url),
            request_duration_ms=duration_ms,
        )

    def list_models(self) -> list[str]:
        endpoint = f"{self.base_url}{TAGS_PATH}"
        try:
            response = self._client.get(TAGS_PATH)
        except httpx.TimeoutException as exc:
            raise OllamaServiceError(
                "Timed out waiting for Ollama to respond.",
                code="ollama_timeout",
                metadata={"endpoint": endpoint},
            ) from exc
        except httpx.HTTPError as exc:
            raise OllamaServiceError(
                "Network error while contacting Ollama.",
                code="ollama_network",
                metadata={"endpoint": endpoint},
            ) from exc
        if not response.is_success:
            raise _http_status_error(response, action="listing models")
        try:
            payload = response.json()
        except json.JSONDecodeError as exc:
            raise OllamaServiceError(
                "Failed to parse Ollama response.",
                code="ollama_parse_error",
                is_retryable=False,
            ) from exc
        models = payload.get("models") if isinstance(payload, dict) else None
        return [
            str(item["name"])
            for item in models or []
            if isinstance(item, dict) and item.get("name")
        ]

    def is_available(self) -> bool:
        try:
            self.list_models()
        except OllamaServiceError as error:
            logger.warning("Ollama at %s is not available: %s", self.base_url, error)
            return False
        return True

    def close(self) -> None:
        self._client.close()


class OllamaClient:
    """Single-attempt client, suitable for an Ollama instance on the same host."""

    service_type = "local"

    def __init__(
        self,
        *,
        base_url: str,
        default_model: str,
        timeout_seconds: float,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.default_model = default_model
        self._api = OllamaHttpApi(
            base_url=base_url,
            timeout_seconds=timeout_seconds,
            transport=transport,
        )
        self.base_url = self._api.base_url

    def generate(self, prompt: str, model: str | None = None) -> OllamaCompletion:
        return self._api.generate(prompt=prompt, model=model or self.default_model, attempt=1)

    def list_models(self) -> list[str]:
        return self._api.list_models()

    def is_available(self) -> bool:
        return self._api.is_available()

    def close(self) -> None:
        self._api.close()

    def __enter__(self) -> OllamaClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


class RemoteOllamaClient:
    """Client for Ollama across a network: sampling options and retry with backoff."""

    service_type = "remote"

    def __init__(  # noqa: PLR0913
        self,
        *,
        base_url: str,
        default_model: str,
        timeout_seconds: float,
        max_retries: int = 3,
        retry_initial_delay_seconds: float = 1.0,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.default_model = default_model
        self._api = OllamaHttpApi(
            base_url=base_url,
            timeout_seconds=timeout_seconds,
            user_agent=REMOTE_USER_AGENT,
            options=REMOTE_GENERATION_OPTIONS,
            transport=transport,
        )
        self.base_url = self._api.base_url
        self._retry_policy = RetryPolicy(
            max_attempts=max_retries,
            initial_delay_seconds=retry_initial_delay_seconds,
            retry_on=(),
            retry_if=_is_retryable_service_error,
            sleep=sleep,
        )

    def generate(self, prompt: str, model: str | None = None) -> OllamaCompletion:
        selected_model = model or self.default_model
        attempt = 0

        def _attempt() -> OllamaCompletion:
            nonlocal attempt
            attempt += 1
            return self._api.generate(prompt=prompt, model=selected_model, attempt=attempt)

        return self._retry_policy.execute(f"ollama generate ({selected_model})", _attempt)

    def list_models(self) -> list[str]:
        return self._api.list_models()

    def is_available(self) -> bool:
        available = self._api.is_available()
        if available:
            logger.info("Successfully connected to remote Ollama instance at %s", self.base_url)
        return available

    def close(self) -> None:
        self._api.close()

    def __enter__(self) -> RemoteOllamaClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def build_generation_client(
    settings: OllamaSettings,
    *,
    transport: httpx.BaseTransport | None = None,
) -> GenerationClient:
    """Pick the client implementation configured by `service_type`."""

    if settings.service_type == "remote":
        return RemoteOllamaClient(
            base_url=settings.base_url,
            default_model=settings.default_model,
            timeout_seconds=settings.timeout_seconds,
            max_retries=settings.max_retries,
            retry_initial_delay_seconds=settings.retry_initial_delay_seconds,
            transport=transport,
        )
    if settings.service_type == "local":
        return OllamaClient(
            base_url=settings.base_url,
            default_model=settings.default_model,
            timeout_seconds=settings.timeout_seconds,
            transport=transport,
        )
    raise ValueError(f"Unsupported Ollama service type: {settings.service_type!r}")


def check_health(client: GenerationClient) -> OllamaHealth:
    """Call the model listing endpoint and report latency and models."""

    checked_at = utc_now()
    started = time.perf_counter()
    try:
        models = client.list_models()
    except OllamaServiceError as error:
        return OllamaHealth(
            base_url=client.base_url,
            service_type=client.service_type,
            is_available=False,
            status_message=str(error),
            latency_ms=(time.perf_counter() - started) * 1000.0,
            checked_at=checked_at,
        )
    return OllamaHealth(
        base_url=client.base_url,
        service_type=client.service_type,
        is_available=True,
        status_message="Ollama responded successfully.",
        latency_ms=(time.perf_counter() - started) * 1000.0,
        checked_at=checked_at,
        models=models,
    )


def _http_status_error(response: httpx.Response, *, action: str) -> OllamaServiceError:
    status_code = response.status_code
    metadata = {
        "statusCode": str(status_code),
        "statusName": _status_name(status_code),
    }
    body = response.text
    if body.strip():
        metadata["responseBody"] = body[:MAX_ERROR_BODY_CHARS]
    return OllamaServiceError(
        f"Ollama returned HTTP {status_code} while {action}.",
        code="ollama_http_error",
        is_retryable=status_code >= HTTPStatus.INTERNAL_SERVER_ERROR
        or status_code == HTTPStatus.REQUEST_TIMEOUT,
        metadata=metadata,
    )


def _status_name(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Unknown"


def _is_retryable_service_error(error: BaseException) -> bool:
    return isinstance(error, OllamaServiceError) and error.is_retryable
