from __future__ import annotations

from concurrent.futures import CancelledError

import allure
import httpx
import pytest

from osint_ai.retry import RetryPolicy

pytestmark = [
    allure.epic("Ollama Integration"),
    allure.feature("Retry Policy"),
]


class _Flaky:
    def __init__(self, failures: list[BaseException], result: str = "ok") -> None:
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


def test_delays_grow_exponentially_up_to_cap() -> None:
    policy = RetryPolicy(initial_delay_seconds=1.0, backoff_multiplier=2.0, max_delay_seconds=30)

    assert [policy.delay_for(attempt) for attempt in (1, 2, 3, 4, 10)] == [
        1.0,
        2.0,
        4.0,
        8.0,
        30.0,
    ]


def test_transient_errors_are_retried_until_success() -> None:
    sleeps: list[float] = []
    policy = RetryPolicy(max_attempts=3, sleep=sleeps.append)
    operation = _Flaky([ConnectionError("reset"), TimeoutError("slow")])

    assert policy.execute("fetch", operation) == "ok"
    assert operation.calls == 3
    assert sleeps == [1.0, 2.0]


def test_cancelled_future_counts_as_transient() -> None:
    sleeps: list[float] = []
    policy = RetryPolicy(max_attempts=2, sleep=sleeps.append)
    operation = _Flaky([CancelledError()])

    assert policy.execute("fetch", operation) == "ok"
    assert operation.calls == 2
    assert sleeps == [1.0]


def test_non_transient_error_propagates_immediately() -> None:
    sleeps: list[float] = []
    policy = RetryPolicy(max_attempts=5, sleep=sleeps.append)
    operation = _Flaky([ValueError("bad input")])

    with pytest.raises(ValueError, match="bad input"):
        policy.execute("fetch", operation)
    assert operation.calls == 1
    assert sleeps == []


def test_last_transient_error_propagates_after_exhaustion() -> None:
    sleeps: list[float] = []
    policy = RetryPolicy(max_attempts=2, sleep=sleeps.append)
    request = httpx.Request("GET", "http://ollama.test/api/tags")
    operation = _Flaky(
        [
            httpx.ConnectError("first", request=request),
            httpx.ConnectError("second", request=request),
        ],
    )

    with pytest.raises(httpx.ConnectError, match="second"):
        policy.execute("fetch", operation)
    assert operation.calls == 2
    assert sleeps == [1.0]


def test_wrapped_transient_cause_is_retried() -> None:
    policy = RetryPolicy(sleep=lambda _: None)
    wrapped = RuntimeError("wrapper")
    wrapped.__cause__ = ConnectionRefusedError("refused")

    assert policy.is_transient(wrapped) is True
    assert policy.is_transient(RuntimeError("plain")) is False


def test_retry_if_predicate_extends_transient_set() -> None:
    policy = RetryPolicy(
        retry_on=(),
        retry_if=lambda error: isinstance(error, KeyError),
        sleep=lambda _: None,
    )
    operation = _Flaky([KeyError("missing")])

    assert policy.execute("fetch", operation) == "ok"
    assert policy.is_transient(ConnectionError()) is False


def test_invalid_settings_are_clamped() -> None:
    policy = RetryPolicy(
        max_attempts=0,
        initial_delay_seconds=-1,
        backoff_multiplier=0.5,
        max_delay_seconds=-5,
    )

    assert policy.max_attempts == 1
    assert policy.initial_delay_seconds == 0.0
    assert policy.backoff_multiplier == 1.0
    assert policy.max_delay_seconds == 0.0
