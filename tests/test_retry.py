from __future__ import annotations

import random

import allure
import pytest

from agents_reverse.backend.base import BackendRunError
from agents_reverse.config import RetrySettings
from agents_reverse.models import FailureKind
from agents_reverse.retry import RetryPolicy, with_retry

pytestmark = [
    allure.epic("Generation Backends"),
    allure.feature("Retry Policy"),
]


def _rate_limited(error: Exception) -> bool:
    return isinstance(error, BackendRunError) and error.kind is FailureKind.RATE_LIMIT


class _Failing:
    def __init__(self, kind: FailureKind, *, succeed_after: int | None = None) -> None:
        self.kind = kind
        self.succeed_after = succeed_after
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.succeed_after is not None and self.calls > self.succeed_after:
            return "ok"
        raise BackendRunError("429 Too Many Requests", kind=self.kind)


@pytest.mark.parametrize("max_retries", [0, 1, 3, 5])
def test_always_rate_limited_operation_is_called_max_retries_plus_one_times(
    max_retries: int,
) -> None:
    operation = _Failing(FailureKind.RATE_LIMIT)
    delays: list[float] = []

    with pytest.raises(BackendRunError):
        with_retry(
            operation,
            policy=RetryPolicy(max_retries=max_retries),
            is_retryable=_rate_limited,
            sleep=delays.append,
            rng=random.Random(7),
        )

    assert operation.calls == max_retries + 1
    assert len(delays) == max_retries


def test_delays_are_non_decreasing_and_capped() -> None:
    policy = RetryPolicy(
        max_retries=6,
        base_delay_seconds=1.0,
        max_delay_seconds=8.0,
        multiplier=2.0,
        jitter_seconds=0.0,
    )
    delays: list[float] = []

    with pytest.raises(BackendRunError):
        with_retry(
            _Failing(FailureKind.RATE_LIMIT),
            policy=policy,
            is_retryable=_rate_limited,
            sleep=delays.append,
        )

    assert delays == [1.0, 2.0, 4.0, 8.0, 8.0, 8.0]
    assert delays == sorted(delays)


def test_jitter_stays_within_bound() -> None:
    policy = RetryPolicy(max_delay_seconds=8.0, jitter_seconds=0.5)
    rng = random.Random(3)

    for attempt in range(10):
        base = min(1.0 * 2.0**attempt, 8.0)
        delay = policy.compute_delay(attempt, rng)
        assert base <= delay <= base + 0.5


def test_timeout_is_not_retried() -> None:
    operation = _Failing(FailureKind.TIMEOUT)

    with pytest.raises(BackendRunError) as raised:
        with_retry(
            operation,
            policy=RetryPolicy(max_retries=3),
            is_retryable=_rate_limited,
            sleep=lambda _delay: None,
        )

    assert raised.value.kind is FailureKind.TIMEOUT
    assert operation.calls == 1


def test_success_after_rate_limits_reports_each_retry() -> None:
    operation = _Failing(FailureKind.RATE_LIMIT, succeed_after=2)
    notifications: list[int] = []

    result = with_retry(
        operation,
        policy=RetryPolicy(max_retries=3),
        is_retryable=_rate_limited,
        sleep=lambda _delay: None,
        on_retry=lambda number, _delay, _error: notifications.append(number),
    )

    assert result == "ok"
    assert operation.calls == 3
    assert notifications == [1, 2]


def test_policy_from_settings() -> None:
    policy = RetryPolicy.from_settings(
        RetrySettings(max_retries=2, base_delay_seconds=0.5, max_delay_seconds=4.0),
    )

    assert policy.max_retries == 2
    assert policy.base_delay_seconds == 0.5
    assert policy.max_delay_seconds == 4.0
