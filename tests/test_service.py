from __future__ import annotations

import random
from pathlib import Path

import allure
import pytest

from agents_reverse.backend import resolve_backend
from agents_reverse.models import FailureKind, GenerationFailure
from agents_reverse.retry import RetryPolicy
from agents_reverse.service import GenerationService
from conftest import echo_agent_command

pytestmark = [
    allure.epic("Generation Backends"),
    allure.feature("Generation Service"),
]


def _service(
    *flags: str,
    backend: str = "claude",
    max_retries: int = 3,
    timeout_seconds: float = 30.0,
    grace_seconds: float = 1.0,
):
    delays: list[float] = []
    service = GenerationService(
        resolve_backend(backend, command=echo_agent_command(*flags)),
        model="sonnet",
        timeout_seconds=timeout_seconds,
        grace_seconds=grace_seconds,
        retry_policy=RetryPolicy(max_retries=max_retries),
        sleep=delays.append,
        rng=random.Random(1),
    )
    return service, delays


def _call_count(calls_file: Path) -> int:
    return len(calls_file.read_text("utf-8").splitlines())


@pytest.mark.parametrize("backend", ["claude", "codex", "gemini", "opencode"])
def test_generate_normalizes_each_backend_format(backend: str) -> None:
    service, _ = _service("--format", backend, backend=backend)

    result = service.generate("Summarize utils.py", "Be brief", task_label="file:utils.py")

    assert result.text.startswith("Echo summary:")
    assert result.input_tokens == 120
    assert result.output_tokens == 40
    assert result.exit_code == 0
    assert service.usage.calls == 1
    assert service.usage.input_tokens == 120


def test_claude_reported_cost_is_aggregated() -> None:
    service, _ = _service("--format", "claude")

    service.generate("one")
    service.generate("two")

    usage = service.usage
    assert usage.calls == 2
    assert usage.cost_usd == pytest.approx(0.002)
    assert usage.output_tokens == 80


def test_always_rate_limited_backend_is_called_max_retries_plus_one_times(
    tmp_path: Path,
) -> None:
    calls_file = tmp_path / "calls.ndjson"
    service, delays = _service(
        "--fail-message",
        "Error: 429 Too Many Requests",
        "--calls-file",
        str(calls_file),
        max_retries=2,
    )

    with pytest.raises(GenerationFailure) as raised:
        service.generate("prompt", task_label="file:a.py")

    assert raised.value.kind is FailureKind.RATE_LIMIT
    assert raised.value.attempts == 3
    assert _call_count(calls_file) == 3
    assert len(delays) == 2
    assert delays == sorted(delays)
    assert service.usage.retries == 2
    assert service.usage.failures == 1


def test_rate_limit_then_success_returns_result(tmp_path: Path) -> None:
    calls_file = tmp_path / "calls.ndjson"
    service, delays = _service(
        "--fail-message",
        "rate limit exceeded",
        "--fail-times",
        "1",
        "--calls-file",
        str(calls_file),
    )

    result = service.generate("Describe x")

    assert result.text == "Echo summary: Describe x"
    assert _call_count(calls_file) == 2
    assert len(delays) == 1


def test_non_rate_limit_failure_is_not_retried(tmp_path: Path) -> None:
    calls_file = tmp_path / "calls.ndjson"
    service, delays = _service(
        "--fail-message",
        "fatal: bad flag",
        "--calls-file",
        str(calls_file),
    )

    with pytest.raises(GenerationFailure) as raised:
        service.generate("prompt")

    assert raised.value.kind is FailureKind.SUBPROCESS_ERROR
    assert raised.value.attempts == 1
    assert _call_count(calls_file) == 1
    assert delays == []


def test_timeout_is_reported_and_not_retried(tmp_path: Path) -> None:
    calls_file = tmp_path / "calls.ndjson"
    service, delays = _service(
        "--sleep",
        "30",
        "--calls-file",
        str(calls_file),
        timeout_seconds=1.0,
        grace_seconds=1.0,
    )

    with pytest.raises(GenerationFailure) as raised:
        service.generate("prompt")

    assert raised.value.kind is FailureKind.TIMEOUT
    assert _call_count(calls_file) == 1
    assert delays == []


def test_unparseable_output_is_a_parse_error() -> None:
    service, _ = _service("--format", "text", backend="claude")

    with pytest.raises(GenerationFailure) as raised:
        service.generate("prompt")

    assert raised.value.kind is FailureKind.PARSE_ERROR


def test_missing_cli_is_cli_not_found() -> None:
    service = GenerationService(
        resolve_backend("claude", command="agents-reverse-missing-cli"),
        model=None,
        timeout_seconds=5.0,
    )

    with pytest.raises(GenerationFailure) as raised:
        service.generate("prompt")

    assert raised.value.kind is FailureKind.CLI_NOT_FOUND


def test_claude_error_result_with_zero_exit_is_a_failure(tmp_path: Path) -> None:
    calls_file = tmp_path / "calls.ndjson"
    service, delays = _service(
        "--error-reply",
        "--reply",
        "Invalid API key",
        "--calls-file",
        str(calls_file),
    )

    with pytest.raises(GenerationFailure) as raised:
        service.generate("prompt")

    assert raised.value.kind is FailureKind.SUBPROCESS_ERROR
    assert "Invalid API key" in str(raised.value)
    assert _call_count(calls_file) == 1
    assert delays == []
    assert service.usage.failures == 1


def test_claude_rate_limited_error_result_is_retried(tmp_path: Path) -> None:
    calls_file = tmp_path / "calls.ndjson"
    service, delays = _service(
        "--error-reply",
        "--reply",
        "API Error: Rate limit reached",
        "--calls-file",
        str(calls_file),
        max_retries=1,
    )

    with pytest.raises(GenerationFailure) as raised:
        service.generate("prompt")

    assert raised.value.kind is FailureKind.RATE_LIMIT
    assert raised.value.attempts == 2
    assert _call_count(calls_file) == 2
    assert len(delays) == 1


def test_opencode_error_event_is_a_failure() -> None:
    service, _ = _service(
        "--error-reply",
        "--reply",
        "Model not found: anthropic/claude-unknown",
        backend="opencode",
    )

    with pytest.raises(GenerationFailure) as raised:
        service.generate("prompt")

    assert raised.value.kind is FailureKind.SUBPROCESS_ERROR
    assert "Model not found" in str(raised.value)
