"""Generation service: one normalized call contract over any CLI backend."""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path

from agents_reverse.backend.base import BackendRunError, BackendRunRequest, GenerationBackend
from agents_reverse.backend.responses import normalize_response, reported_error
from agents_reverse.backend.subprocess_runner import run_subprocess
from agents_reverse.failure_classifier import classify_error_reply, classify_failure
from agents_reverse.models import FailureKind, GenerationFailure, GenerationResult
from agents_reverse.pricing import estimate_cost_usd
from agents_reverse.retry import RetryPolicy, with_retry
from agents_reverse.trace import NullTracer, Tracer

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UsageTotals:
    """Aggregated usage across all calls of one run."""

    calls: int = 0
    failures: int = 0
    retries: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    cost_usd: float = 0.0
    duration_ms: int = 0


class GenerationService:
    """Run prompts through a backend with retry, timeout and usage tracking."""

    def __init__(  # noqa: PLR0913
        self,
        backend: GenerationBackend,
        *,
        model: str | None,
        timeout_seconds: float,
        grace_seconds: float = 5.0,
        retry_policy: RetryPolicy | None = None,
        tracer: Tracer | None = None,
        cwd: Path | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.backend = backend
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.grace_seconds = grace_seconds
        self.retry_policy = retry_policy or RetryPolicy()
        self._tracer = tracer or NullTracer()
        self._cwd = cwd
        self._sleep = sleep
        self._rng = rng or random.Random()  # noqa: S311
        self._usage = UsageTotals()
        self._usage_lock = threading.Lock()

    @property
    def usage(self) -> UsageTotals:
        with self._usage_lock:
            return replace(self._usage)

    def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        *,
        task_label: str = "",
    ) -> GenerationResult:
        """Return the normalized result or raise ``GenerationFailure``."""

        started = time.monotonic()
        attempts = 0

        def _attempt() -> GenerationResult:
            nonlocal attempts
            attempts += 1
            return self._run_once(
                prompt=prompt,
                system_prompt=system_prompt,
                task_label=task_label,
                attempt=attempts,
            )

        def _on_retry(retry_number: int, delay: float, error: Exception) -> None:
            with self._usage_lock:
                self._usage.retries += 1
            self._tracer.emit(
                "retry",
                task=task_label,
                attempt=retry_number,
                delay_ms=int(delay * 1000),
                error=str(error),
            )

        try:
            result = with_retry(
                _attempt,
                policy=self.retry_policy,
                is_retryable=_is_rate_limited,
                sleep=self._sleep,
                rng=self._rng,
                on_retry=_on_retry,
            )
        except BackendRunError as error:
            duration_ms = int((time.monotonic() - started) * 1000)
            with self._usage_lock:
                self._usage.calls += 1
                self._usage.failures += 1
                self._usage.duration_ms += duration_ms
            logger.warning("Generation failed for %s: %s", task_label or "<call>", error)
            raise GenerationFailure(
                str(error),
                kind=error.kind,
                attempts=attempts,
                duration_ms=duration_ms,
            ) from error

        if result.cost_usd is None:
            result = replace(
                result,
                cost_usd=estimate_cost_usd(
                    backend=self.backend.name,
                    model=result.model,
                    input_tokens=result.input_tokens,
                    output_tokens=result.output_tokens,
                ),
            )
        self._record_success(result)
        return result

    def _run_once(
        self,
        *,
        prompt: str,
        system_prompt: str | None,
        task_label: str,
        attempt: int,
    ) -> GenerationResult:
        args, stdin_text = self.backend.build_invocation(
            prompt=prompt,
            system_prompt=system_prompt,
            model=self.model,
        )
        raw = run_subprocess(
            BackendRunRequest(
                args=args,
                stdin_text=stdin_text,
                timeout_seconds=self.timeout_seconds,
                grace_seconds=self.grace_seconds,
                cwd=self._cwd,
                on_spawn=lambda pid: self._tracer.emit(
                    "subprocess:spawn",
                    task=task_label,
                    attempt=attempt,
                    child_pid=pid,
                    backend=self.backend.name,
                ),
            ),
        )
        self._tracer.emit(
            "subprocess:exit",
            task=task_label,
            attempt=attempt,
            child_pid=raw.pid,
            exit_code=raw.exit_code,
            timed_out=raw.timed_out,
            signals=list(raw.signals_sent),
            duration_ms=raw.duration_ms,
        )
        if raw.timed_out or raw.exit_code != 0:
            classification = classify_failure(raw)
            raise BackendRunError(classification.message, kind=classification.kind)

        response = self.backend.parse_output(raw.stdout)
        error_text = reported_error(response)
        if error_text is not None:
            classification = classify_error_reply(error_text)
            raise BackendRunError(classification.message, kind=classification.kind)
        return normalize_response(response, duration_ms=raw.duration_ms, exit_code=raw.exit_code)

    def _record_success(self, result: GenerationResult) -> None:
        with self._usage_lock:
            self._usage.calls += 1
            self._usage.input_tokens += result.input_tokens
            self._usage.output_tokens += result.output_tokens
            self._usage.cache_read_tokens += result.cache_read_tokens
            self._usage.cache_creation_tokens += result.cache_creation_tokens
            self._usage.cost_usd += result.cost_usd or 0.0
            self._usage.duration_ms += result.duration_ms


def _is_rate_limited(error: Exception) -> bool:
    return isinstance(error, BackendRunError) and error.kind is FailureKind.RATE_LIMIT
