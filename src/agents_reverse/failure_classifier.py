"""Deterministic failure classification for the generation retry policy."""

from __future__ import annotations

from dataclasses import dataclass

from agents_reverse.backend.base import SubprocessResult
from agents_reverse.models import FailureKind

FAILURE_CLASSIFIER_VERSION = 1

RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "429",
    "too many requests",
    "overloaded",
)


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure classification result."""

    kind: FailureKind
    matched_rule: str
    matched_pattern: str | None
    message: str

    @property
    def retryable(self) -> bool:
        return self.kind is FailureKind.RATE_LIMIT


def classify_failure(result: SubprocessResult) -> FailureClassification:
    """Classify a failed CLI invocation into one failure kind.

    Timeouts win over output patterns, and only rate-limit shaped output is
    retryable.
    """

    if result.timed_out:
        return FailureClassification(
            kind=FailureKind.TIMEOUT,
            matched_rule="timed_out",
            matched_pattern=None,
            message=f"Subprocess timed out after {result.duration_ms} ms",
        )

    haystack = _normalize_text(stdout=result.stdout, stderr=result.stderr)
    pattern = _first_match(haystack, RATE_LIMIT_PATTERNS)
    if pattern is not None:
        return FailureClassification(
            kind=FailureKind.RATE_LIMIT,
            matched_rule="rate_limit",
            matched_pattern=pattern,
            message=_failure_message(result),
        )

    return FailureClassification(
        kind=FailureKind.SUBPROCESS_ERROR,
        matched_rule="fallback_subprocess_error",
        matched_pattern=None,
        message=_failure_message(result),
    )


def _failure_message(result: SubprocessResult) -> str:
    detail = (result.stderr.strip() or result.stdout.strip())[:500]
    if not detail:
        return f"CLI exited with code {result.exit_code}"
    return f"CLI exited with code {result.exit_code}: {detail}"


def _normalize_text(*, stdout: str, stderr: str) -> str:
    return f"{stderr}\n{stdout}".lower()


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None


def classify_error_reply(text: str) -> FailureClassification:
    """Classify a reply the CLI flagged as an error while still exiting 0."""

    detail = text.strip()[:500] or "no detail"
    pattern = _first_match(text.lower(), RATE_LIMIT_PATTERNS)
    if pattern is not None:
        return FailureClassification(
            kind=FailureKind.RATE_LIMIT,
            matched_rule="error_reply_rate_limit",
            matched_pattern=pattern,
            message=f"CLI reported an error: {detail}",
        )
    return FailureClassification(
        kind=FailureKind.SUBPROCESS_ERROR,
        matched_rule="error_reply",
        matched_pattern=None,
        message=f"CLI reported an error: {detail}",
    )
