"""Exponential backoff with jitter for rate-limited generation calls."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from agents_reverse.config import RetrySettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Backoff parameters; ``max_retries`` counts retries after the first try."""

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 8.0
    multiplier: float = 2.0
    jitter_seconds: float = 0.5

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        return cls(
            max_retries=settings.max_retries,
            base_delay_seconds=settings.base_delay_seconds,
            max_delay_seconds=settings.max_delay_seconds,
            multiplier=settings.multiplier,
            jitter_seconds=settings.jitter_seconds,
        )

    def compute_delay(self, attempt: int, rng: random.Random) -> float:
        """Delay before retry number ``attempt + 1`` (``attempt`` is zero-based)."""

        capped = min(self.base_delay_seconds * (self.multiplier**attempt), self.max_delay_seconds)
        return capped + rng.uniform(0, self.jitter_seconds)


def with_retry(  # noqa: PLR0913
    operation: Callable[[], T],
    *,
    policy: RetryPolicy,
    is_retryable: Callable[[Exception], bool],
    sleep: Callable[[float], None] = time.sleep,
    rng: random.Random | None = None,
    on_retry: Callable[[int, float, Exception], None] | None = None,
) -> T:
    """Call ``operation`` until it succeeds, fails non-retryably, or retries run out.

    The last error is re-raised unchanged; callers read the attempt count from
    ``on_retry`` notifications.
    """

    generator = rng or random.Random()  # noqa: S311
    attempt = 0
    while True:
        try:
            return operation()
        except Exception as error:
            if attempt >= policy.max_retries or not is_retryable(error):
                raise
            delay = policy.compute_delay(attempt, generator)
            logger.info(
                "Retryable failure (attempt %d/%d), sleeping %.2fs: %s",
                attempt + 1,
                policy.max_retries + 1,
                delay,
                error,
            )
            if on_retry is not None:
                on_retry(attempt + 1, delay, error)
            sleep(delay)
            attempt += 1
