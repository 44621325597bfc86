"""Backend interface for generation calls crossing a process boundary."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from agents_reverse.models import FailureKind

if TYPE_CHECKING:
    from agents_reverse.backend.responses import BackendResponse


class BackendRunError(RuntimeError):
    """Backend execution error tagged with its normalized failure kind."""

    def __init__(self, message: str, *, kind: FailureKind) -> None:
        super().__init__(message)
        self.kind = kind


class BackendNotAvailableError(RuntimeError):
    """No usable CLI could be found for the configured backend."""


@dataclass(slots=True)
class BackendRunRequest:
    """Inputs required to execute one CLI invocation."""

    args: list[str]
    stdin_text: str
    timeout_seconds: float
    grace_seconds: float = 5.0
    cwd: Path | None = None
    env: dict[str, str] | None = None
    on_spawn: Callable[[int], None] | None = None


@dataclass(slots=True)
class SubprocessResult:
    """Raw execution outcome of one CLI invocation."""

    stdout: str
    stderr: str
    exit_code: int
    duration_ms: int
    timed_out: bool
    pid: int | None = None
    signals_sent: tuple[str, ...] = field(default_factory=tuple)


class GenerationBackend(Protocol):
    """Protocol implemented by every concrete CLI backend."""

    name: str

    def build_invocation(
        self,
        *,
        prompt: str,
        system_prompt: str | None,
        model: str | None,
    ) -> tuple[list[str], str]:
        """Return the argv and the stdin payload for one call."""

    def parse_output(self, stdout: str) -> BackendResponse:
        """Parse raw stdout into this backend's response variant."""
