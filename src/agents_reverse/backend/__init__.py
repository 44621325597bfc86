"""CLI backend adapters for generation calls."""

from agents_reverse.backend.base import (
    BackendNotAvailableError,
    BackendRunError,
    BackendRunRequest,
    GenerationBackend,
    SubprocessResult,
)
from agents_reverse.backend.cli_backends import (
    ClaudeBackend,
    CodexBackend,
    GeminiBackend,
    OpenCodeBackend,
    resolve_backend,
)
from agents_reverse.backend.subprocess_runner import run_subprocess

__all__ = [
    "BackendNotAvailableError",
    "BackendRunError",
    "BackendRunRequest",
    "ClaudeBackend",
    "CodexBackend",
    "GeminiBackend",
    "GenerationBackend",
    "OpenCodeBackend",
    "SubprocessResult",
    "resolve_backend",
    "run_subprocess",
]
