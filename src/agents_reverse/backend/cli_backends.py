"""Concrete CLI backends and backend resolution."""

from __future__ import annotations

import shlex
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field

from agents_reverse.backend.base import BackendNotAvailableError, GenerationBackend
from agents_reverse.backend.responses import (
    ClaudeResponse,
    CodexResponse,
    GeminiResponse,
    OpenCodeResponse,
    PlainTextResponse,
    parse_claude_output,
    parse_codex_output,
    parse_gemini_output,
    parse_opencode_output,
)

AUTO_DETECT_ORDER = ("claude", "codex", "gemini", "opencode")

_CLAUDE_MODEL_ALIASES = frozenset({"sonnet", "opus", "haiku"})
_GEMINI_MODEL_ALIASES = {
    "sonnet": "gemini-3-flash-preview",
    "opus": "gemini-3-pro-preview",
    "haiku": "gemini-2.5-flash",
    "flash": "gemini-3-flash-preview",
    "pro": "gemini-3-pro-preview",
}
_OPENCODE_MODEL_ALIASES = {
    "sonnet": "anthropic/claude-sonnet-4-5",
    "opus": "anthropic/claude-opus-4-1",
    "haiku": "anthropic/claude-haiku-4-5",
}


@dataclass(slots=True)
class ClaudeBackend:
    """Claude Code CLI in non-interactive JSON mode; prompt goes to stdin."""

    executable: list[str] = field(default_factory=lambda: ["claude"])
    name: str = "claude"

    def build_invocation(
        self,
        *,
        prompt: str,
        system_prompt: str | None,
        model: str | None,
    ) -> tuple[list[str], str]:
        args = [
            *self.executable,
            "-p",
            "--output-format",
            "json",
            "--no-session-persistence",
            "--permission-mode",
            "bypassPermissions",
        ]
        if model:
            args.extend(["--model", model])
        if system_prompt:
            args.extend(["--system-prompt", system_prompt])
        return args, prompt

    def parse_output(self, stdout: str) -> ClaudeResponse:
        return parse_claude_output(stdout)


@dataclass(slots=True)
class CodexBackend:
    """Codex CLI ``exec --json``; system instructions are prepended to stdin."""

    executable: list[str] = field(default_factory=lambda: ["codex"])
    name: str = "codex"

    def build_invocation(
        self,
        *,
        prompt: str,
        system_prompt: str | None,
        model: str | None,
    ) -> tuple[list[str], str]:
        args = [
            *self.executable,
            "-a",
            "never",
            "exec",
            "--json",
            "--skip-git-repo-check",
            "--ephemeral",
            "--sandbox",
            "read-only",
            "--color",
            "never",
        ]
        if model and model not in _CLAUDE_MODEL_ALIASES:
            args.extend(["--model", model])
        args.append("-")
        stdin_text = prompt
        if system_prompt:
            stdin_text = (
                f"<system-instructions>\n{system_prompt}\n</system-instructions>\n\n{prompt}"
            )
        return args, stdin_text

    def parse_output(self, stdout: str) -> CodexResponse | PlainTextResponse:
        return parse_codex_output(stdout)


@dataclass(slots=True)
class GeminiBackend:
    """Gemini CLI; the prompt travels in ``-p`` and stdin stays empty."""

    executable: list[str] = field(default_factory=lambda: ["gemini"])
    name: str = "gemini"

    def build_invocation(
        self,
        *,
        prompt: str,
        system_prompt: str | None,
        model: str | None,
    ) -> tuple[list[str], str]:
        full_prompt = f"{system_prompt}\n\n{prompt}" if system_prompt else prompt
        args = [*self.executable, "-p", full_prompt, "--output-format", "json"]
        if model:
            args.extend(["-m", resolve_gemini_model(model)])
        return args, ""

    def parse_output(self, stdout: str) -> GeminiResponse:
        return parse_gemini_output(stdout)


@dataclass(slots=True)
class OpenCodeBackend:
    """OpenCode CLI ``run --format json``; the prompt goes to stdin."""

    executable: list[str] = field(default_factory=lambda: ["opencode"])
    name: str = "opencode"

    def build_invocation(
        self,
        *,
        prompt: str,
        system_prompt: str | None,
        model: str | None,
    ) -> tuple[list[str], str]:
        args = [*self.executable, "run", "--format", "json"]
        resolved = resolve_opencode_model(model) if model else None
        if resolved:
            args.extend(["--model", resolved])
        stdin_text = prompt
        if system_prompt:
            stdin_text = (
                f"<system-instructions>\n{system_prompt}\n</system-instructions>\n\n{prompt}"
            )
        return args, stdin_text

    def parse_output(self, stdout: str) -> OpenCodeResponse:
        return parse_opencode_output(stdout)


_BACKEND_FACTORIES: dict[str, Callable[[list[str]], GenerationBackend]] = {
    "claude": lambda executable: ClaudeBackend(executable=executable),
    "codex": lambda executable: CodexBackend(executable=executable),
    "gemini": lambda executable: GeminiBackend(executable=executable),
    "opencode": lambda executable: OpenCodeBackend(executable=executable),
}


def resolve_gemini_model(model: str) -> str:
    if model.startswith("gemini-"):
        return model
    return _GEMINI_MODEL_ALIASES.get(model, model)


def resolve_opencode_model(model: str) -> str | None:
    """Map an alias to ``provider/model``; bare names are left to the CLI default."""

    if "/" in model:
        return model
    return _OPENCODE_MODEL_ALIASES.get(model)


def resolve_backend(
    name: str,
    *,
    command: str | None = None,
    which: Callable[[str], str | None] = shutil.which,
) -> GenerationBackend:
    """Resolve a backend by name, or the first installed CLI for ``auto``.

    ``command`` replaces the executable with an explicit command prefix, for
    example a wrapper script. With ``auto`` and an explicit command the
    Claude output format is assumed.
    """

    normalized = name.strip().lower()
    if normalized != "auto" and normalized not in _BACKEND_FACTORIES:
        raise BackendNotAvailableError(
            f"Unknown backend {name!r}. Supported: auto, {', '.join(AUTO_DETECT_ORDER)}.",
        )

    if command:
        executable = shlex.split(command)
        if not executable:
            raise BackendNotAvailableError("Backend command override is empty.")
        backend_name = "claude" if normalized == "auto" else normalized
        return _BACKEND_FACTORIES[backend_name](executable)

    candidates = AUTO_DETECT_ORDER if normalized == "auto" else (normalized,)
    for candidate in candidates:
        if which(candidate) is not None:
            return _BACKEND_FACTORIES[candidate]([candidate])

    if normalized == "auto":
        raise BackendNotAvailableError(
            "No supported AI CLI found on PATH. Install one of: "
            f"{', '.join(AUTO_DETECT_ORDER)}.",
        )
    raise BackendNotAvailableError(f"The {normalized!r} CLI was not found on PATH.")
