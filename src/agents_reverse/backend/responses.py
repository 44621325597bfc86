"""Backend response variants and their normalizers.

Every CLI backend parses its stdout into exactly one variant of
``BackendResponse``. ``normalize_response`` turns any variant into the shared
``GenerationResult`` so callers never branch on backend identity.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Literal, assert_never

from agents_reverse.backend.base import BackendRunError
from agents_reverse.models import FailureKind, GenerationResult

_RAW_PREVIEW_CHARS = 200

_CODEX_SKIPPED_EVENT_TYPES = frozenset({"error", "thread.started", "turn.started"})


@dataclass(slots=True, frozen=True)
class ClaudeResponse:
    """``type == "result"`` object emitted by ``claude --output-format json``."""

    result: str
    model: str
    input_tokens: int
    output_tokens: int
    cache_read_tokens: int
    cache_creation_tokens: int
    total_cost_usd: float | None
    is_error: bool = False
    kind: Literal["claude"] = "claude"


@dataclass(slots=True, frozen=True)
class CodexResponse:
    """Assistant text collected from ``codex exec --json`` JSONL events."""

    text: str
    model: str
    input_tokens: int
    cached_input_tokens: int
    output_tokens: int
    event_count: int
    kind: Literal["codex"] = "codex"


@dataclass(slots=True, frozen=True)
class GeminiResponse:
    """``{response, stats}`` object emitted by ``gemini --output-format json``."""

    response: str
    model: str
    prompt_tokens: int
    response_tokens: int
    kind: Literal["gemini"] = "gemini"


@dataclass(slots=True, frozen=True)
class OpenCodeResponse:
    """Text parts and step usage collected from ``opencode run --format json`` events."""

    text: str
    model: str
    input_tokens: int
    output_tokens: int
    cache_read_tokens: int
    cache_write_tokens: int
    cost_usd: float | None
    error: str | None = None
    kind: Literal["opencode"] = "opencode"


@dataclass(slots=True, frozen=True)
class PlainTextResponse:
    """Unstructured stdout taken verbatim as the message body."""

    text: str
    model: str = "unknown"
    kind: Literal["text"] = "text"


BackendResponse = (
    ClaudeResponse | CodexResponse | GeminiResponse | OpenCodeResponse | PlainTextResponse
)


def normalize_response(
    response: BackendResponse,
    *,
    duration_ms: int,
    exit_code: int,
) -> GenerationResult:
    """Convert one backend response variant into a ``GenerationResult``."""

    if isinstance(response, ClaudeResponse):
        return _normalize_claude(response, duration_ms=duration_ms, exit_code=exit_code)
    if isinstance(response, CodexResponse):
        return _normalize_codex(response, duration_ms=duration_ms, exit_code=exit_code)
    if isinstance(response, GeminiResponse):
        return _normalize_gemini(response, duration_ms=duration_ms, exit_code=exit_code)
    if isinstance(response, OpenCodeResponse):
        return _normalize_opencode(response, duration_ms=duration_ms, exit_code=exit_code)
    if isinstance(response, PlainTextResponse):
        return _normalize_plain_text(response, duration_ms=duration_ms, exit_code=exit_code)
    assert_never(response)


def _normalize_claude(
    response: ClaudeResponse,
    *,
    duration_ms: int,
    exit_code: int,
) -> GenerationResult:
    return GenerationResult(
        text=response.result,
        model=response.model,
        input_tokens=response.input_tokens,
        output_tokens=response.output_tokens,
        cache_read_tokens=response.cache_read_tokens,
        cache_creation_tokens=response.cache_creation_tokens,
        cost_usd=response.total_cost_usd,
        duration_ms=duration_ms,
        exit_code=exit_code,
    )


def _normalize_codex(
    response: CodexResponse,
    *,
    duration_ms: int,
    exit_code: int,
) -> GenerationResult:
    return GenerationResult(
        text=response.text,
        model=response.model,
        input_tokens=response.input_tokens,
        output_tokens=response.output_tokens,
        cache_read_tokens=response.cached_input_tokens,
        cache_creation_tokens=0,
        cost_usd=None,
        duration_ms=duration_ms,
        exit_code=exit_code,
    )


def _normalize_gemini(
    response: GeminiResponse,
    *,
    duration_ms: int,
    exit_code: int,
) -> GenerationResult:
    return GenerationResult(
        text=response.response,
        model=response.model,
        input_tokens=response.prompt_tokens,
        output_tokens=response.response_tokens,
        cache_read_tokens=0,
        cache_creation_tokens=0,
        cost_usd=None,
        duration_ms=duration_ms,
        exit_code=exit_code,
    )


def _normalize_opencode(
    response: OpenCodeResponse,
    *,
    duration_ms: int,
    exit_code: int,
) -> GenerationResult:
    return GenerationResult(
        text=response.text,
        model=response.model,
        input_tokens=response.input_tokens,
        output_tokens=response.output_tokens,
        cache_read_tokens=response.cache_read_tokens,
        cache_creation_tokens=response.cache_write_tokens,
        cost_usd=response.cost_usd,
        duration_ms=duration_ms,
        exit_code=exit_code,
    )


def _normalize_plain_text(
    response: PlainTextResponse,
    *,
    duration_ms: int,
    exit_code: int,
) -> GenerationResult:
    return GenerationResult(
        text=response.text,
        model=response.model,
        input_tokens=0,
        output_tokens=0,
        cache_read_tokens=0,
        cache_creation_tokens=0,
        cost_usd=None,
        duration_ms=duration_ms,
        exit_code=exit_code,
    )


def parse_claude_output(stdout: str) -> ClaudeResponse:
    """Parse Claude CLI output in JSON-array, NDJSON, or single-object form."""

    payload = _find_claude_result(stdout)
    if payload is None:
        raise BackendRunError(
            "No JSON result object found in Claude CLI output. "
            f"Raw output (first {_RAW_PREVIEW_CHARS} chars): {stdout[:_RAW_PREVIEW_CHARS]}",
            kind=FailureKind.PARSE_ERROR,
        )
    result = payload.get("result")
    usage = payload.get("usage")
    if not isinstance(result, str) or not isinstance(usage, dict):
        raise BackendRunError(
            "Claude CLI result object is missing 'result' or 'usage'.",
            kind=FailureKind.PARSE_ERROR,
        )
    model_usage = payload.get("modelUsage")
    model = next(iter(model_usage), "unknown") if isinstance(model_usage, dict) else "unknown"
    cost = payload.get("total_cost_usd")
    return ClaudeResponse(
        result=result,
        model=model,
        input_tokens=_as_int(usage.get("input_tokens")),
        output_tokens=_as_int(usage.get("output_tokens")),
        cache_read_tokens=_as_int(usage.get("cache_read_input_tokens")),
        cache_creation_tokens=_as_int(usage.get("cache_creation_input_tokens")),
        total_cost_usd=float(cost) if isinstance(cost, int | float) else None,
        is_error=bool(payload.get("is_error", False)),
    )


def parse_codex_output(stdout: str) -> CodexResponse | PlainTextResponse:
    """Collect assistant text and usage from Codex JSONL events.

    Output without any JSON lines is taken verbatim as a plain-text answer.
    """

    trimmed = stdout.strip()
    if not trimmed:
        raise BackendRunError("Empty Codex CLI output", kind=FailureKind.PARSE_ERROR)

    text_parts: list[str] = []
    model = "unknown"
    event_count = 0
    input_tokens = cached_input_tokens = output_tokens = 0
    for event in _iter_json_lines(trimmed):
        event_count += 1
        if not isinstance(event, dict):
            text_parts.extend(_collect_text(event))
            continue
        event_type = str(event.get("type") or "")
        if (
            event_type in _CODEX_SKIPPED_EVENT_TYPES
            or event_type.endswith(".error")
            or event_type.endswith(".failed")
        ):
            continue
        if isinstance(event.get("model"), str) and event["model"]:
            model = event["model"]
        usage = event.get("usage")
        if event_type == "turn.completed" and isinstance(usage, dict):
            input_tokens += _as_int(usage.get("input_tokens"))
            cached_input_tokens += _as_int(usage.get("cached_input_tokens"))
            output_tokens += _as_int(usage.get("output_tokens"))
            continue
        text_parts.extend(_collect_text(event))

    text = "\n".join(dict.fromkeys(text_parts)).strip()
    if event_count > 0 and text:
        return CodexResponse(
            text=text,
            model=model,
            input_tokens=input_tokens,
            cached_input_tokens=cached_input_tokens,
            output_tokens=output_tokens,
            event_count=event_count,
        )
    if event_count == 0:
        return PlainTextResponse(text=trimmed, model=model)
    raise BackendRunError(
        "Failed to extract assistant text from Codex CLI output",
        kind=FailureKind.PARSE_ERROR,
    )


def parse_gemini_output(stdout: str) -> GeminiResponse:
    """Parse the Gemini CLI JSON object, tolerating a non-JSON preamble."""

    start = stdout.find("{")
    if start < 0:
        raise BackendRunError(
            "No JSON object found in Gemini CLI output. "
            f"Raw output (first {_RAW_PREVIEW_CHARS} chars): {stdout[:_RAW_PREVIEW_CHARS]}",
            kind=FailureKind.PARSE_ERROR,
        )
    try:
        payload = json.loads(stdout[start:])
    except json.JSONDecodeError as error:
        raise BackendRunError(
            f"Failed to parse Gemini response: {error}",
            kind=FailureKind.PARSE_ERROR,
        ) from error

    response = payload.get("response") if isinstance(payload, dict) else None
    if not isinstance(response, str) or not response.strip():
        raise BackendRunError(
            "Empty response from Gemini CLI. "
            f"Raw output (first {_RAW_PREVIEW_CHARS} chars): {stdout[:_RAW_PREVIEW_CHARS]}",
            kind=FailureKind.PARSE_ERROR,
        )

    model = "unknown"
    prompt_tokens = response_tokens = 0
    stats = payload.get("stats")
    models = stats.get("models") if isinstance(stats, dict) else None
    if isinstance(models, dict):
        for name, data in models.items():
            if model == "unknown":
                model = str(name)
            tokens = data.get("tokens") if isinstance(data, dict) else None
            if isinstance(tokens, dict):
                prompt_tokens += _as_int(tokens.get("prompt"))
                response_tokens += _as_int(tokens.get("response"))
    return GeminiResponse(
        response=response,
        model=model,
        prompt_tokens=prompt_tokens,
        response_tokens=response_tokens,
    )


def parse_opencode_output(stdout: str) -> OpenCodeResponse:
    """Join ``text`` parts and sum ``step_finish`` usage from OpenCode JSONL events."""

    text_parts: list[str] = []
    model = "unknown"
    input_tokens = output_tokens = cache_read = cache_write = 0
    cost: float | None = None
    error: str | None = None
    for event in _iter_json_lines(stdout):
        if not isinstance(event, dict):
            continue
        event_type = event.get("type")
        if event_type == "error":
            error = _error_text(event.get("error", event))
            continue
        part = event.get("part")
        if not isinstance(part, dict):
            continue
        if isinstance(part.get("modelID"), str) and part["modelID"]:
            model = part["modelID"]
        if event_type == "text" and isinstance(part.get("text"), str):
            text_parts.append(part["text"])
        elif event_type == "step_finish":
            tokens = part.get("tokens")
            if isinstance(tokens, dict):
                input_tokens += _as_int(tokens.get("input"))
                output_tokens += _as_int(tokens.get("output"))
                cache = tokens.get("cache")
                if isinstance(cache, dict):
                    cache_read += _as_int(cache.get("read"))
                    cache_write += _as_int(cache.get("write"))
            step_cost = part.get("cost")
            if isinstance(step_cost, int | float) and not isinstance(step_cost, bool):
                cost = (cost or 0.0) + float(step_cost)

    text = "".join(text_parts).strip()
    if not (text or error):
        raise BackendRunError(
            "No assistant text found in OpenCode output. "
            f"Raw output (first {_RAW_PREVIEW_CHARS} chars): {stdout[:_RAW_PREVIEW_CHARS]}",
            kind=FailureKind.PARSE_ERROR,
        )
    return OpenCodeResponse(
        text=text,
        model=model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cache_read_tokens=cache_read,
        cache_write_tokens=cache_write,
        cost_usd=cost,
        error=error,
    )


def reported_error(response: BackendResponse) -> str | None:
    """Error text a backend reported inside otherwise well-formed output."""

    if isinstance(response, ClaudeResponse) and response.is_error:
        return response.result
    if isinstance(response, OpenCodeResponse):
        return response.error
    return None


def _find_claude_result(stdout: str) -> dict[str, Any] | None:
    trimmed = stdout.strip()
    if trimmed.startswith("["):
        try:
            items = json.loads(trimmed)
        except json.JSONDecodeError:
            items = None
        if isinstance(items, list):
            for item in items:
                if isinstance(item, dict) and item.get("type") == "result":
                    return item

    for item in _iter_json_lines(trimmed):
        if isinstance(item, dict) and item.get("type") == "result":
            return item

    start = trimmed.find("{")
    if start >= 0:
        try:
            item = json.loads(trimmed[start:])
        except json.JSONDecodeError:
            return None
        if isinstance(item, dict) and item.get("type") == "result":
            return item
    return None


def _iter_json_lines(text: str) -> Iterator[Any]:
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line.startswith(("{", "[")):
            continue
        try:
            yield json.loads(line)
        except json.JSONDecodeError:
            continue


def _collect_text(value: Any) -> list[str]:
    if isinstance(value, list):
        return [text for item in value for text in _collect_text(item)]
    if not isinstance(value, dict):
        return []
    collected: list[str] = []
    text = value.get("text")
    if isinstance(text, str) and text.strip():
        collected.append(text.strip())
    for key, nested in value.items():
        if key != "text":
            collected.extend(_collect_text(nested))
    return collected


def _error_text(value: object) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        data = value.get("data")
        if isinstance(data, dict) and isinstance(data.get("message"), str):
            return data["message"]
        if isinstance(value.get("message"), str):
            return value["message"]
    return json.dumps(value)[:_RAW_PREVIEW_CHARS]


def _as_int(value: object) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int | float):
        return int(value)
    return 0
