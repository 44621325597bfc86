"""Local deterministic agent that mimics the supported CLI output formats.

Used by integration tests in place of a real LLM CLI:

    python -m agents_reverse.backend.echo_agent --format claude
"""

from __future__ import annotations

import argparse
import json
import signal
import sys
import time
from collections.abc import Callable
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Read the prompt, optionally misbehave, and print a formatted reply."""

    parser = argparse.ArgumentParser(add_help=False, allow_abbrev=False)
    parser.add_argument(
        "--format",
        choices=("claude", "codex", "gemini", "opencode", "json", "text"),
        default="claude",
    )
    parser.add_argument("-p", dest="inline_prompt", nargs="?", const="", default=None)
    parser.add_argument("--reply", default=None)
    parser.add_argument("--error-reply", action="store_true")
    parser.add_argument("--model", dest="model", default=None)
    parser.add_argument("--sleep", type=float, default=0.0)
    parser.add_argument("--ignore-sigterm", action="store_true")
    parser.add_argument("--signal-file", default=None)
    parser.add_argument("--fail-message", default="")
    parser.add_argument("--exit-code", type=int, default=1)
    parser.add_argument("--fail-times", type=int, default=-1)
    parser.add_argument("--fail-on", default=None)
    parser.add_argument("--calls-file", default=None)
    args, _unknown = parser.parse_known_args(argv)

    prompt = sys.stdin.read() if not sys.stdin.isatty() else ""
    if not prompt.strip() and args.inline_prompt:
        prompt = args.inline_prompt

    call_number = _record_call(args.calls_file, prompt)

    if args.signal_file is not None:
        signal.signal(
            signal.SIGTERM,
            _sigterm_recorder(Path(args.signal_file), keep_running=args.ignore_sigterm),
        )
    elif args.ignore_sigterm:
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
    if args.sleep > 0:
        time.sleep(args.sleep)

    if args.fail_message and _should_fail(args, prompt=prompt, call_number=call_number):
        sys.stderr.write(args.fail_message + "\n")
        return args.exit_code

    reply = args.reply or _default_reply(prompt)
    rendered = _render(
        args.format,
        reply=reply,
        model=args.model or "echo-model",
        is_error=args.error_reply,
    )
    sys.stdout.write(rendered)
    return 0


def _should_fail(args: argparse.Namespace, *, prompt: str, call_number: int) -> bool:
    if args.fail_on is not None:
        return args.fail_on in prompt
    if args.fail_times >= 0:
        return call_number <= args.fail_times
    return True


def _sigterm_recorder(path: Path, *, keep_running: bool) -> Callable[[int, object], None]:
    """SIGTERM handler writing the wall-clock arrival time to ``path``."""

    def _handler(signum: int, _frame: object) -> None:
        path.write_text(f"{time.time()}\n", encoding="utf-8")
        if not keep_running:
            sys.exit(128 + signum)

    return _handler


def _record_call(calls_file: str | None, prompt: str) -> int:
    if calls_file is None:
        return 1
    path = Path(calls_file)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps({"prompt_head": prompt[:80]}) + "\n")
    return len(path.read_text(encoding="utf-8").splitlines())


def _default_reply(prompt: str) -> str:
    for line in prompt.splitlines():
        if line.strip():
            return f"Echo summary: {line.strip()}"
    return "Echo summary: (empty prompt)"


def _render(output_format: str, *, reply: str, model: str, is_error: bool = False) -> str:
    if output_format == "claude":
        payload = {
            "type": "result",
            "subtype": "success",
            "is_error": is_error,
            "result": reply,
            "total_cost_usd": 0.001,
            "usage": {
                "input_tokens": 120,
                "output_tokens": 40,
                "cache_read_input_tokens": 0,
                "cache_creation_input_tokens": 0,
            },
            "modelUsage": {model: {"inputTokens": 120, "outputTokens": 40}},
        }
        return json.dumps(payload) + "\n"
    if output_format == "codex":
        events = [
            {"type": "thread.started", "thread_id": "echo"},
            {"type": "item.completed", "item": {"type": "agent_message", "text": reply}},
            {
                "type": "turn.completed",
                "usage": {"input_tokens": 120, "cached_input_tokens": 0, "output_tokens": 40},
            },
        ]
        return "".join(json.dumps(event) + "\n" for event in events)
    if output_format in {"opencode", "json"}:
        return _render_opencode(reply=reply, is_error=is_error)
    if output_format == "gemini":
        payload = {
            "response": reply,
            "stats": {"models": {model: {"tokens": {"prompt": 120, "response": 40}}}},
        }
        return json.dumps(payload) + "\n"
    return reply + "\n"


def _render_opencode(*, reply: str, is_error: bool) -> str:
    if is_error:
        events = [{"type": "error", "error": {"name": "APIError", "data": {"message": reply}}}]
    else:
        events = [
            {"type": "step_start", "part": {"type": "step-start"}},
            {"type": "text", "part": {"type": "text", "text": reply}},
            {
                "type": "step_finish",
                "part": {
                    "type": "step-finish",
                    "cost": 0.001,
                    "tokens": {"input": 120, "output": 40, "cache": {"read": 0, "write": 0}},
                },
            },
        ]
    return "".join(json.dumps(event) + "\n" for event in events)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
