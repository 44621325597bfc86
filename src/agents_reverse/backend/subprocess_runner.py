"""Subprocess runner with timeout escalation for CLI backends."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import tempfile
import time
from typing import IO

from agents_reverse.backend.base import BackendRunError, BackendRunRequest, SubprocessResult
from agents_reverse.models import FailureKind

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
MAX_OUTPUT_BYTES = 10 * 1024 * 1024

_USE_PROCESS_GROUP = os.name != "nt"


def run_subprocess(request: BackendRunRequest) -> SubprocessResult:
    """Run one CLI invocation, feeding ``stdin_text`` and capturing output.

    On timeout the process group receives SIGTERM, then SIGKILL once
    ``grace_seconds`` pass without exit. A missing executable raises
    ``BackendRunError`` with ``CLI_NOT_FOUND``.
    """

    command_head = request.args[0] if request.args else "<empty>"
    with (
        tempfile.TemporaryFile() as stdin_handle,
        tempfile.TemporaryFile() as stdout_handle,
        tempfile.TemporaryFile() as stderr_handle,
    ):
        stdin_handle.write(request.stdin_text.encode("utf-8"))
        stdin_handle.seek(0)
        start_monotonic = time.monotonic()
        try:
            process = subprocess.Popen(  # noqa: S603
                request.args,
                stdin=stdin_handle,
                stdout=stdout_handle,
                stderr=stderr_handle,
                cwd=request.cwd,
                env=request.env,
                start_new_session=_USE_PROCESS_GROUP,
            )
        except FileNotFoundError as error:
            raise BackendRunError(
                f"CLI backend command not found: {command_head}",
                kind=FailureKind.CLI_NOT_FOUND,
            ) from error
        except OSError as error:
            raise BackendRunError(
                f"CLI backend failed to start: {error}",
                kind=FailureKind.SUBPROCESS_ERROR,
            ) from error

        if request.on_spawn is not None:
            request.on_spawn(process.pid)

        timed_out = False
        signals_sent: tuple[str, ...] = ()
        try:
            returncode = process.wait(timeout=request.timeout_seconds)
        except subprocess.TimeoutExpired:
            timed_out = True
            logger.warning(
                "CLI backend %s (pid=%d) timed out after %.1fs",
                command_head,
                process.pid,
                request.timeout_seconds,
            )
            signals_sent = _terminate_process(process, grace_seconds=request.grace_seconds)
            returncode = TIMEOUT_EXIT_CODE

        duration_ms = int((time.monotonic() - start_monotonic) * 1000)
        return SubprocessResult(
            stdout=_read_capped(stdout_handle),
            stderr=_read_capped(stderr_handle),
            exit_code=returncode,
            duration_ms=duration_ms,
            timed_out=timed_out,
            pid=process.pid,
            signals_sent=signals_sent,
        )


def _terminate_process(
    process: subprocess.Popen[bytes],
    *,
    grace_seconds: float,
) -> tuple[str, ...]:
    sent = ["SIGTERM"]
    _send_signal(process, signal.SIGTERM)
    try:
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        sent.append("SIGKILL")
        force_signal = getattr(signal, "SIGKILL", None)
        if force_signal is None:
            _kill_single(process)
        else:
            _send_signal(process, force_signal)
        process.wait()
    return tuple(sent)


def _send_signal(process: subprocess.Popen[bytes], sig: signal.Signals) -> None:
    if _USE_PROCESS_GROUP:
        try:
            os.killpg(process.pid, sig)
        except ProcessLookupError:
            return
        except OSError:
            logger.debug("killpg failed for pid=%d, signalling process only", process.pid)
        else:
            return
    try:
        process.send_signal(sig)
    except ProcessLookupError:
        return


def _kill_single(process: subprocess.Popen[bytes]) -> None:
    try:
        process.kill()
    except OSError:
        return


def _read_capped(handle: IO[bytes]) -> str:
    handle.seek(0)
    data = handle.read(MAX_OUTPUT_BYTES)
    return data.decode("utf-8", errors="replace")
