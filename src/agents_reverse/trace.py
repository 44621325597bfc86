"""NDJSON run trace written through the single writer."""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from agents_reverse.writer import SerialWriter

logger = logging.getLogger(__name__)

TRACE_FILE_PREFIX = "trace-"


class Tracer(Protocol):
    """Sink for structured run events."""

    def emit(self, event_type: str, **fields: Any) -> None:
        """Record one event."""


class NullTracer:
    """Tracer that drops every event."""

    def emit(self, event_type: str, **fields: Any) -> None:
        return None


class TraceWriter:
    """Append trace events to one NDJSON file per run."""

    def __init__(self, path: Path, *, writer: SerialWriter) -> None:
        self.path = path
        self._writer = writer
        self._seq = 0
        self._lock = threading.Lock()
        self._pid = os.getpid()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch(exist_ok=True)

    def emit(self, event_type: str, **fields: Any) -> None:
        with self._lock:
            self._seq += 1
            seq = self._seq
        payload = {
            "seq": seq,
            "type": event_type,
            "ts": datetime.now(tz=UTC).isoformat(),
            "pid": self._pid,
            **fields,
        }
        line = json.dumps(payload, ensure_ascii=False, default=str) + "\n"
        self._writer.submit(lambda: _append_line(self.path, line))


def open_trace(traces_dir: Path, *, writer: SerialWriter, keep_runs: int) -> TraceWriter:
    """Create a trace file for the current run and prune old ones."""

    stamp = datetime.now(tz=UTC).strftime("%Y%m%dT%H%M%S%fZ")
    tracer = TraceWriter(traces_dir / f"{TRACE_FILE_PREFIX}{stamp}.ndjson", writer=writer)
    prune_traces(traces_dir, keep_runs=keep_runs)
    return tracer


def prune_traces(traces_dir: Path, *, keep_runs: int) -> list[Path]:
    """Delete the oldest trace files beyond ``keep_runs``."""

    if not traces_dir.is_dir():
        return []
    traces = sorted(traces_dir.glob(f"{TRACE_FILE_PREFIX}*.ndjson"), key=lambda item: item.name)
    stale = traces[: max(0, len(traces) - keep_runs)]
    for path in stale:
        try:
            path.unlink()
        except OSError:
            logger.warning("Could not remove old trace %s", path, exc_info=True)
    return stale


def _append_line(path: Path, line: str) -> None:
    with path.open("a", encoding="utf-8") as handle:
        handle.write(line)
