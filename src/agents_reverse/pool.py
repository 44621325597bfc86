"""Bounded worker pool with a shared task cursor."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

from agents_reverse.trace import NullTracer, Tracer

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class TaskResult(Generic[T]):
    """Outcome of one pool task, positioned by its input index."""

    index: int
    success: bool
    value: T | None = None
    error: BaseException | None = None


class _Cursor:
    def __init__(self, size: int) -> None:
        self._size = size
        self._next = 0
        self._lock = threading.Lock()
        self.aborted = False

    def take(self) -> int | None:
        with self._lock:
            if self.aborted or self._next >= self._size:
                return None
            index = self._next
            self._next += 1
            return index

    def abort(self) -> None:
        with self._lock:
            self.aborted = True


def run_pool(  # noqa: PLR0913
    tasks: Sequence[Callable[[], T]],
    *,
    concurrency: int,
    fail_fast: bool = False,
    on_complete: Callable[[TaskResult[T]], None] | None = None,
    tracer: Tracer | None = None,
    phase: str = "pool",
) -> list[TaskResult[T] | None]:
    """Run task factories on ``min(concurrency, len(tasks))`` threads.

    Each worker takes the next pending index as soon as it is idle, so a slow
    task never holds back its neighbours. With ``fail_fast`` the first failure
    stops workers from picking up new tasks; in-flight tasks still finish and
    slots that were never started stay ``None``.
    """

    if concurrency < 1:
        raise ValueError("concurrency must be >= 1")

    sink = tracer or NullTracer()
    results: list[TaskResult[T] | None] = [None] * len(tasks)
    cursor = _Cursor(len(tasks))
    worker_count = min(concurrency, len(tasks))

    def _worker(worker_id: int) -> None:
        sink.emit("worker:start", phase=phase, worker_id=worker_id)
        completed = 0
        while True:
            index = cursor.take()
            if index is None:
                break
            sink.emit("task:pickup", phase=phase, worker_id=worker_id, task_index=index)
            try:
                result = TaskResult(index=index, success=True, value=tasks[index]())
            except Exception as error:  # noqa: BLE001
                result = TaskResult(index=index, success=False, error=error)
                if fail_fast:
                    cursor.abort()
            results[index] = result
            completed += 1
            sink.emit(
                "task:done",
                phase=phase,
                worker_id=worker_id,
                task_index=index,
                success=result.success,
            )
            if on_complete is not None:
                try:
                    on_complete(result)
                except Exception:  # noqa: BLE001
                    logger.warning("on_complete callback failed for task %d", index, exc_info=True)
        sink.emit("worker:end", phase=phase, worker_id=worker_id, tasks_completed=completed)

    threads = [
        threading.Thread(target=_worker, args=(worker_id,), name=f"{phase}-worker-{worker_id}")
        for worker_id in range(worker_count)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return results
