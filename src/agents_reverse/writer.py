"""Single-writer thread that serializes appends from concurrent workers."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)

_STOP = object()


class SerialWriter:
    """Run submitted write jobs one at a time, in submission order.

    Workers never block on the write itself: ``submit`` only enqueues. A job
    that raises is logged and dropped so losing one trace line or state row
    never fails the task that produced it.
    """

    def __init__(self, *, name: str = "serial-writer") -> None:
        self._queue: queue.Queue[Callable[[], None] | object] = queue.Queue()
        self._thread = threading.Thread(target=self._drain, daemon=True, name=name)
        self._closed = False
        self._lock = threading.Lock()
        self.failed_jobs = 0
        self._thread.start()

    def submit(self, job: Callable[[], None]) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("SerialWriter is closed.")
            self._queue.put(job)

    def flush(self) -> None:
        """Block until every job submitted so far has run."""

        self._queue.join()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_STOP)
        self._thread.join()

    def __enter__(self) -> SerialWriter:
        return self

    def __exit__(self, *_exc_info: object) -> None:
        self.close()

    def _drain(self) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is _STOP:
                    return
                job()  # type: ignore[operator]
            except Exception:  # noqa: BLE001
                self.failed_jobs += 1
                logger.warning("Serialized write failed", exc_info=True)
            finally:
                self._queue.task_done()
