"""Running tasks on a fixed number of worker threads."""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from typing import Callable, Sequence

Task = Callable[[], object]


def _describe(error: BaseException) -> str:
    parts = [str(error)]
    cause = error.__cause__
    while cause is not None:
        parts.append(str(cause))
        cause = cause.__cause__
    return ": ".join(parts)


class MultiError(Exception):
    """Several errors collected from parallel tasks."""

    def __init__(self, errors: Sequence[BaseException]) -> None:
        self.errors = list(errors)
        super().__init__(", ".join(_describe(e) for e in self.errors))


@dataclass(frozen=True)
class Pool:
    """A pool of `count` worker threads."""

    count: int

    def parallel_do(self, *args: Task) -> None:
        """Run the tasks in parallel on the pool's workers.

        A worker stops taking tasks after one of its tasks raises; tasks
        already running are waited for. Raises MultiError with every
        collected error.
        """
        jobs: "queue.Queue[Task]" = queue.Queue()
        for task in args:
            jobs.put(task)

        errors: list[BaseException] = []
        lock = threading.Lock()

        def worker() -> None:
            while True:
                try:
                    task = jobs.get_nowait()
                except queue.Empty:
                    return
                try:
                    task()
                except Exception as exc:  # noqa: BLE001 - collected and re-raised
                    with lock:
                        errors.append(exc)
                    return

        threads = [threading.Thread(target=worker, daemon=True) for _ in range(max(self.count, 0))]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        if errors:
            raise MultiError(errors)