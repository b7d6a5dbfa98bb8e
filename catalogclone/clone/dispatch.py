from __future__ import annotations

import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Callable

logger = logging.getLogger(__name__)


class ContinuationSchedulingError(RuntimeError):
    pass


class BatchDispatcher:
    """Launches queued clone batches without waiting for them.

    With an executor, each ``schedule()`` submits one run of the attached
    runner. The threaded variant uses a single worker thread, so scheduled
    batches execute strictly one after another. Without an executor,
    ``schedule()`` is a no-op and queued batches wait for an external queue
    worker.
    """

    def __init__(self, executor: Executor | None = None):
        self._executor = executor
        self._runner: Callable[[], object] | None = None

    @classmethod
    def threaded(cls) -> "BatchDispatcher":
        return cls(ThreadPoolExecutor(max_workers=1, thread_name_prefix="clone-batch"))

    @property
    def is_background(self) -> bool:
        return self._executor is not None

    def attach(self, runner: Callable[[], object]) -> None:
        self._runner = runner

    def schedule(self) -> Future[None] | None:
        if self._executor is None:
            return None
        if self._runner is None:
            raise ContinuationSchedulingError("No batch runner attached to dispatcher")
        try:
            return self._executor.submit(self._run)
        except RuntimeError as exc:
            raise ContinuationSchedulingError(f"Could not schedule clone batch: {exc}") from exc

    def _run(self) -> None:
        runner = self._runner
        if runner is None:
            return
        try:
            runner()
        except Exception:
            logger.exception("Background clone batch failed")

    def shutdown(self, *, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
