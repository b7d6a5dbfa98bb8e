from __future__ import annotations

import time
from typing import Callable

from catalogclone.jobs.service import CloneJobService
from catalogclone.jobs.types import CloneJobStatusView


class JobStatusPoller:
    """Reads a clone job's status on a fixed interval until it settles."""

    def __init__(
        self,
        jobs: CloneJobService,
        *,
        interval_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")
        self._jobs = jobs
        self._interval_seconds = interval_seconds
        self._sleep = sleep

    def get_status(self, job_id: str) -> CloneJobStatusView | None:
        # A missing row means the job was not recorded yet, not an error.
        return self._jobs.get_status(job_id)

    def poll(
        self,
        job_id: str,
        *,
        on_update: Callable[[CloneJobStatusView | None], None] | None = None,
        max_polls: int | None = None,
    ) -> CloneJobStatusView | None:
        polls = 0
        while True:
            status = self.get_status(job_id)
            polls += 1
            if on_update is not None:
                on_update(status)
            if status is not None and status.is_terminal:
                return status
            if max_polls is not None and polls >= max_polls:
                return status
            self._sleep(self._interval_seconds)
