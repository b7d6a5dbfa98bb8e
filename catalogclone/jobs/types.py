from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from catalogclone.db.models import CloneJobStatus

TERMINAL_STATUSES = frozenset({CloneJobStatus.COMPLETED, CloneJobStatus.FAILED})


@dataclass(slots=True)
class CloneJobSnapshot:
    id: str
    source_account_id: str
    target_account_id: str
    status: CloneJobStatus
    total_items: int
    processed_count: int
    error_message: str | None
    deadline_at: datetime | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True, slots=True)
class CloneJobStatusView:
    """What a polling client sees for one job."""

    job_id: str
    status: CloneJobStatus
    total_items: int
    processed_count: int
    progress_percent: int
    error_message: str | None
    completed_at: datetime | None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


def progress_percent(processed_count: int, total_items: int) -> int:
    if total_items <= 0:
        return 0
    return round(processed_count / total_items * 100)
