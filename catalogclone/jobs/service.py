from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session, sessionmaker

from catalogclone.core.config import Settings
from catalogclone.db.models import CloneJob, CloneJobStatus
from catalogclone.jobs.types import CloneJobSnapshot, CloneJobStatusView, progress_percent

logger = logging.getLogger(__name__)


class JobNotFoundError(RuntimeError):
    pass


class InvalidJobStateError(RuntimeError):
    pass


class JobConflictError(RuntimeError):
    pass


@dataclass(frozen=True)
class JobListResult:
    items: list[CloneJobSnapshot]
    next_cursor: str | None


ALLOWED_TRANSITIONS: dict[CloneJobStatus, set[CloneJobStatus]] = {
    CloneJobStatus.PENDING: {CloneJobStatus.PROCESSING, CloneJobStatus.COMPLETED, CloneJobStatus.FAILED},
    CloneJobStatus.PROCESSING: {CloneJobStatus.COMPLETED, CloneJobStatus.FAILED},
    CloneJobStatus.COMPLETED: set(),
    CloneJobStatus.FAILED: set(),
}

_UPDATABLE_FIELDS = {"status", "processed_count", "error_message"}
_PROGRESS_CAS_ATTEMPTS = 3


class CloneJobService:
    """Durable record of clone runs; the only state shared across batches.

    No row locks are taken. Progress writes are compare-and-swap updates keyed
    on the expected ``processed_count`` so an overlapping writer is detected
    instead of silently overwriting a concurrent increment.
    """

    def __init__(self, settings: Settings, session_factory: sessionmaker[Session]):
        self._settings = settings
        self._session_factory = session_factory

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def _coerce_utc(self, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def _enforce_transition(self, from_status: CloneJobStatus, to_status: CloneJobStatus) -> None:
        if to_status not in ALLOWED_TRANSITIONS[from_status]:
            raise InvalidJobStateError(f"Illegal transition: {from_status.value} -> {to_status.value}")

    def _load(self, session: Session, job_id: str) -> CloneJob:
        job = session.get(CloneJob, job_id)
        if job is None:
            raise JobNotFoundError(f"Clone job not found: {job_id}")
        return job

    def _apply_status(self, job: CloneJob, status: CloneJobStatus, now: datetime) -> None:
        if job.status == status:
            return
        self._enforce_transition(job.status, status)
        job.status = status
        job.completed_at = now if status == CloneJobStatus.COMPLETED else None

    def create_job(self, *, source_account_id: str, target_account_id: str, total_items: int) -> CloneJobSnapshot:
        if total_items < 0:
            raise ValueError("total_items must be >= 0")

        now = self._now()
        deadline_at = None
        if self._settings.clone_job_deadline_seconds is not None:
            deadline_at = now + timedelta(seconds=self._settings.clone_job_deadline_seconds)

        with self._session_factory() as session:
            job = CloneJob(
                id=str(uuid4()),
                source_account_id=source_account_id,
                target_account_id=target_account_id,
                status=CloneJobStatus.PENDING,
                total_items=total_items,
                processed_count=0,
                deadline_at=deadline_at,
                created_at=now,
                updated_at=now,
            )
            session.add(job)
            session.commit()
            session.refresh(job)
            return self._to_snapshot(job)

    def get_job(self, job_id: str) -> CloneJobSnapshot | None:
        with self._session_factory() as session:
            job = session.get(CloneJob, job_id)
            return None if job is None else self._to_snapshot(job)

    def require_job(self, job_id: str) -> CloneJobSnapshot:
        snapshot = self.get_job(job_id)
        if snapshot is None:
            raise JobNotFoundError(f"Clone job not found: {job_id}")
        return snapshot

    def update_job(self, job_id: str, **fields: Any) -> CloneJobSnapshot:
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported clone job fields: {sorted(unknown)}")

        with self._session_factory() as session:
            job = self._load(session, job_id)
            now = self._now()

            if "processed_count" in fields:
                processed_count = int(fields["processed_count"])
                if processed_count < job.processed_count:
                    raise InvalidJobStateError("processed_count cannot decrease")
                job.processed_count = min(processed_count, job.total_items)
            if "error_message" in fields:
                job.error_message = fields["error_message"]
            if "status" in fields:
                self._apply_status(job, CloneJobStatus(fields["status"]), now)

            job.updated_at = now
            session.commit()
            session.refresh(job)
            return self._to_snapshot(job)

    def mark_processing(self, job_id: str) -> CloneJobSnapshot:
        return self.update_job(job_id, status=CloneJobStatus.PROCESSING)

    def mark_completed(self, job_id: str) -> CloneJobSnapshot:
        return self.update_job(job_id, status=CloneJobStatus.COMPLETED)

    def mark_failed(self, job_id: str, error_message: str) -> CloneJobSnapshot:
        return self.update_job(job_id, status=CloneJobStatus.FAILED, error_message=error_message)

    def advance_progress(self, job_id: str, delta: int, *, session: Session, complete: bool = False) -> int:
        """Add ``delta`` to ``processed_count`` inside the caller's transaction.

        Moves the job to ``processing``, or to ``completed`` when ``complete``
        is set, and returns the new count. The caller commits.
        """
        if delta < 0:
            raise ValueError("delta must be >= 0")

        for _ in range(_PROGRESS_CAS_ATTEMPTS):
            row = session.execute(
                select(CloneJob.status, CloneJob.processed_count, CloneJob.total_items).where(CloneJob.id == job_id)
            ).one_or_none()
            if row is None:
                raise JobNotFoundError(f"Clone job not found: {job_id}")
            status, expected, total_items = row
            if status not in (CloneJobStatus.PENDING, CloneJobStatus.PROCESSING):
                raise InvalidJobStateError(f"Clone job {job_id} is already {status.value}")

            new_count = min(expected + delta, total_items)
            now = self._now()
            values: dict[str, Any] = {"processed_count": new_count, "updated_at": now}
            if complete:
                values.update(status=CloneJobStatus.COMPLETED, completed_at=now)
            else:
                values.update(status=CloneJobStatus.PROCESSING)
            result = session.execute(
                update(CloneJob)
                .where(
                    CloneJob.id == job_id,
                    CloneJob.processed_count == expected,
                    CloneJob.status.in_((CloneJobStatus.PENDING, CloneJobStatus.PROCESSING)),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return new_count
            logger.warning("Clone job %s progress changed concurrently; retrying", job_id)

        raise JobConflictError(f"Could not record progress for clone job {job_id}")

    def is_past_deadline(self, snapshot: CloneJobSnapshot) -> bool:
        deadline_at = self._coerce_utc(snapshot.deadline_at)
        return deadline_at is not None and deadline_at <= self._now()

    def list_jobs(self, *, limit: int | None = None, cursor: str | None = None) -> JobListResult:
        requested = self._settings.default_page_size if limit is None else limit
        bounded_limit = max(1, min(requested, self._settings.max_page_size))
        with self._session_factory() as session:
            stmt = select(CloneJob).order_by(CloneJob.created_at.desc(), CloneJob.id.desc()).limit(bounded_limit + 1)
            if cursor:
                anchor_exists = session.scalar(select(CloneJob.id).where(CloneJob.id == cursor))
                if anchor_exists is None:
                    raise ValueError(f"Invalid pagination cursor: {cursor}")
                anchor_created_at = select(CloneJob.created_at).where(CloneJob.id == cursor).scalar_subquery()
                stmt = stmt.where(
                    or_(
                        CloneJob.created_at < anchor_created_at,
                        and_(CloneJob.created_at == anchor_created_at, CloneJob.id < cursor),
                    )
                )
            rows = list(session.scalars(stmt).all())
            items = rows[:bounded_limit]
            next_cursor = items[-1].id if len(rows) > bounded_limit and items else None
            return JobListResult(items=[self._to_snapshot(row) for row in items], next_cursor=next_cursor)

    def get_status(self, job_id: str) -> CloneJobStatusView | None:
        snapshot = self.get_job(job_id)
        if snapshot is None:
            return None
        return CloneJobStatusView(
            job_id=snapshot.id,
            status=snapshot.status,
            total_items=snapshot.total_items,
            processed_count=snapshot.processed_count,
            progress_percent=progress_percent(snapshot.processed_count, snapshot.total_items),
            error_message=snapshot.error_message,
            completed_at=snapshot.completed_at,
        )

    def _to_snapshot(self, job: CloneJob) -> CloneJobSnapshot:
        return CloneJobSnapshot(
            id=job.id,
            source_account_id=job.source_account_id,
            target_account_id=job.target_account_id,
            status=job.status,
            total_items=job.total_items,
            processed_count=job.processed_count,
            error_message=job.error_message,
            deadline_at=job.deadline_at,
            created_at=job.created_at,
            updated_at=job.updated_at,
            completed_at=job.completed_at,
        )


def snapshot_to_dict(snapshot: CloneJobSnapshot) -> dict[str, Any]:
    return {
        "id": snapshot.id,
        "source_account_id": snapshot.source_account_id,
        "target_account_id": snapshot.target_account_id,
        "status": snapshot.status.value,
        "total_items": snapshot.total_items,
        "processed_count": snapshot.processed_count,
        "error_message": snapshot.error_message,
        "deadline_at": snapshot.deadline_at,
        "created_at": snapshot.created_at,
        "updated_at": snapshot.updated_at,
        "completed_at": snapshot.completed_at,
    }


def status_view_to_dict(view: CloneJobStatusView) -> dict[str, Any]:
    return {
        "job_id": view.job_id,
        "status": view.status.value,
        "total_items": view.total_items,
        "processed_count": view.processed_count,
        "progress_percent": view.progress_percent,
        "error_message": view.error_message,
        "completed_at": view.completed_at,
    }
