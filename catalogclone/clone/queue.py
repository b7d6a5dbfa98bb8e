from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import ColumnElement, and_, exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased, sessionmaker

from catalogclone.clone.types import CloneBatchSnapshot
from catalogclone.db.models import CloneBatch, CloneBatchStatus

logger = logging.getLogger(__name__)


class BatchInProgressError(RuntimeError):
    pass


class BatchQueue:
    """Durable queue of clone batches, one row per ``(job_id, offset)``.

    A batch is claimed by flipping ``pending`` to ``running`` with a
    conditional update, and never while another batch of the same job is
    running, so one job is only ever advanced by one worker at a time.
    A running claim older than ``claim_ttl_seconds`` belongs to a dead
    worker and may be claimed again.
    """

    def __init__(self, session_factory: sessionmaker[Session], *, claim_ttl_seconds: int = 900):
        if claim_ttl_seconds < 1:
            raise ValueError("claim_ttl_seconds must be >= 1")
        self._session_factory = session_factory
        self._claim_ttl = timedelta(seconds=claim_ttl_seconds)

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def enqueue(
        self,
        *,
        job_id: str,
        source_account_id: str,
        target_account_id: str,
        offset: int,
        limit: int,
        session: Session | None = None,
    ) -> CloneBatchSnapshot:
        """Queue a batch, returning the existing row if that offset is already queued."""
        if offset < 0:
            raise ValueError("offset must be >= 0")
        if limit < 1:
            raise ValueError("limit must be >= 1")

        if session is not None:
            return self._to_snapshot(
                self._get_or_add(session, job_id, source_account_id, target_account_id, offset, limit)
            )

        with self._session_factory() as local_session:
            try:
                batch = self._get_or_add(local_session, job_id, source_account_id, target_account_id, offset, limit)
                local_session.commit()
            except IntegrityError:
                local_session.rollback()
                existing = self._find(local_session, job_id, offset)
                if existing is None:
                    raise
                return self._to_snapshot(existing)
            local_session.refresh(batch)
            return self._to_snapshot(batch)

    def _find(self, session: Session, job_id: str, offset: int) -> CloneBatch | None:
        return session.scalar(select(CloneBatch).where(CloneBatch.job_id == job_id, CloneBatch.batch_offset == offset))

    def _get_or_add(
        self,
        session: Session,
        job_id: str,
        source_account_id: str,
        target_account_id: str,
        offset: int,
        limit: int,
    ) -> CloneBatch:
        existing = self._find(session, job_id, offset)
        if existing is not None:
            return existing
        batch = CloneBatch(
            job_id=job_id,
            source_account_id=source_account_id,
            target_account_id=target_account_id,
            batch_offset=offset,
            batch_limit=limit,
            status=CloneBatchStatus.PENDING,
            created_at=self._now(),
        )
        session.add(batch)
        session.flush()
        return batch

    def get(self, job_id: str, offset: int) -> CloneBatchSnapshot | None:
        with self._session_factory() as session:
            batch = self._find(session, job_id, offset)
            return None if batch is None else self._to_snapshot(batch)

    def _claimable(self, now: datetime) -> ColumnElement[bool]:
        running = aliased(CloneBatch)
        return or_(
            and_(
                CloneBatch.status == CloneBatchStatus.PENDING,
                ~exists().where(
                    running.job_id == CloneBatch.job_id,
                    running.status == CloneBatchStatus.RUNNING,
                ),
            ),
            and_(
                CloneBatch.status == CloneBatchStatus.RUNNING,
                CloneBatch.started_at <= now - self._claim_ttl,
            ),
        )

    def start(self, batch_id: int) -> CloneBatchSnapshot:
        """Claim one batch: a pending one whose job is idle, or a stale running one."""
        now = self._now()
        with self._session_factory() as session:
            result = session.execute(
                update(CloneBatch)
                .where(CloneBatch.id == batch_id, self._claimable(now))
                .values(status=CloneBatchStatus.RUNNING, started_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                session.rollback()
                raise BatchInProgressError(f"Batch {batch_id} is not pending or its job is busy")
            session.commit()
            batch = session.get(CloneBatch, batch_id)
            if batch is None:
                raise BatchInProgressError(f"Batch {batch_id} disappeared after claim")
            return self._to_snapshot(batch)

    def claim_next(self) -> CloneBatchSnapshot | None:
        with self._session_factory() as session:
            candidates = session.execute(
                select(CloneBatch.id, CloneBatch.status)
                .where(self._claimable(self._now()))
                .order_by(CloneBatch.id.asc())
                .limit(5)
            ).all()

        for candidate_id, candidate_status in candidates:
            try:
                batch = self.start(candidate_id)
            except BatchInProgressError:
                continue
            if candidate_status == CloneBatchStatus.RUNNING:
                logger.warning("Reclaimed stale clone batch %d of job %s", batch.id, batch.job_id)
            return batch
        return None

    def complete(
        self,
        batch_id: int,
        *,
        processed: int,
        errors: int,
        has_more: bool,
        session: Session,
    ) -> None:
        session.execute(
            update(CloneBatch)
            .where(CloneBatch.id == batch_id)
            .values(
                status=CloneBatchStatus.COMPLETED,
                processed=processed,
                errors=errors,
                has_more=has_more,
                error_message=None,
                finished_at=self._now(),
            )
            .execution_options(synchronize_session=False)
        )

    def fail(self, batch_id: int, error_message: str) -> None:
        with self._session_factory() as session:
            session.execute(
                update(CloneBatch)
                .where(CloneBatch.id == batch_id)
                .values(status=CloneBatchStatus.FAILED, error_message=error_message, finished_at=self._now())
                .execution_options(synchronize_session=False)
            )
            session.commit()

    def list_for_job(self, job_id: str) -> list[CloneBatchSnapshot]:
        with self._session_factory() as session:
            rows = session.scalars(
                select(CloneBatch).where(CloneBatch.job_id == job_id).order_by(CloneBatch.batch_offset.asc())
            ).all()
            return [self._to_snapshot(row) for row in rows]

    def pending_count(self) -> int:
        with self._session_factory() as session:
            return int(
                session.scalar(
                    select(func.count()).select_from(CloneBatch).where(CloneBatch.status == CloneBatchStatus.PENDING)
                )
                or 0
            )

    def _to_snapshot(self, batch: CloneBatch) -> CloneBatchSnapshot:
        return CloneBatchSnapshot(
            id=batch.id,
            job_id=batch.job_id,
            source_account_id=batch.source_account_id,
            target_account_id=batch.target_account_id,
            offset=batch.batch_offset,
            limit=batch.batch_limit,
            status=batch.status,
            processed=batch.processed,
            errors=batch.errors,
            has_more=batch.has_more,
            error_message=batch.error_message,
            created_at=batch.created_at,
            started_at=batch.started_at,
            finished_at=batch.finished_at,
        )
