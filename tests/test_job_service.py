from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

import catalogclone.db.session as db_session_module
from catalogclone.core.config import get_settings
from catalogclone.db.init_db import initialize_database
from catalogclone.db.models import Account, CloneJobStatus
from catalogclone.jobs.service import CloneJobService, InvalidJobStateError, JobConflictError, JobNotFoundError


def make_service(tmp_path: Path, *, deadline_seconds: int | None = None) -> CloneJobService:
    state_root = tmp_path / "state"
    state_root.mkdir(parents=True, exist_ok=True)

    os.environ["CATALOGCLONE_STATE_ROOT"] = state_root.as_posix()
    os.environ["CATALOGCLONE_CLONE_DISPATCH_MODE"] = "queue"
    if deadline_seconds is None:
        os.environ.pop("CATALOGCLONE_CLONE_JOB_DEADLINE_SECONDS", None)
    else:
        os.environ["CATALOGCLONE_CLONE_JOB_DEADLINE_SECONDS"] = str(deadline_seconds)

    get_settings.cache_clear()
    db_session_module.reset_engine()
    initialize_database()
    return CloneJobService(get_settings(), db_session_module.get_session_factory())


def make_accounts() -> tuple[str, str]:
    ids = (str(uuid4()), str(uuid4()))
    now = datetime.now(tz=timezone.utc)
    with db_session_module.get_session_factory()() as session:
        for account_id in ids:
            session.add(
                Account(
                    id=account_id,
                    email=f"{account_id}@example.com",
                    password_hash="x",
                    name="Seller",
                    slug=account_id,
                    created_at=now,
                    updated_at=now,
                )
            )
        session.commit()
    return ids


def test_new_job_is_pending_without_completion_timestamp(tmp_path: Path) -> None:
    service = make_service(tmp_path)
    source, target = make_accounts()

    job = service.create_job(source_account_id=source, target_account_id=target, total_items=12)

    assert job.status == CloneJobStatus.PENDING
    assert job.processed_count == 0
    assert job.total_items == 12
    assert job.completed_at is None
    assert job.deadline_at is None


def test_transitions_only_move_forward(tmp_path: Path) -> None:
    service = make_service(tmp_path)
    source, target = make_accounts()
    job = service.create_job(source_account_id=source, target_account_id=target, total_items=3)

    processing = service.mark_processing(job.id)
    assert processing.status == CloneJobStatus.PROCESSING
    assert processing.completed_at is None

    completed = service.mark_completed(job.id)
    assert completed.status == CloneJobStatus.COMPLETED
    assert completed.completed_at is not None

    try:
        service.mark_processing(job.id)
    except InvalidJobStateError:
        pass
    else:
        raise AssertionError("expected InvalidJobStateError")

    try:
        service.mark_failed(job.id, "late failure")
    except InvalidJobStateError:
        pass
    else:
        raise AssertionError("expected InvalidJobStateError")


def test_failed_job_has_message_and_no_completion_timestamp(tmp_path: Path) -> None:
    service = make_service(tmp_path)
    source, target = make_accounts()
    job = service.create_job(source_account_id=source, target_account_id=target, total_items=3)

    failed = service.mark_failed(job.id, "source vanished")

    assert failed.status == CloneJobStatus.FAILED
    assert failed.error_message == "source vanished"
    assert failed.completed_at is None


def test_processed_count_is_clamped_and_never_decreases(tmp_path: Path) -> None:
    service = make_service(tmp_path)
    source, target = make_accounts()
    job = service.create_job(source_account_id=source, target_account_id=target, total_items=5)

    updated = service.update_job(job.id, processed_count=9)
    assert updated.processed_count == 5

    try:
        service.update_job(job.id, processed_count=2)
    except InvalidJobStateError:
        pass
    else:
        raise AssertionError("expected InvalidJobStateError")


def test_update_rejects_unknown_fields(tmp_path: Path) -> None:
    service = make_service(tmp_path)
    source, target = make_accounts()
    job = service.create_job(source_account_id=source, target_account_id=target, total_items=1)

    try:
        service.update_job(job.id, total_items=10)
    except ValueError:
        pass
    else:
        raise AssertionError("expected ValueError")


def test_advance_progress_accumulates_inside_caller_transaction(tmp_path: Path) -> None:
    service = make_service(tmp_path)
    source, target = make_accounts()
    job = service.create_job(source_account_id=source, target_account_id=target, total_items=12)
    factory = db_session_module.get_session_factory()

    with factory() as session:
        assert service.advance_progress(job.id, 5, session=session) == 5
        session.rollback()
    assert service.require_job(job.id).processed_count == 0

    with factory() as session:
        service.advance_progress(job.id, 5, session=session)
        session.commit()
    with factory() as session:
        assert service.advance_progress(job.id, 5, session=session) == 10
        session.commit()

    snapshot = service.require_job(job.id)
    assert snapshot.processed_count == 10
    assert snapshot.status == CloneJobStatus.PROCESSING

    with factory() as session:
        assert service.advance_progress(job.id, 2, session=session, complete=True) == 12
        session.commit()

    finished = service.require_job(job.id)
    assert finished.status == CloneJobStatus.COMPLETED
    assert finished.completed_at is not None


def test_advance_progress_refuses_terminal_jobs(tmp_path: Path) -> None:
    service = make_service(tmp_path)
    source, target = make_accounts()
    job = service.create_job(source_account_id=source, target_account_id=target, total_items=4)
    service.mark_failed(job.id, "stopped")

    with db_session_module.get_session_factory()() as session:
        try:
            service.advance_progress(job.id, 1, session=session)
        except InvalidJobStateError:
            pass
        else:
            raise AssertionError("expected InvalidJobStateError")


def test_advance_progress_gives_up_when_count_keeps_moving(tmp_path: Path, monkeypatch) -> None:
    service = make_service(tmp_path)
    source, target = make_accounts()
    job = service.create_job(source_account_id=source, target_account_id=target, total_items=10)
    factory = db_session_module.get_session_factory()

    with factory() as session:
        original_execute = session.execute

        class _StaleResult:
            rowcount = 0

        def racing_execute(statement, *args, **kwargs):
            if getattr(statement, "is_dml", False):
                return _StaleResult()
            return original_execute(statement, *args, **kwargs)

        monkeypatch.setattr(session, "execute", racing_execute)
        try:
            service.advance_progress(job.id, 3, session=session)
        except JobConflictError:
            pass
        else:
            raise AssertionError("expected JobConflictError")

    assert service.require_job(job.id).processed_count == 0


def test_missing_job_lookup(tmp_path: Path) -> None:
    service = make_service(tmp_path)

    assert service.get_job("missing") is None
    assert service.get_status("missing") is None
    try:
        service.require_job("missing")
    except JobNotFoundError:
        pass
    else:
        raise AssertionError("expected JobNotFoundError")


def test_status_view_reports_rounded_progress(tmp_path: Path) -> None:
    service = make_service(tmp_path)
    source, target = make_accounts()
    job = service.create_job(source_account_id=source, target_account_id=target, total_items=3)
    service.update_job(job.id, processed_count=2, status=CloneJobStatus.PROCESSING)

    view = service.get_status(job.id)

    assert view is not None
    assert view.progress_percent == 67
    assert view.status == CloneJobStatus.PROCESSING
    assert view.is_terminal is False


def test_deadline_is_stamped_from_settings(tmp_path: Path) -> None:
    service = make_service(tmp_path, deadline_seconds=60)
    source, target = make_accounts()

    job = service.create_job(source_account_id=source, target_account_id=target, total_items=1)

    assert job.deadline_at is not None
    assert service.is_past_deadline(job) is False


def test_list_jobs_paginates_newest_first(tmp_path: Path) -> None:
    service = make_service(tmp_path)
    source, target = make_accounts()
    created = [
        service.create_job(source_account_id=source, target_account_id=target, total_items=index + 1).id
        for index in range(5)
    ]

    first = service.list_jobs(limit=2)
    assert len(first.items) == 2
    assert first.next_cursor is not None

    second = service.list_jobs(limit=2, cursor=first.next_cursor)
    third = service.list_jobs(limit=2, cursor=second.next_cursor)
    seen = [item.id for item in first.items + second.items + third.items]

    assert sorted(seen) == sorted(created)
    assert len(set(seen)) == 5
    assert third.next_cursor is None

    try:
        service.list_jobs(cursor="nope")
    except ValueError:
        pass
    else:
        raise AssertionError("expected ValueError")
