from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from catalogclone.api.schemas.jobs import (
    CloneJobListResponse,
    CloneJobResponse,
    CloneJobStatusResponse,
    ProcessBatchRequest,
    ProcessBatchResponse,
)
from catalogclone.clone.queue import BatchInProgressError
from catalogclone.clone.worker import BatchExecutionError, BatchWorker
from catalogclone.core.config import get_settings
from catalogclone.db.session import get_session_factory
from catalogclone.jobs.service import (
    CloneJobService,
    JobConflictError,
    JobNotFoundError,
    snapshot_to_dict,
    status_view_to_dict,
)
from catalogclone.worker.pipeline import get_clone_runtime

router = APIRouter(prefix="/clone-jobs", tags=["clone-jobs"])


def get_job_service() -> CloneJobService:
    return CloneJobService(settings=get_settings(), session_factory=get_session_factory())


def get_batch_worker() -> BatchWorker:
    return get_clone_runtime().worker


@router.get("", response_model=CloneJobListResponse)
def list_jobs(
    limit: int = Query(default=50, ge=1, le=200),
    cursor: str | None = None,
    service: CloneJobService = Depends(get_job_service),
) -> CloneJobListResponse:
    try:
        result = service.list_jobs(limit=limit, cursor=cursor)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return CloneJobListResponse(
        items=[CloneJobResponse.model_validate(snapshot_to_dict(item)) for item in result.items],
        next_cursor=result.next_cursor,
    )


@router.get("/{job_id}", response_model=CloneJobResponse)
def get_job(job_id: str, service: CloneJobService = Depends(get_job_service)) -> CloneJobResponse:
    try:
        job = service.require_job(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return CloneJobResponse.model_validate(snapshot_to_dict(job))


@router.get("/{job_id}/status", response_model=CloneJobStatusResponse | None)
def get_job_status(job_id: str, service: CloneJobService = Depends(get_job_service)) -> CloneJobStatusResponse | None:
    view = service.get_status(job_id)
    if view is None:
        return None
    return CloneJobStatusResponse.model_validate(status_view_to_dict(view))


@router.post("/{job_id}/batches", response_model=ProcessBatchResponse)
def process_batch(
    job_id: str,
    request: ProcessBatchRequest,
    worker: BatchWorker = Depends(get_batch_worker),
) -> ProcessBatchResponse:
    try:
        result = worker.process_batch(
            job_id,
            request.source_account_id,
            request.target_account_id,
            request.offset,
            request.limit,
        )
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (BatchInProgressError, JobConflictError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except BatchExecutionError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    return ProcessBatchResponse(
        processed=result.processed,
        errors=result.errors,
        has_more=result.has_more,
        replayed=result.replayed,
    )
