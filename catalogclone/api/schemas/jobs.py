from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class CloneJobResponse(BaseModel):
    id: str
    source_account_id: str
    target_account_id: str
    status: str
    total_items: int
    processed_count: int
    error_message: str | None
    deadline_at: datetime | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None


class CloneJobListResponse(BaseModel):
    items: list[CloneJobResponse]
    next_cursor: str | None


class CloneJobStatusResponse(BaseModel):
    job_id: str
    status: str
    total_items: int
    processed_count: int
    progress_percent: int
    error_message: str | None
    completed_at: datetime | None


class ProcessBatchRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source_account_id: str = Field(min_length=1, max_length=36)
    target_account_id: str = Field(min_length=1, max_length=36)
    offset: int = Field(ge=0)
    limit: int = Field(ge=1, le=1000)


class ProcessBatchResponse(BaseModel):
    processed: int
    errors: int
    has_more: bool
    replayed: bool
