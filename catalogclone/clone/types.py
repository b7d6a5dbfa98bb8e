from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from catalogclone.assets.replicator import AssetReference
from catalogclone.db.models import CloneBatchStatus


@dataclass(slots=True)
class CloneBatchSnapshot:
    id: int
    job_id: str
    source_account_id: str
    target_account_id: str
    offset: int
    limit: int
    status: CloneBatchStatus
    processed: int
    errors: int
    has_more: bool
    error_message: str | None
    created_at: datetime
    started_at: datetime | None
    finished_at: datetime | None


@dataclass(frozen=True, slots=True)
class BatchResult:
    processed: int
    errors: int
    has_more: bool
    replayed: bool = False


@dataclass(frozen=True, slots=True)
class CloneResult:
    new_account_id: str
    job_id: str | None
    total_items: int


@dataclass(slots=True)
class SourceItem:
    id: str
    title: str
    slug: str | None
    fields: dict[str, Any]
    assets: list[AssetReference] = field(default_factory=list)
    price_tiers: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class CopyStats:
    copied_products: int = 0
    copied_images: int = 0
    copied_price_tiers: int = 0
    copied_categories: int = 0
