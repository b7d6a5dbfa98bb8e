from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from catalogclone.assets.replicator import AssetReference, AssetReplicator
from catalogclone.clone.dispatch import BatchDispatcher, ContinuationSchedulingError
from catalogclone.clone.queue import BatchInProgressError, BatchQueue
from catalogclone.clone.types import BatchResult, CloneBatchSnapshot, SourceItem
from catalogclone.core.slugs import generate_unique, seed_known_slugs, slugify_name
from catalogclone.db.models import CloneBatchStatus, CloneItem, Product, ProductImage, ProductPriceTier
from catalogclone.jobs.service import CloneJobService, InvalidJobStateError, JobNotFoundError

logger = logging.getLogger(__name__)

# Identity, ownership and timestamps are regenerated; the slug is re-minted
# against the target account and the primary image is re-pointed at the copy.
_REGENERATED_PRODUCT_FIELDS = {"id", "account_id", "slug", "featured_image_url", "created_at", "updated_at"}
CLONED_PRODUCT_FIELDS: tuple[str, ...] = tuple(
    column.key for column in Product.__table__.columns if column.key not in _REGENERATED_PRODUCT_FIELDS
)
CLONED_TIER_FIELDS: tuple[str, ...] = ("min_quantity", "max_quantity", "unit_price", "discounted_unit_price")


class BatchExecutionError(RuntimeError):
    pass


class BatchWorker:
    """Clones one page of a source account's products per invocation.

    Each finished page records its progress and the next page's queue row in
    a single transaction, then asks the dispatcher to run that row.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        jobs: CloneJobService,
        queue: BatchQueue,
        replicator: AssetReplicator,
        dispatcher: BatchDispatcher,
    ):
        self._session_factory = session_factory
        self._jobs = jobs
        self._queue = queue
        self._replicator = replicator
        self._dispatcher = dispatcher

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def process_batch(
        self,
        job_id: str,
        source_account_id: str,
        target_account_id: str,
        offset: int,
        limit: int,
    ) -> BatchResult:
        self._jobs.require_job(job_id)
        batch = self._queue.enqueue(
            job_id=job_id,
            source_account_id=source_account_id,
            target_account_id=target_account_id,
            offset=offset,
            limit=limit,
        )
        if batch.status == CloneBatchStatus.COMPLETED:
            logger.info("Batch %s@%d already completed; replaying stored result", job_id, offset)
            return BatchResult(processed=batch.processed, errors=batch.errors, has_more=batch.has_more, replayed=True)
        if batch.status not in (CloneBatchStatus.PENDING, CloneBatchStatus.RUNNING):
            raise BatchInProgressError(f"Batch {job_id}@{offset} is {batch.status.value}")
        return self._execute(self._queue.start(batch.id))

    def run_next(self) -> BatchResult | None:
        batch = self._queue.claim_next()
        if batch is None:
            return None
        return self._execute(batch)

    def drain(self, *, max_batches: int | None = None) -> int:
        executed = 0
        while max_batches is None or executed < max_batches:
            batch = self._queue.claim_next()
            if batch is None:
                break
            executed += 1
            try:
                self._execute(batch)
            except (BatchExecutionError, JobNotFoundError):
                logger.warning("Clone batch %d failed while draining", batch.id, exc_info=True)
        return executed

    def _execute(self, batch: CloneBatchSnapshot) -> BatchResult:
        job = self._jobs.get_job(batch.job_id)
        if job is None:
            self._queue.fail(batch.id, "Clone job no longer exists")
            raise JobNotFoundError(f"Clone job not found: {batch.job_id}")
        if job.is_terminal:
            logger.info("Skipping batch %d: clone job %s is already %s", batch.id, job.id, job.status.value)
            self._queue.fail(batch.id, f"Clone job already {job.status.value}")
            return BatchResult(processed=0, errors=0, has_more=False)
        if self._jobs.is_past_deadline(job):
            message = "Clone job deadline exceeded"
            logger.error("Clone job %s: %s at offset %d", job.id, message, batch.offset)
            self._queue.fail(batch.id, message)
            self._jobs.mark_failed(job.id, message)
            return BatchResult(processed=0, errors=0, has_more=False)

        logger.info("Processing clone batch job=%s offset=%d limit=%d", batch.job_id, batch.offset, batch.limit)
        try:
            result = self._run(batch)
        except Exception as exc:
            self._record_failure(batch, exc)
            raise BatchExecutionError(f"Clone batch {batch.job_id}@{batch.offset} failed: {exc}") from exc

        logger.info(
            "Batch processed job=%s offset=%d success=%d errors=%d has_more=%s",
            batch.job_id,
            batch.offset,
            result.processed,
            result.errors,
            result.has_more,
        )
        if result.has_more:
            self._schedule_continuation(batch)
        return result

    def _run(self, batch: CloneBatchSnapshot) -> BatchResult:
        items, has_more = self._load_page(batch)
        self._jobs.mark_processing(batch.job_id)
        known_slugs = self._load_target_slugs(batch.target_account_id)
        # A reclaimed page may already hold clones committed by the previous run.
        identity_map = self._load_cloned(batch.job_id, [item.id for item in items])
        if identity_map:
            logger.info(
                "Job %s: %d products at offset %d were already cloned", batch.job_id, len(identity_map), batch.offset
            )

        errors = 0
        for item in items:
            if item.id in identity_map:
                continue
            try:
                new_id = self._insert_clone(item, batch.target_account_id, known_slugs, job_id=batch.job_id)
                self._copy_assets(item, new_id)
            except Exception as exc:
                errors += 1
                logger.warning("Could not clone product %s (%s): %s", item.id, item.title, exc)
                continue
            identity_map[item.id] = new_id

        with self._session_factory() as session:
            self._jobs.advance_progress(batch.job_id, len(identity_map), session=session, complete=not has_more)
            self._queue.complete(
                batch.id,
                processed=len(identity_map),
                errors=errors,
                has_more=has_more,
                session=session,
            )
            if has_more:
                self._queue.enqueue(
                    job_id=batch.job_id,
                    source_account_id=batch.source_account_id,
                    target_account_id=batch.target_account_id,
                    offset=batch.offset + batch.limit,
                    limit=batch.limit,
                    session=session,
                )
            session.commit()

        if not has_more:
            logger.info("All products processed; clone job %s completed", batch.job_id)
        return BatchResult(processed=len(identity_map), errors=errors, has_more=has_more)

    def _load_page(self, batch: CloneBatchSnapshot) -> tuple[list[SourceItem], bool]:
        with self._session_factory() as session:
            # One extra row tells whether another page exists.
            rows = list(
                session.scalars(
                    select(Product)
                    .where(Product.account_id == batch.source_account_id)
                    .order_by(Product.created_at.asc(), Product.id.asc())
                    .offset(batch.offset)
                    .limit(batch.limit + 1)
                ).all()
            )
            has_more = len(rows) > batch.limit
            page = rows[: batch.limit]
            product_ids = [row.id for row in page]

            images: dict[str, list[AssetReference]] = {product_id: [] for product_id in product_ids}
            tiers: dict[str, list[dict[str, object]]] = {product_id: [] for product_id in product_ids}
            if product_ids:
                for image in session.scalars(
                    select(ProductImage)
                    .where(ProductImage.product_id.in_(product_ids))
                    .order_by(ProductImage.position.asc(), ProductImage.id.asc())
                ):
                    images[image.product_id].append(
                        AssetReference(url=image.url, is_primary=image.is_featured, position=image.position)
                    )
                for tier in session.scalars(
                    select(ProductPriceTier)
                    .where(ProductPriceTier.product_id.in_(product_ids))
                    .order_by(ProductPriceTier.min_quantity.asc(), ProductPriceTier.id.asc())
                ):
                    tiers[tier.product_id].append({field: getattr(tier, field) for field in CLONED_TIER_FIELDS})

            items = [
                SourceItem(
                    id=row.id,
                    title=row.title,
                    slug=row.slug,
                    fields={field: copy_column_value(getattr(row, field)) for field in CLONED_PRODUCT_FIELDS},
                    assets=images[row.id],
                    price_tiers=tiers[row.id],
                )
                for row in page
            ]
            return items, has_more

    def _load_target_slugs(self, target_account_id: str) -> set[str]:
        with self._session_factory() as session:
            return seed_known_slugs(
                session.scalars(select(Product.slug).where(Product.account_id == target_account_id)).all()
            )

    def _load_cloned(self, job_id: str, source_ids: list[str]) -> dict[str, str]:
        if not source_ids:
            return {}
        with self._session_factory() as session:
            rows = session.execute(
                select(CloneItem.source_product_id, CloneItem.target_product_id).where(
                    CloneItem.job_id == job_id, CloneItem.source_product_id.in_(source_ids)
                )
            ).all()
            return {source_id: target_id for source_id, target_id in rows}

    def _insert_clone(
        self,
        item: SourceItem,
        target_account_id: str,
        known_slugs: set[str],
        *,
        job_id: str | None = None,
    ) -> str:
        slug = generate_unique(item.slug or slugify_name(item.title), known_slugs)
        new_id = str(uuid4())
        now = self._now()
        with self._session_factory() as session:
            try:
                session.add(
                    Product(
                        id=new_id,
                        account_id=target_account_id,
                        slug=slug,
                        created_at=now,
                        updated_at=now,
                        **item.fields,
                    )
                )
                session.flush()
                for tier in item.price_tiers:
                    session.add(ProductPriceTier(product_id=new_id, created_at=now, updated_at=now, **tier))
                if job_id is not None:
                    session.add(
                        CloneItem(job_id=job_id, source_product_id=item.id, target_product_id=new_id, created_at=now)
                    )
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                raise
        return new_id

    def _copy_assets(self, item: SourceItem, new_product_id: str) -> None:
        if not item.assets:
            return
        primary_url = self._replicator.replicate(item.assets, new_product_id)
        if primary_url is None:
            return
        try:
            with self._session_factory() as session:
                session.execute(
                    update(Product)
                    .where(Product.id == new_product_id)
                    .values(featured_image_url=primary_url, updated_at=self._now())
                )
                session.commit()
        except SQLAlchemyError:
            logger.warning("Could not set primary image on cloned product %s", new_product_id, exc_info=True)

    def _schedule_continuation(self, batch: CloneBatchSnapshot) -> None:
        try:
            self._dispatcher.schedule()
        except ContinuationSchedulingError:
            logger.exception(
                "Failed to schedule next clone batch job=%s offset=%d; it stays queued",
                batch.job_id,
                batch.offset + batch.limit,
            )

    def _record_failure(self, batch: CloneBatchSnapshot, exc: Exception) -> None:
        message = f"Batch at offset {batch.offset} failed: {exc}"
        logger.exception("Clone job %s failed", batch.job_id)
        try:
            self._queue.fail(batch.id, message)
            self._jobs.mark_failed(batch.job_id, message)
        except (SQLAlchemyError, InvalidJobStateError, JobNotFoundError):
            logger.exception("Could not record failure of clone job %s", batch.job_id)


def copy_column_value(value: object) -> object:
    if isinstance(value, list):
        return list(value)
    if isinstance(value, dict):
        return dict(value)
    return value
