from __future__ import annotations

import logging
from typing import Any, Mapping

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from catalogclone.accounts.service import AccountService
from catalogclone.accounts.types import NewAccountAttributes
from catalogclone.clone.dispatch import BatchDispatcher, ContinuationSchedulingError
from catalogclone.clone.queue import BatchQueue
from catalogclone.clone.types import CloneResult
from catalogclone.core.config import Settings
from catalogclone.jobs.service import CloneJobService

logger = logging.getLogger(__name__)


class CloneValidationError(ValueError):
    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.errors = errors or []


class CloneOrchestrator:
    """Entry point for cloning a seller account into a brand-new one.

    Only account creation happens synchronously. Products are copied by
    queued batches, and the caller gets a job id to poll.
    """

    def __init__(
        self,
        settings: Settings,
        accounts: AccountService,
        jobs: CloneJobService,
        queue: BatchQueue,
        dispatcher: BatchDispatcher,
        *,
        batch_size: int | None = None,
    ):
        self._accounts = accounts
        self._jobs = jobs
        self._queue = queue
        self._dispatcher = dispatcher
        self._batch_size = batch_size or settings.clone_batch_size

    @property
    def batch_size(self) -> int:
        return self._batch_size

    def clone(self, source_account_id: str, attributes: NewAccountAttributes | Mapping[str, Any]) -> CloneResult:
        attrs = self._validate(attributes)
        created = self._accounts.create_account(attrs, profile_from=source_account_id)
        new_account_id = created.account.id

        total_items = self._accounts.count_products(source_account_id)
        if total_items == 0:
            logger.info("Source account %s has no products; nothing to clone", source_account_id)
            return CloneResult(new_account_id=new_account_id, job_id=None, total_items=0)

        try:
            job = self._jobs.create_job(
                source_account_id=source_account_id,
                target_account_id=new_account_id,
                total_items=total_items,
            )
        except SQLAlchemyError:
            logger.exception("Account %s created but its clone job could not be recorded", new_account_id)
            return CloneResult(new_account_id=new_account_id, job_id=None, total_items=total_items)

        try:
            self._queue.enqueue(
                job_id=job.id,
                source_account_id=source_account_id,
                target_account_id=new_account_id,
                offset=0,
                limit=self._batch_size,
            )
        except SQLAlchemyError as exc:
            logger.exception("Could not queue first batch for clone job %s", job.id)
            self._jobs.mark_failed(job.id, f"Could not queue first batch: {exc}")
            return CloneResult(new_account_id=new_account_id, job_id=job.id, total_items=total_items)

        try:
            self._dispatcher.schedule()
        except ContinuationSchedulingError:
            logger.exception("Could not launch first batch for clone job %s; it stays queued", job.id)

        logger.info(
            "Clone job %s started: %d products from %s to %s in batches of %d",
            job.id,
            total_items,
            source_account_id,
            new_account_id,
            self._batch_size,
        )
        return CloneResult(new_account_id=new_account_id, job_id=job.id, total_items=total_items)

    def _validate(self, attributes: NewAccountAttributes | Mapping[str, Any]) -> NewAccountAttributes:
        if isinstance(attributes, NewAccountAttributes):
            return attributes
        try:
            return NewAccountAttributes.model_validate(dict(attributes))
        except ValidationError as exc:
            raise CloneValidationError("Invalid account attributes", errors=exc.errors()) from exc
