from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Mapping, Sequence

import httpx
from sqlalchemy.orm import Session, sessionmaker

from catalogclone.accounts.service import AccountService
from catalogclone.accounts.types import NewAccountAttributes
from catalogclone.assets.replicator import AssetReplicator
from catalogclone.assets.storage import AssetStorage
from catalogclone.clone.copier import ProductCopier
from catalogclone.clone.dispatch import BatchDispatcher
from catalogclone.clone.orchestrator import CloneOrchestrator
from catalogclone.clone.poller import JobStatusPoller
from catalogclone.clone.queue import BatchQueue
from catalogclone.clone.types import BatchResult, CloneResult, CopyStats
from catalogclone.clone.worker import BatchWorker
from catalogclone.core.config import Settings, get_settings
from catalogclone.db.session import get_session_factory
from catalogclone.jobs.service import CloneJobService


@dataclass
class CloneRuntime:
    settings: Settings
    accounts: AccountService
    jobs: CloneJobService
    queue: BatchQueue
    dispatcher: BatchDispatcher
    replicator: AssetReplicator
    worker: BatchWorker
    orchestrator: CloneOrchestrator
    copier: ProductCopier
    poller: JobStatusPoller

    def close(self, *, wait: bool = True) -> None:
        self.dispatcher.shutdown(wait=wait)
        self.replicator.close()


def build_clone_runtime(
    settings: Settings | None = None,
    session_factory: sessionmaker[Session] | None = None,
    *,
    dispatcher: BatchDispatcher | None = None,
    http_client: httpx.Client | None = None,
) -> CloneRuntime:
    settings = settings or get_settings()
    session_factory = session_factory or get_session_factory()
    if dispatcher is None:
        dispatcher = BatchDispatcher.threaded() if settings.clone_dispatch_mode == "thread" else BatchDispatcher()

    accounts = AccountService(session_factory)
    jobs = CloneJobService(settings, session_factory)
    queue = BatchQueue(session_factory, claim_ttl_seconds=settings.clone_batch_claim_ttl_seconds)
    replicator = AssetReplicator(settings, session_factory, AssetStorage(settings), client=http_client)
    worker = BatchWorker(session_factory, jobs, queue, replicator, dispatcher)
    dispatcher.attach(worker.run_next)

    return CloneRuntime(
        settings=settings,
        accounts=accounts,
        jobs=jobs,
        queue=queue,
        dispatcher=dispatcher,
        replicator=replicator,
        worker=worker,
        orchestrator=CloneOrchestrator(settings, accounts, jobs, queue, dispatcher),
        copier=ProductCopier(session_factory, accounts),
        poller=JobStatusPoller(jobs, interval_seconds=settings.job_poll_interval_seconds),
    )


@lru_cache(maxsize=1)
def get_clone_runtime() -> CloneRuntime:
    return build_clone_runtime()


def shutdown_clone_runtime(*, wait: bool = True) -> None:
    if get_clone_runtime.cache_info().currsize:
        get_clone_runtime().close(wait=wait)
    get_clone_runtime.cache_clear()


def enqueue_clone(source_account_id: str, attributes: NewAccountAttributes | Mapping[str, Any]) -> CloneResult:
    return get_clone_runtime().orchestrator.clone(source_account_id, attributes)


def copy_products(
    source_account_id: str,
    target_account_id: str,
    product_ids: Sequence[str] | None = None,
) -> CopyStats:
    return get_clone_runtime().copier.copy_products(source_account_id, target_account_id, product_ids)


def process_clone_batch(
    *,
    job_id: str,
    source_account_id: str,
    target_account_id: str,
    offset: int,
    limit: int,
) -> BatchResult:
    return get_clone_runtime().worker.process_batch(job_id, source_account_id, target_account_id, offset, limit)


def run_pending_batches(max_batches: int | None = None) -> int:
    return get_clone_runtime().worker.drain(max_batches=max_batches)
