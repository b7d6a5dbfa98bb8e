from catalogclone.clone.copier import NoProductsToCopyError, ProductCopier, ProductSelectionError
from catalogclone.clone.dispatch import BatchDispatcher, ContinuationSchedulingError
from catalogclone.clone.orchestrator import CloneOrchestrator, CloneValidationError
from catalogclone.clone.poller import JobStatusPoller
from catalogclone.clone.queue import BatchInProgressError, BatchQueue
from catalogclone.clone.types import BatchResult, CloneBatchSnapshot, CloneResult, CopyStats
from catalogclone.clone.worker import BatchExecutionError, BatchWorker

__all__ = [
    "BatchDispatcher",
    "BatchExecutionError",
    "BatchInProgressError",
    "BatchQueue",
    "BatchResult",
    "BatchWorker",
    "CloneBatchSnapshot",
    "CloneOrchestrator",
    "CloneResult",
    "CloneValidationError",
    "ContinuationSchedulingError",
    "CopyStats",
    "JobStatusPoller",
    "NoProductsToCopyError",
    "ProductCopier",
    "ProductSelectionError",
]
