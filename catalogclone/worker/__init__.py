from catalogclone.worker.pipeline import (
    copy_products,
    enqueue_clone,
    get_clone_runtime,
    process_clone_batch,
    run_pending_batches,
    shutdown_clone_runtime,
)

__all__ = [
    "copy_products",
    "enqueue_clone",
    "get_clone_runtime",
    "process_clone_batch",
    "run_pending_batches",
    "shutdown_clone_runtime",
]
