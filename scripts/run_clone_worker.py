from __future__ import annotations

import argparse
import logging
import os
import time
from pathlib import Path

from catalogclone.core.config import get_settings
from catalogclone.core.logging import configure_logging
from catalogclone.db.init_db import initialize_database
from catalogclone.worker.pipeline import get_clone_runtime, shutdown_clone_runtime

logger = logging.getLogger("catalogclone.worker")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Drain queued clone batches")
    parser.add_argument("--state-root", help="State root directory (overrides CATALOGCLONE_STATE_ROOT)")
    parser.add_argument("--once", action="store_true", help="Drain the queue once and exit")
    parser.add_argument("--max-batches", type=int, default=None, help="Stop after this many batches per drain")
    parser.add_argument("--idle-seconds", type=float, default=2.0, help="Sleep between drains when the queue is empty")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    if args.state_root:
        os.environ["CATALOGCLONE_STATE_ROOT"] = Path(args.state_root).resolve().as_posix()
    # This process is the queue consumer; batches are not handed to a thread.
    os.environ["CATALOGCLONE_CLONE_DISPATCH_MODE"] = "queue"
    get_settings.cache_clear()

    settings = get_settings()
    configure_logging(settings.log_level)
    initialize_database()
    runtime = get_clone_runtime()

    try:
        while True:
            executed = runtime.worker.drain(max_batches=args.max_batches)
            if executed:
                logger.info("Drained %d clone batches; %d still pending", executed, runtime.queue.pending_count())
            if args.once:
                break
            if not executed:
                time.sleep(args.idle_seconds)
    except KeyboardInterrupt:
        logger.info("Clone worker interrupted")
    finally:
        shutdown_clone_runtime()


if __name__ == "__main__":
    main()
