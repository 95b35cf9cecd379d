"""Task executor for background sync runs."""

import concurrent.futures
import logging
import threading

logger = logging.getLogger(__name__)

_executor = None
_executor_lock = threading.Lock()

def get_executor(max_workers=2):
    """Get the shared thread pool, creating it on first use."""
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=max_workers,
                thread_name_prefix="feedsync-sync"
            )
        return _executor

def shutdown(wait=True):
    """Shutdown the executor gracefully."""
    global _executor
    with _executor_lock:
        if _executor is None:
            return
        logger.info("Shutting down task executor")
        _executor.shutdown(wait=wait)
        _executor = None
