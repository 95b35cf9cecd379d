"""Background task processing."""

import atexit
import logging

from feedsync.extensions import scheduler

log = logging.getLogger(__name__)

def init_tasks(app):
    """Register scheduled jobs and start the scheduler."""
    from feedsync.tasks.sync_tasks import setup_sync_jobs
    from feedsync.tasks.cleanup_tasks import setup_cleanup_jobs
    from feedsync.tasks.executor import shutdown

    setup_sync_jobs(app)
    setup_cleanup_jobs(app)

    if not scheduler.running:
        scheduler.start()
        log.info("Scheduler started")

    atexit.register(shutdown, wait=False)
