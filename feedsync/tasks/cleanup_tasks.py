"""Tasks for cleaning up data."""

import logging

from feedsync.extensions import scheduler
from feedsync.services.container import container

log = logging.getLogger(__name__)

DEAD_LETTER_RETENTION_DAYS = 30

def cleanup_expired_statuses():
    """Purge sync statuses past retention and old dead letters."""
    with scheduler.app.app_context():
        try:
            count = container().get('progress_tracker').cleanup()
            purged = container().get('change_queue').purge_dead(DEAD_LETTER_RETENTION_DAYS)
            if count or purged:
                log.info(f"Cleanup removed {count} sync statuses and {purged} dead letters")
        except Exception as e:
            log.error(f"Error during cleanup: {str(e)}", exc_info=True)

def setup_cleanup_jobs(app):
    """Register cleanup jobs with the scheduler."""
    scheduler.add_job(
        id='cleanup_expired_statuses',
        func=cleanup_expired_statuses,
        trigger='interval',
        hours=1,
        replace_existing=True
    )

    app.logger.info("Scheduled cleanup jobs registered")
