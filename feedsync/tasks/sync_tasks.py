"""Scheduled tasks for periodic sync."""

import logging

from feedsync.domain.sync_run import SyncMode
from feedsync.extensions import scheduler
from feedsync.services.container import container

log = logging.getLogger(__name__)

def run_scheduled_sync():
    """Trigger an incremental sync; coalesces if one is already running."""
    with scheduler.app.app_context():
        try:
            orchestrator = container().get('sync_orchestrator')
            sync_id = orchestrator.trigger_sync(SyncMode.INCREMENTAL, trigger="scheduled")
            log.info(f"Scheduled sync triggered: {sync_id}")
        except Exception as e:
            log.error(f"Error triggering scheduled sync: {str(e)}", exc_info=True)

def setup_sync_jobs(app):
    """Register the periodic sync job with the scheduler."""
    interval = app.config.get('SYNC_INTERVAL_MINUTES', 5)

    scheduler.add_job(
        id='scheduled_sync',
        func=run_scheduled_sync,
        trigger='interval',
        minutes=interval,
        max_instances=1,
        coalesce=True,
        replace_existing=True
    )

    app.logger.info(f"Scheduled sync job registered every {interval} minutes")
