"""
Repository for sync status database operations.

This is the durable half of the progress tracker: it survives restarts and
is shared by every process pointed at the same database.
"""

import logging
from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError

from feedsync.domain.sync_run import SyncRun, SyncStage
from feedsync.models.sync_status import SyncStatus

log = logging.getLogger(__name__)

TERMINAL_STAGES = (SyncStage.COMPLETED.value, SyncStage.FAILED.value)

class SqlAlchemySyncStatusRepository:
    """SQL Alchemy implementation of the sync status repository."""

    def __init__(self, db_instance):
        """Initialize repository with database instance.

        Args:
            db_instance: Flask-SQLAlchemy database instance
        """
        self.db = db_instance

    def upsert(self, run: SyncRun):
        """Insert or update the row for a run.

        Returns:
            SyncStatus: Saved row or None if the write failed
        """
        try:
            row = self.db.session.get(SyncStatus, run.sync_id)
            if row is None:
                row = SyncStatus(sync_id=run.sync_id)
                self.db.session.add(row)
            row.apply(run)
            self.db.session.commit()
            return row

        except SQLAlchemyError as e:
            log.error(f"Error writing sync status {run.sync_id}: {e}")
            self.db.session.rollback()
            return None

    def get(self, sync_id):
        """Get a run by id.

        Returns:
            SyncRun or None
        """
        try:
            row = self.db.session.get(SyncStatus, sync_id)
            return row.to_run() if row else None

        except SQLAlchemyError as e:
            log.error(f"Error reading sync status {sync_id}: {e}")
            return None

    def find_active(self, started_after):
        """Get the newest non-terminal run started after a cutoff."""
        try:
            row = SyncStatus.query.filter(
                SyncStatus.stage.notin_(TERMINAL_STAGES),
                SyncStatus.started_at >= started_after
            ).order_by(desc(SyncStatus.started_at)).first()
            return row.to_run() if row else None

        except SQLAlchemyError as e:
            log.error(f"Error looking up active sync: {e}")
            return None

    def get_recent(self, limit=10):
        """Get most recent runs, newest first."""
        try:
            rows = SyncStatus.query.order_by(desc(SyncStatus.started_at)).limit(limit).all()
            return [row.to_run() for row in rows]

        except SQLAlchemyError as e:
            log.error(f"Error retrieving recent syncs: {e}")
            return []

    def purge(self, completed_before, abandoned_before):
        """Delete expired rows.

        Args:
            completed_before: Terminal runs completed before this are removed
            abandoned_before: Non-terminal runs last updated before this are removed

        Returns:
            int: Number of rows deleted
        """
        try:
            count = SyncStatus.query.filter(
                SyncStatus.stage.in_(TERMINAL_STAGES),
                SyncStatus.completed_at < completed_before
            ).delete(synchronize_session=False)

            count += SyncStatus.query.filter(
                SyncStatus.stage.notin_(TERMINAL_STAGES),
                SyncStatus.updated_at < abandoned_before
            ).delete(synchronize_session=False)

            self.db.session.commit()
            return count

        except SQLAlchemyError as e:
            log.error(f"Error purging sync statuses: {e}")
            self.db.session.rollback()
            return 0
