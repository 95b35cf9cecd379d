"""
Dual-store progress tracking for sync runs.

Every update goes to a fast primary store (Flask-Caching) and is mirrored to
the sync_status table. Readers try the primary first and fall back to the
table, because the process answering a status poll is not necessarily the
one running the sync.
"""

import logging
from datetime import timedelta

from feedsync.domain.sync_run import SyncRun
from feedsync.extensions import cache
from feedsync.utils.time_utils import utcnow

log = logging.getLogger(__name__)

KEY_PREFIX = "sync_status:"

class ProgressTracker:
    """Writes SyncRun snapshots to both stores and reads them back."""

    def __init__(self, repository, cache_instance=None, retention_hours=24, grace_seconds=60, clock=utcnow):
        """Initialize the tracker.

        Args:
            repository: SqlAlchemySyncStatusRepository for the durable store
            cache_instance: Flask-Caching Cache for the primary store
            retention_hours: How long a finished run stays readable
            grace_seconds: Minimum time a finished run stays readable
            clock: Callable returning the current naive UTC datetime
        """
        self.repository = repository
        self.cache = cache_instance or cache
        self.retention_hours = retention_hours
        self.grace_seconds = grace_seconds
        self.clock = clock

    @property
    def retention(self):
        """Time a finished run stays readable: the retention window, never less than the grace period."""
        return max(timedelta(hours=self.retention_hours), timedelta(seconds=self.grace_seconds))

    @staticmethod
    def _key(sync_id):
        return f"{KEY_PREFIX}{sync_id}"

    def _write_primary(self, run: SyncRun):
        try:
            self.cache.set(self._key(run.sync_id), run.to_dict(), timeout=int(self.retention.total_seconds()))
            return True
        except Exception as e:
            log.warning(f"Primary status store write failed for {run.sync_id}: {e}")
            return False

    def save(self, run: SyncRun):
        """Write a snapshot of the run to both stores.

        Returns:
            bool: True if at least one store accepted the write
        """
        primary_ok = self._write_primary(run)
        durable_ok = self.repository.upsert(run) is not None

        if not durable_ok:
            log.warning(f"Durable status store write failed for {run.sync_id}")
        if not (primary_ok or durable_ok):
            log.error(f"Sync status {run.sync_id} could not be stored anywhere")
        return primary_ok or durable_ok

    def _expired(self, run: SyncRun):
        if not run.is_terminal or run.completed_at is None:
            return False
        return self.clock() - run.completed_at > self.retention

    def get(self, sync_id):
        """Read a run, primary store first.

        Returns:
            SyncRun or None when unknown or past retention
        """
        data = None
        try:
            data = self.cache.get(self._key(sync_id))
        except Exception as e:
            log.warning(f"Primary status store read failed for {sync_id}: {e}")

        if data:
            run = SyncRun.from_dict(data)
        else:
            run = self.repository.get(sync_id)
            if run is None:
                return None
            log.debug(f"Sync status {sync_id} served from durable store")
            # Only final snapshots are cached here; a run still progressing may
            # be owned by another process, which only updates its own cache
            if run.is_terminal and not self._expired(run):
                self._write_primary(run)

        if self._expired(run):
            return None
        return run

    def find_active(self, stale_after_minutes=30):
        """Newest non-terminal run younger than the stale cutoff, from any process."""
        cutoff = self.clock() - timedelta(minutes=stale_after_minutes)
        return self.repository.find_active(cutoff)

    def recent(self, limit=10):
        return self.repository.get_recent(limit)

    def cleanup(self):
        """Purge durable rows past retention.

        Primary entries expire on their own cache timeout, which is set from
        the same retention on every write.

        Returns:
            int: Number of durable rows deleted
        """
        now = self.clock()
        count = self.repository.purge(
            completed_before=now - self.retention,
            abandoned_before=now - timedelta(hours=self.retention_hours)
        )
        if count:
            log.info(f"Cleaned up {count} expired sync status records")
        return count
