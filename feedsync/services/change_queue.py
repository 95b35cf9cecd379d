"""
Durable queue of local state changes awaiting push.

enqueue() is append-only and safe to call from any request handler.
drain/ack/fail/release are serialized by a queue lock, and drain claims rows
with a conditional UPDATE so that two drains never hand out the same entry,
even across processes sharing the database.
"""

import logging
import threading
import uuid
from datetime import timedelta

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from feedsync.domain.actions import ActionType
from feedsync.extensions import db
from feedsync.models.change_queue import (
    STATUS_DEAD, STATUS_IN_FLIGHT, STATUS_PENDING, ChangeQueueEntry,
)
from feedsync.utils.time_utils import utcnow

log = logging.getLogger(__name__)

def category_actions(action_type):
    """Action values sharing a category with action_type (read/unread or star/unstar)."""
    category = ActionType.parse(action_type).category
    return [action.value for action in ActionType if action.category == category]

class ChangeQueue:
    """Change queue backed by the change_queue table."""

    def __init__(self, db_instance=None, max_retries=3, backoff_base_minutes=10,
                 backoff_cap_minutes=360, clock=utcnow):
        self.db = db_instance or db
        self.max_retries = max_retries
        self.backoff_base_minutes = backoff_base_minutes
        self.backoff_cap_minutes = backoff_cap_minutes
        self.clock = clock
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config, clock=utcnow):
        return cls(
            max_retries=config.get('SYNC_MAX_RETRIES', 3),
            backoff_base_minutes=config.get('SYNC_RETRY_BACKOFF_MINUTES', 10),
            backoff_cap_minutes=config.get('SYNC_RETRY_BACKOFF_CAP_MINUTES', 360),
            clock=clock
        )

    def backoff(self, attempts):
        """Delay before the next attempt after the given number of failures."""
        minutes = self.backoff_base_minutes * (2 ** max(0, attempts - 1))
        return timedelta(minutes=min(minutes, self.backoff_cap_minutes))

    def _commit(self):
        try:
            self.db.session.commit()
        except SQLAlchemyError:
            self.db.session.rollback()
            raise

    def enqueue(self, item_upstream_id, action_type, timestamp=None, commit=True):
        """Append a change. Never touches the network.

        Args:
            item_upstream_id: Upstream id of the changed item
            action_type: read, unread, star or unstar
            timestamp: When the user acted; defaults to now
            commit: False to leave the commit to the caller's transaction

        Returns:
            ChangeQueueEntry: The new entry
        """
        action = ActionType.parse(action_type)
        now = self.clock()
        entry = ChangeQueueEntry(
            item_upstream_id=str(item_upstream_id),
            action_type=action.value,
            action_timestamp=timestamp or now,
            attempts=0,
            next_attempt_at=now,
            status=STATUS_PENDING,
            created_at=now
        )
        self.db.session.add(entry)
        if commit:
            self._commit()
        log.debug(f"Queued {action.value} for {item_upstream_id}")
        return entry

    def has_open(self, item_upstream_id, action_type):
        """True if a pending or in-flight entry already carries this action for the item."""
        return self.db.session.query(ChangeQueueEntry.id).filter(
            ChangeQueueEntry.item_upstream_id == str(item_upstream_id),
            ChangeQueueEntry.action_type == ActionType.parse(action_type).value,
            ChangeQueueEntry.status != STATUS_DEAD
        ).first() is not None

    def discard_superseded(self, item_upstream_id, before, commit=True):
        """Drop pending entries for an item made obsolete by a newer remote value.

        In-flight entries are left alone; they are already being pushed.

        Returns:
            int: Number of entries dropped
        """
        count = ChangeQueueEntry.query.filter(
            ChangeQueueEntry.item_upstream_id == str(item_upstream_id),
            ChangeQueueEntry.status == STATUS_PENDING,
            ChangeQueueEntry.action_timestamp <= before
        ).delete(synchronize_session=False)
        if commit:
            self._commit()
        if count:
            log.info(f"Discarded {count} queued changes for {item_upstream_id} superseded by upstream")
        return count

    def drain(self, max_batch_size=100):
        """Claim up to max_batch_size due entries, oldest action first.

        Returns:
            list: Claimed ChangeQueueEntry rows, now in_flight
        """
        if max_batch_size <= 0:
            return []

        with self._lock:
            now = self.clock()
            candidates = [
                row.id for row in self.db.session.query(ChangeQueueEntry.id).filter(
                    ChangeQueueEntry.status == STATUS_PENDING,
                    ChangeQueueEntry.next_attempt_at <= now
                ).order_by(
                    ChangeQueueEntry.action_timestamp, ChangeQueueEntry.id
                ).limit(max_batch_size).all()
            ]
            if not candidates:
                return []

            token = str(uuid.uuid4())
            # Only rows still pending are claimed; a concurrent drain elsewhere
            # may have taken some of them between the select and the update
            ChangeQueueEntry.query.filter(
                ChangeQueueEntry.id.in_(candidates),
                ChangeQueueEntry.status == STATUS_PENDING
            ).update({
                ChangeQueueEntry.status: STATUS_IN_FLIGHT,
                ChangeQueueEntry.claim_token: token,
                ChangeQueueEntry.claimed_at: now
            }, synchronize_session=False)
            self._commit()

            entries = ChangeQueueEntry.query.filter_by(
                claim_token=token, status=STATUS_IN_FLIGHT
            ).order_by(ChangeQueueEntry.action_timestamp, ChangeQueueEntry.id).all()

            log.debug(f"Drained {len(entries)} change queue entries")
            return entries

    def ack(self, entry_ids):
        """Remove acknowledged entries.

        Older entries for the same item and category that are waiting on a
        retry or sit in dead letters are removed too; replaying them would
        overwrite the value upstream just accepted.

        Returns:
            int: Number of acknowledged entries removed
        """
        ids = list(entry_ids or [])
        if not ids:
            return 0

        with self._lock:
            acked = ChangeQueueEntry.query.filter(ChangeQueueEntry.id.in_(ids)).all()
            superseded = 0
            for entry in acked:
                superseded += ChangeQueueEntry.query.filter(
                    ChangeQueueEntry.item_upstream_id == entry.item_upstream_id,
                    ChangeQueueEntry.action_type.in_(category_actions(entry.action_type)),
                    ChangeQueueEntry.status != STATUS_IN_FLIGHT,
                    ChangeQueueEntry.action_timestamp <= entry.action_timestamp,
                    ChangeQueueEntry.id.notin_(ids)
                ).delete(synchronize_session=False)

            count = ChangeQueueEntry.query.filter(
                ChangeQueueEntry.id.in_(ids)
            ).delete(synchronize_session=False)
            self._commit()

        if superseded:
            log.info(f"Dropped {superseded} older queued changes superseded by acknowledged pushes")
        return count

    def fail(self, entry_ids, error=None):
        """Record a failed attempt and schedule the retry.

        Entries reaching the retry ceiling move to the dead-letter set.

        Returns:
            list: Ids of entries that were dead-lettered
        """
        ids = list(entry_ids or [])
        if not ids:
            return []

        dead = []
        with self._lock:
            now = self.clock()
            entries = ChangeQueueEntry.query.filter(
                ChangeQueueEntry.id.in_(ids),
                ChangeQueueEntry.status != STATUS_DEAD
            ).all()

            for entry in entries:
                entry.attempts = (entry.attempts or 0) + 1
                entry.last_attempt_at = now
                entry.last_error = str(error)[:2000] if error else None
                entry.claim_token = None
                entry.claimed_at = None

                if entry.attempts >= self.max_retries:
                    entry.status = STATUS_DEAD
                    dead.append(entry.id)
                else:
                    entry.status = STATUS_PENDING
                    entry.next_attempt_at = now + self.backoff(entry.attempts)
                    log.warning(
                        f"Change {entry.id} ({entry.action_type} {entry.item_upstream_id}) failed, "
                        f"retry {entry.attempts}/{self.max_retries} at {entry.next_attempt_at.isoformat()}"
                    )

            self._commit()

        for entry_id in dead:
            log.error(f"Change {entry_id} moved to dead letters after {self.max_retries} attempts: {error}")
        return dead

    def release(self, entry_ids):
        """Return claimed entries to pending without counting an attempt."""
        ids = list(entry_ids or [])
        if not ids:
            return 0

        with self._lock:
            count = ChangeQueueEntry.query.filter(
                ChangeQueueEntry.id.in_(ids),
                ChangeQueueEntry.status == STATUS_IN_FLIGHT
            ).update({
                ChangeQueueEntry.status: STATUS_PENDING,
                ChangeQueueEntry.claim_token: None,
                ChangeQueueEntry.claimed_at: None
            }, synchronize_session=False)
            self._commit()
            return count

    def release_stale(self, older_than_seconds=1800):
        """Return entries claimed by a worker that never finished to pending."""
        with self._lock:
            cutoff = self.clock() - timedelta(seconds=older_than_seconds)
            count = ChangeQueueEntry.query.filter(
                ChangeQueueEntry.status == STATUS_IN_FLIGHT,
                ChangeQueueEntry.claimed_at < cutoff
            ).update({
                ChangeQueueEntry.status: STATUS_PENDING,
                ChangeQueueEntry.claim_token: None,
                ChangeQueueEntry.claimed_at: None
            }, synchronize_session=False)
            self._commit()

        if count:
            log.warning(f"Released {count} stale in-flight change queue entries")
        return count

    def dead_letters(self, limit=100):
        return ChangeQueueEntry.query.filter_by(status=STATUS_DEAD).order_by(
            ChangeQueueEntry.last_attempt_at.desc(), ChangeQueueEntry.id.desc()
        ).limit(limit).all()

    def requeue_dead(self, entry_ids=None):
        """Give dead-lettered entries a fresh set of attempts.

        Args:
            entry_ids: Entries to requeue, or None for all of them

        Returns:
            int: Number of entries requeued
        """
        with self._lock:
            query = ChangeQueueEntry.query.filter(ChangeQueueEntry.status == STATUS_DEAD)
            if entry_ids is not None:
                ids = list(entry_ids)
                if not ids:
                    return 0
                query = query.filter(ChangeQueueEntry.id.in_(ids))

            count = query.update({
                ChangeQueueEntry.status: STATUS_PENDING,
                ChangeQueueEntry.attempts: 0,
                ChangeQueueEntry.next_attempt_at: self.clock(),
                ChangeQueueEntry.last_error: None
            }, synchronize_session=False)
            self._commit()

        log.info(f"Requeued {count} dead-lettered changes")
        return count

    def purge_dead(self, older_than_days=30):
        with self._lock:
            cutoff = self.clock() - timedelta(days=older_than_days)
            count = ChangeQueueEntry.query.filter(
                ChangeQueueEntry.status == STATUS_DEAD,
                ChangeQueueEntry.last_attempt_at < cutoff
            ).delete(synchronize_session=False)
            self._commit()

        if count:
            log.info(f"Purged {count} dead-lettered changes older than {older_than_days} days")
        return count

    def stats(self):
        """Queue depth by status plus retry and age details."""
        now = self.clock()
        counts = dict(
            self.db.session.query(ChangeQueueEntry.status, func.count(ChangeQueueEntry.id))
            .group_by(ChangeQueueEntry.status).all()
        )
        oldest = self.db.session.query(func.min(ChangeQueueEntry.action_timestamp)).filter(
            ChangeQueueEntry.status == STATUS_PENDING
        ).scalar()
        retrying = ChangeQueueEntry.query.filter(
            ChangeQueueEntry.status == STATUS_PENDING,
            ChangeQueueEntry.attempts > 0
        ).count()

        return {
            "pending": counts.get(STATUS_PENDING, 0),
            "in_flight": counts.get(STATUS_IN_FLIGHT, 0),
            "dead": counts.get(STATUS_DEAD, 0),
            "retrying": retrying,
            "oldest_pending_age_seconds": int((now - oldest).total_seconds()) if oldest else None,
        }
