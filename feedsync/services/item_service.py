"""Service for local item reads and user state changes."""

import logging

from feedsync.domain.actions import ActionCategory, ActionType
from feedsync.errors import ResourceNotFoundError, ValidationError
from feedsync.utils.locks import item_locks
from feedsync.utils.time_utils import utcnow

log = logging.getLogger(__name__)

class ItemService:
    """Applies user actions locally and queues them for push."""

    def __init__(self, item_repository, change_queue, orchestrator=None, locks=item_locks, clock=utcnow):
        self.item_repository = item_repository
        self.change_queue = change_queue
        self.orchestrator = orchestrator
        self.locks = locks
        self.clock = clock

    def get_item(self, item_id):
        item = self.item_repository.get_by_local_or_upstream_id(item_id)
        if item is None:
            raise ResourceNotFoundError(f"Item {item_id} not found")
        return item

    def list_items(self, feed_id=None, unread_only=False, starred_only=False, limit=100, offset=0):
        return self.item_repository.list_items(
            feed_id=feed_id,
            unread_only=unread_only,
            starred_only=starred_only,
            limit=limit,
            offset=offset
        )

    def read_counters(self):
        return self.item_repository.read_counters()

    def enqueue_local_change(self, item_id, action_type, sync_after=False):
        """Apply a user action to the local item and queue it for push.

        Runs under the item's lock so it never interleaves with Pull Sync
        writing the same row. No network I/O happens here.

        Args:
            item_id: Local id or upstream id
            action_type: read, unread, star or unstar
            sync_after: Also trigger a sync once the change is stored

        Returns:
            tuple: (item, queue entry)

        Raises:
            ValidationError: unknown action
            ResourceNotFoundError: unknown item
        """
        try:
            action = ActionType.parse(action_type)
        except ValueError as e:
            raise ValidationError(str(e), details={"allowed": [a.value for a in ActionType]}) from e

        item = self.get_item(item_id)

        with self.locks.hold(item.upstream_id):
            self.item_repository.db.session.refresh(item)
            now = self.clock()

            if action.category == ActionCategory.READ:
                changed = item.is_read != action.target_value
                item.is_read = action.target_value
            else:
                changed = item.is_starred != action.target_value
                item.is_starred = action.target_value

            item.last_local_update = now
            if changed:
                item.version = (item.version or 0) + 1

            entry = self.change_queue.enqueue(item.upstream_id, action, timestamp=now, commit=False)
            self.item_repository.commit()

        log.info(f"Local {action.value} on {item.upstream_id} queued as change {entry.id}")

        if sync_after and self.orchestrator is not None:
            self.orchestrator.trigger_sync(trigger="local_change")

        return item, entry
