"""
Pull Sync: bring upstream item state into the local cache.

Incremental pulls ask upstream only for items newer than the stored
watermark and exclude items already read upstream. A full pull ignores the
watermark; it runs when explicitly requested, when no watermark exists, or
when the last full pull is older than the configured interval.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError

from feedsync.domain.conflicts import ConflictSummary, LocalState, RemoteState, resolve
from feedsync.domain.sync_run import SyncMode
from feedsync.domain.upstream import ZONE_READ, UpstreamItem
from feedsync.errors import ConflictApplyError, RateLimitExceededError
from feedsync.models.item import Item
from feedsync.utils.locks import item_locks
from feedsync.utils.time_utils import from_epoch, to_epoch, utcnow

log = logging.getLogger(__name__)

WATERMARK_KEY = "last_incremental_sync_timestamp"
FULL_SYNC_KEY = "last_full_sync_timestamp"

@dataclass
class PullResult:
    full: bool = False
    pages: int = 0
    fetched: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    requeued: int = 0
    truncated: bool = False
    watermark_advanced: bool = False
    conflicts: ConflictSummary = field(default_factory=ConflictSummary)

    def to_dict(self):
        return {
            "full": self.full,
            "pages": self.pages,
            "fetched": self.fetched,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "requeued": self.requeued,
            "truncated": self.truncated,
            "watermark_advanced": self.watermark_advanced,
            "conflicts": self.conflicts.to_dict(),
        }

class PullSync:
    """Fetches upstream deltas and merges them through the conflict resolver."""

    def __init__(self, client, item_repository, setting_repository, change_queue, rate_limiter,
                 page_size=100, max_articles=500, full_sync_interval_days=7, exclude_read=True,
                 locks=item_locks, clock=utcnow):
        self.client = client
        self.item_repository = item_repository
        self.setting_repository = setting_repository
        self.change_queue = change_queue
        self.rate_limiter = rate_limiter
        self.page_size = page_size
        self.max_articles = max_articles
        self.full_sync_interval = timedelta(days=full_sync_interval_days)
        self.exclude_read = exclude_read
        self.locks = locks
        self.clock = clock

    def plan(self, mode=SyncMode.INCREMENTAL):
        """Decide between a full and an incremental pull.

        Returns:
            tuple: (full, since) where since is None for a full pull
        """
        mode = SyncMode.parse(mode)
        watermark = from_epoch(self.setting_repository.get_int(WATERMARK_KEY))
        last_full = from_epoch(self.setting_repository.get_int(FULL_SYNC_KEY))
        now = self.clock()

        if mode == SyncMode.FULL:
            log.info("Performing full pull (requested)")
            return True, None
        if watermark is None:
            log.info("Performing full pull (no previous watermark)")
            return True, None
        if last_full is None or now - last_full > self.full_sync_interval:
            log.info("Performing full pull (periodic refresh)")
            return True, None

        log.info(f"Performing incremental pull (items newer than {watermark.isoformat()})")
        return False, watermark

    def run(self, mode=SyncMode.INCREMENTAL, progress=None):
        """Pull and apply every page, then advance the watermark.

        Args:
            mode: incremental or full
            progress: Optional callback receiving the PullResult after each page

        Returns:
            PullResult

        Raises:
            RateLimitExceededError: read budget ran out; pages already applied
                are kept but the watermark is not advanced
            SyncError: batch-level upstream failure
        """
        started = self.clock()
        full, since = self.plan(mode)
        result = PullResult(full=full)
        continuation = None

        while result.fetched < self.max_articles:
            if not self.rate_limiter.reserve(1, ZONE_READ):
                raise RateLimitExceededError(
                    "Read budget exhausted during pull",
                    details=result.to_dict(),
                    zone=ZONE_READ,
                    reset_after=self.rate_limiter.seconds_until_reset(ZONE_READ)
                )

            page = self.client.list_changed_items(
                since=since,
                exclude_read=self.exclude_read,
                limit=min(self.page_size, self.max_articles - result.fetched),
                continuation=continuation
            )
            self.rate_limiter.record_snapshots(page.rate_limits)

            result.pages += 1
            result.fetched += len(page.items)
            self._apply_page(page.items, result, started)

            if progress:
                progress(result)

            continuation = page.continuation
            if not continuation or not page.items:
                break
        else:
            result.truncated = continuation is not None

        if result.truncated:
            log.warning(f"Pull stopped at {self.max_articles} items; older changes wait for the next full pull")

        self.item_repository.refresh_read_counters()

        self.setting_repository.save_setting(WATERMARK_KEY, to_epoch(started))
        if full:
            self.setting_repository.save_setting(FULL_SYNC_KEY, to_epoch(started))
        result.watermark_advanced = True

        log.info(
            f"Pull complete: {result.fetched} fetched, {result.created} new, "
            f"{result.updated} updated, {result.skipped} skipped, "
            f"{result.conflicts.total} conflicts"
        )
        return result

    def _apply_page(self, payloads, result, sync_time):
        for payload in payloads:
            try:
                upstream = UpstreamItem.from_payload(payload)
            except (ValueError, TypeError, AttributeError) as e:
                log.warning(f"Skipping malformed upstream item: {e}")
                result.skipped += 1
                continue

            try:
                self.apply_item(upstream, result, sync_time)
            except ConflictApplyError:
                log.exception(f"Could not apply resolution for {upstream.upstream_id}")
                result.skipped += 1

    def apply_item(self, upstream: UpstreamItem, result: PullResult, sync_time):
        """Upsert one item under its lock, resolving against pending local edits."""
        with self.locks.hold(upstream.upstream_id):
            try:
                item = self.item_repository.get_by_upstream_id(upstream.upstream_id)
                if item is None:
                    self._create(upstream, sync_time)
                else:
                    self._merge(item, upstream, result, sync_time)
                self.item_repository.commit()
            except SQLAlchemyError as e:
                self.item_repository.rollback()
                raise ConflictApplyError(
                    f"Failed to store item {upstream.upstream_id}: {e}",
                    details={"upstream_id": upstream.upstream_id}
                ) from e

        if item is None:
            result.created += 1
        else:
            result.updated += 1

    def _create(self, upstream, sync_time):
        self.item_repository.add(Item(
            upstream_id=upstream.upstream_id,
            feed_id=upstream.feed_id,
            title=upstream.title,
            url=upstream.url,
            published_at=upstream.published_at,
            is_read=upstream.is_read,
            is_starred=upstream.is_starred,
            last_sync_update=upstream.updated_at or sync_time,
            version=0
        ))

    def _merge(self, item, upstream, result, sync_time):
        item.feed_id = upstream.feed_id or item.feed_id
        item.title = upstream.title or item.title
        item.url = upstream.url or item.url
        item.published_at = upstream.published_at or item.published_at

        local = LocalState(
            is_read=item.is_read,
            is_starred=item.is_starred,
            last_local_update=item.last_local_update,
            last_sync_update=item.last_sync_update
        )

        if not local.has_pending_change:
            self._set_flags(item, upstream.is_read, upstream.is_starred)
            item.last_sync_update = upstream.updated_at or sync_time
            return

        resolution = resolve(local, RemoteState(upstream.is_read, upstream.is_starred, upstream.updated_at))
        result.conflicts.record(resolution)

        if resolution.local_wins:
            requeued = 0
            for action in resolution.actions:
                # An open entry keeps its attempt count and backoff
                if self.change_queue.has_open(upstream.upstream_id, action):
                    continue
                self.change_queue.enqueue(
                    upstream.upstream_id, action, timestamp=item.last_local_update, commit=False
                )
                requeued += 1
            result.requeued += requeued
            if requeued:
                log.info(f"Kept local state for {upstream.upstream_id}, re-queued {requeued} pushes")
            return

        self._set_flags(item, resolution.is_read, resolution.is_starred)
        item.last_sync_update = resolution.last_sync_update
        self.change_queue.discard_superseded(upstream.upstream_id, resolution.last_sync_update, commit=False)
        if resolution.conflict_type:
            log.info(f"Applied newer upstream state for {upstream.upstream_id} ({resolution.conflict_type})")

    @staticmethod
    def _set_flags(item, is_read, is_starred):
        if item.is_read != is_read or item.is_starred != is_starred:
            item.is_read = is_read
            item.is_starred = is_starred
            item.version = (item.version or 0) + 1
