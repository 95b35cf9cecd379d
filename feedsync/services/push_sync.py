"""
Push Sync: send queued local changes upstream.

Each drained batch is coalesced (latest action per item and category),
grouped by action type and sent as one edit-tag call per group. Accepted
entries are acked, rejected ones failed; a batch-level failure fails the
whole batch and aborts the stage.
"""

import logging
import time
from dataclasses import dataclass

from feedsync.domain.actions import coalesce, group_by_action
from feedsync.domain.upstream import ZONE_WRITE
from feedsync.errors import RateLimitExceededError, SyncError, UpstreamRejectedItemError

log = logging.getLogger(__name__)

@dataclass
class PushResult:
    batches: int = 0
    calls: int = 0
    sent: int = 0
    acked: int = 0
    coalesced: int = 0
    rejected: int = 0
    dead_lettered: int = 0
    deferred: int = 0
    time_budget_exhausted: bool = False

    def to_dict(self):
        return {
            "batches": self.batches,
            "calls": self.calls,
            "sent": self.sent,
            "acked": self.acked,
            "coalesced": self.coalesced,
            "rejected": self.rejected,
            "dead_lettered": self.dead_lettered,
            "deferred": self.deferred,
            "time_budget_exhausted": self.time_budget_exhausted,
        }

class PushSync:
    """Drains the change queue to upstream within a count and time budget."""

    def __init__(self, client, change_queue, rate_limiter, batch_size=100, time_budget_seconds=30,
                 stale_claim_seconds=1800, monotonic=time.monotonic):
        self.client = client
        self.change_queue = change_queue
        self.rate_limiter = rate_limiter
        self.batch_size = batch_size
        self.time_budget_seconds = time_budget_seconds
        self.stale_claim_seconds = stale_claim_seconds
        self.monotonic = monotonic

    def run(self, progress=None):
        """Push until the queue is empty or a budget runs out.

        Args:
            progress: Optional callback receiving the PushResult after each batch

        Returns:
            PushResult

        Raises:
            RateLimitExceededError: write budget ran out; unsent entries were
                released back to pending without counting an attempt
            SyncError: batch-level upstream failure, after failing the batch
        """
        self.change_queue.release_stale(self.stale_claim_seconds)

        result = PushResult()
        deadline = self.monotonic() + self.time_budget_seconds

        while True:
            if self.monotonic() >= deadline:
                result.time_budget_exhausted = True
                log.info("Push time budget exhausted; remaining changes wait for the next cycle")
                break

            batch = self.change_queue.drain(self.batch_size)
            if not batch:
                break

            result.batches += 1
            self.push_batch(batch, result)

            if progress:
                progress(result)

            if len(batch) < self.batch_size:
                break

        log.info(
            f"Push complete: {result.sent} sent in {result.calls} calls, {result.acked} acked, "
            f"{result.rejected} rejected, {result.coalesced} coalesced"
        )
        return result

    def push_batch(self, batch, result):
        """Send one drained batch. Every entry ends acked, failed or released."""
        winners, superseded = coalesce(batch)
        if superseded:
            self.change_queue.ack([entry.id for entry in superseded])
            result.coalesced += len(superseded)
            result.acked += len(superseded)

        groups = list(group_by_action(winners).items())
        for index, (action, entries) in enumerate(groups):
            if not self.rate_limiter.reserve(1, ZONE_WRITE):
                unsent = [entry.id for _, group in groups[index:] for entry in group]
                self.change_queue.release(unsent)
                result.deferred += len(unsent)
                raise RateLimitExceededError(
                    "Write budget exhausted during push",
                    details=result.to_dict(),
                    zone=ZONE_WRITE,
                    reset_after=self.rate_limiter.seconds_until_reset(ZONE_WRITE)
                )

            try:
                outcome = self.client.push_state_changes(action, [entry.item_upstream_id for entry in entries])
            except SyncError as e:
                failed = [entry.id for _, group in groups[index:] for entry in group]
                log.warning(f"Push of {action.value} batch failed: {e.message}")
                dead = self.change_queue.fail(failed, error=e.message)
                result.dead_lettered += len(dead)
                raise

            result.calls += 1
            result.sent += len(entries)
            self.rate_limiter.record_snapshots(outcome.rate_limits)
            self._settle(entries, outcome, result)

    def _settle(self, entries, outcome, result):
        accepted = set(outcome.accepted)
        acked, failed = [], {}

        for entry in entries:
            if entry.item_upstream_id in outcome.rejected:
                failed[entry.id] = UpstreamRejectedItemError(
                    outcome.rejected[entry.item_upstream_id], upstream_id=entry.item_upstream_id
                )
            elif entry.item_upstream_id in accepted:
                acked.append(entry.id)
            else:
                failed[entry.id] = UpstreamRejectedItemError(
                    "Not acknowledged by upstream", upstream_id=entry.item_upstream_id
                )

        if acked:
            result.acked += self.change_queue.ack(acked)

        for entry_id, error in failed.items():
            log.warning(f"Upstream rejected change {entry_id} for {error.upstream_id}: {error.message}")
            dead = self.change_queue.fail([entry_id], error=error.message)
            result.dead_lettered += len(dead)
        result.rejected += len(failed)
