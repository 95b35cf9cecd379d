import pytest
from conftest import at

from feedsync.domain.actions import ActionType
from feedsync.domain.upstream import ZONE_WRITE, PushOutcome
from feedsync.errors import RateLimitExceededError, TransientNetworkError
from feedsync.models.change_queue import STATUS_PENDING, ChangeQueueEntry
from feedsync.services.push_sync import PushSync
from feedsync.services.rate_limiter import RateLimiter


def test_read_then_unread_sends_single_unread(push_sync, change_queue, upstream):
    upstream.add("x", read=True)
    change_queue.enqueue("x", "read", timestamp=at(1))
    change_queue.enqueue("x", "unread", timestamp=at(2))

    result = push_sync.run()

    assert upstream.push_calls == [(ActionType.UNREAD, ["x"])]
    assert upstream.items["x"]["read"] is False
    assert result.coalesced == 1
    assert result.acked == 2
    assert ChangeQueueEntry.query.count() == 0


def test_one_call_per_action_group(push_sync, change_queue, upstream):
    change_queue.enqueue("a", "read", timestamp=at(1))
    change_queue.enqueue("b", "star", timestamp=at(2))
    change_queue.enqueue("c", "read", timestamp=at(3))

    result = push_sync.run()

    assert upstream.push_calls == [(ActionType.READ, ["a", "c"]), (ActionType.STAR, ["b"])]
    assert result.calls == 2
    assert result.sent == 3


def test_batch_fitting_budget_proceeds(db, change_queue, upstream, clock):
    limiter = RateLimiter(db, limits={ZONE_WRITE: 100}, clock=clock)
    limiter.record_external_usage(used=98, limit=100, zone=ZONE_WRITE)
    for i in range(5):
        change_queue.enqueue(f"item-{i}", "read", timestamp=at(i))

    result = PushSync(upstream, change_queue, limiter).run()

    assert len(upstream.push_calls) == 1
    assert result.acked == 5
    assert limiter.remaining(ZONE_WRITE) == 1


def test_partial_rejection_settles_each_entry(db, push_sync, change_queue, upstream):
    ids = [f"item-{i}" for i in range(5)]
    for i, upstream_id in enumerate(ids):
        change_queue.enqueue(upstream_id, "read", timestamp=at(i))
    upstream.reject = {"item-1": "Item not found", "item-3": "Item not found"}

    result = push_sync.run()

    remaining = {e.item_upstream_id: e for e in ChangeQueueEntry.query.all()}
    assert result.acked == 3
    assert result.rejected == 2
    assert sorted(remaining) == ["item-1", "item-3"]
    assert all(e.attempts == 1 and e.status == STATUS_PENDING for e in remaining.values())
    assert remaining["item-1"].last_error == "Item not found"


def test_unacknowledged_ids_are_failed(db, mocker, change_queue, rate_limiter):
    change_queue.enqueue("a", "read", timestamp=at(1))
    change_queue.enqueue("b", "read", timestamp=at(2))
    client = mocker.MagicMock()
    client.push_state_changes.return_value = PushOutcome(accepted=["a"])

    result = PushSync(client, change_queue, rate_limiter).run()

    assert result.acked == 1
    assert result.rejected == 1
    assert ChangeQueueEntry.query.one().last_error == "Not acknowledged by upstream"


def test_batch_failure_fails_every_entry_and_raises(push_sync, change_queue, upstream):
    change_queue.enqueue("a", "read", timestamp=at(1))
    change_queue.enqueue("b", "star", timestamp=at(2))
    upstream.push_error = TransientNetworkError("HTTP 503")

    with pytest.raises(TransientNetworkError):
        push_sync.run()

    entries = ChangeQueueEntry.query.all()
    assert len(entries) == 2
    assert all(e.attempts == 1 for e in entries)
    assert len(upstream.push_calls) == 1


def test_write_budget_exhaustion_releases_unsent(db, change_queue, upstream, clock):
    limiter = RateLimiter(db, limits={ZONE_WRITE: 1}, clock=clock)
    change_queue.enqueue("a", "read", timestamp=at(1))
    change_queue.enqueue("b", "star", timestamp=at(2))

    with pytest.raises(RateLimitExceededError) as exc_info:
        PushSync(upstream, change_queue, limiter).run()

    assert exc_info.value.zone == ZONE_WRITE
    assert upstream.push_calls == [(ActionType.READ, ["a"])]
    remaining = ChangeQueueEntry.query.one()
    assert remaining.item_upstream_id == "b"
    assert remaining.status == STATUS_PENDING
    assert remaining.attempts == 0


def test_repeated_push_is_idempotent(push_sync, change_queue, upstream):
    upstream.add("x", read=True)
    change_queue.enqueue("x", "read", timestamp=at(1))
    push_sync.run()
    change_queue.enqueue("x", "read", timestamp=at(2))

    result = push_sync.run()

    assert result.acked == 1
    assert upstream.items["x"]["read"] is True
    assert ChangeQueueEntry.query.count() == 0


def test_time_budget_stops_between_batches(db, change_queue, upstream, rate_limiter):
    for i in range(4):
        change_queue.enqueue(f"item-{i}", "read", timestamp=at(i))
    ticks = iter([0, 0, 31])

    result = PushSync(
        upstream, change_queue, rate_limiter, batch_size=2, time_budget_seconds=30,
        monotonic=lambda: next(ticks)
    ).run()

    assert result.time_budget_exhausted
    assert result.sent == 2
    assert ChangeQueueEntry.query.count() == 2


def test_retry_of_older_change_never_overwrites_newer_push(push_sync, change_queue, upstream, clock):
    upstream.add("x")
    change_queue.enqueue("x", "read", timestamp=at(1))
    upstream.push_error = TransientNetworkError("HTTP 503")
    with pytest.raises(TransientNetworkError):
        push_sync.run()

    upstream.push_error = None
    change_queue.enqueue("x", "unread", timestamp=at(2))
    push_sync.run()

    clock.advance(minutes=20)
    push_sync.run()

    assert upstream.push_calls == [(ActionType.READ, ["x"]), (ActionType.UNREAD, ["x"])]
    assert upstream.items["x"]["read"] is False
    assert ChangeQueueEntry.query.count() == 0


def test_ack_keeps_queued_change_in_other_category(push_sync, change_queue, upstream):
    change_queue.enqueue("x", "star", timestamp=at(1))
    upstream.reject = {"x": "Item locked"}
    push_sync.run()

    upstream.reject = {}
    change_queue.enqueue("x", "read", timestamp=at(2))
    push_sync.run()

    remaining = ChangeQueueEntry.query.one()
    assert remaining.action_type == ActionType.STAR.value
    assert remaining.attempts == 1
