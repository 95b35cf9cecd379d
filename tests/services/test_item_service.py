import pytest

from feedsync.errors import ResourceNotFoundError, ValidationError
from feedsync.models.change_queue import ChangeQueueEntry


def test_local_change_updates_item_and_queues_push(make_item, item_service_factory, clock):
    make_item("x")
    service = item_service_factory()

    item, entry = service.enqueue_local_change("x", "read")

    assert item.is_read
    assert item.version == 1
    assert item.last_local_update == clock()
    assert entry.action_type == "read"
    assert entry.action_timestamp == clock()
    assert ChangeQueueEntry.query.count() == 1


def test_lookup_by_local_id(make_item, item_service_factory):
    created = make_item("x")

    item, _ = item_service_factory().enqueue_local_change(str(created.id), "star")

    assert item.upstream_id == "x"
    assert item.is_starred


def test_repeating_same_action_keeps_version(make_item, item_service_factory):
    make_item("x", is_read=True, version=4)

    item, _ = item_service_factory().enqueue_local_change("x", "read")

    assert item.version == 4
    assert ChangeQueueEntry.query.count() == 1


def test_unknown_action_is_rejected(make_item, item_service_factory):
    make_item("x")

    with pytest.raises(ValidationError):
        item_service_factory().enqueue_local_change("x", "archive")
    assert ChangeQueueEntry.query.count() == 0


def test_unknown_item_is_rejected(db, item_service_factory):
    with pytest.raises(ResourceNotFoundError):
        item_service_factory().enqueue_local_change("missing", "read")


def test_sync_after_triggers_orchestrator(make_item, item_service_factory, mocker):
    make_item("x")
    orchestrator = mocker.MagicMock()

    item_service_factory(orchestrator).enqueue_local_change("x", "unstar", sync_after=True)

    orchestrator.trigger_sync.assert_called_once_with(trigger="local_change")


def test_list_items_filters(make_item, item_service_factory):
    make_item("a", is_read=True, feed_id="feed/a")
    make_item("b", is_starred=True, feed_id="feed/a")
    make_item("c", feed_id="feed/b")
    service = item_service_factory()

    assert {i.upstream_id for i in service.list_items(unread_only=True)} == {"b", "c"}
    assert [i.upstream_id for i in service.list_items(starred_only=True)] == ["b"]
    assert {i.upstream_id for i in service.list_items(feed_id="feed/a")} == {"a", "b"}
