import os
import tempfile
from datetime import datetime, timedelta

import pytest

from feedsync import create_app
from feedsync.domain.actions import ActionCategory, ActionType
from feedsync.domain.upstream import READ_TAG, STARRED_TAG, PushOutcome, StreamPage
from feedsync.extensions import db as _db
from feedsync.models.item import Item
from feedsync.models.item_repository import SqlAlchemyItemRepository
from feedsync.models.setting_repository import SqlAlchemySettingRepository
from feedsync.models.sync_status_repository import SqlAlchemySyncStatusRepository
from feedsync.services.change_queue import ChangeQueue
from feedsync.services.item_service import ItemService
from feedsync.services.progress_tracker import ProgressTracker
from feedsync.services.pull_sync import PullSync
from feedsync.services.push_sync import PushSync
from feedsync.services.rate_limiter import RateLimiter
from feedsync.utils.locks import KeyedLock
from feedsync.utils.time_utils import to_epoch

T0 = datetime(2024, 6, 1, 12, 0, 0)


def at(minutes=0, seconds=0):
    """A point in test time relative to T0."""
    return T0 + timedelta(minutes=minutes, seconds=seconds)


class FakeClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


class FakeUpstream:
    """In-memory stand-in for the upstream reader API.

    Tag edits are applied to ``items`` so tests can assert on the final
    upstream state, not just on the calls made.
    """

    def __init__(self):
        self.items = {}
        self.list_calls = []
        self.push_calls = []
        self.reject = {}
        self.push_error = None
        self.list_error = None
        self.rate_limits = []

    def add(self, upstream_id, read=False, starred=False, updated=None, feed="feed/1", title=None):
        self.items[upstream_id] = {
            "read": read,
            "starred": starred,
            "updated": updated,
            "feed": feed,
            "title": title or f"Article {upstream_id}",
        }

    def payload(self, upstream_id):
        state = self.items[upstream_id]
        categories = ["user/-/state/com.google/reading-list"]
        if state["read"]:
            categories.append(READ_TAG)
        if state["starred"]:
            categories.append(STARRED_TAG)
        updated = to_epoch(state["updated"]) if state["updated"] else None
        return {
            "id": upstream_id,
            "title": state["title"],
            "categories": categories,
            "origin": {"streamId": state["feed"]},
            "published": updated,
            "updated": updated,
            "canonical": [{"href": f"https://example.com/{upstream_id}"}],
        }

    def list_changed_items(self, since=None, exclude_read=True, limit=100, continuation=None):
        self.list_calls.append({
            "since": since, "exclude_read": exclude_read, "limit": limit, "continuation": continuation
        })
        if self.list_error:
            raise self.list_error

        ids = sorted(self.items)
        if exclude_read:
            ids = [i for i in ids if not self.items[i]["read"]]
        if since is not None:
            ids = [i for i in ids if self.items[i]["updated"] is None or self.items[i]["updated"] > since]

        start = int(continuation or 0)
        page = ids[start:start + limit]
        next_token = str(start + limit) if start + limit < len(ids) else None
        return StreamPage(
            items=[self.payload(i) for i in page],
            continuation=next_token,
            rate_limits=list(self.rate_limits)
        )

    def push_state_changes(self, action_type, upstream_ids):
        action = ActionType.parse(action_type)
        ids = list(upstream_ids)
        self.push_calls.append((action, ids))
        if self.push_error:
            raise self.push_error

        accepted, rejected = [], {}
        for upstream_id in ids:
            if upstream_id in self.reject:
                rejected[upstream_id] = self.reject[upstream_id]
                continue
            state = self.items.setdefault(upstream_id, {
                "read": False, "starred": False, "updated": None, "feed": "feed/1", "title": upstream_id
            })
            key = "read" if action.category == ActionCategory.READ else "starred"
            state[key] = action.target_value
            accepted.append(upstream_id)
        return PushOutcome(accepted=accepted, rejected=rejected, rate_limits=list(self.rate_limits))


@pytest.fixture
def app():
    """Create and configure a Flask app for testing."""
    # A temp file rather than :memory: so worker threads see the same database
    db_fd, db_path = tempfile.mkstemp()

    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SECRET_KEY': 'test-key',
        'CACHE_TYPE': 'SimpleCache',
        'UPSTREAM_API_URL': 'https://upstream.test/reader/api/0',
        'UPSTREAM_ACCESS_TOKEN': 'test-token',
    })

    with app.app_context():
        _db.create_all()

    yield app

    with app.app_context():
        _db.session.remove()
        _db.engine.dispose()
    os.close(db_fd)
    os.unlink(db_path)

@pytest.fixture
def db(app):
    """Database bound to an application context for the test body."""
    with app.app_context():
        yield _db
        _db.session.remove()

@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()

@pytest.fixture
def runner(app):
    """A test CLI runner for the app."""
    return app.test_cli_runner()

@pytest.fixture
def clock():
    return FakeClock()

@pytest.fixture
def upstream():
    return FakeUpstream()

@pytest.fixture
def item_repository(db):
    return SqlAlchemyItemRepository(db)

@pytest.fixture
def setting_repository(db):
    return SqlAlchemySettingRepository(db)

@pytest.fixture
def change_queue(db, clock):
    return ChangeQueue(db, max_retries=3, backoff_base_minutes=10, backoff_cap_minutes=360, clock=clock)

@pytest.fixture
def rate_limiter(db, clock):
    return RateLimiter(db, limits={'read': 5000, 'write': 100}, window_seconds=86400, clock=clock)

@pytest.fixture
def tracker(db, clock):
    return ProgressTracker(
        SqlAlchemySyncStatusRepository(db), retention_hours=24, grace_seconds=60, clock=clock
    )

@pytest.fixture
def pull_sync(upstream, item_repository, setting_repository, change_queue, rate_limiter, clock):
    return PullSync(
        upstream, item_repository, setting_repository, change_queue, rate_limiter,
        page_size=2, max_articles=10, full_sync_interval_days=7, exclude_read=True,
        locks=KeyedLock(), clock=clock
    )

@pytest.fixture
def push_sync(upstream, change_queue, rate_limiter):
    return PushSync(upstream, change_queue, rate_limiter, batch_size=100, time_budget_seconds=30)

@pytest.fixture
def make_item(db):
    """Factory for committed Item rows."""
    def _make(upstream_id, **kwargs):
        item = Item(
            upstream_id=upstream_id,
            feed_id=kwargs.pop('feed_id', 'feed/1'),
            title=kwargs.pop('title', f"Article {upstream_id}"),
            is_read=kwargs.pop('is_read', False),
            is_starred=kwargs.pop('is_starred', False),
            version=kwargs.pop('version', 0),
            **kwargs
        )
        db.session.add(item)
        db.session.commit()
        return item
    return _make

@pytest.fixture
def item_service_factory(item_repository, change_queue, clock):
    """Build an ItemService, optionally wired to an orchestrator."""
    def _make(orchestrator=None):
        return ItemService(item_repository, change_queue, orchestrator=orchestrator, locks=KeyedLock(), clock=clock)
    return _make
