from flask_caching import Cache

from feedsync.domain.sync_run import SyncRun, SyncStage
from feedsync.extensions import cache
from feedsync.models.sync_status import SyncStatus
from feedsync.models.sync_status_repository import SqlAlchemySyncStatusRepository
from feedsync.services.progress_tracker import ProgressTracker


def new_run(clock, **kwargs):
    return SyncRun.new(now=clock(), **kwargs)


def test_save_writes_both_stores(db, tracker, clock):
    run = new_run(clock)
    run.advance(SyncStage.PULLING, 20, "Pulling", now=clock())

    assert tracker.save(run)

    assert cache.get(f"sync_status:{run.sync_id}")["progress"] == 20
    assert db.session.get(SyncStatus, run.sync_id).stage == "pulling"


def test_get_prefers_primary_store(tracker, clock, mocker):
    run = new_run(clock)
    tracker.save(run)
    durable_get = mocker.spy(tracker.repository, "get")

    assert tracker.get(run.sync_id).sync_id == run.sync_id
    durable_get.assert_not_called()


def test_get_falls_back_to_durable_store(tracker, clock):
    run = new_run(clock)
    run.advance(SyncStage.PUSHING, 70, "Pushing", now=clock())
    tracker.save(run)
    cache.clear()

    restored = tracker.get(run.sync_id)

    assert restored.stage == SyncStage.PUSHING
    assert restored.progress == 70
    assert cache.get(f"sync_status:{run.sync_id}") is None


def test_finished_run_read_from_durable_store_is_cached(tracker, clock):
    run = new_run(clock)
    run.complete("done", now=clock())
    tracker.save(run)
    cache.clear()

    assert tracker.get(run.sync_id).stage == SyncStage.COMPLETED
    assert cache.get(f"sync_status:{run.sync_id}")["stage"] == "completed"


def test_other_process_sees_progress_through_completion(app, db, clock):
    repository = SqlAlchemySyncStatusRepository(db)
    runner_cache = Cache(config={"CACHE_TYPE": "SimpleCache"})
    poller_cache = Cache(config={"CACHE_TYPE": "SimpleCache"})
    runner_cache.init_app(app)
    poller_cache.init_app(app)
    runner = ProgressTracker(repository, cache_instance=runner_cache, clock=clock)
    poller = ProgressTracker(repository, cache_instance=poller_cache, clock=clock)

    run = new_run(clock)
    run.advance(SyncStage.PULLING, 30, "Pulling", now=clock())
    runner.save(run)
    assert poller.get(run.sync_id).stage == SyncStage.PULLING

    run.advance(SyncStage.PUSHING, 70, "Pushing", now=clock())
    runner.save(run)
    assert poller.get(run.sync_id).progress == 70

    run.complete("done", now=clock())
    runner.save(run)
    assert poller.get(run.sync_id).stage == SyncStage.COMPLETED


def test_unknown_run_returns_none(tracker):
    assert tracker.get("does-not-exist") is None


def test_completed_run_readable_until_retention_ends(tracker, clock):
    run = new_run(clock)
    run.complete("Sync completed", now=clock())
    tracker.save(run)
    cache.clear()

    clock.advance(seconds=30)
    assert tracker.get(run.sync_id).stage == SyncStage.COMPLETED

    clock.advance(hours=25)
    assert tracker.get(run.sync_id) is None


def test_grace_period_floors_short_retention(db, clock):
    tracker = ProgressTracker(
        SqlAlchemySyncStatusRepository(db), retention_hours=0, grace_seconds=60, clock=clock
    )
    run = new_run(clock)
    run.complete("done", now=clock())
    tracker.save(run)

    clock.advance(seconds=59)
    assert tracker.get(run.sync_id) is not None

    clock.advance(seconds=2)
    assert tracker.get(run.sync_id) is None


def test_cleanup_purges_expired_and_abandoned(db, tracker, clock):
    finished = new_run(clock)
    finished.complete("done", now=clock())
    abandoned = new_run(clock)
    abandoned.advance(SyncStage.PULLING, 10, now=clock())
    tracker.save(finished)
    tracker.save(abandoned)

    clock.advance(hours=2)
    live = new_run(clock)
    tracker.save(live)

    clock.advance(hours=23)
    assert tracker.cleanup() == 2
    assert [r.sync_id for r in tracker.recent()] == [live.sync_id]


def test_find_active_ignores_terminal_and_stale_runs(tracker, clock):
    stale = new_run(clock)
    tracker.save(stale)

    clock.advance(minutes=45)
    done = new_run(clock)
    done.complete("done", now=clock())
    tracker.save(done)
    active = new_run(clock)
    active.advance(SyncStage.PULLING, 10, now=clock())
    tracker.save(active)

    assert tracker.find_active(stale_after_minutes=30).sync_id == active.sync_id


def test_save_survives_durable_failure(tracker, clock, mocker):
    mocker.patch.object(tracker.repository, "upsert", return_value=None)
    run = new_run(clock)

    assert tracker.save(run)
    assert tracker.get(run.sync_id) is not None
