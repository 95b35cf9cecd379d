import pytest

from feedsync.domain.sync_run import InvalidTransition, SyncMode, SyncRun, SyncStage


def test_new_run_starts_pending():
    run = SyncRun.new(SyncMode.FULL, trigger="cli")

    assert run.stage == SyncStage.PENDING
    assert run.progress == 0
    assert run.mode == SyncMode.FULL
    assert run.completed_at is None


def test_progress_never_decreases():
    run = SyncRun.new()
    run.advance(SyncStage.PULLING, 40)
    run.advance(progress=20, message="late update")

    assert run.progress == 40
    assert run.message == "late update"


def test_stages_cannot_move_backwards():
    run = SyncRun.new()
    run.advance(SyncStage.PUSHING, 60)

    with pytest.raises(InvalidTransition):
        run.advance(SyncStage.PULLING)


def test_push_first_order_allows_push_before_pull():
    run = SyncRun.new(stage_order="push_first")
    run.advance(SyncStage.PUSHING, 10)
    run.advance(SyncStage.PULLING, 50)

    with pytest.raises(InvalidTransition):
        run.advance(SyncStage.PUSHING)


def test_terminal_stages_are_final():
    run = SyncRun.new()
    run.complete("done")

    assert run.progress == 100
    assert run.completed_at is not None
    with pytest.raises(InvalidTransition):
        run.fail("too late")


def test_failure_from_any_active_stage():
    run = SyncRun.new()
    run.advance(SyncStage.PULLING, 30)
    run.fail("Upstream unavailable")

    assert run.stage == SyncStage.FAILED
    assert run.error_detail == "Upstream unavailable"
    assert run.progress == 30


def test_dict_round_trip_keeps_state():
    run = SyncRun.new(SyncMode.FULL, trigger="scheduled")
    run.advance(SyncStage.PULLING, 25, "Pulled 10 items")
    run.metrics["pulling"] = {"fetched": 10}

    restored = SyncRun.from_dict(run.to_dict())

    assert restored == run


def test_unknown_mode_is_rejected():
    with pytest.raises(ValueError):
        SyncMode.parse("partial")
