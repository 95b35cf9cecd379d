"""
Sync Orchestrator: owns the pull/push cycle and the SyncRun state machine.

At most one run is active per process, and a durable check against the
status store keeps a second process from starting one while another run is
still progressing. Runs execute on the task executor inside an application
context; progress goes to the ProgressTracker at every stage boundary and
after every page or batch.
"""

import logging
import threading

from feedsync.domain.sync_run import STAGE_ORDERS, SyncMode, SyncRun, SyncStage
from feedsync.errors import RateLimitExceededError, ResourceNotFoundError, SyncError
from feedsync.utils.time_utils import utcnow

log = logging.getLogger(__name__)

POLICY_COALESCE = "coalesce"
POLICY_QUEUE = "queue"

# Share of the progress bar per stage; pending covers the first 5%
STAGE_WEIGHTS = {SyncStage.PULLING: 55, SyncStage.PUSHING: 35}
START_PROGRESS = 5

class SyncOrchestrator:
    """Single-flight coordinator for sync runs."""

    def __init__(self, app, pull_sync, push_sync, tracker, executor, change_queue=None,
                 trigger_policy=POLICY_COALESCE, stage_order="pull_first",
                 stale_run_minutes=30, clock=utcnow):
        """Initialize the orchestrator.

        Args:
            app: Flask application, used to push a context on worker threads
            pull_sync: PullSync service
            push_sync: PushSync service
            tracker: ProgressTracker for status snapshots
            executor: concurrent.futures executor running the runs
            change_queue: ChangeQueue, used to size push progress
            trigger_policy: "coalesce" or "queue" for triggers during a run
            stage_order: "pull_first" or "push_first"
            stale_run_minutes: Age after which another process's unfinished
                run no longer blocks a new one
        """
        self.app = app
        self.pull_sync = pull_sync
        self.push_sync = push_sync
        self.tracker = tracker
        self.executor = executor
        self.change_queue = change_queue
        self.trigger_policy = trigger_policy if trigger_policy in (POLICY_COALESCE, POLICY_QUEUE) else POLICY_COALESCE
        self.stage_order = stage_order if stage_order in STAGE_ORDERS else "pull_first"
        self.stale_run_minutes = stale_run_minutes
        self.clock = clock

        self._lock = threading.Lock()
        self._active = None
        self._follow_up = None
        self._cancelled = set()
        self._futures = {}

    @property
    def active_run(self):
        return self._active

    def trigger_sync(self, mode=SyncMode.INCREMENTAL, trigger="manual", wait=False):
        """Start a run, or join the one in progress.

        Args:
            mode: incremental or full
            trigger: What asked for the run (manual, scheduled, cli, local_change)
            wait: Block until the returned run is terminal

        Returns:
            str: sync_id of the started, coalesced or queued run
        """
        mode = SyncMode.parse(mode)

        with self._lock:
            sync_id = self._start_or_join(mode, trigger)

        if wait:
            self.wait(sync_id)
        return sync_id

    def _start_or_join(self, mode, trigger):
        if self._active is not None and self._active.is_terminal and self._follow_up is None:
            # Finished, but its worker has not reached _finish yet
            self._active = None

        if self._active is not None:
            if self.trigger_policy == POLICY_QUEUE:
                if self._follow_up is None:
                    self._follow_up = SyncRun.new(mode, trigger, self.stage_order, now=self.clock())
                    self._follow_up.message = f"Queued behind {self._active.sync_id}"
                    self.tracker.save(self._follow_up)
                    log.info(f"Sync {self._follow_up.sync_id} queued behind {self._active.sync_id}")
                elif mode == SyncMode.FULL and self._follow_up.mode != SyncMode.FULL:
                    self._follow_up.mode = SyncMode.FULL
                    self.tracker.save(self._follow_up)
                return self._follow_up.sync_id

            log.info(f"Sync trigger ({trigger}) coalesced into running sync {self._active.sync_id}")
            return self._active.sync_id

        elsewhere = self.tracker.find_active(self.stale_run_minutes)
        if elsewhere is not None:
            log.info(f"Sync trigger ({trigger}) coalesced into sync {elsewhere.sync_id} running in another process")
            return elsewhere.sync_id

        run = SyncRun.new(mode, trigger, self.stage_order, now=self.clock())
        self._active = run
        self.tracker.save(run)
        self._submit(run)
        log.info(f"Started {mode.value} sync {run.sync_id} ({trigger})")
        return run.sync_id

    def _submit(self, run):
        future = self.executor.submit(self._run_in_context, run)
        self._futures[run.sync_id] = future
        future.add_done_callback(lambda f, sync_id=run.sync_id: self._futures.pop(sync_id, None))

    def _run_in_context(self, run):
        with self.app.app_context():
            try:
                self.run_sync(run)
            finally:
                self._finish(run)

    def _finish(self, run):
        with self._lock:
            self._cancelled.discard(run.sync_id)
            if self._active is not None and self._active.sync_id == run.sync_id:
                self._active = None
            follow_up, self._follow_up = self._follow_up, None
            if follow_up is not None:
                self._active = follow_up
                self._submit(follow_up)
                log.info(f"Starting queued sync {follow_up.sync_id}")

    def wait(self, sync_id, timeout=None):
        """Block until the run finishes on this process, then return its status."""
        while True:
            with self._lock:
                future = self._futures.get(sync_id)
                queued = self._follow_up is not None and self._follow_up.sync_id == sync_id
                ahead = self._futures.get(self._active.sync_id) if queued and self._active else None

            if future is not None:
                future.result(timeout)
            elif ahead is not None:
                ahead.result(timeout)
                continue
            return self.tracker.get(sync_id)

    def get_sync_status(self, sync_id):
        """Latest snapshot of a run, or None if unknown or expired."""
        return self.tracker.get(sync_id)

    def cancel(self, sync_id):
        """Request cooperative cancellation.

        A queued run is cancelled at once; an active run stops before its next
        stage. In-flight network calls are never interrupted.

        Returns:
            bool: True if the run will be (or was) cancelled

        Raises:
            ResourceNotFoundError: no such run
        """
        with self._lock:
            if self._follow_up is not None and self._follow_up.sync_id == sync_id:
                run, self._follow_up = self._follow_up, None
                run.fail("cancelled", message="Sync cancelled before start", now=self.clock())
                self.tracker.save(run)
                log.info(f"Cancelled queued sync {sync_id}")
                return True
            if self._active is not None and self._active.sync_id == sync_id:
                self._cancelled.add(sync_id)
                log.info(f"Cancellation requested for sync {sync_id}")
                return True

        if self.tracker.get(sync_id) is None:
            raise ResourceNotFoundError(f"Sync {sync_id} not found")
        return False

    def _is_cancelled(self, sync_id):
        with self._lock:
            return sync_id in self._cancelled

    def _save(self, run, stage=None, progress=None, message=None):
        run.advance(stage, progress, message, now=self.clock())
        self.tracker.save(run)

    def run_sync(self, run):
        """Execute a run to a terminal stage in the calling thread."""
        try:
            self._execute(run)
        except Exception as e:
            log.exception(f"Sync {run.sync_id} crashed")
            if not run.is_terminal:
                run.fail(str(e), now=self.clock())
                self.tracker.save(run)
        return run

    def _execute(self, run):
        stages = [stage for stage in STAGE_ORDERS[run.stage_order] if stage in STAGE_WEIGHTS]
        self._save(run, progress=START_PROGRESS, message="Starting sync")

        cursor = START_PROGRESS
        deferred = None

        for stage in stages:
            if self._is_cancelled(run.sync_id):
                run.fail("cancelled", message="Sync cancelled", now=self.clock())
                self.tracker.save(run)
                log.info(f"Sync {run.sync_id} cancelled before {stage.value}")
                return

            start, span = cursor, STAGE_WEIGHTS[stage]
            cursor += span
            self._save(run, stage, start, f"{stage.value.capitalize()}...")
            log.info(f"Sync {run.sync_id} {stage.value}")

            try:
                if stage == SyncStage.PULLING:
                    self._pull(run, start, span)
                else:
                    self._push(run, start, span)
            except RateLimitExceededError as e:
                deferred = (stage, e)
                run.metrics[stage.value] = e.details or {}
                log.warning(f"Sync {run.sync_id}: {e.message}; deferring the rest of the cycle")
                break
            except SyncError as e:
                run.fail(e.message, message=f"{stage.value.capitalize()} failed", now=self.clock())
                self.tracker.save(run)
                log.error(f"Sync {run.sync_id} failed during {stage.value}: {e.message}")
                return

        run.complete(self._summary(run, deferred), now=self.clock())
        self.tracker.save(run)
        log.info(f"Sync {run.sync_id} completed: {run.message}")

    def _pull(self, run, start, span):
        total = max(1, self.pull_sync.max_articles)

        def on_page(result):
            fraction = min(1.0, result.fetched / total)
            self._save(run, progress=start + int(span * fraction),
                       message=f"Pulled {result.fetched} items ({result.pages} pages)")

        result = self.pull_sync.run(run.mode, progress=on_page)
        run.metrics["pulling"] = result.to_dict()

    def _push(self, run, start, span):
        total = 1
        if self.change_queue is not None:
            total = max(1, self.change_queue.stats()["pending"])

        def on_batch(result):
            done = result.acked + result.rejected + result.deferred
            fraction = min(1.0, done / total)
            self._save(run, progress=start + int(span * fraction),
                       message=f"Pushed {result.sent} changes ({result.batches} batches)")

        result = self.push_sync.run(progress=on_batch)
        run.metrics["pushing"] = result.to_dict()

    @staticmethod
    def _summary(run, deferred):
        pulled = run.metrics.get("pulling", {})
        pushed = run.metrics.get("pushing", {})

        parts = []
        if "fetched" in pulled:
            parts.append(f"pulled {pulled['fetched']} items")
        if "sent" in pushed:
            parts.append(f"pushed {pushed['sent']} changes")
        detail = ", ".join(parts) if parts else "nothing to do"

        conflicts = pulled.get("conflicts", {}).get("total", 0)
        conflict_note = f" Detected {conflicts} conflicts." if conflicts else ""

        if deferred is not None:
            stage, error = deferred
            return (
                f"Partial sync: {error.zone or 'upstream'} rate limit reached while {stage.value}; "
                f"remaining work deferred to the next cycle ({detail}).{conflict_note}"
            )
        return f"Sync completed: {detail}.{conflict_note}"
