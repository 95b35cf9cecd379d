"""Durable mirror of SyncRun progress."""

from feedsync.extensions import db
from feedsync.domain.sync_run import SyncMode, SyncRun, SyncStage
from feedsync.utils import json_utils
from feedsync.utils.time_utils import utcnow

class SyncStatus(db.Model):
    """Fallback status store read when the primary cache misses."""

    __tablename__ = "sync_status"

    sync_id = db.Column(db.String(36), primary_key=True)
    mode = db.Column(db.String(16), nullable=False, default=SyncMode.INCREMENTAL.value)
    trigger = db.Column(db.String(32), nullable=True)
    stage = db.Column(db.String(16), nullable=False, default=SyncStage.PENDING.value, index=True)
    progress = db.Column(db.Integer, nullable=False, default=0)
    message = db.Column(db.Text, nullable=True)
    error_detail = db.Column(db.Text, nullable=True)
    stage_order = db.Column(db.String(16), nullable=True)
    metrics = db.Column(db.Text, nullable=True)
    started_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    completed_at = db.Column(db.DateTime, nullable=True, index=True)

    def apply(self, run: SyncRun):
        self.mode = run.mode.value
        self.trigger = run.trigger
        self.stage = run.stage.value
        # Progress in the durable row never goes backwards either
        self.progress = max(self.progress or 0, run.progress)
        self.message = run.message
        self.error_detail = run.error_detail
        self.stage_order = run.stage_order
        self.metrics = json_utils.dumps(run.metrics) if run.metrics else None
        self.started_at = run.started_at
        self.updated_at = run.updated_at or utcnow()
        self.completed_at = run.completed_at
        return self

    def to_run(self) -> SyncRun:
        return SyncRun(
            sync_id=self.sync_id,
            mode=SyncMode.parse(self.mode),
            trigger=self.trigger or "manual",
            stage=SyncStage(self.stage),
            progress=self.progress or 0,
            message=self.message,
            error_detail=self.error_detail,
            started_at=self.started_at,
            updated_at=self.updated_at,
            completed_at=self.completed_at,
            stage_order=self.stage_order or "pull_first",
            metrics=json_utils.loads(self.metrics),
        )

    def __repr__(self):
        return f"<SyncStatus {self.sync_id}: {self.stage} {self.progress}%>"
