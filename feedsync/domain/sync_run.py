"""SyncRun: one execution of the orchestrator cycle."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from feedsync.utils.time_utils import isoformat, utcnow


class SyncStage(str, Enum):
    PENDING = "pending"
    PULLING = "pulling"
    PUSHING = "pushing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self):
        return self in (SyncStage.COMPLETED, SyncStage.FAILED)


class SyncMode(str, Enum):
    INCREMENTAL = "incremental"
    FULL = "full"

    @classmethod
    def parse(cls, value):
        if value is None:
            return cls.INCREMENTAL
        try:
            return value if isinstance(value, cls) else cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown sync mode: {value}") from None


STAGE_ORDERS = {
    "pull_first": (SyncStage.PENDING, SyncStage.PULLING, SyncStage.PUSHING, SyncStage.COMPLETED),
    "push_first": (SyncStage.PENDING, SyncStage.PUSHING, SyncStage.PULLING, SyncStage.COMPLETED),
}


class InvalidTransition(ValueError):
    """Raised when a run is moved backwards or out of a terminal stage."""


@dataclass
class SyncRun:
    sync_id: str
    mode: SyncMode = SyncMode.INCREMENTAL
    trigger: str = "manual"
    stage: SyncStage = SyncStage.PENDING
    progress: int = 0
    message: Optional[str] = None
    error_detail: Optional[str] = None
    started_at: datetime = field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    stage_order: str = "pull_first"
    metrics: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def new(cls, mode=SyncMode.INCREMENTAL, trigger="manual", stage_order="pull_first", now=None):
        now = now or utcnow()
        return cls(
            sync_id=str(uuid.uuid4()),
            mode=SyncMode.parse(mode),
            trigger=trigger,
            started_at=now,
            updated_at=now,
            stage_order=stage_order if stage_order in STAGE_ORDERS else "pull_first",
            message="Sync queued",
        )

    @property
    def is_terminal(self):
        return self.stage.is_terminal

    def _stage_index(self, stage):
        return STAGE_ORDERS[self.stage_order].index(stage)

    def advance(self, stage=None, progress=None, message=None, now=None):
        """Move the run forward.

        Stages may be skipped but never revisited, terminal stages are final,
        and progress never decreases.

        Raises:
            InvalidTransition: on a backwards move or a move out of a terminal stage
        """
        if self.is_terminal:
            raise InvalidTransition(f"Run {self.sync_id} is already {self.stage.value}")

        if stage is not None:
            stage = SyncStage(stage)
            if stage == SyncStage.FAILED:
                self.stage = stage
            elif self._stage_index(stage) < self._stage_index(self.stage):
                raise InvalidTransition(
                    f"Cannot move run {self.sync_id} from {self.stage.value} to {stage.value}"
                )
            else:
                self.stage = stage

        if progress is not None:
            self.progress = max(self.progress, min(100, int(progress)))
        if message is not None:
            self.message = message

        self.updated_at = now or utcnow()
        if self.stage.is_terminal:
            self.completed_at = self.updated_at
            if self.stage == SyncStage.COMPLETED:
                self.progress = 100
        return self

    def complete(self, message, now=None):
        return self.advance(SyncStage.COMPLETED, 100, message, now=now)

    def fail(self, error_detail, message=None, now=None):
        if self.is_terminal:
            raise InvalidTransition(f"Run {self.sync_id} is already {self.stage.value}")
        self.error_detail = error_detail
        return self.advance(SyncStage.FAILED, None, message or "Sync failed", now=now)

    def to_dict(self):
        return {
            "sync_id": self.sync_id,
            "mode": self.mode.value,
            "trigger": self.trigger,
            "stage": self.stage.value,
            "progress": self.progress,
            "message": self.message,
            "error_detail": self.error_detail,
            "started_at": isoformat(self.started_at),
            "updated_at": isoformat(self.updated_at),
            "completed_at": isoformat(self.completed_at),
            "stage_order": self.stage_order,
            "metrics": self.metrics,
        }

    @classmethod
    def from_dict(cls, data):
        def _dt(value):
            return datetime.fromisoformat(value) if value else None

        return cls(
            sync_id=data["sync_id"],
            mode=SyncMode.parse(data.get("mode")),
            trigger=data.get("trigger") or "manual",
            stage=SyncStage(data.get("stage") or SyncStage.PENDING.value),
            progress=int(data.get("progress") or 0),
            message=data.get("message"),
            error_detail=data.get("error_detail"),
            started_at=_dt(data.get("started_at")) or utcnow(),
            updated_at=_dt(data.get("updated_at")),
            completed_at=_dt(data.get("completed_at")),
            stage_order=data.get("stage_order") or "pull_first",
            metrics=data.get("metrics") or {},
        )
