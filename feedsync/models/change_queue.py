"""Model for pending local state changes awaiting push."""

from feedsync.extensions import db
from feedsync.utils.time_utils import isoformat, utcnow

STATUS_PENDING = "pending"
STATUS_IN_FLIGHT = "in_flight"
STATUS_DEAD = "dead"

class ChangeQueueEntry(db.Model):
    """One queued read/unread/star/unstar action.

    Entries are deleted on acknowledgment. Entries that exhaust their retry
    ceiling stay in the table with status 'dead'.
    """

    __tablename__ = "change_queue"
    __table_args__ = (
        db.Index("ix_change_queue_drain", "status", "next_attempt_at", "action_timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    item_upstream_id = db.Column(db.String(255), index=True, nullable=False)
    action_type = db.Column(db.String(16), nullable=False)
    action_timestamp = db.Column(db.DateTime, default=utcnow, nullable=False)
    attempts = db.Column(db.Integer, default=0, nullable=False)
    last_attempt_at = db.Column(db.DateTime, nullable=True)
    next_attempt_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    status = db.Column(db.String(16), default=STATUS_PENDING, nullable=False)
    claim_token = db.Column(db.String(36), nullable=True, index=True)
    claimed_at = db.Column(db.DateTime, nullable=True)
    last_error = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "item_upstream_id": self.item_upstream_id,
            "action_type": self.action_type,
            "action_timestamp": isoformat(self.action_timestamp),
            "attempts": self.attempts,
            "last_attempt_at": isoformat(self.last_attempt_at),
            "next_attempt_at": isoformat(self.next_attempt_at),
            "status": self.status,
            "last_error": self.last_error,
        }

    def __repr__(self):
        return f"<ChangeQueueEntry {self.id} {self.action_type} {self.item_upstream_id} ({self.status})>"
