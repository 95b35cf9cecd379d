"""Persisted upstream call budget per rate zone."""

from datetime import timedelta

from feedsync.extensions import db
from feedsync.utils.time_utils import isoformat, utcnow

class RateBudget(db.Model):
    """Call-consumption ledger for the current accounting window."""

    __tablename__ = "rate_budgets"

    zone = db.Column(db.String(16), primary_key=True)
    window_start = db.Column(db.DateTime, nullable=False, default=utcnow)
    used = db.Column(db.Integer, nullable=False, default=0)
    limit = db.Column("call_limit", db.Integer, nullable=False)
    reset_after_seconds = db.Column(db.Integer, nullable=False, default=86400)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    @property
    def resets_at(self):
        return self.window_start + timedelta(seconds=self.reset_after_seconds)

    @property
    def remaining(self):
        return max(0, self.limit - self.used)

    def to_dict(self, now=None):
        now = now or utcnow()
        return {
            "zone": self.zone,
            "used": self.used,
            "limit": self.limit,
            "remaining": self.remaining,
            "window_start": isoformat(self.window_start),
            "resets_at": isoformat(self.resets_at),
            "reset_after_seconds": max(0, int((self.resets_at - now).total_seconds())),
        }

    def __repr__(self):
        return f"<RateBudget {self.zone} {self.used}/{self.limit}>"
