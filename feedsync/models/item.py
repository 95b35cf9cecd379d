"""
Item model for cached feed articles.

An Item is created by Pull Sync the first time an upstream id is seen and is
never hard-deleted by the sync engine.
"""

from feedsync.extensions import db
from feedsync.utils.time_utils import isoformat, utcnow

class Item(db.Model):
    """Local copy of an upstream article and its read/starred state.

    Attributes:
        id: Local primary key
        upstream_id: Stable upstream identifier
        last_local_update: Set by user actions; null means never diverged
        last_sync_update: Set only when Pull Sync applies a winning remote value
        version: Incremented on every state change
    """

    __tablename__ = "items"

    id = db.Column(db.Integer, primary_key=True)
    upstream_id = db.Column(db.String(255), unique=True, index=True, nullable=False)
    feed_id = db.Column(db.String(255), index=True, nullable=True)
    title = db.Column(db.Text, nullable=True)
    url = db.Column(db.Text, nullable=True)
    published_at = db.Column(db.DateTime, nullable=True)
    is_read = db.Column(db.Boolean, default=False, nullable=False)
    is_starred = db.Column(db.Boolean, default=False, nullable=False)
    last_local_update = db.Column(db.DateTime, nullable=True)
    last_sync_update = db.Column(db.DateTime, nullable=True)
    version = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "upstream_id": self.upstream_id,
            "feed_id": self.feed_id,
            "title": self.title,
            "url": self.url,
            "published_at": isoformat(self.published_at),
            "is_read": self.is_read,
            "is_starred": self.is_starred,
            "last_local_update": isoformat(self.last_local_update),
            "last_sync_update": isoformat(self.last_sync_update),
            "version": self.version,
        }

    def __repr__(self):
        return f"<Item {self.upstream_id} read={self.is_read} starred={self.is_starred}>"


class FeedStat(db.Model):
    """Materialized read-state counters per feed, refreshed after each pull."""

    __tablename__ = "feed_stats"

    feed_id = db.Column(db.String(255), primary_key=True)
    unread_count = db.Column(db.Integer, default=0, nullable=False)
    starred_count = db.Column(db.Integer, default=0, nullable=False)
    total_count = db.Column(db.Integer, default=0, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            "feed_id": self.feed_id,
            "unread_count": self.unread_count,
            "starred_count": self.starred_count,
            "total_count": self.total_count,
            "updated_at": isoformat(self.updated_at),
        }
