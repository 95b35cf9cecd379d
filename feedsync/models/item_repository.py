"""
Repository for item database operations.

Also owns the materialized per-feed read counters, which are derived
entirely from the items table.
"""

import logging

from sqlalchemy import case, func
from sqlalchemy.exc import SQLAlchemyError

from feedsync.extensions import db
from feedsync.models.base_repository import BaseRepository
from feedsync.models.item import FeedStat, Item
from feedsync.utils.time_utils import utcnow

log = logging.getLogger(__name__)

class SqlAlchemyItemRepository(BaseRepository):
    """SQLAlchemy implementation of the item repository."""

    def __init__(self, db_instance=None):
        super().__init__(db_instance or db, Item)

    def get_by_upstream_id(self, upstream_id):
        return Item.query.filter_by(upstream_id=upstream_id).first()

    def get_by_local_or_upstream_id(self, item_id):
        """Look an item up by local integer id first, then by upstream id."""
        if isinstance(item_id, int) or (isinstance(item_id, str) and item_id.isdigit()):
            item = self.get_by_id(int(item_id))
            if item:
                return item
        return self.get_by_upstream_id(str(item_id))

    def list_items(self, feed_id=None, unread_only=False, starred_only=False, limit=100, offset=0):
        query = Item.query
        if feed_id:
            query = query.filter_by(feed_id=feed_id)
        if unread_only:
            query = query.filter_by(is_read=False)
        if starred_only:
            query = query.filter_by(is_starred=True)
        return query.order_by(Item.published_at.desc(), Item.id.desc()).offset(offset).limit(limit).all()

    def add(self, item):
        self.db.session.add(item)
        return item

    def commit(self):
        try:
            self.db.session.commit()
        except SQLAlchemyError:
            self.db.session.rollback()
            raise

    def rollback(self):
        self.db.session.rollback()

    def refresh_read_counters(self):
        """Recompute feed_stats from the items table.

        Returns:
            int: Number of feeds with counters
        """
        try:
            rows = self.db.session.query(
                Item.feed_id,
                func.sum(case((Item.is_read.is_(False), 1), else_=0)),
                func.sum(case((Item.is_starred.is_(True), 1), else_=0)),
                func.count(Item.id),
            ).filter(Item.feed_id.isnot(None)).group_by(Item.feed_id).all()

            now = utcnow()
            FeedStat.query.delete()
            for feed_id, unread, starred, total in rows:
                self.db.session.add(FeedStat(
                    feed_id=feed_id,
                    unread_count=int(unread or 0),
                    starred_count=int(starred or 0),
                    total_count=int(total or 0),
                    updated_at=now,
                ))
            self.db.session.commit()
            return len(rows)
        except SQLAlchemyError as e:
            log.error(f"Error refreshing read counters: {e}")
            self.db.session.rollback()
            raise

    def read_counters(self):
        return [stat.to_dict() for stat in FeedStat.query.order_by(FeedStat.feed_id).all()]
