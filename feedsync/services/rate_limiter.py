"""
Upstream call budget accounting.

One persisted ledger row per rate zone. Pull and Push reserve slots before
every upstream call, and the ledger is reconciled with the authoritative
counters upstream returns in its response headers, so a restart never
resets to a falsely-full budget.
"""

import logging
import threading

from sqlalchemy.exc import SQLAlchemyError

from feedsync.domain.upstream import ZONE_READ, ZONE_WRITE
from feedsync.extensions import db
from feedsync.models.rate_budget import RateBudget
from feedsync.utils.time_utils import utcnow

log = logging.getLogger(__name__)

DEFAULT_LIMITS = {ZONE_READ: 5000, ZONE_WRITE: 100}

class RateLimiter:
    """Ledger of upstream calls per zone and accounting window."""

    def __init__(self, db_instance=None, limits=None, window_seconds=86400, clock=utcnow):
        """Initialize the rate limiter.

        Args:
            db_instance: Flask-SQLAlchemy database instance
            limits: Default call limit per zone, used until upstream reports one
            window_seconds: Window length used when a window rolls over
            clock: Callable returning the current naive UTC datetime
        """
        self.db = db_instance or db
        self.default_limits = dict(DEFAULT_LIMITS)
        self.default_limits.update(limits or {})
        self.window_seconds = window_seconds
        self.clock = clock
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config, clock=utcnow):
        return cls(
            limits={
                ZONE_READ: config.get('RATE_LIMIT_READ_LIMIT', DEFAULT_LIMITS[ZONE_READ]),
                ZONE_WRITE: config.get('RATE_LIMIT_WRITE_LIMIT', DEFAULT_LIMITS[ZONE_WRITE]),
            },
            window_seconds=config.get('RATE_LIMIT_WINDOW_SECONDS', 86400),
            clock=clock
        )

    def _check_zone(self, zone):
        if zone not in self.default_limits:
            raise ValueError(f"Unknown rate zone: {zone}")

    def _load(self, zone, now):
        """Load the ledger row for a zone, creating it or rolling its window."""
        row = self.db.session.get(RateBudget, zone)
        if row is None:
            row = RateBudget(
                zone=zone,
                window_start=now,
                used=0,
                limit=self.default_limits[zone],
                reset_after_seconds=self.window_seconds,
                updated_at=now
            )
            self.db.session.add(row)
        elif now >= row.resets_at:
            log.info(f"Rate window for {zone} zone rolled over ({row.used}/{row.limit} used)")
            row.window_start = now
            row.used = 0
            row.reset_after_seconds = self.window_seconds
            row.updated_at = now
        return row

    def _commit(self):
        try:
            self.db.session.commit()
        except SQLAlchemyError as e:
            log.error(f"Error saving rate budget: {e}")
            self.db.session.rollback()
            raise

    def reserve(self, n=1, zone=ZONE_READ):
        """Claim n call slots.

        Returns:
            bool: True if granted, False if the calls would exceed the budget
        """
        self._check_zone(zone)
        with self._lock:
            now = self.clock()
            row = self._load(zone, now)
            if row.used + n > row.limit:
                self._commit()
                log.warning(f"Rate budget for {zone} zone exhausted: {row.used}/{row.limit}, needed {n}")
                return False

            row.used += n
            row.updated_at = now
            self._commit()
            return True

    def record_external_usage(self, used=None, limit=None, reset_after=None, zone=ZONE_READ):
        """Overwrite the ledger with counters reported by upstream.

        Args:
            used: Calls consumed in the current upstream window
            limit: Upstream limit for the window
            reset_after: Seconds until upstream resets the window
            zone: Rate zone the counters belong to
        """
        self._check_zone(zone)
        with self._lock:
            now = self.clock()
            row = self._load(zone, now)
            if limit is not None and limit > 0:
                row.limit = limit
            if used is not None and used >= 0:
                row.used = used
            if reset_after is not None and reset_after >= 0:
                # Upstream reports time to reset, so anchor the window on now
                row.window_start = now
                row.reset_after_seconds = reset_after
            row.updated_at = now
            self._commit()

            if row.limit and row.used / row.limit >= 0.8:
                log.warning(f"Upstream {zone} zone usage high: {row.used}/{row.limit}")

    def record_snapshots(self, snapshots):
        """Reconcile every RateLimitSnapshot from a response."""
        for snapshot in snapshots or []:
            if snapshot.zone not in self.default_limits:
                continue
            self.record_external_usage(
                used=snapshot.used,
                limit=snapshot.limit,
                reset_after=snapshot.reset_after,
                zone=snapshot.zone
            )

    def budget(self, zone=ZONE_READ):
        """Current ledger for a zone as a dict."""
        self._check_zone(zone)
        with self._lock:
            now = self.clock()
            row = self._load(zone, now)
            self._commit()
            return row.to_dict(now)

    def remaining(self, zone=ZONE_READ):
        return self.budget(zone)["remaining"]

    def seconds_until_reset(self, zone=ZONE_READ):
        return self.budget(zone)["reset_after_seconds"]

    def budgets(self):
        return {zone: self.budget(zone) for zone in self.default_limits}
