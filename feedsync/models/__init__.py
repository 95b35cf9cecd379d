"""Database models for the application."""

from feedsync.models.item import Item, FeedStat
from feedsync.models.change_queue import ChangeQueueEntry
from feedsync.models.sync_status import SyncStatus
from feedsync.models.rate_budget import RateBudget
from feedsync.models.setting import Setting
