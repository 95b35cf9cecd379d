"""Local state-change actions and how they coalesce."""

from enum import Enum


class ActionType(str, Enum):
    READ = "read"
    UNREAD = "unread"
    STAR = "star"
    UNSTAR = "unstar"

    @property
    def category(self):
        return ActionCategory.READ if self in (ActionType.READ, ActionType.UNREAD) else ActionCategory.STARRED

    @property
    def target_value(self):
        """Flag value this action sets (is_read for read/unread, is_starred for star/unstar)."""
        return self in (ActionType.READ, ActionType.STAR)

    @classmethod
    def parse(cls, value):
        try:
            return value if isinstance(value, cls) else cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown action type: {value}") from None

    @classmethod
    def for_flag(cls, category, value):
        if category == ActionCategory.READ:
            return cls.READ if value else cls.UNREAD
        return cls.STAR if value else cls.UNSTAR


class ActionCategory(str, Enum):
    READ = "read_status"
    STARRED = "starred_status"


def coalesce(entries):
    """Keep only the most recent entry per (item, category).

    Categories coalesce independently: a queued ``read`` never supersedes a
    queued ``star`` on the same item.

    Args:
        entries: Change queue entries exposing ``item_upstream_id``,
            ``action_type``, ``action_timestamp`` and ``id``

    Returns:
        tuple: (winners, superseded) lists
    """
    latest = {}
    superseded = []

    for entry in entries:
        key = (entry.item_upstream_id, ActionType.parse(entry.action_type).category)
        current = latest.get(key)
        if current is None:
            latest[key] = entry
        elif (entry.action_timestamp, entry.id) > (current.action_timestamp, current.id):
            superseded.append(current)
            latest[key] = entry
        else:
            superseded.append(entry)

    winners = sorted(latest.values(), key=lambda e: (e.action_timestamp, e.id))
    return winners, superseded


def group_by_action(entries):
    """Group entries by action type, preserving order within each group."""
    groups = {}
    for entry in entries:
        groups.setdefault(ActionType.parse(entry.action_type), []).append(entry)
    return groups
