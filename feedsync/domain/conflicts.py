"""
Conflict resolution between the local cache and upstream state.

Everything in this module is pure: no store, no clock, no logging. Pull Sync
feeds it the local row and the incoming remote value and applies the
returned Resolution itself.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from feedsync.domain.actions import ActionCategory, ActionType

LOCAL = "local"
REMOTE = "remote"

EPOCH = datetime(1970, 1, 1)

# Local outranks remote when timestamps are equal
_ORIGIN_RANK = {REMOTE: 0, LOCAL: 1}


@dataclass(frozen=True)
class TimestampedState:
    """Read/starred flags observed on one side at a point in time."""

    is_read: bool
    is_starred: bool
    timestamp: Optional[datetime]
    origin: str

    def sort_key(self):
        return (self.timestamp or EPOCH, _ORIGIN_RANK[self.origin])


@dataclass(frozen=True)
class LocalState:
    is_read: bool
    is_starred: bool
    last_local_update: Optional[datetime] = None
    last_sync_update: Optional[datetime] = None

    @property
    def has_pending_change(self):
        """True when a local edit happened after the last applied remote value."""
        if self.last_local_update is None:
            return False
        return self.last_sync_update is None or self.last_local_update > self.last_sync_update


@dataclass(frozen=True)
class RemoteState:
    is_read: bool
    is_starred: bool
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class Resolution:
    winner: str
    is_read: bool
    is_starred: bool
    last_sync_update: Optional[datetime]
    actions: List[ActionType] = field(default_factory=list)
    conflict_type: Optional[str] = None

    @property
    def local_wins(self):
        return self.winner == LOCAL


def pick_winner(a: TimestampedState, b: TimestampedState) -> TimestampedState:
    """Return whichever state is newer; local wins ties.

    Selection is by value, so pick_winner(a, b) == pick_winner(b, a).
    """
    return a if a.sort_key() >= b.sort_key() else b


def conflict_type(local_read, local_starred, remote_read, remote_starred):
    read_differs = local_read != remote_read
    starred_differs = local_starred != remote_starred
    if read_differs and starred_differs:
        return "both"
    if read_differs:
        return ActionCategory.READ.value
    if starred_differs:
        return ActionCategory.STARRED.value
    return None


def resolve(local: LocalState, remote: RemoteState) -> Resolution:
    """Decide which side's flags survive.

    The remote timestamp falls back to the local row's last_sync_update (the
    last time a remote value was observed) when upstream does not report one.

    Returns:
        Resolution: when local wins and the flags differ, ``actions`` holds the
        pushes needed to bring upstream back in line with the local value.
    """
    remote_ts = remote.timestamp or local.last_sync_update or EPOCH

    if local.last_local_update is None:
        winner = REMOTE
    else:
        chosen = pick_winner(
            TimestampedState(local.is_read, local.is_starred, local.last_local_update, LOCAL),
            TimestampedState(remote.is_read, remote.is_starred, remote_ts, REMOTE),
        )
        winner = chosen.origin

    kind = conflict_type(local.is_read, local.is_starred, remote.is_read, remote.is_starred)

    if winner == REMOTE:
        return Resolution(
            winner=REMOTE,
            is_read=remote.is_read,
            is_starred=remote.is_starred,
            last_sync_update=remote_ts,
            conflict_type=kind if local.last_local_update is not None else None,
        )

    actions = []
    if local.is_read != remote.is_read:
        actions.append(ActionType.for_flag(ActionCategory.READ, local.is_read))
    if local.is_starred != remote.is_starred:
        actions.append(ActionType.for_flag(ActionCategory.STARRED, local.is_starred))

    return Resolution(
        winner=LOCAL,
        is_read=local.is_read,
        is_starred=local.is_starred,
        last_sync_update=local.last_sync_update,
        actions=actions,
        conflict_type=kind,
    )


@dataclass
class ConflictSummary:
    """Per-run tally of conflicts, reported in the run message and metrics."""

    total: int = 0
    read_conflicts: int = 0
    starred_conflicts: int = 0
    both_conflicts: int = 0
    local_wins: int = 0
    remote_wins: int = 0

    def record(self, resolution: Resolution):
        if resolution.conflict_type is None:
            return
        self.total += 1
        if resolution.conflict_type == "both":
            self.both_conflicts += 1
        elif resolution.conflict_type == ActionCategory.READ.value:
            self.read_conflicts += 1
        else:
            self.starred_conflicts += 1
        if resolution.local_wins:
            self.local_wins += 1
        else:
            self.remote_wins += 1

    def to_dict(self):
        return {
            "total": self.total,
            "read_conflicts": self.read_conflicts,
            "starred_conflicts": self.starred_conflicts,
            "both_conflicts": self.both_conflicts,
            "local_wins": self.local_wins,
            "remote_wins": self.remote_wins,
        }
