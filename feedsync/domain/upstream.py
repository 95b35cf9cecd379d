"""Value objects returned by the upstream client."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from feedsync.utils.time_utils import from_epoch

READ_TAG = "user/-/state/com.google/read"
STARRED_TAG = "user/-/state/com.google/starred"

# Zone 1 covers reads, Zone 2 covers writes
ZONE_READ = "read"
ZONE_WRITE = "write"


@dataclass(frozen=True)
class RateLimitSnapshot:
    """Authoritative counters for one rate zone, as reported by upstream."""

    zone: str
    used: Optional[int]
    limit: Optional[int]
    reset_after: Optional[int]


@dataclass(frozen=True)
class UpstreamItem:
    upstream_id: str
    is_read: bool
    is_starred: bool
    feed_id: Optional[str] = None
    title: Optional[str] = None
    url: Optional[str] = None
    published_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_payload(cls, payload):
        """Parse one entry of a stream/contents response.

        Raises:
            ValueError: when the entry has no id or malformed fields
        """
        if not isinstance(payload, dict):
            raise ValueError(f"Item payload must be an object, got {type(payload).__name__}")

        upstream_id = payload.get("id")
        if not upstream_id:
            raise ValueError("Item payload is missing 'id'")

        categories = payload.get("categories") or []
        if not isinstance(categories, list):
            raise ValueError(f"Item {upstream_id} has malformed categories")

        origin = payload.get("origin") or {}
        if not isinstance(origin, dict):
            raise ValueError(f"Item {upstream_id} has malformed origin")

        links = payload.get("canonical") or payload.get("alternate") or []
        url = links[0].get("href") if links and isinstance(links[0], dict) else None

        try:
            published_at = from_epoch(payload.get("published"))
            updated_at = from_epoch(payload.get("updated"))
        except (TypeError, ValueError, OverflowError) as e:
            raise ValueError(f"Item {upstream_id} has malformed timestamps: {e}") from e

        return cls(
            upstream_id=str(upstream_id),
            is_read=READ_TAG in categories,
            is_starred=STARRED_TAG in categories,
            feed_id=origin.get("streamId"),
            title=payload.get("title"),
            url=url,
            published_at=published_at,
            updated_at=updated_at,
        )


@dataclass
class StreamPage:
    items: List[dict]
    continuation: Optional[str] = None
    rate_limits: List[RateLimitSnapshot] = field(default_factory=list)


@dataclass
class PushOutcome:
    accepted: List[str] = field(default_factory=list)
    rejected: Dict[str, str] = field(default_factory=dict)
    rate_limits: List[RateLimitSnapshot] = field(default_factory=list)
