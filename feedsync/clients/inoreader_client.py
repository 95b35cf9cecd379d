"""Client for the Inoreader (Google Reader compatible) API."""

import logging
from typing import Iterable, List, Optional

import requests
from requests.exceptions import ConnectionError, RequestException, Timeout

from feedsync.domain.actions import ActionType
from feedsync.domain.upstream import (
    READ_TAG, STARRED_TAG, ZONE_READ, ZONE_WRITE,
    PushOutcome, RateLimitSnapshot, StreamPage,
)
from feedsync.errors import (
    AuthExpiredError, RateLimitExceededError, SyncError, TransientNetworkError,
)
from feedsync.utils.time_utils import to_epoch

log = logging.getLogger(__name__)

READING_LIST = "stream/contents/user/-/state/com.google/reading-list"
EDIT_TAG = "edit-tag"

# edit-tag parameter per action: "a" adds the tag, "r" removes it
EDIT_TAG_PARAMS = {
    ActionType.READ: ("a", READ_TAG),
    ActionType.UNREAD: ("r", READ_TAG),
    ActionType.STAR: ("a", STARRED_TAG),
    ActionType.UNSTAR: ("r", STARRED_TAG),
}

ZONE_HEADERS = {
    ZONE_READ: ("X-Reader-Zone1-Usage", "X-Reader-Zone1-Limit"),
    ZONE_WRITE: ("X-Reader-Zone2-Usage", "X-Reader-Zone2-Limit"),
}
RESET_HEADER = "X-Reader-Limits-Reset-After"


def _parse_counter(value) -> Optional[int]:
    """Parse header values like '1,234' or '3600.52'."""
    if value is None:
        return None
    text = str(value).replace(",", "").strip()
    if "." in text:
        text = text.split(".", 1)[0]
    try:
        return int(text)
    except ValueError:
        log.warning(f"Ignoring malformed rate limit header value {value!r}")
        return None


def parse_rate_limit_headers(headers) -> List[RateLimitSnapshot]:
    """Extract per-zone usage from response headers.

    Zones without any header are left out so the local ledger is not
    overwritten with guesses.
    """
    if headers is None:
        return []

    reset_after = _parse_counter(headers.get(RESET_HEADER))
    snapshots = []
    for zone, (usage_header, limit_header) in ZONE_HEADERS.items():
        used = _parse_counter(headers.get(usage_header))
        limit = _parse_counter(headers.get(limit_header))
        if used is None and limit is None:
            continue
        snapshots.append(RateLimitSnapshot(zone=zone, used=used, limit=limit, reset_after=reset_after))
    return snapshots


def _parse_rejected(payload) -> dict:
    """Normalize a rejected list into {upstream_id: reason}.

    Accepts a list of ids, a list of {"id", "reason"} objects or a mapping.
    """
    if not payload:
        return {}
    if isinstance(payload, dict):
        return {str(k): str(v) for k, v in payload.items()}

    rejected = {}
    for entry in payload:
        if isinstance(entry, dict):
            if entry.get("id") is not None:
                rejected[str(entry["id"])] = str(entry.get("reason") or "rejected")
        else:
            rejected[str(entry)] = "rejected"
    return rejected


class InoreaderClient:
    """Upstream feed API client.

    Every request carries a timeout and is never retried in place; the only
    repeat is a single credential refresh after an HTTP 401. Failures are
    raised as SyncError subclasses for the orchestrator to schedule.
    """

    def __init__(self, credential_provider, base_url, timeout=15, session=None):
        """Initialize InoreaderClient.

        Args:
            credential_provider: CredentialProvider handing out bearer tokens
            base_url: API root, e.g. https://www.inoreader.com/reader/api/0
            timeout: Per-request timeout in seconds
            session: Optional requests.Session
        """
        self.credential_provider = credential_provider
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _send(self, method, endpoint, token, params=None, data=None):
        url = f"{self.base_url}/{endpoint}"
        headers = {"Authorization": f"Bearer {token}"}
        try:
            return self.session.request(
                method=method,
                url=url,
                headers=headers,
                params=params,
                data=data,
                timeout=self.timeout
            )
        except (ConnectionError, Timeout) as e:
            raise TransientNetworkError(f"Connection error calling {endpoint}: {e}") from e
        except RequestException as e:
            raise TransientNetworkError(f"Request to {endpoint} failed: {e}") from e

    def request(self, method, endpoint, zone, params=None, data=None):
        """Make an authenticated request and map failures to sync errors.

        Returns:
            requests.Response: A successful (2xx) response

        Raises:
            AuthExpiredError: 401 even after refreshing the credential
            RateLimitExceededError: 429 from upstream
            TransientNetworkError: connection failure, timeout or 5xx
            SyncError: any other non-2xx response
        """
        token = self.credential_provider.get_valid_bearer_token()
        response = self._send(method, endpoint, token, params=params, data=data)

        if response.status_code == 401:
            log.warning(f"Upstream rejected credential on {endpoint}, refreshing once")
            token = self.credential_provider.get_valid_bearer_token(force_refresh=True)
            response = self._send(method, endpoint, token, params=params, data=data)
            if response.status_code == 401:
                raise AuthExpiredError(f"Credential rejected by upstream on {endpoint}")

        if response.status_code == 429:
            snapshots = parse_rate_limit_headers(response.headers)
            reset_after = snapshots[0].reset_after if snapshots else None
            raise RateLimitExceededError(
                f"Upstream rate limit exceeded for {zone} zone",
                details={"rate_limits": [s.__dict__ for s in snapshots]},
                zone=zone,
                reset_after=reset_after
            )

        if response.status_code >= 500:
            raise TransientNetworkError(f"Upstream server error {response.status_code} on {endpoint}")

        if response.status_code >= 400:
            raise SyncError(
                f"Upstream returned {response.status_code} on {endpoint}",
                details={"body": response.text[:500]}
            )

        return response

    def list_changed_items(self, since=None, exclude_read=True, limit=100, continuation=None) -> StreamPage:
        """Fetch one page of the reading list.

        Args:
            since: Only items newer than this datetime (``ot``), or None for all
            exclude_read: Skip items already tagged read (``xt``)
            limit: Page size (``n``)
            continuation: Token from the previous page (``c``)
        """
        params = {"n": limit}
        if exclude_read:
            params["xt"] = READ_TAG
        if since is not None:
            params["ot"] = to_epoch(since)
        if continuation:
            params["c"] = continuation

        response = self.request("GET", READING_LIST, ZONE_READ, params=params)
        rate_limits = parse_rate_limit_headers(response.headers)

        try:
            data = response.json()
        except ValueError as e:
            raise SyncError(f"Malformed stream response: {e}") from e

        if not isinstance(data, dict):
            raise SyncError("Malformed stream response: body is not an object")

        items = data.get("items") or []
        if not isinstance(items, list):
            raise SyncError("Malformed stream response: 'items' is not a list")

        return StreamPage(items=items, continuation=data.get("continuation"), rate_limits=rate_limits)

    def push_state_changes(self, action_type, upstream_ids: Iterable[str]) -> PushOutcome:
        """Apply one action to many items with a single edit-tag call.

        edit-tag sets or clears a tag, so sending the same change twice leaves
        the item in the same state.
        """
        action = ActionType.parse(action_type)
        ids = list(dict.fromkeys(str(i) for i in upstream_ids))
        if not ids:
            return PushOutcome()

        param, tag = EDIT_TAG_PARAMS[action]
        data = [("i", upstream_id) for upstream_id in ids]
        data.append((param, tag))

        response = self.request("POST", EDIT_TAG, ZONE_WRITE, data=data)
        rate_limits = parse_rate_limit_headers(response.headers)

        rejected = {}
        if "json" in (response.headers.get("Content-Type") or ""):
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                rejected = _parse_rejected(body.get("rejected"))

        rejected = {k: v for k, v in rejected.items() if k in ids}
        accepted = [i for i in ids if i not in rejected]

        log.info(f"Pushed {action.value} for {len(accepted)} items ({len(rejected)} rejected)")
        return PushOutcome(accepted=accepted, rejected=rejected, rate_limits=rate_limits)
