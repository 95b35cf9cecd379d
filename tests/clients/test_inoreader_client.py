from unittest.mock import MagicMock

import pytest
from conftest import T0
from requests.exceptions import ConnectionError, Timeout

from feedsync.clients.credentials import StaticCredentialProvider
from feedsync.clients.inoreader_client import (
    EDIT_TAG, READING_LIST, InoreaderClient, parse_rate_limit_headers,
)
from feedsync.domain.actions import ActionType
from feedsync.domain.upstream import READ_TAG, STARRED_TAG, ZONE_READ, ZONE_WRITE
from feedsync.errors import AuthExpiredError, RateLimitExceededError, SyncError, TransientNetworkError
from feedsync.utils.time_utils import to_epoch

BASE_URL = "https://upstream.test/reader/api/0"


def make_response(status_code=200, json_data=None, headers=None):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.text = ""
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    else:
        response.json.return_value = json_data if json_data is not None else {}
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def credentials():
    provider = MagicMock()
    provider.get_valid_bearer_token.return_value = "token-1"
    return provider


@pytest.fixture
def client(credentials, session):
    return InoreaderClient(credentials, BASE_URL + "/", timeout=7, session=session)


def test_list_changed_items_sends_stream_params(client, session):
    session.request.return_value = make_response(json_data={
        "items": [{"id": "tag:1"}],
        "continuation": "abc"
    })

    page = client.list_changed_items(since=T0, exclude_read=True, limit=50, continuation="prev")

    _, kwargs = session.request.call_args
    assert kwargs["url"] == f"{BASE_URL}/{READING_LIST}"
    assert kwargs["method"] == "GET"
    assert kwargs["headers"] == {"Authorization": "Bearer token-1"}
    assert kwargs["timeout"] == 7
    assert kwargs["params"] == {"n": 50, "xt": READ_TAG, "ot": to_epoch(T0), "c": "prev"}
    assert page.items == [{"id": "tag:1"}]
    assert page.continuation == "abc"


def test_full_listing_omits_since_and_read_filter(client, session):
    session.request.return_value = make_response(json_data={"items": []})

    page = client.list_changed_items(exclude_read=False, limit=100)

    assert session.request.call_args[1]["params"] == {"n": 100}
    assert page.continuation is None


def test_rate_limit_headers_are_parsed(client, session):
    session.request.return_value = make_response(json_data={"items": []}, headers={
        "X-Reader-Zone1-Usage": "1,204",
        "X-Reader-Zone1-Limit": "5000",
        "X-Reader-Limits-Reset-After": "3600.52",
    })

    page = client.list_changed_items()

    assert len(page.rate_limits) == 1
    snapshot = page.rate_limits[0]
    assert (snapshot.zone, snapshot.used, snapshot.limit, snapshot.reset_after) == (ZONE_READ, 1204, 5000, 3600)


def test_parse_rate_limit_headers_skips_missing_zones():
    assert parse_rate_limit_headers({}) == []
    snapshots = parse_rate_limit_headers({"X-Reader-Zone2-Usage": "bogus", "X-Reader-Zone2-Limit": "100"})
    assert [(s.zone, s.used, s.limit) for s in snapshots] == [(ZONE_WRITE, None, 100)]


def test_malformed_stream_body_raises_sync_error(client, session):
    session.request.return_value = make_response(json_data=ValueError("Expecting value"))

    with pytest.raises(SyncError):
        client.list_changed_items()


def test_list_body_that_is_not_an_object_raises_sync_error(client, session):
    session.request.return_value = make_response(json_data=[{"id": "tag:1"}])

    with pytest.raises(SyncError):
        client.list_changed_items()


def test_push_state_changes_posts_edit_tag(client, session):
    session.request.return_value = make_response(headers={"Content-Type": "text/plain"})

    outcome = client.push_state_changes(ActionType.UNSTAR, ["a", "b", "a"])

    _, kwargs = session.request.call_args
    assert kwargs["url"] == f"{BASE_URL}/{EDIT_TAG}"
    assert kwargs["method"] == "POST"
    assert kwargs["data"] == [("i", "a"), ("i", "b"), ("r", STARRED_TAG)]
    assert outcome.accepted == ["a", "b"]
    assert outcome.rejected == {}


def test_push_reports_rejected_items(client, session):
    session.request.return_value = make_response(
        json_data={"rejected": [{"id": "b", "reason": "Item not found"}, "z"]},
        headers={"Content-Type": "application/json"}
    )

    outcome = client.push_state_changes("read", ["a", "b"])

    assert outcome.accepted == ["a"]
    assert outcome.rejected == {"b": "Item not found"}


def test_push_with_no_ids_makes_no_call(client, session):
    assert client.push_state_changes("read", []).accepted == []
    session.request.assert_not_called()


def test_401_refreshes_credential_once(client, session, credentials):
    session.request.side_effect = [
        make_response(status_code=401),
        make_response(json_data={"items": []}),
    ]
    credentials.get_valid_bearer_token.side_effect = ["stale", "fresh"]

    client.list_changed_items()

    credentials.get_valid_bearer_token.assert_called_with(force_refresh=True)
    assert session.request.call_args[1]["headers"] == {"Authorization": "Bearer fresh"}


def test_repeated_401_raises_auth_expired(client, session):
    session.request.return_value = make_response(status_code=401)

    with pytest.raises(AuthExpiredError):
        client.list_changed_items()
    assert session.request.call_count == 2


def test_429_raises_rate_limit_with_reset(client, session):
    session.request.return_value = make_response(status_code=429, headers={
        "X-Reader-Zone2-Usage": "100",
        "X-Reader-Zone2-Limit": "100",
        "X-Reader-Limits-Reset-After": "120",
    })

    with pytest.raises(RateLimitExceededError) as exc_info:
        client.push_state_changes("star", ["a"])

    assert exc_info.value.zone == ZONE_WRITE
    assert exc_info.value.reset_after == 120


@pytest.mark.parametrize("error", [ConnectionError("refused"), Timeout("slow")])
def test_network_errors_are_transient(client, session, error):
    session.request.side_effect = error

    with pytest.raises(TransientNetworkError):
        client.list_changed_items()


def test_server_error_is_transient(client, session):
    session.request.return_value = make_response(status_code=503)

    with pytest.raises(TransientNetworkError):
        client.push_state_changes("read", ["a"])


def test_client_error_is_not_retryable(client, session):
    session.request.return_value = make_response(status_code=400)

    with pytest.raises(SyncError) as exc_info:
        client.list_changed_items()
    assert not exc_info.value.retryable


def test_static_provider_without_token():
    with pytest.raises(AuthExpiredError):
        StaticCredentialProvider("").get_valid_bearer_token()
