from datetime import datetime, timezone
from typing import Any, Dict, List

import pytest
import requests

from unified_inbox.core.circuit import CircuitBreaker
from unified_inbox.messaging.errors import CircuitOpenError, ProviderAckError, ProviderError
from unified_inbox.sync.gmail_client import GmailClient


class _FakeResponse:
    def __init__(self, payload: Dict[str, Any] | None = None, status_code: int = 200):
        self._payload = payload
        self.status_code = status_code
        self.content = b"{}" if payload is not None else b""

    def json(self) -> Dict[str, Any]:
        return self._payload or {}


class _FakeSession:
    def __init__(self, responses: List[Any]):
        self._responses = responses
        self.requests: List[Dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> _FakeResponse:
        self.requests.append({"method": method, "url": url, **kwargs})
        if not self._responses:
            raise AssertionError("no more responses queued")
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def test_list_unseen_builds_query_and_follows_pages():
    session = _FakeSession(
        [
            _FakeResponse({"messages": [{"id": "a"}, {"id": "b"}], "nextPageToken": "p2"}),
            _FakeResponse({"messages": [{"id": "c"}]}),
        ]
    )
    client = GmailClient("tok", session=session, base_url="https://gmail.test/users/me/")
    after = datetime(2024, 1, 1, tzinfo=timezone.utc)

    assert client.list_unseen(after, 3) == ["a", "b", "c"]

    first, second = session.requests
    assert first["url"] == "https://gmail.test/users/me/messages"
    assert first["headers"] == {"Authorization": "Bearer tok"}
    assert first["params"]["q"] == f"is:unread after:{int(after.timestamp())} -in:chat"
    assert first["params"]["maxResults"] == 3
    assert second["params"]["pageToken"] == "p2"
    assert second["params"]["maxResults"] == 1


def test_list_unseen_stops_at_cap():
    session = _FakeSession(
        [_FakeResponse({"messages": [{"id": str(i)} for i in range(5)], "nextPageToken": "x"})]
    )
    client = GmailClient("tok", session=session)
    assert client.list_unseen(datetime.now(timezone.utc), 2) == ["0", "1"]
    assert len(session.requests) == 1


def test_http_error_raises_provider_error():
    client = GmailClient("tok", session=_FakeSession([_FakeResponse({}, status_code=401)]))
    with pytest.raises(ProviderError) as excinfo:
        client.get_message("m1")
    assert excinfo.value.status_code == 401


def test_network_error_raises_provider_error():
    client = GmailClient(
        "tok", session=_FakeSession([requests.ConnectionError("unreachable")])
    )
    with pytest.raises(ProviderError):
        client.get_message("m1")


def test_mark_seen_removes_unread_label():
    session = _FakeSession([_FakeResponse({"id": "m1"})])
    GmailClient("tok", session=session).mark_seen("m1")

    request = session.requests[0]
    assert request["method"] == "POST"
    assert request["url"].endswith("/messages/m1/modify")
    assert request["json"] == {"removeLabelIds": ["UNREAD"]}


def test_mark_seen_failure_is_ack_error():
    client = GmailClient("tok", session=_FakeSession([_FakeResponse({}, status_code=500)]))
    with pytest.raises(ProviderAckError):
        client.mark_seen("m1")


def test_breaker_stops_calls_after_repeated_failures():
    session = _FakeSession([_FakeResponse({}, status_code=503)] * 2)
    client = GmailClient(
        "tok", session=session, breaker=CircuitBreaker("gmail", failure_threshold=2)
    )
    for _ in range(2):
        with pytest.raises(ProviderError):
            client.get_message("m1")
    with pytest.raises(CircuitOpenError):
        client.get_message("m1")
    assert len(session.requests) == 2
