"""Minimal Gmail REST client used by the mailbox sync worker."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import requests

from ..core.circuit import CircuitBreaker
from ..messaging.errors import ProviderAckError, ProviderError

DEFAULT_BASE_URL = "https://gmail.googleapis.com/gmail/v1/users/me"
_PAGE_LIMIT = 100


class GmailClient:
    """Bearer-token client for the handful of Gmail endpoints the sync needs.

    Every request goes through ``breaker`` so a failing provider stops being
    hammered for the remainder of a sync run.
    """

    def __init__(
        self,
        access_token: str,
        *,
        session: requests.Session | None = None,
        base_url: str = DEFAULT_BASE_URL,
        breaker: CircuitBreaker | None = None,
        timeout: float = 30.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.session = session or requests.Session()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self._breaker = breaker or CircuitBreaker("gmail", failure_threshold=5, recovery_timeout=60.0)
        self._headers = {"Authorization": f"Bearer {access_token}"}

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        return self._breaker.call(self._send, method, path, **kwargs)

    def _send(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.session.request(
                method, url, headers=self._headers, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise ProviderError(f"Gmail {method} {path} failed: {exc}") from exc
        if response.status_code >= 400:
            raise ProviderError(
                f"Gmail {method} {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError(f"Gmail {method} {path} returned invalid JSON") from exc
        return payload if isinstance(payload, dict) else {}

    @staticmethod
    def unseen_query(after: datetime) -> str:
        return f"is:unread after:{int(after.timestamp())} -in:chat"

    def list_unseen(self, after: datetime, max_results: int) -> list[str]:
        """Return ids of unread messages received after ``after``, newest first."""

        ids: list[str] = []
        page_token: str | None = None
        while len(ids) < max_results:
            params: dict[str, Any] = {
                "q": self.unseen_query(after),
                "maxResults": min(max_results - len(ids), _PAGE_LIMIT),
            }
            if page_token:
                params["pageToken"] = page_token
            payload = self._request("GET", "messages", params=params)
            for item in payload.get("messages") or []:
                message_id = item.get("id") if isinstance(item, dict) else None
                if message_id:
                    ids.append(message_id)
            page_token = payload.get("nextPageToken")
            if not page_token:
                break
        return ids[:max_results]

    def get_message(self, message_id: str) -> dict[str, Any]:
        return self._request("GET", f"messages/{message_id}", params={"format": "full"})

    def mark_seen(self, message_id: str) -> None:
        try:
            self._request(
                "POST", f"messages/{message_id}/modify", json={"removeLabelIds": ["UNREAD"]}
            )
        except ProviderError as exc:
            raise ProviderAckError(
                f"Could not mark Gmail message {message_id} as read: {exc}",
                status_code=exc.status_code,
            ) from exc
