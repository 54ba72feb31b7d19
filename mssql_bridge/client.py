"""Small HTTP client for talking to a running bridge."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)


class BridgeClientError(RuntimeError):
    """Non-2xx answer from the bridge."""

    def __init__(self, status_code: int, message: str, details: Optional[str] = None):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.details = details


class BridgeClient:
    """
    POST queries to a bridge and return decoded rows.

    Example:
        >>> client = BridgeClient("http://127.0.0.1:3000")
        >>> client.query("SELECT name FROM users WHERE id = @id", {"id": 5})
        [{'name': 'ada'}]
    """

    def __init__(self, base_url: str, timeout: float = 35.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def query(self, sql: str, parameters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        payload: Dict[str, Any] = {"query": sql}
        if parameters:
            payload["parameters"] = parameters
        resp = self.session.post(f"{self.base_url}/", json=payload, timeout=self.timeout)
        self._raise_for_error(resp)
        rows = resp.json()
        logger.debug("Bridge returned %d rows", len(rows))
        return rows

    def health(self) -> Dict[str, Any]:
        resp = self.session.get(f"{self.base_url}/health", timeout=self.timeout)
        self._raise_for_error(resp)
        return resp.json()

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "BridgeClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @staticmethod
    def _raise_for_error(resp: requests.Response) -> None:
        if resp.ok:
            return
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        raise BridgeClientError(
            resp.status_code,
            body.get("error") or resp.reason or "request failed",
            body.get("details"),
        )
