# Overview: Authenticated HTTP client for the retailpos API (register terminals, scripts, tests).

"""
ApiClient attaches the bearer token to every request. When a request comes
back 401 it calls the credential refresher once and replays the request a
single time; a second 401 is returned to the caller as-is.

Server errors are not retried here. A 409 with "retryable": true
(ConcurrencyConflictError) is surfaced to the caller, who decides whether to
resubmit the whole operation.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class ApiClient:
    """
    HTTP client wrapper with authentication and convenience methods.

    refresher: callable(client) -> Optional[str] returning a fresh token.
    Defaults to logging in again with the credentials given to login().
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        refresher: Optional[Callable[["ApiClient"], Optional[str]]] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)
        self.token: Optional[str] = None
        self.current_user: Optional[Dict] = None
        self._credentials: Optional[tuple[str, str]] = None
        self._refresher = refresher

    def __enter__(self) -> "ApiClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self.client.close()

    def _headers(self, extra: Optional[Dict] = None) -> Dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if extra:
            headers.update(extra)
        return headers

    def _refresh(self) -> bool:
        if self._refresher is not None:
            token = self._refresher(self)
        elif self._credentials is not None:
            token = self._login_request(*self._credentials)
        else:
            return False
        if not token:
            return False
        self.token = token
        return True

    def request(self, method: str, path: str, *, headers: Optional[Dict] = None, **kwargs) -> httpx.Response:
        response = self.client.request(method, path, headers=self._headers(headers), **kwargs)
        if response.status_code != 401:
            return response

        logger.info("Received 401 for %s %s; refreshing credentials", method, path)
        if not self._refresh():
            return response
        return self.client.request(method, path, headers=self._headers(headers), **kwargs)

    def get(self, path: str, params: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.request("GET", path, params=params, **kwargs)

    def post(self, path: str, json: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.request("POST", path, json=json, **kwargs)

    def put(self, path: str, json: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.request("PUT", path, json=json, **kwargs)

    def patch(self, path: str, json: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.request("PATCH", path, json=json, **kwargs)

    def delete(self, path: str, **kwargs) -> httpx.Response:
        return self.request("DELETE", path, **kwargs)

    def _login_request(self, email: str, password: str) -> Optional[str]:
        response = self.client.post(
            "/api/auth/login",
            headers={"Content-Type": "application/json"},
            json={"email": email, "password": password},
        )
        if response.status_code != 200:
            return None
        data = response.json()
        self.current_user = data.get("user")
        return data.get("token")

    def login(self, email: str, password: str) -> bool:
        """Authenticate, store the token and remember credentials for refresh."""
        token = self._login_request(email, password)
        if not token:
            return False
        self.token = token
        self._credentials = (email, password)
        return True

    def logout(self) -> bool:
        if not self.token:
            return True
        response = self.client.post("/api/auth/logout", headers=self._headers())
        self.token = None
        self.current_user = None
        self._credentials = None
        return response.status_code == 200
