"""
client/session.py -- Client-side session holder with silent refresh-and-retry.

ClientSessionManager keeps the access token, attaches it to every request and
recovers from an expired token exactly once per request:

    401 -> POST /auth/refresh (cookie only) -> replay the request with the new token

If the refresh fails, or the replay is rejected again, the session ends: the
token and cookies are cleared, the state becomes LOGGED_OUT and on_logout is
called with a user-facing notice. Only a fresh login() makes it ACTIVE again.

Refresh is single-flight. Only callers that got a 401 queue on the refresh
lock, and each compares the token its request was sent with against the
current one, so N concurrent 401s produce one refresh call, one new token and
at most one logout notice. The refresh HTTP call runs outside the state lock:
other requests and logout() never wait for it, and a refresh that finishes
after a logout or a newer login is discarded.

Transport: a requests.Session by default. Anything with a requests-compatible
request(method, url, **kwargs) and a .cookies jar with clear() works, which
includes FastAPI's TestClient.
"""

from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Callable
from typing import Any, Optional

import requests

logger = logging.getLogger("quotegate.client")

LOGIN_PATH = "/auth/login"
REFRESH_PATH = "/auth/refresh"

# Never retried: a 401 from these means the credentials themselves are bad.
_NO_RETRY_PATHS = frozenset({LOGIN_PATH, REFRESH_PATH})

SESSION_EXPIRED_NOTICE = "Your session has expired. Please log in again."


class SessionState(enum.Enum):
    ACTIVE = "active"
    REFRESHING = "refreshing"
    LOGGED_OUT = "logged_out"


class SessionError(Exception):
    pass


class LoginFailed(SessionError):
    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        super().__init__(message)


class SessionExpired(SessionError):
    """The session ended and the caller must log in again."""


class ClientSessionManager:
    """Owns one login session against a quotegate server.

    Usage:
        manager = ClientSessionManager("http://localhost:8000", on_logout=show_login_page)
        manager.login("alice", "pw123456")
        resp = manager.request("GET", "/auth/me")
    """

    def __init__(
        self,
        base_url: str = "",
        transport: Any = None,
        on_logout: Optional[Callable[[str], None]] = None,
        timeout: Optional[float] = 10,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.transport = transport if transport is not None else requests.Session()
        self.on_logout = on_logout
        self.timeout = timeout
        self._lock = threading.RLock()
        self._refresh_lock = threading.Lock()
        self._state = SessionState.LOGGED_OUT
        self._token: Optional[str] = None
        self.user: Optional[dict] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def access_token(self) -> Optional[str]:
        return self._token

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def login(self, username: str, password: str) -> dict:
        """Start a new session. Returns the user record from the login response."""
        resp = self._send("POST", LOGIN_PATH, None, json={"username": username, "password": password})
        body = _json(resp)
        if resp.status_code != 200:
            raise LoginFailed(resp.status_code, body.get("message") or "Login failed.")
        data = body["data"]
        with self._lock:
            self._token = data["accessToken"]
            self.user = data.get("user")
            self._state = SessionState.ACTIVE
        logger.info("Session started for %s", username)
        return self.user or {}

    def logout(self) -> None:
        """End the session locally. Issued tokens stay valid on the server until expiry."""
        with self._lock:
            self._clear()

    def request(self, method: str, path: str, **kwargs: Any):
        """Send an authenticated request, refreshing and replaying once on 401.

        Raises SessionExpired when there is no session or it cannot be renewed.
        """
        with self._lock:
            if self._state is SessionState.LOGGED_OUT:
                raise SessionExpired(SESSION_EXPIRED_NOTICE)
            sent_with = self._token

        resp = self._send(method, path, sent_with, **kwargs)
        if resp.status_code != 401 or path in _NO_RETRY_PATHS:
            return resp

        token = self._refresh(sent_with)
        if token is None:
            raise SessionExpired(SESSION_EXPIRED_NOTICE)

        resp = self._send(method, path, token, **kwargs)
        if resp.status_code == 401:
            logger.info("Replayed %s %s rejected again, ending session", method, path)
            self._expire(token)
            raise SessionExpired(SESSION_EXPIRED_NOTICE)
        return resp

    def get(self, path: str, **kwargs: Any):
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any):
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs: Any):
        return self.request("PUT", path, **kwargs)

    def delete(self, path: str, **kwargs: Any):
        return self.request("DELETE", path, **kwargs)

    # ------------------------------------------------------------------
    # Refresh and logout
    # ------------------------------------------------------------------

    def _refresh(self, stale: Optional[str]) -> Optional[str]:
        """Return a token newer than `stale`, refreshing only if nobody else has."""
        with self._refresh_lock:
            with self._lock:
                if self._state is SessionState.LOGGED_OUT:
                    return None
                if self._token is not None and self._token != stale:
                    return self._token
                self._state = SessionState.REFRESHING

            token = None
            try:
                token = self._call_refresh()
            finally:
                with self._lock:
                    if self._state is SessionState.REFRESHING:
                        self._state = SessionState.ACTIVE

            with self._lock:
                if self._state is SessionState.LOGGED_OUT:
                    # logout() ran while the refresh was in flight.
                    return None
                if self._token != stale:
                    # A login() replaced the token meanwhile; it wins.
                    return self._token
                if token is not None:
                    self._token = token
                    logger.debug("Access token refreshed")
                    return token
                ended = self._clear()
        if ended:
            self._notify(SESSION_EXPIRED_NOTICE)
        return None

    def _call_refresh(self) -> Optional[str]:
        try:
            resp = self._send("POST", REFRESH_PATH, None)
        except requests.RequestException as e:
            logger.warning("Token refresh failed: %s", e)
            return None
        if resp.status_code != 200:
            logger.info("Token refresh rejected with %d", resp.status_code)
            return None
        return _json(resp).get("data", {}).get("accessToken")

    def _expire(self, token: Optional[str]) -> None:
        with self._lock:
            # A newer login or refresh already replaced the token.
            if self._token is not None and self._token != token:
                return
            ended = self._clear()
        if ended:
            self._notify(SESSION_EXPIRED_NOTICE)

    def _clear(self) -> bool:
        """Drop token and cookies. Returns False if the session had already ended."""
        if self._state is SessionState.LOGGED_OUT:
            return False
        self._state = SessionState.LOGGED_OUT
        self._token = None
        self.user = None
        cookies = getattr(self.transport, "cookies", None)
        if cookies is not None:
            cookies.clear()
        return True

    def _notify(self, notice: str) -> None:
        logger.info("Session ended: %s", notice)
        if self.on_logout is not None:
            self.on_logout(notice)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _send(self, method: str, path: str, token: Optional[str], **kwargs: Any):
        headers = dict(kwargs.pop("headers", None) or {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if self.timeout is not None:
            kwargs.setdefault("timeout", self.timeout)
        return self.transport.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)


def _json(resp) -> dict:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
