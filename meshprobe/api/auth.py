"""
Access token lifecycle: refresh on expiry and report refreshed tokens.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Protocol

import httpx
from loguru import logger

from meshprobe.core.errors import AuthRefreshFailed
from meshprobe.core.models import Token


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenObserver(Protocol):
    """Party that owns token persistence."""

    def token_refreshed(self, token: Token) -> None:
        ...


class AuthClient:
    """OAuth2 client for the refresh_token grant."""

    def __init__(
        self,
        auth_url: str,
        client_id: str = "",
        client_secret: str = "",
        timeout: float = 30.0,
        http: Optional[httpx.Client] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.auth_url = auth_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.now = now
        self._http = http or httpx.Client(timeout=timeout)

    def refresh(self, refresh_token: str) -> Token:
        """
        Exchange a refresh token for a new access token.

        Raises:
            AuthRefreshFailed: on any network or protocol error.
        """
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        try:
            response = self._http.post(f"{self.auth_url}/token", data=data)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise AuthRefreshFailed(
                f"token refresh rejected ({e.response.status_code}); please sign in again"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise AuthRefreshFailed(f"token refresh failed: {e}") from e

        if "access_token" not in payload:
            raise AuthRefreshFailed("token refresh failed: no access token in response")

        expires_in = int(payload.get("expires_in") or 0)
        return Token(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or refresh_token,
            token_type=payload.get("token_type") or "Bearer",
            expires_in=expires_in,
            expiry=self.now() + timedelta(seconds=expires_in),
        )

    def close(self) -> None:
        self._http.close()


class TokenStore:
    """Hold the current token and refresh it before authenticated calls."""

    def __init__(
        self,
        token: Optional[Token] = None,
        auth_client: Optional[AuthClient] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self._token = token
        self.auth_client = auth_client
        self.now = now
        self._observers: List[TokenObserver] = []
        self._lock = threading.Lock()

    def current(self) -> Optional[Token]:
        return self._token

    def on_refreshed(self, observer: TokenObserver) -> None:
        """Register a party to be told about every refreshed token."""
        self._observers.append(observer)

    def needs_refresh(self) -> bool:
        token = self._token
        if token is None or token.expiry is None or token.is_pinned:
            return False
        return self.now() >= token.expiry

    def ensure_fresh(self) -> Optional[Token]:
        """
        Refresh the token if it expired.

        Returns:
            The refreshed token, or None when no refresh was needed.

        Raises:
            AuthRefreshFailed: if the refresh exchange fails.
        """
        with self._lock:
            if not self.needs_refresh():
                return None
            old = self._token
            if not old.refresh_token or self.auth_client is None:
                raise AuthRefreshFailed("access token expired; please sign in again")

            logger.debug("Access token expired, refreshing")
            new = self.auth_client.refresh(old.refresh_token)
            if new.expiry is not None and old.expiry is not None and new.expiry < old.expiry:
                new = new.model_copy(update={"expiry": old.expiry})
            self._token = new

        for observer in self._observers:
            try:
                observer.token_refreshed(new)
            except Exception as e:
                logger.error(f"Failed to persist refreshed token: {e}")
        logger.info("Access token refreshed")
        return new

    def authorization_header(self) -> Optional[str]:
        """Return the Authorization header value, refreshing first if needed."""
        self.ensure_fresh()
        token = self._token
        if token is None:
            return None
        return f"{token.token_type or 'Bearer'} {token.access_token}"

    def replace(self, token: Optional[Token]) -> None:
        with self._lock:
            self._token = token
