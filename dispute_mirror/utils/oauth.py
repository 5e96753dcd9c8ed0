"""
OAuth utilities for the PayPal client-credentials flow.

Provides bearer token caching, expiry tracking and token exchange.
"""

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import requests
from requests.exceptions import HTTPError, RequestException

from .time_windows import utc_now

logger = logging.getLogger(__name__)

# PayPal omits expires_in on some sandbox responses
DEFAULT_EXPIRES_IN = 32400


class AuthError(Exception):
    """Token exchange failed or the upstream rejected our bearer token."""

    pass


class OAuthConfig:
    """OAuth client-credentials configuration for one account."""

    def __init__(self, client_id: str, client_secret: str, token_url: str):
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url

    def __repr__(self) -> str:
        # Never render the secret
        return f"OAuthConfig(token_url={self.token_url!r})"


class OAuthToken:
    """Bearer token with its expiry."""

    def __init__(
        self,
        access_token: str,
        expires_at: datetime | None = None,
        token_type: str = "Bearer",
        scope: str | None = None,
    ):
        self.access_token = access_token
        self.expires_at = expires_at
        self.token_type = token_type
        self.scope = scope

    def is_valid_at(self, now: datetime) -> bool:
        """A token without expiry is treated as expired."""
        return self.expires_at is not None and now < self.expires_at

    @property
    def authorization_header(self) -> str:
        """Get authorization header value."""
        return f"{self.token_type} {self.access_token}"

    def __repr__(self) -> str:
        return f"OAuthToken(expires_at={self.expires_at}, token_type={self.token_type!r})"


class ClientCredentialsTokenManager:
    """
    Obtains and caches bearer tokens for one (account, environment) pair.

    The cached token is returned while now < expiry. Otherwise a new token is
    requested with HTTP Basic auth built from the client id and secret. Any
    failure clears the cache and raises AuthError; retrying is left to the
    caller.
    """

    def __init__(
        self,
        config: OAuthConfig,
        session: requests.Session | None = None,
        timeout: float = 30,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.session = session or requests.Session()
        self.timeout = timeout
        self.clock = clock
        self._token: OAuthToken | None = None
        self._lock = threading.Lock()

    @property
    def token(self) -> OAuthToken | None:
        return self._token

    def get_access_token(self) -> str:
        """Return a valid bearer token, exchanging credentials if needed."""
        with self._lock:
            if self._token is not None and self._token.is_valid_at(self.clock()):
                return self._token.access_token

            try:
                self._token = self._exchange()
            except AuthError:
                self._token = None
                raise

            return self._token.access_token

    def invalidate(self) -> None:
        """Forget the cached token so the next call re-authenticates."""
        with self._lock:
            self._token = None

    def _exchange(self) -> OAuthToken:
        try:
            response = self.session.post(
                self.config.token_url,
                data={"grant_type": "client_credentials"},
                auth=(self.config.client_id, self.config.client_secret),
                headers={
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Accept": "application/json",
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            token_data: dict[str, Any] = response.json()
            access_token = token_data["access_token"]
            expires_in = int(float(token_data.get("expires_in") or DEFAULT_EXPIRES_IN))
        except (HTTPError, RequestException, KeyError, TypeError, ValueError) as e:
            error_detail = ""
            if getattr(e, "response", None) is not None:
                error_detail = f" (HTTP {e.response.status_code})"
            logger.error(f"Failed to obtain access token{error_detail}: {type(e).__name__}")
            raise AuthError(f"Token exchange failed{error_detail}: {e}") from e

        expires_at = self.clock() + timedelta(seconds=expires_in)

        logger.info(f"Obtained access token valid until {expires_at.isoformat()}")
        return OAuthToken(
            access_token=access_token,
            expires_at=expires_at,
            token_type=token_data.get("token_type", "Bearer"),
            scope=token_data.get("scope"),
        )
