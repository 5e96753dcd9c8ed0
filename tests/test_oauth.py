"""
Tests for the client-credentials token manager.
"""

from datetime import timedelta
from unittest.mock import Mock

import pytest
from requests.exceptions import ConnectionError, HTTPError

from dispute_mirror.utils.oauth import (
    DEFAULT_EXPIRES_IN,
    AuthError,
    ClientCredentialsTokenManager,
    OAuthConfig,
)

from conftest import NOW

TOKEN_URL = "https://api-m.sandbox.paypal.com/v1/oauth2/token"


def token_response(access_token="A21AA-token", expires_in=3600):
    body = {"access_token": access_token, "token_type": "Bearer"}
    if expires_in is not None:
        body["expires_in"] = expires_in
    response = Mock()
    response.raise_for_status = Mock()
    response.json = Mock(return_value=body)
    return response


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock(NOW)


@pytest.fixture
def session():
    return Mock()


@pytest.fixture
def manager(session, clock):
    config = OAuthConfig("client-id", "client-secret", TOKEN_URL)
    return ClientCredentialsTokenManager(config, session=session, timeout=5, clock=clock)


class TestClientCredentialsTokenManager:
    """Test cases for token exchange and caching."""

    def test_exchanges_with_basic_auth(self, manager, session):
        session.post.return_value = token_response()

        assert manager.get_access_token() == "A21AA-token"

        session.post.assert_called_once()
        args, kwargs = session.post.call_args
        assert args[0] == TOKEN_URL
        assert kwargs["auth"] == ("client-id", "client-secret")
        assert kwargs["data"] == {"grant_type": "client_credentials"}
        assert kwargs["timeout"] == 5

    def test_cached_until_expiry(self, manager, session, clock):
        session.post.side_effect = [token_response("first"), token_response("second")]

        assert manager.get_access_token() == "first"
        clock.now = NOW + timedelta(seconds=3599)
        assert manager.get_access_token() == "first"
        assert session.post.call_count == 1

        clock.now = NOW + timedelta(seconds=3600)
        assert manager.get_access_token() == "second"
        assert session.post.call_count == 2

    def test_default_expiry_when_missing(self, manager, session):
        session.post.return_value = token_response(expires_in=None)

        manager.get_access_token()

        assert manager.token.expires_at == NOW + timedelta(seconds=DEFAULT_EXPIRES_IN)

    def test_fractional_expiry_truncated(self, manager, session):
        session.post.return_value = token_response(expires_in="3600.5")

        manager.get_access_token()

        assert manager.token.expires_at == NOW + timedelta(seconds=3600)

    def test_malformed_expiry_raises_auth_error(self, manager, session):
        session.post.return_value = token_response(expires_in="abc")

        with pytest.raises(AuthError):
            manager.get_access_token()
        assert manager.token is None

    def test_rejected_credentials_raise_auth_error(self, manager, session):
        response = token_response()
        response.raise_for_status.side_effect = HTTPError(response=Mock(status_code=401))
        session.post.return_value = response

        with pytest.raises(AuthError, match="HTTP 401"):
            manager.get_access_token()
        assert manager.token is None

    def test_network_failure_raises_auth_error(self, manager, session):
        session.post.side_effect = ConnectionError("connection reset")

        with pytest.raises(AuthError):
            manager.get_access_token()

    def test_response_without_token(self, manager, session):
        response = token_response()
        response.json.return_value = {"token_type": "Bearer"}
        session.post.return_value = response

        with pytest.raises(AuthError):
            manager.get_access_token()

    def test_invalidate_forces_new_exchange(self, manager, session):
        session.post.side_effect = [token_response("first"), token_response("second")]

        manager.get_access_token()
        manager.invalidate()

        assert manager.get_access_token() == "second"

    def test_repr_hides_secret(self, manager):
        assert "client-secret" not in repr(manager.config)
