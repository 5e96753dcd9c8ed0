"""
PayPal Disputes API client for the Dispute Mirror sync service.

Provides read-only access to the customer disputes endpoints. Handles
client-credentials authentication, rate limiting, per-call retries and
link-following pagination.
"""

import logging
import threading
from collections.abc import Iterator
from datetime import datetime
from typing import Any
from urllib.parse import quote

import requests
from pydantic import BaseModel, Field

from ..common.http import request_with_retry
from ..config.loader import cfg
from ..utils.oauth import AuthError, ClientCredentialsTokenManager, OAuthConfig
from ..utils.rate_limit import RateLimiter
from ..utils.time_windows import format_iso_timestamp

logger = logging.getLogger(__name__)

LIVE_BASE_URL = "https://api-m.paypal.com"
SANDBOX_BASE_URL = "https://api-m.sandbox.paypal.com"
TOKEN_ENDPOINT = "/v1/oauth2/token"
DISPUTES_ENDPOINT = "/v1/customer/disputes"

# Documented maximum for the disputes list endpoint
MAX_PAGE_SIZE = 20


class PayPalConfig(BaseModel):
    """PayPal API client settings."""

    sandbox: bool = Field(default=True, description="Use the sandbox environment")
    live_base_url: str = Field(default=LIVE_BASE_URL, description="Live API base URL")
    sandbox_base_url: str = Field(default=SANDBOX_BASE_URL, description="Sandbox API base URL")
    page_size: int = Field(default=MAX_PAGE_SIZE, ge=1, description="Disputes per page")
    timeout: float = Field(default=30, gt=0, description="Per-request timeout in seconds")
    max_retries: int = Field(default=3, ge=1, description="Attempts per API call")
    backoff_multiplier: float = Field(default=1, ge=0)
    backoff_min: float = Field(default=1, ge=0)
    backoff_max: float = Field(default=10, ge=0)
    rate_limit_delay: float = Field(
        default=0.1, ge=0, description="Minimum delay between requests in seconds"
    )
    max_pages: int = Field(default=1000, ge=1, description="Pagination safety limit")

    @property
    def base_url(self) -> str:
        return (self.sandbox_base_url if self.sandbox else self.live_base_url).rstrip("/")

    @property
    def token_url(self) -> str:
        return f"{self.base_url}{TOKEN_ENDPOINT}"

    @property
    def effective_page_size(self) -> int:
        return min(self.page_size, MAX_PAGE_SIZE)

    @classmethod
    def from_config(cls, sandbox: bool = True) -> "PayPalConfig":
        """Load settings from the "paypal" section of the app config."""
        return cls(
            sandbox=sandbox,
            live_base_url=cfg("paypal.live_base_url", LIVE_BASE_URL),
            sandbox_base_url=cfg("paypal.sandbox_base_url", SANDBOX_BASE_URL),
            page_size=cfg("paypal.page_size", MAX_PAGE_SIZE),
            timeout=cfg("paypal.timeout", 30),
            max_retries=cfg("paypal.max_retries", 3),
            backoff_multiplier=cfg("paypal.backoff.multiplier", 1),
            backoff_min=cfg("paypal.backoff.min", 1),
            backoff_max=cfg("paypal.backoff.max", 10),
            rate_limit_delay=cfg("paypal.rate_limit_delay", 0.1),
            max_pages=cfg("paypal.max_pages", 1000),
        )


class PayPalError(Exception):
    """Error response or unusable payload from the PayPal API."""

    def __init__(self, message: str, status_code: int | None = None, debug_id: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.debug_id = debug_id


class UpstreamClientError(PayPalError):
    """4xx response other than 401/429; retrying will not help."""


class PayPalServerError(PayPalError):
    """5xx response."""


class PayPalRateLimitError(PayPalError):
    """429 response."""


RETRYABLE_ERRORS = (
    requests.exceptions.Timeout,
    requests.exceptions.ConnectionError,
    PayPalServerError,
    PayPalRateLimitError,
)


class PayPalClient:
    """PayPal disputes client for one account and environment."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        config: PayPalConfig | None = None,
        session: requests.Session | None = None,
    ):
        self.config = config or PayPalConfig()
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Content-Type": "application/json",
                "Accept": "application/json",
                "User-Agent": "Dispute-Mirror/1.0",
            }
        )
        self.token_manager = ClientCredentialsTokenManager(
            OAuthConfig(client_id, client_secret, self.config.token_url),
            session=self.session,
            timeout=self.config.timeout,
        )
        self.rate_limiter = RateLimiter("PayPal", min_delay=self.config.rate_limit_delay)

    def _auth_headers(self) -> dict[str, str]:
        self.rate_limiter.wait_if_needed()
        token = self.token_manager.get_access_token()
        return {"Authorization": f"Bearer {token}"}

    def _check_response(self, response: requests.Response) -> None:
        """Raise the error class matching a non-2xx response."""
        self.rate_limiter.process_response(response)
        status = response.status_code
        if status < 400:
            return

        debug_id = None
        message = response.reason or f"HTTP {status}"
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            debug_id = body.get("debug_id")
            message = body.get("message") or body.get("name") or message

        if status == 401:
            logger.warning("PayPal rejected bearer token, clearing token cache")
            self.token_manager.invalidate()
            raise AuthError(f"PayPal authentication failed (HTTP 401): {message}")
        if status == 429:
            logger.warning("PayPal rate limit hit")
            raise PayPalRateLimitError(message, status, debug_id)
        if status >= 500:
            logger.error(f"PayPal server error {status} (debug_id={debug_id})")
            raise PayPalServerError(message, status, debug_id)

        logger.error(f"PayPal API error {status}: {message} (debug_id={debug_id})")
        raise UpstreamClientError(message, status, debug_id)

    def _make_request(
        self, method: str, endpoint: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Make an authenticated request; endpoint may be a path or an absolute URL."""
        if endpoint.startswith(("http://", "https://")):
            url = endpoint
        else:
            url = f"{self.config.base_url}{endpoint}"

        response = request_with_retry(
            self.session,
            method,
            url,
            params=params,
            timeout=self.config.timeout,
            retry_on=RETRYABLE_ERRORS,
            attempts=self.config.max_retries,
            backoff={
                "multiplier": self.config.backoff_multiplier,
                "min": self.config.backoff_min,
                "max": self.config.backoff_max,
            },
            before_request=self._auth_headers,
            response_hook=self._check_response,
        )

        try:
            data = response.json()
        except ValueError as e:
            raise PayPalError(f"Invalid JSON from {endpoint}", response.status_code) from e

        if not isinstance(data, dict):
            raise PayPalError(f"Unexpected response shape from {endpoint}", response.status_code)
        return data

    def list_disputes(
        self,
        start_time: datetime | None = None,
        cancel_event: threading.Event | None = None,
    ) -> "DisputePager":
        """Lazily page through disputes updated since start_time."""
        return DisputePager(self, start_time=start_time, cancel_event=cancel_event)

    def get_dispute(self, dispute_id: str) -> dict[str, Any]:
        """Fetch the full detail of one dispute."""
        return self._make_request("GET", f"{DISPUTES_ENDPOINT}/{quote(dispute_id, safe='')}")

    def check_credentials(self) -> dict[str, Any]:
        """Exchange credentials and list a single dispute."""
        self.token_manager.get_access_token()
        data = self._make_request("GET", DISPUTES_ENDPOINT, params={"page_size": 1})
        return {
            "token_expires_at": self.token_manager.token.expires_at,
            "items_returned": len(data.get("items") or []),
        }


def next_link(page: dict[str, Any]) -> str | None:
    for link in page.get("links") or []:
        if isinstance(link, dict) and link.get("rel") == "next" and link.get("href"):
            return link["href"]
    return None


class DisputePager:
    """
    Single-use iterator over raw dispute records.

    Pages are fetched on demand. The first request carries page_size and
    start_time; later requests follow the "next" link exactly as returned.

    After iteration, pages_fetched, truncated and stop_reason describe how
    pagination ended. Errors on the first page and authentication errors on
    any page propagate. Other errors on later pages stop pagination and mark
    the pager truncated, so already fetched records can still be processed.
    """

    def __init__(
        self,
        client: PayPalClient,
        start_time: datetime | None = None,
        cancel_event: threading.Event | None = None,
    ):
        self.client = client
        self.start_time = start_time
        self.cancel_event = cancel_event
        self.pages_fetched = 0
        self.items_fetched = 0
        self.truncated = False
        self.cancelled = False
        self.stop_reason: str | None = None
        self._started = False

    def __iter__(self) -> Iterator[dict[str, Any]]:
        if self._started:
            raise RuntimeError("DisputePager can only be iterated once")
        self._started = True
        return self._iter_records()

    def _stop(self, reason: str, truncated: bool = True) -> None:
        self.stop_reason = reason
        self.truncated = truncated

    def _iter_records(self) -> Iterator[dict[str, Any]]:
        config = self.client.config
        url = DISPUTES_ENDPOINT
        params: dict[str, Any] | None = {"page_size": config.effective_page_size}
        if self.start_time is not None:
            params["start_time"] = format_iso_timestamp(self.start_time)
        seen_links: set[str] = set()

        while True:
            if self.cancel_event is not None and self.cancel_event.is_set():
                self.cancelled = True
                self._stop("cancelled")
                return

            if self.pages_fetched >= config.max_pages:
                logger.warning(f"PayPal pagination safety limit of {config.max_pages} pages reached")
                self._stop("max_pages")
                return

            page_number = self.pages_fetched + 1
            logger.debug(f"Fetching PayPal disputes page {page_number}")

            try:
                page = self.client._make_request("GET", url, params=params)
            except AuthError:
                raise
            except (PayPalError, requests.exceptions.RequestException) as e:
                if self.pages_fetched == 0:
                    raise
                logger.error(f"Failed to fetch disputes page {page_number}, stopping pagination: {e}")
                self._stop(f"page {page_number} failed: {e}")
                return

            self.pages_fetched += 1
            items = page.get("items") or []
            self.items_fetched += len(items)
            logger.info(
                f"Fetched page {page_number}: {len(items)} disputes, total: {self.items_fetched}"
            )

            yield from items

            href = next_link(page)
            if not href:
                self._stop("complete", truncated=False)
                return
            if href in seen_links:
                logger.warning(f"PayPal returned a repeated next link, stopping pagination: {href}")
                self._stop("repeated_next_link")
                return

            seen_links.add(href)
            url = href
            params = None
