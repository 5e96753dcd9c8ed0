"""
Rate limiting utilities for the PayPal API.

Provides helpers to parse rate limit headers, calculate sleep times,
and space out requests after the upstream starts returning 429s.
"""

import logging
import random
import time
from collections.abc import Mapping

from requests import Response

logger = logging.getLogger(__name__)


class RateLimitInfo:
    """Container for rate limit information from API response headers."""

    def __init__(
        self,
        limit: int | None = None,
        remaining: int | None = None,
        reset_time: float | None = None,
        retry_after: float | None = None,
    ):
        self.limit = limit
        self.remaining = remaining
        self.reset_time = reset_time
        self.retry_after = retry_after

    @property
    def usage_ratio(self) -> float | None:
        """Calculate current usage as ratio (0.0 to 1.0)."""
        if self.limit is None or self.remaining is None:
            return None

        if self.limit == 0:
            return 1.0

        used = self.limit - self.remaining
        return used / self.limit

    def is_near_limit(self, threshold: float = 0.8) -> bool:
        """Check if current usage is near the rate limit."""
        ratio = self.usage_ratio
        if ratio is None:
            return False
        return ratio >= threshold

    def __repr__(self) -> str:
        return (
            f"RateLimitInfo(limit={self.limit}, remaining={self.remaining}, "
            f"retry_after={self.retry_after})"
        )


def _header_number(headers, name: str, cast):
    if name not in headers:
        return None
    try:
        return cast(headers[name])
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed {name} header: {headers[name]!r}")
        return None


def parse_rate_limit_headers(response: Response) -> RateLimitInfo:
    """
    Parse generic rate limit headers.

    Headers:
    - X-RateLimit-Limit
    - X-RateLimit-Remaining
    - X-RateLimit-Reset
    - Retry-After
    """
    headers = getattr(response, "headers", None)
    if not isinstance(headers, Mapping):
        headers = {}

    return RateLimitInfo(
        limit=_header_number(headers, "X-RateLimit-Limit", int),
        remaining=_header_number(headers, "X-RateLimit-Remaining", int),
        reset_time=_header_number(headers, "X-RateLimit-Reset", float),
        retry_after=_header_number(headers, "Retry-After", float),
    )


def calculate_sleep_time(
    rate_limit_info: RateLimitInfo,
    buffer_ratio: float = 0.8,
    min_sleep: float = 0.1,
    max_sleep: float = 60.0,
) -> float:
    """
    Calculate how long to sleep based on rate limit information.

    Args:
        rate_limit_info: Rate limit information
        buffer_ratio: Stay below this ratio of the rate limit (0.8 = 80%)
        min_sleep: Minimum sleep time in seconds
        max_sleep: Maximum sleep time in seconds

    Returns:
        Sleep time in seconds
    """
    # If we have an explicit retry-after, use that
    if rate_limit_info.retry_after:
        return min(rate_limit_info.retry_after, max_sleep)

    if rate_limit_info.is_near_limit(buffer_ratio):
        if rate_limit_info.reset_time:
            sleep_time = rate_limit_info.reset_time - time.time()
            if sleep_time > 0:
                return min(sleep_time, max_sleep)

        return min(5.0, max_sleep)

    return min_sleep


def get_adaptive_delay(
    consecutive_rate_limits: int, base_delay: float = 1.0, max_delay: float = 60.0
) -> float:
    """
    Calculate adaptive delay based on consecutive rate limit hits.

    Uses exponential backoff with jitter.
    """
    if consecutive_rate_limits <= 0:
        return 0.0

    # Exponential backoff: 1s, 2s, 4s, 8s, etc.
    delay = base_delay * (2 ** (consecutive_rate_limits - 1))

    # Add jitter (±25%)
    delay *= random.uniform(0.75, 1.25)

    return min(delay, max_delay)


class RateLimiter:
    """
    Tracks API usage for one client and adapts the delay between requests.
    """

    def __init__(
        self, name: str, buffer_ratio: float = 0.8, min_delay: float = 0.1, max_delay: float = 60.0
    ):
        self.name = name
        self.buffer_ratio = buffer_ratio
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.consecutive_rate_limits = 0
        self.last_request_time = 0.0
        self.last_rate_limit_info: RateLimitInfo | None = None

    def process_response(self, response: Response) -> None:
        """Process API response to extract rate limit information."""
        if response.status_code != 429:
            self.consecutive_rate_limits = 0
        else:
            self.consecutive_rate_limits += 1

        self.last_rate_limit_info = parse_rate_limit_headers(response)
        logger.debug(f"{self.name} rate limit info: {self.last_rate_limit_info}")

    def get_delay(self) -> float:
        """Calculate delay before next request."""
        delays = []

        time_since_last = time.time() - self.last_request_time
        if time_since_last < self.min_delay:
            delays.append(self.min_delay - time_since_last)

        if self.consecutive_rate_limits > 0:
            if self.last_rate_limit_info:
                delays.append(
                    calculate_sleep_time(
                        self.last_rate_limit_info, self.buffer_ratio, self.min_delay, self.max_delay
                    )
                )
            delays.append(
                get_adaptive_delay(
                    self.consecutive_rate_limits, base_delay=1.0, max_delay=self.max_delay
                )
            )
        elif self.last_rate_limit_info and self.last_rate_limit_info.is_near_limit(
            self.buffer_ratio
        ):
            delays.append(
                calculate_sleep_time(
                    self.last_rate_limit_info, self.buffer_ratio, self.min_delay, self.max_delay
                )
            )

        return max(delays) if delays else 0.0

    def wait_if_needed(self) -> None:
        """Wait if rate limiting is needed."""
        delay = self.get_delay()

        if delay > 0:
            logger.info(f"{self.name} rate limiting: waiting {delay:.2f}s")
            time.sleep(delay)

        self.last_request_time = time.time()
