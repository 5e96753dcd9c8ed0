"""
Shared HTTP utilities for upstream API calls.

Provides the retry policy wrapped around every PayPal request: transient
failures are retried a bounded number of times with exponential backoff,
everything else is raised on the first attempt.
"""

import logging
from collections.abc import Callable
from typing import Any, Sequence, Type

import requests
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS: tuple[Type[Exception], ...] = (
    requests.exceptions.Timeout,
    requests.exceptions.ConnectionError,
)


def request_with_retry(
    session: requests.Session,
    method: str,
    url: str,
    *,
    params: dict[str, Any] | None = None,
    json: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    timeout: float = 30,
    retry_on: Sequence[Type[Exception]] = TRANSIENT_ERRORS,
    attempts: int = 3,
    backoff: dict[str, int | float] | None = None,
    before_request: Callable[[], dict[str, str]] | None = None,
    response_hook: Callable[[requests.Response], None] | None = None,
) -> requests.Response:
    """
    Make HTTP request with configurable retry logic.

    Args:
        session: Requests session to use
        method: HTTP method (GET, POST, etc.)
        url: Full URL to request
        params: Query parameters
        json: JSON data for request body
        headers: Additional headers (merged with session headers)
        timeout: Request timeout in seconds
        retry_on: Exception types to retry on
        attempts: Total attempts including the first one
        backoff: Backoff configuration dict with keys: multiplier, min, max
        before_request: Called before every attempt; returns extra headers
            (used to attach a fresh bearer token)
        response_hook: Called with every response; raises to signal an
            error, which is retried only if its type is in retry_on

    Returns:
        HTTP response object
    """
    if backoff is None:
        backoff = {"multiplier": 1, "min": 1, "max": 10}

    @retry(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(
            multiplier=backoff.get("multiplier", 1),
            min=backoff.get("min", 1),
            max=backoff.get("max", 10),
        ),
        retry=retry_if_exception_type(tuple(retry_on)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def _make_request() -> requests.Response:
        logger.debug(f"Making {method} request to {url}")

        request_headers = {}
        if headers:
            request_headers.update(headers)
        if before_request is not None:
            request_headers.update(before_request())

        response = session.request(
            method=method,
            url=url,
            params=params,
            json=json,
            headers=request_headers if request_headers else None,
            timeout=timeout,
        )

        if response_hook is not None:
            response_hook(response)
        return response

    return _make_request()
