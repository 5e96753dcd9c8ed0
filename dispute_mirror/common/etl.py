"""
Shared ETL utilities for data transformation and extraction.

Provides the value parsing helpers used when turning upstream dispute
payloads into canonical records.
"""

import hashlib
import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

logger = logging.getLogger(__name__)


def parse_date(date_str: str) -> Optional[datetime]:
    """
    Parse an upstream timestamp into an aware UTC datetime.

    Supports ISO 8601 (with Z suffix or offset) and YYYY-MM-DD.

    Args:
        date_str: Date string to parse

    Returns:
        Parsed datetime in UTC, None if parsing fails

    Examples:
        >>> parse_date("2024-01-15T10:30:00.000Z")
        datetime(2024, 1, 15, 10, 30, 0, tzinfo=UTC)
        >>> parse_date("2024-01-15")
        datetime(2024, 1, 15, 0, 0, 0, tzinfo=UTC)
    """
    if not date_str or not isinstance(date_str, str):
        return None

    try:
        if "T" in date_str:
            parsed = datetime.fromisoformat(date_str.replace("Z", "+00:00"))
        else:
            parsed = datetime.strptime(date_str, "%Y-%m-%d")
    except (ValueError, TypeError):
        logger.warning(f"Could not parse date string: {date_str}")
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def parse_decimal(value: Any) -> Optional[Decimal]:
    """
    Safely parse a money value into a Decimal.

    Examples:
        >>> parse_decimal("12.50")
        Decimal('12.50')
        >>> parse_decimal("n/a")
        None
    """
    if value is None or isinstance(value, bool):
        return None

    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None

    if not result.is_finite():
        return None
    return result


def get_path(data: Any, *keys: str) -> Any:
    """Walk nested mappings, returning None as soon as a key is missing."""
    value = data
    for key in keys:
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value


def first_item(value: Any) -> Any:
    """Return the first element of a non-empty list, else None."""
    if isinstance(value, list) and value:
        return value[0]
    return None


def clean_str(value: Any) -> Optional[str]:
    """Strip strings and turn empty ones into None."""
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def content_hash(text: str | None) -> str:
    """Stable SHA-256 hex digest used to de-duplicate message bodies."""
    return hashlib.sha256((text or "").encode("utf-8")).hexdigest()

