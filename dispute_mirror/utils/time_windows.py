"""
Time window utilities for dispute sync runs.

Provides helpers for computing the fetch floor of each sync mode, normalising
timestamps to UTC, and formatting durations for logs.
"""

import logging
from datetime import UTC, datetime, timedelta

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 90
DEFAULT_BUFFER_HOURS = 1


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Return dt as an aware UTC datetime; naive values are taken to be UTC."""
    if dt is None:
        return None
    if not dt.tzinfo:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def compute_sync_floor(
    mode: str,
    last_sync_at: datetime | None,
    now: datetime | None = None,
    window_days: int = DEFAULT_WINDOW_DAYS,
    buffer_hours: int = DEFAULT_BUFFER_HOURS,
) -> datetime | None:
    """
    Compute the earliest update time a sync run asks the upstream for.

    Args:
        mode: "full", "90days" (fixed window) or "incremental"
        last_sync_at: Account's last successful sync, if any
        now: Reference time, defaults to the current UTC time
        window_days: Size of the fixed trailing window
        buffer_hours: Overlap subtracted from last_sync_at in incremental mode

    Returns:
        The floor as an aware UTC datetime, or None for no floor

    Notes:
        - Incremental runs without a prior sync fall back to the fixed window
        - A last_sync_at in the future (clock anomaly) also falls back to the
          fixed window, so the floor is always strictly before now
    """
    now = ensure_utc(now) or utc_now()
    window_floor = now - timedelta(days=window_days)

    if mode == "full":
        return None

    if mode == "90days":
        return window_floor

    if mode != "incremental":
        raise ValueError(f"Unknown sync mode: {mode}")

    last_sync_at = ensure_utc(last_sync_at)
    if last_sync_at is None:
        logger.info(f"No previous sync, using {window_days}-day window from {window_floor}")
        return window_floor

    if last_sync_at > now:
        logger.warning(
            f"last_sync_at ({last_sync_at.isoformat()}) is in the future, "
            f"using {window_days}-day window instead"
        )
        return window_floor

    floor = last_sync_at - timedelta(hours=buffer_hours)
    if floor >= now:
        floor = window_floor

    logger.debug(f"Incremental floor: {floor} (last sync {last_sync_at})")
    return floor


def format_iso_timestamp(dt: datetime) -> str:
    """Format datetime as ISO 8601 string in UTC."""
    dt = ensure_utc(dt)
    return dt.isoformat().replace("+00:00", "Z")


def parse_iso_timestamp(timestamp: str) -> datetime:
    """Parse ISO 8601 timestamp string to UTC datetime."""
    # Handle Z suffix
    if timestamp.endswith("Z"):
        timestamp = timestamp[:-1] + "+00:00"

    return ensure_utc(datetime.fromisoformat(timestamp))


def format_duration(duration: timedelta) -> str:
    """Format timedelta as human-readable string."""
    total_seconds = int(duration.total_seconds())

    if total_seconds < 60:
        return f"{total_seconds}s"
    elif total_seconds < 3600:
        minutes = total_seconds // 60
        seconds = total_seconds % 60
        return f"{minutes}m{seconds}s"
    elif total_seconds < 86400:
        hours = total_seconds // 3600
        minutes = (total_seconds % 3600) // 60
        return f"{hours}h{minutes}m"
    else:
        days = total_seconds // 86400
        hours = (total_seconds % 86400) // 3600
        return f"{days}d{hours}h"
