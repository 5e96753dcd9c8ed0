"""
Automatic Dispute Sync Job.

Decides whether a scheduled sync is due and, if so, runs a sync of all
active accounts. Meant to be invoked periodically by an external trigger
(cron running `main.py --auto`, or the `--serve` scheduler).

Settings live in the settings table under the "sync" category:
autoSyncEnabled, syncFrequency (minutes; 1440 means daily at syncTime),
syncTime (HH:MM), syncType, syncOnStartup and lastAutoSyncCheck.
"""

import logging
from datetime import UTC, datetime, timedelta, tzinfo
from typing import Any, NamedTuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel

from ..config.loader import cfg
from ..db.deps import get_session
from ..db.sync_state import LAST_AUTO_SYNC_CHECK, claim_auto_sync_check, load_settings
from ..utils.time_windows import ensure_utc, format_iso_timestamp, parse_iso_timestamp
from .dispute_sync import SyncMode

logger = logging.getLogger(__name__)

DAILY_FREQUENCY = 1440
DAILY_WINDOW_MINUTES = 5
DAILY_MIN_GAP = timedelta(hours=23)
DEFAULT_FREQUENCY = 30


class SyncSettings(BaseModel):
    auto_sync_enabled: bool = False
    sync_frequency: int = DEFAULT_FREQUENCY
    sync_time: str = "00:00"
    sync_type: SyncMode = SyncMode.INCREMENTAL
    sync_on_startup: bool = False

    @classmethod
    def from_rows(cls, rows: dict[str, str | None]) -> "SyncSettings":
        """Build from raw settings rows, falling back to defaults on bad values."""
        frequency = DEFAULT_FREQUENCY
        raw_frequency = rows.get("syncFrequency")
        if raw_frequency:
            try:
                frequency = int(raw_frequency)
            except ValueError:
                logger.warning(f"Invalid syncFrequency {raw_frequency!r}, using {DEFAULT_FREQUENCY}")
            if frequency < 1:
                logger.warning(f"Invalid syncFrequency {raw_frequency!r}, using {DEFAULT_FREQUENCY}")
                frequency = DEFAULT_FREQUENCY

        sync_type = SyncMode.INCREMENTAL
        if rows.get("syncType"):
            try:
                sync_type = SyncMode.parse(rows["syncType"])
            except ValueError:
                logger.warning(f"Invalid syncType {rows['syncType']!r}, using incremental")

        return cls(
            auto_sync_enabled=rows.get("autoSyncEnabled") == "true",
            sync_frequency=frequency,
            sync_time=rows.get("syncTime") or "00:00",
            sync_type=sync_type,
            sync_on_startup=rows.get("syncOnStartup") == "true",
        )

    @property
    def is_daily(self) -> bool:
        return self.sync_frequency == DAILY_FREQUENCY

    def daily_minute(self) -> int:
        """syncTime as minutes after midnight."""
        try:
            hours, minutes = (int(part) for part in self.sync_time.split(":", 1))
        except ValueError:
            logger.warning(f"Invalid syncTime {self.sync_time!r}, using 00:00")
            return 0
        return (hours % 24) * 60 + minutes % 60


class GateDecision(NamedTuple):
    run: bool
    reason: str


class AutoSyncOutcome(NamedTuple):
    ran: bool
    message: str
    results: dict[str, Any] | None = None
    error: str | None = None


def get_timezone() -> tzinfo:
    name = cfg("global.timezone", "UTC")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {name!r}, using UTC")
        return UTC


def evaluate_gate(
    settings: SyncSettings,
    last_check: datetime | None,
    now: datetime,
    tz: tzinfo = UTC,
) -> GateDecision:
    """
    Decide whether an automatic sync should run now.

    Daily policy (syncFrequency 1440): run when the local time is within
    five minutes of syncTime and nothing ran in the last 23 hours.
    Interval policy: run when there is no previous check or at least
    syncFrequency minutes have passed since it.
    """
    if not settings.auto_sync_enabled:
        return GateDecision(False, "Auto sync is disabled")

    now = ensure_utc(now)
    last_check = ensure_utc(last_check)

    if settings.is_daily:
        local = now.astimezone(tz)
        current = local.hour * 60 + local.minute
        target = settings.daily_minute()
        distance = abs(current - target)
        distance = min(distance, 24 * 60 - distance)
        if distance > DAILY_WINDOW_MINUTES:
            return GateDecision(
                False,
                f"Auto sync scheduled for {settings.sync_time}, current time is {local:%H:%M}",
            )
        if last_check is not None and now - last_check < DAILY_MIN_GAP:
            return GateDecision(False, f"Daily auto sync already ran at {last_check.isoformat()}")
        return GateDecision(True, f"Daily sync time {settings.sync_time} reached")

    if last_check is None:
        return GateDecision(True, "No previous auto sync")

    minutes_since = (now - last_check).total_seconds() / 60
    if minutes_since < settings.sync_frequency:
        return GateDecision(
            False,
            f"Last sync was {round(minutes_since)} minutes ago, "
            f"next sync in {round(settings.sync_frequency - minutes_since)} minutes",
        )
    return GateDecision(True, f"{round(minutes_since)} minutes since last sync")


def _parse_last_check(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parse_iso_timestamp(value)
    except ValueError:
        logger.warning(f"Ignoring unparseable {LAST_AUTO_SYNC_CHECK} value {value!r}")
        return None


def check_and_run_auto_sync(service, now: datetime | None = None, tz: tzinfo | None = None) -> AutoSyncOutcome:
    """
    Run a sync of all accounts if the gate says it is due.

    The last-check timestamp is claimed with a compare-and-swap before the
    sync starts, so of two overlapping invocations only one runs. Never
    raises; failures are reported in the returned outcome.
    """
    try:
        now = ensure_utc(now) if now else service.clock()
        tz = tz or get_timezone()

        with get_session(service.session_factory) as session:
            rows = load_settings(session)

        settings = SyncSettings.from_rows(rows)
        stored_check = rows.get(LAST_AUTO_SYNC_CHECK)
        decision = evaluate_gate(settings, _parse_last_check(stored_check), now, tz)
        if not decision.run:
            logger.info(f"Auto sync skipped: {decision.reason}")
            return AutoSyncOutcome(False, decision.reason)

        with get_session(service.session_factory) as session:
            claimed = claim_auto_sync_check(session, stored_check, format_iso_timestamp(now))
        if not claimed:
            logger.info("Auto sync already claimed by another trigger")
            return AutoSyncOutcome(False, "Auto sync already started by another trigger")

        logger.info(
            f"Starting auto sync ({decision.reason}): "
            f"type={settings.sync_type.value}, frequency={settings.sync_frequency} minutes"
        )
        results = service.sync_all_accounts(settings.sync_type)

        success_count = sum(1 for r in results if r.success)
        total_synced = sum(r.synced for r in results)
        message = (
            f"Auto sync completed: {total_synced} disputes synced across "
            f"{success_count}/{len(results)} accounts"
        )
        logger.info(message)

        return AutoSyncOutcome(
            True,
            message,
            {
                "total_accounts": len(results),
                "success_count": success_count,
                "failed_count": len(results) - success_count,
                "total_synced": total_synced,
                "accounts": [r.model_dump() for r in results],
            },
        )

    except Exception as e:
        logger.error(f"Auto sync failed: {e}", exc_info=True)
        return AutoSyncOutcome(False, f"Auto sync failed: {e}", error=str(e))


def run_sync_on_startup(service) -> list | None:
    """Sync all accounts once if syncOnStartup is enabled."""
    try:
        with get_session(service.session_factory) as session:
            settings = SyncSettings.from_rows(load_settings(session))

        if not settings.sync_on_startup:
            logger.debug("Sync on startup disabled")
            return None

        logger.info(f"Running {settings.sync_type.value} sync on startup")
        results = service.sync_all_accounts(settings.sync_type)
        logger.info("Startup sync completed")
        return results

    except Exception as e:
        logger.error(f"Startup sync failed: {e}", exc_info=True)
        return None
