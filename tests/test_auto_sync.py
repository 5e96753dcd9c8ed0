"""
Tests for the automatic sync gate.
"""

from datetime import UTC, datetime, timedelta, timezone
from unittest.mock import Mock, patch

import pytest

from dispute_mirror.db.sync_state import LAST_AUTO_SYNC_CHECK, load_settings, set_setting
from dispute_mirror.jobs.auto_sync import (
    SyncSettings,
    check_and_run_auto_sync,
    evaluate_gate,
    run_sync_on_startup,
)
from dispute_mirror.jobs.dispute_sync import AccountSyncResult, SyncMode
from dispute_mirror.utils.time_windows import format_iso_timestamp

from conftest import NOW


def interval_settings(frequency: int = 30) -> SyncSettings:
    return SyncSettings(auto_sync_enabled=True, sync_frequency=frequency)


def daily_settings(sync_time: str) -> SyncSettings:
    return SyncSettings(auto_sync_enabled=True, sync_frequency=1440, sync_time=sync_time)


class TestSyncSettings:
    """Test cases for parsing settings rows."""

    def test_from_rows(self):
        settings = SyncSettings.from_rows(
            {
                "autoSyncEnabled": "true",
                "syncFrequency": "60",
                "syncTime": "03:30",
                "syncType": "90days",
                "syncOnStartup": "false",
            }
        )

        assert settings.auto_sync_enabled is True
        assert settings.sync_frequency == 60
        assert settings.sync_type is SyncMode.FIXED_WINDOW
        assert settings.sync_on_startup is False
        assert settings.daily_minute() == 210

    def test_defaults_for_bad_values(self):
        settings = SyncSettings.from_rows({"syncFrequency": "often", "syncType": "weekly"})

        assert settings.auto_sync_enabled is False
        assert settings.sync_frequency == 30
        assert settings.sync_type is SyncMode.INCREMENTAL

    def test_non_positive_frequency(self):
        assert SyncSettings.from_rows({"syncFrequency": "0"}).sync_frequency == 30


class TestEvaluateGate:
    """Test cases for the gate decision."""

    def test_disabled(self):
        decision = evaluate_gate(SyncSettings(), None, NOW)
        assert decision.run is False
        assert decision.reason == "Auto sync is disabled"

    def test_interval_first_run(self):
        assert evaluate_gate(interval_settings(), None, NOW).run is True

    def test_interval_not_due(self):
        decision = evaluate_gate(interval_settings(30), NOW - timedelta(minutes=29), NOW)

        assert decision.run is False
        assert decision.reason == "Last sync was 29 minutes ago, next sync in 1 minutes"

    def test_interval_due(self):
        assert evaluate_gate(interval_settings(30), NOW - timedelta(minutes=31), NOW).run is True
        assert evaluate_gate(interval_settings(30), NOW - timedelta(minutes=30), NOW).run is True

    def test_daily_inside_window(self):
        now = datetime(2026, 1, 15, 2, 3, tzinfo=UTC)
        assert evaluate_gate(daily_settings("02:00"), now - timedelta(days=1), now).run is True

    def test_daily_outside_window(self):
        now = datetime(2026, 1, 15, 2, 10, tzinfo=UTC)
        decision = evaluate_gate(daily_settings("02:00"), None, now)

        assert decision.run is False
        assert "scheduled for 02:00" in decision.reason

    def test_daily_window_wraps_midnight(self):
        now = datetime(2026, 1, 15, 23, 58, tzinfo=UTC)
        assert evaluate_gate(daily_settings("00:01"), None, now).run is True

    def test_daily_already_ran(self):
        now = datetime(2026, 1, 15, 2, 3, tzinfo=UTC)
        decision = evaluate_gate(daily_settings("02:00"), now - timedelta(hours=10), now)

        assert decision.run is False
        assert "already ran" in decision.reason

    def test_daily_uses_local_time(self):
        # 02:00 at UTC+2 is 00:00 UTC
        now = datetime(2026, 1, 15, 0, 2, tzinfo=UTC)
        tz = timezone(timedelta(hours=2))

        assert evaluate_gate(daily_settings("02:00"), None, now, tz).run is True
        assert evaluate_gate(daily_settings("02:00"), None, now, UTC).run is False


@pytest.fixture
def service(session_factory):
    service = Mock()
    service.session_factory = session_factory
    service.clock = Mock(return_value=NOW)
    service.sync_all_accounts.return_value = [
        AccountSyncResult(account_id="acc-1", account_name="Store A", success=True, synced=4, created=4),
        AccountSyncResult(account_id="acc-2", account_name="Store B", success=False, errors="HTTP 401"),
    ]
    return service


def store_settings(session_factory, **values):
    with session_factory() as session:
        for key, value in values.items():
            set_setting(session, key, value)
        session.commit()


class TestCheckAndRunAutoSync:
    """Test cases for the gate-plus-run entry point."""

    def test_skips_when_not_due(self, service, session_factory):
        last_check = format_iso_timestamp(NOW - timedelta(minutes=29))
        store_settings(
            session_factory,
            autoSyncEnabled="true",
            syncFrequency="30",
            **{LAST_AUTO_SYNC_CHECK: last_check},
        )

        outcome = check_and_run_auto_sync(service, now=NOW, tz=UTC)

        assert outcome.ran is False
        assert "29 minutes ago" in outcome.message
        service.sync_all_accounts.assert_not_called()
        with session_factory() as session:
            assert load_settings(session)[LAST_AUTO_SYNC_CHECK] == last_check

    def test_runs_when_due_and_advances_check(self, service, session_factory):
        store_settings(
            session_factory,
            autoSyncEnabled="true",
            syncFrequency="30",
            syncType="full",
            **{LAST_AUTO_SYNC_CHECK: format_iso_timestamp(NOW - timedelta(minutes=31))},
        )

        outcome = check_and_run_auto_sync(service, now=NOW, tz=UTC)

        assert outcome.ran is True
        assert outcome.error is None
        service.sync_all_accounts.assert_called_once_with(SyncMode.FULL)
        assert outcome.results["total_accounts"] == 2
        assert outcome.results["success_count"] == 1
        assert outcome.results["failed_count"] == 1
        assert outcome.results["total_synced"] == 4
        assert outcome.results["accounts"][0]["account_id"] == "acc-1"
        with session_factory() as session:
            assert load_settings(session)[LAST_AUTO_SYNC_CHECK] == "2026-01-15T12:00:00Z"

    def test_first_ever_check(self, service, session_factory):
        store_settings(session_factory, autoSyncEnabled="true")

        outcome = check_and_run_auto_sync(service, tz=UTC)

        assert outcome.ran is True
        with session_factory() as session:
            assert load_settings(session)[LAST_AUTO_SYNC_CHECK] == "2026-01-15T12:00:00Z"

    def test_lost_claim_does_not_run(self, service, session_factory):
        store_settings(session_factory, autoSyncEnabled="true")

        with patch("dispute_mirror.jobs.auto_sync.claim_auto_sync_check", return_value=False):
            outcome = check_and_run_auto_sync(service, now=NOW, tz=UTC)

        assert outcome.ran is False
        assert "another trigger" in outcome.message
        service.sync_all_accounts.assert_not_called()

    def test_disabled(self, service, session_factory):
        outcome = check_and_run_auto_sync(service, now=NOW, tz=UTC)

        assert outcome.ran is False
        assert outcome.message == "Auto sync is disabled"

    def test_failure_reported_not_raised(self, service, session_factory):
        store_settings(session_factory, autoSyncEnabled="true")
        service.sync_all_accounts.side_effect = RuntimeError("database went away")

        outcome = check_and_run_auto_sync(service, now=NOW, tz=UTC)

        assert outcome.ran is False
        assert outcome.error == "database went away"
        assert outcome.message.startswith("Auto sync failed")


class TestRunSyncOnStartup:
    """Test cases for the startup sync."""

    def test_disabled_by_default(self, service):
        assert run_sync_on_startup(service) is None
        service.sync_all_accounts.assert_not_called()

    def test_runs_configured_type(self, service, session_factory):
        store_settings(session_factory, syncOnStartup="true", syncType="90days")

        results = run_sync_on_startup(service)

        assert len(results) == 2
        service.sync_all_accounts.assert_called_once_with(SyncMode.FIXED_WINDOW)
