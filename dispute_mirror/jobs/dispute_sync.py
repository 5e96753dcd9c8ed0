"""
PayPal Dispute Sync Job.

Fetches disputes for each active PayPal account and mirrors them into the
database. Supports three modes:

- incremental: disputes updated since the account's last successful sync
  (minus a safety buffer), falling back to the fixed window on first run
- 90days: disputes from a fixed trailing window
- full: every dispute, no time floor

Each account run is recorded in sync_logs. The account's last_sync_at only
moves forward after a successful, untruncated run.
"""

import logging
import threading
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from enum import Enum
from typing import Any, NamedTuple

import requests
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..adapters.paypal import PayPalClient, PayPalConfig, PayPalError
from ..common.etl import parse_date
from ..common.normalize import RecordError, has_buyer_email, normalize_dispute, resolve_outcome
from ..common.outcomes import classify_outcome
from ..config.loader import cfg
from ..db.deps import SessionFactory, get_session
from ..db.models import Dispute, PayPalAccount
from ..db.sync_state import (
    STATUS_FAILED,
    STATUS_SUCCESS,
    advance_last_sync_at,
    finish_sync_log,
    start_sync_log,
)
from ..db.upserts import UpsertResult, apply_dispute
from ..utils.crypto import CredentialVault, get_vault
from ..utils.oauth import AuthError
from ..utils.time_windows import compute_sync_floor, format_duration, utc_now

logger = logging.getLogger(__name__)


class AccountNotFoundError(Exception):
    """No PayPal account with the requested id."""


class SyncCancelledError(Exception):
    """The run was stopped through its cancel event."""


class SyncMode(str, Enum):
    INCREMENTAL = "incremental"
    FIXED_WINDOW = "90days"
    FULL = "full"

    @classmethod
    def parse(cls, value: "SyncMode | str") -> "SyncMode":
        """Accept a SyncMode or its string form; "fixed-window" is an alias of "90days"."""
        if isinstance(value, cls):
            return value
        if value == "fixed-window":
            return cls.FIXED_WINDOW
        try:
            return cls(value)
        except ValueError:
            raise ValueError(
                f"Unknown sync mode: {value!r}. Use incremental, 90days or full."
            ) from None

    @property
    def log_type(self) -> str:
        """sync_type value written to sync_logs."""
        return {
            SyncMode.INCREMENTAL: "INCREMENTAL_SYNC",
            SyncMode.FIXED_WINDOW: "90DAYS_SYNC",
            SyncMode.FULL: "FULL_SYNC",
        }[self]


class SyncOptions(BaseModel):
    """Orchestrator settings."""

    window_days: int = Field(default=90, ge=1, description="Fixed window size in days")
    buffer_hours: int = Field(default=1, ge=0, description="Incremental overlap in hours")
    max_workers: int = Field(default=4, ge=1, description="Accounts synced in parallel")
    fetch_missing_details: bool = Field(
        default=True, description="Fetch dispute detail when the buyer email is missing"
    )

    @classmethod
    def from_config(cls) -> "SyncOptions":
        return cls(
            window_days=cfg("sync.window_days", 90),
            buffer_hours=cfg("sync.buffer_hours", 1),
            max_workers=cfg("sync.max_workers", 4),
            fetch_missing_details=cfg("sync.fetch_missing_details", True),
        )


class SyncResult(BaseModel):
    """Outcome of one account sync."""

    success: bool
    synced: int = 0
    created: int = 0
    updated: int = 0
    status_changes: int = 0
    fetched: int = 0
    skipped: int = 0
    failed: int = 0
    pages: int = 0
    truncated: bool = False
    errors: str | None = None
    sync_log_id: int | None = None
    duration_seconds: float | None = None


class AccountSyncResult(SyncResult):
    account_id: str
    account_name: str | None = None


class _AccountSnapshot(NamedTuple):
    id: str
    name: str
    client_id: str
    secret_key: str
    sandbox_mode: bool
    last_sync_at: datetime | None


class _RunStats:
    def __init__(self):
        self.fetched = 0
        self.created = 0
        self.updated = 0
        self.status_changes = 0
        self.skipped = 0
        self.failed = 0
        self.pages = 0

    @property
    def synced(self) -> int:
        return self.created + self.updated

    def log_columns(self) -> dict[str, int]:
        return {
            "records_fetched": self.fetched,
            "disputes_synced": self.synced,
            "disputes_created": self.created,
            "disputes_updated": self.updated,
            "records_skipped": self.skipped,
            "records_failed": self.failed,
            "pages_fetched": self.pages,
        }


ClientFactory = Callable[[str, str, bool], PayPalClient]


def default_client_factory(client_id: str, client_secret: str, sandbox: bool) -> PayPalClient:
    return PayPalClient(client_id, client_secret, PayPalConfig.from_config(sandbox=sandbox))


class DisputeSyncService:
    """
    Mirrors PayPal disputes for one or all accounts.

    Collaborators are injectable so tests can run against SQLite and a
    mocked HTTP session.
    """

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        vault: CredentialVault | None = None,
        client_factory: ClientFactory | None = None,
        options: SyncOptions | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory
        self._vault = vault
        self.client_factory = client_factory or default_client_factory
        self.options = options or SyncOptions()
        self.clock = clock

    @property
    def vault(self) -> CredentialVault:
        if self._vault is None:
            self._vault = get_vault()
        return self._vault

    def sync_account(
        self,
        account_id: str,
        mode: SyncMode | str = SyncMode.INCREMENTAL,
        cancel_event: threading.Event | None = None,
    ) -> SyncResult:
        """
        Sync one account.

        Raises:
            AccountNotFoundError: unknown account id
            ValueError: unknown sync mode
            ConfigurationError: no usable encryption key is configured

        Every other failure is reported in the returned SyncResult and in
        the account's SyncLog row.
        """
        mode = SyncMode.parse(mode)
        vault = self.vault
        started_at = self.clock()

        with get_session(self.session_factory) as session:
            account = session.get(PayPalAccount, account_id)
            if account is None:
                raise AccountNotFoundError(f"PayPal account not found: {account_id}")
            if not account.active:
                logger.info(f"Skipping inactive PayPal account {account_id}")
                return SyncResult(success=False, errors=f"PayPal account is not active: {account_id}")

            snapshot = _AccountSnapshot(
                id=account.id,
                name=account.account_name,
                client_id=account.client_id,
                secret_key=account.secret_key,
                sandbox_mode=account.sandbox_mode,
                last_sync_at=account.last_sync_at,
            )
            sync_log_id = start_sync_log(session, account.id, mode.log_type, started_at)

        logger.info(f"Starting {mode.value} sync for account {snapshot.name} ({snapshot.id})")

        stats = _RunStats()
        error: str | None = None
        truncated = False
        stop_reason: str | None = None

        try:
            floor = compute_sync_floor(
                mode.value,
                snapshot.last_sync_at,
                now=started_at,
                window_days=self.options.window_days,
                buffer_hours=self.options.buffer_hours,
            )
            logger.info(f"Sync floor for account {snapshot.id}: {floor.isoformat() if floor else 'none'}")

            client_id = vault.decrypt(snapshot.client_id)
            client_secret = vault.decrypt(snapshot.secret_key)
            client = self.client_factory(client_id, client_secret, snapshot.sandbox_mode)

            pager = client.list_disputes(start_time=floor, cancel_event=cancel_event)
            try:
                with get_session(self.session_factory) as session:
                    for raw in pager:
                        self._check_cancelled(cancel_event)
                        stats.fetched += 1
                        self._process_record(session, client, snapshot.id, raw, mode, floor, stats)
            finally:
                stats.pages = pager.pages_fetched

            self._check_cancelled(cancel_event)
            truncated = pager.truncated
            stop_reason = pager.stop_reason

        except SyncCancelledError:
            error = "Sync cancelled"
            logger.warning(f"Sync for account {snapshot.id} cancelled")
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error(f"Sync for account {snapshot.id} failed: {error}", exc_info=True)

        return self._finalize(snapshot, sync_log_id, started_at, stats, error, truncated, stop_reason)

    def _check_cancelled(self, cancel_event: threading.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise SyncCancelledError("Sync cancelled")

    def _process_record(
        self,
        session: Session,
        client: PayPalClient,
        account_id: str,
        raw: Any,
        mode: SyncMode,
        floor: datetime | None,
        stats: _RunStats,
    ) -> None:
        """Filter, enrich, normalize and store one record. Record errors are counted, not raised."""
        dispute_id = raw.get("dispute_id") if isinstance(raw, Mapping) else None

        if mode is SyncMode.INCREMENTAL and floor is not None and isinstance(raw, Mapping):
            update_time = parse_date(raw.get("update_time"))
            if update_time is None or update_time <= floor:
                logger.debug(f"Skipping dispute {dispute_id}: not updated since {floor}")
                stats.skipped += 1
                return

        if (
            self.options.fetch_missing_details
            and dispute_id
            and isinstance(raw, Mapping)
            and not has_buyer_email(raw)
        ):
            try:
                raw = client.get_dispute(dispute_id)
            except (AuthError, PayPalError, requests.exceptions.RequestException) as e:
                logger.warning(f"Could not fetch details for dispute {dispute_id}, using list record: {e}")

        try:
            canonical = normalize_dispute(raw)
            outcome = apply_dispute(session, account_id, canonical)
            session.commit()
        except (RecordError, SQLAlchemyError) as e:
            session.rollback()
            stats.failed += 1
            logger.warning(f"Skipping dispute {dispute_id}: {e}")
            return

        if outcome.operation is UpsertResult.CREATED:
            stats.created += 1
        else:
            stats.updated += 1
        if outcome.status_changed:
            stats.status_changes += 1

    def _finalize(
        self,
        snapshot: _AccountSnapshot,
        sync_log_id: int,
        started_at: datetime,
        stats: _RunStats,
        error: str | None,
        truncated: bool,
        stop_reason: str | None,
    ) -> SyncResult:
        completed_at = self.clock()
        success = error is None
        notes = error
        if success and truncated:
            notes = f"Pagination stopped early ({stop_reason}); last_sync_at not advanced"
            logger.warning(f"Account {snapshot.id}: {notes}")

        try:
            with get_session(self.session_factory) as session:
                finish_sync_log(
                    session,
                    sync_log_id,
                    STATUS_SUCCESS if success else STATUS_FAILED,
                    completed_at,
                    stats=stats.log_columns(),
                    errors=notes,
                )
                if success and not truncated:
                    advance_last_sync_at(session, snapshot.id, completed_at)
        except SQLAlchemyError as e:
            logger.error(f"Failed to finalize sync log {sync_log_id}: {e}", exc_info=True)
            success = False
            notes = f"{notes + '; ' if notes else ''}failed to record sync result: {e}"

        duration = completed_at - started_at
        logger.info(
            f"Sync for account {snapshot.name} finished: "
            f"{'SUCCESS' if success else 'FAILED'} in {format_duration(duration)}, "
            f"fetched={stats.fetched}, created={stats.created}, updated={stats.updated}, "
            f"skipped={stats.skipped}, failed={stats.failed}, pages={stats.pages}"
        )

        return SyncResult(
            success=success,
            synced=stats.synced,
            created=stats.created,
            updated=stats.updated,
            status_changes=stats.status_changes,
            fetched=stats.fetched,
            skipped=stats.skipped,
            failed=stats.failed,
            pages=stats.pages,
            truncated=truncated,
            errors=notes,
            sync_log_id=sync_log_id,
            duration_seconds=duration.total_seconds(),
        )

    def sync_all_accounts(
        self,
        mode: SyncMode | str = SyncMode.INCREMENTAL,
        cancel_event: threading.Event | None = None,
    ) -> list[AccountSyncResult]:
        """
        Sync every active account in parallel and gather all results.

        One account failing never affects the others; its exception becomes
        that account's failed result.

        Raises:
            ValueError: unknown sync mode
            ConfigurationError: no usable encryption key is configured
        """
        mode = SyncMode.parse(mode)

        with get_session(self.session_factory) as session:
            accounts = session.execute(
                select(PayPalAccount.id, PayPalAccount.account_name)
                .where(PayPalAccount.active.is_(True))
                .order_by(PayPalAccount.created_at, PayPalAccount.id)
            ).all()

        if not accounts:
            logger.info("No active PayPal accounts to sync")
            return []

        # A missing encryption key fails the whole call before any account starts
        self.vault

        logger.info(f"Syncing {len(accounts)} PayPal accounts ({mode.value})")
        results: list[AccountSyncResult | None] = [None] * len(accounts)
        max_workers = min(self.options.max_workers, len(accounts))

        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="dispute-sync") as executor:
            futures = {
                executor.submit(self.sync_account, account_id, mode, cancel_event): index
                for index, (account_id, _name) in enumerate(accounts)
            }
            for future in as_completed(futures):
                index = futures[future]
                account_id, account_name = accounts[index]
                try:
                    result = future.result()
                except Exception as e:
                    logger.error(f"Sync task for account {account_id} raised: {e}", exc_info=True)
                    result = SyncResult(success=False, errors=str(e) or type(e).__name__)
                results[index] = AccountSyncResult(
                    account_id=account_id, account_name=account_name, **result.model_dump()
                )

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Synced {succeeded}/{len(results)} accounts successfully")
        return results

    def backfill_outcomes(self, dry_run: bool = False) -> dict[str, int]:
        """
        Re-derive outcome fields of resolved disputes from their stored raw_data.

        Used after the outcome rules or the outcome mapping table change.
        """
        stats = {"checked": 0, "updated": 0, "unchanged": 0, "needs_review": 0}

        with get_session(self.session_factory) as session:
            disputes = session.execute(
                select(Dispute).where(Dispute.dispute_status.in_(("RESOLVED", "CLOSED")))
            ).scalars().all()

            for dispute in disputes:
                stats["checked"] += 1
                raw = dispute.raw_data if isinstance(dispute.raw_data, Mapping) else {}
                outcome = resolve_outcome(raw)
                classification = classify_outcome(outcome, dispute.dispute_id)
                category = classification.category.value if classification.category else None

                if classification.needs_review:
                    stats["needs_review"] += 1

                new_values = {
                    "dispute_outcome": outcome,
                    "outcome_category": category,
                    "outcome_map_version": classification.version,
                    "outcome_needs_review": classification.needs_review,
                }
                if all(getattr(dispute, k) == v for k, v in new_values.items()):
                    stats["unchanged"] += 1
                    continue

                logger.info(
                    f"Dispute {dispute.dispute_id}: outcome {dispute.dispute_outcome!r} -> {outcome!r}"
                    f" ({category})"
                )
                stats["updated"] += 1
                if not dry_run:
                    for key, value in new_values.items():
                        setattr(dispute, key, value)

            if dry_run:
                session.rollback()

        return stats
