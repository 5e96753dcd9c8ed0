"""
Sync state management for dispute sync runs.

Manages SyncLog rows, the per-account incremental high-water mark
(PayPalAccount.last_sync_at) and the scheduler settings. Both shared
timestamps are written with conditional updates so concurrent manual and
scheduled runs cannot lose or rewind each other's writes.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from ..utils.time_windows import ensure_utc
from .models import PayPalAccount, SyncLog, SyncSetting
from .upserts import insert_for

logger = logging.getLogger(__name__)

STATUS_RUNNING = "RUNNING"
STATUS_SUCCESS = "SUCCESS"
STATUS_FAILED = "FAILED"

SYNC_CATEGORY = "sync"
LAST_AUTO_SYNC_CHECK = "lastAutoSyncCheck"


def start_sync_log(
    session: Session, account_id: str, sync_type: str, started_at: datetime
) -> int:
    """Create a RUNNING SyncLog row and return its id."""
    sync_log = SyncLog(
        paypal_account_id=account_id,
        sync_type=sync_type,
        status=STATUS_RUNNING,
        started_at=started_at,
    )
    session.add(sync_log)
    session.flush()
    logger.debug(f"Started sync log {sync_log.id} for account {account_id} ({sync_type})")
    return sync_log.id


def finish_sync_log(
    session: Session,
    sync_log_id: int,
    status: str,
    completed_at: datetime,
    stats: dict[str, int] | None = None,
    errors: str | None = None,
) -> None:
    """
    Finalize a SyncLog row.

    Args:
        session: Database session
        sync_log_id: Row to finalize
        status: SUCCESS or FAILED
        completed_at: Completion time (UTC)
        stats: Counter columns to set (records_fetched, disputes_created, ...)
        errors: Error text, if any
    """
    if status not in (STATUS_SUCCESS, STATUS_FAILED):
        raise ValueError(f"Invalid final sync status: {status}")

    values: dict[str, Any] = {"status": status, "completed_at": completed_at, "errors": errors}
    values.update(stats or {})
    session.execute(update(SyncLog).where(SyncLog.id == sync_log_id).values(**values))
    logger.debug(f"Finished sync log {sync_log_id}: {status}")


def advance_last_sync_at(session: Session, account_id: str, completed_at: datetime) -> bool:
    """
    Move the account's last_sync_at forward to completed_at.

    The update only applies when the stored value is missing or older, so a
    slower concurrent run can never move it backwards.

    Returns:
        True if the value was advanced
    """
    completed_at = ensure_utc(completed_at)
    result = session.execute(
        update(PayPalAccount)
        .where(PayPalAccount.id == account_id)
        .where(
            or_(PayPalAccount.last_sync_at.is_(None), PayPalAccount.last_sync_at < completed_at)
        )
        .values(last_sync_at=completed_at)
        .execution_options(synchronize_session=False)
    )
    advanced = result.rowcount == 1
    if not advanced:
        logger.info(f"last_sync_at for account {account_id} already at or past {completed_at}")
    return advanced


def load_settings(session: Session, category: str = SYNC_CATEGORY) -> dict[str, str | None]:
    """Return all settings of a category as a key -> value dict."""
    rows = session.execute(
        select(SyncSetting.key, SyncSetting.value).where(SyncSetting.category == category)
    ).all()
    return {key: value for key, value in rows}


def set_setting(
    session: Session, key: str, value: str | None, category: str = SYNC_CATEGORY
) -> None:
    """Insert or overwrite one setting."""
    table = SyncSetting.__table__
    stmt = insert_for(session, table).values(key=key, value=value, category=category)
    stmt = stmt.on_conflict_do_update(
        index_elements=["key"],
        set_={"value": stmt.excluded.value, "category": stmt.excluded.category},
    )
    session.execute(stmt)


def claim_auto_sync_check(session: Session, expected: str | None, new_value: str) -> bool:
    """
    Compare-and-swap lastAutoSyncCheck from expected to new_value.

    Returns:
        True if this caller won the claim, False if another caller changed
        the value since it was read
    """
    if expected is None:
        result = session.execute(
            update(SyncSetting)
            .where(SyncSetting.key == LAST_AUTO_SYNC_CHECK)
            .where(SyncSetting.value.is_(None))
            .values(value=new_value)
        )
        if result.rowcount == 1:
            return True

        stmt = insert_for(session, SyncSetting.__table__).values(
            key=LAST_AUTO_SYNC_CHECK, value=new_value, category=SYNC_CATEGORY
        )
        result = session.execute(stmt.on_conflict_do_nothing(index_elements=["key"]))
        return result.rowcount == 1

    result = session.execute(
        update(SyncSetting)
        .where(SyncSetting.key == LAST_AUTO_SYNC_CHECK)
        .where(SyncSetting.value == expected)
        .values(value=new_value)
    )
    return result.rowcount == 1
