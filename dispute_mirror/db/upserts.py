"""
Upsert helpers for the dispute mirror.

apply_dispute() writes one canonical dispute: insert when new, update every
mutable column when known, and append a STATUS_CHANGED history row only when
the status actually changed. Messages are inserted with ON CONFLICT DO
NOTHING on their natural key, so re-syncing unchanged correspondence is a
no-op.
"""

import logging
from enum import Enum
from typing import Any, NamedTuple

from sqlalchemy import Table, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..common.normalize import CanonicalDispute, CanonicalMessage, RecordError
from .models import Dispute, DisputeHistory, DisputeMessage

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "SYSTEM"
STATUS_CHANGED = "STATUS_CHANGED"


class UpsertResult(str, Enum):
    CREATED = "created"
    UPDATED = "updated"


class UpsertOutcome(NamedTuple):
    operation: UpsertResult
    status_changed: bool = False
    new_messages: int = 0


def insert_for(session: Session, table: Table):
    """INSERT construct supporting ON CONFLICT for the session's dialect."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(table)
    if dialect == "sqlite":
        return sqlite_insert(table)
    raise NotImplementedError(f"ON CONFLICT inserts are not supported on {dialect}")


def _insert_messages(session: Session, dispute_pk: int, messages: list[CanonicalMessage]) -> int:
    """Insert new messages, ignoring ones already stored. Returns rows inserted."""
    if not messages:
        return 0

    rows = [
        {
            "dispute_id": dispute_pk,
            "message_type": message.message_type,
            "posted_by": message.posted_by,
            "content": message.content,
            "content_hash": message.content_hash,
            "attachments": message.attachments,
            "posted_at": message.posted_at,
        }
        for message in messages
    ]

    inserted = 0
    table = DisputeMessage.__table__
    for row in rows:
        stmt = insert_for(session, table).values(row)
        stmt = stmt.on_conflict_do_nothing(
            index_elements=["dispute_id", "posted_at", "content_hash"]
        )
        result = session.execute(stmt)
        inserted += max(result.rowcount or 0, 0)
    return inserted


def apply_dispute(session: Session, account_id: str, canonical: CanonicalDispute) -> UpsertOutcome:
    """
    Insert or update one dispute together with its history and messages.

    Does not commit. The caller commits after each record, or rolls back on
    RecordError, so the dispute row, its history and its messages land together.

    Returns:
        UpsertOutcome with operation CREATED or UPDATED

    Raises:
        RecordError: the record could not be written
    """
    values = canonical.column_values()
    status_changed = False

    try:
        existing = session.execute(
            select(Dispute).where(Dispute.dispute_id == canonical.dispute_id)
        ).scalar_one_or_none()

        if existing is None:
            dispute = Dispute(
                dispute_id=canonical.dispute_id, paypal_account_id=account_id, **values
            )
            session.add(dispute)
            session.flush()
            result = UpsertResult.CREATED
        else:
            dispute = existing
            old_status = dispute.dispute_status
            new_status = values["dispute_status"]

            for column, value in values.items():
                setattr(dispute, column, value)
            dispute.paypal_account_id = account_id

            if old_status != new_status:
                status_changed = True
                session.add(
                    DisputeHistory(
                        dispute_pk=dispute.id,
                        action_type=STATUS_CHANGED,
                        action_by=SYSTEM_ACTOR,
                        old_value=old_status or "",
                        new_value=new_status or "",
                        description=(
                            f"Dispute status changed from {old_status} to {new_status}"
                        ),
                    )
                )
                logger.info(
                    f"Dispute {canonical.dispute_id} status changed: {old_status} -> {new_status}"
                )
            session.flush()
            result = UpsertResult.UPDATED

        new_messages = _insert_messages(session, dispute.id, canonical.messages)
        if new_messages:
            logger.debug(f"Stored {new_messages} new messages for {canonical.dispute_id}")
    except (SQLAlchemyError, ValueError, TypeError) as e:
        raise RecordError(
            f"Failed to store dispute {canonical.dispute_id}: {e}", canonical.dispute_id
        ) from e

    return UpsertOutcome(result, status_changed, new_messages)


def append_manual_action(
    session: Session,
    dispute_pk: int,
    action_type: str,
    actor: str,
    old_value: str | None = None,
    new_value: str | None = None,
    description: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> DisputeHistory:
    """Record a staff action (accepted claim, message sent, offer made...) in the history."""
    if not action_type or not actor:
        raise ValueError("action_type and actor are required")

    entry = DisputeHistory(
        dispute_pk=dispute_pk,
        action_type=action_type,
        action_by=actor,
        old_value=old_value,
        new_value=new_value,
        description=description,
        event_metadata=metadata,
    )
    session.add(entry)
    session.flush()
    return entry
