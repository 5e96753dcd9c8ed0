"""
SQLAlchemy models for the Dispute Mirror database.

Defines the local mirror of PayPal disputes:
- PayPal accounts and their encrypted API credentials
- Disputes, their status history and correspondence
- Sync run logs and scheduler settings
"""

import uuid
from datetime import UTC

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
from sqlalchemy.types import TypeDecorator

Base = declarative_base()

# SQLite only auto-increments INTEGER primary keys
BigIntPK = BigInteger().with_variant(Integer, "sqlite")
JSONType = JSON().with_variant(JSONB, "postgresql")


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime stored as UTC; naive values read back as UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        value = value.astimezone(UTC)
        if dialect.name != "postgresql":
            value = value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


class PayPalAccount(Base):
    """
    A PayPal merchant account whose disputes are mirrored.

    client_id and secret_key hold Fernet ciphertext, never plaintext.
    """

    __tablename__ = "paypal_accounts"

    id = Column(String(36), primary_key=True, default=_new_id)
    account_name = Column(Text, nullable=False)
    email = Column(Text)
    client_id = Column(Text, nullable=False)
    secret_key = Column(Text, nullable=False)
    sandbox_mode = Column(Boolean, nullable=False, default=True)
    active = Column(Boolean, nullable=False, default=True)
    last_sync_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, server_default=func.now(), onupdate=func.now())

    disputes = relationship("Dispute", back_populates="account")
    sync_logs = relationship("SyncLog", back_populates="account")

    __table_args__ = (Index("ix_paypal_accounts_active", "active"),)

    def __repr__(self) -> str:
        return f"PayPalAccount(id={self.id!r}, account_name={self.account_name!r})"


class Dispute(Base):
    """
    One mirrored dispute, keyed by PayPal's dispute_id.
    """

    __tablename__ = "disputes"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    dispute_id = Column(Text, nullable=False, unique=True)
    paypal_account_id = Column(
        String(36), ForeignKey("paypal_accounts.id", ondelete="CASCADE"), nullable=False
    )
    transaction_id = Column(Text)
    invoice_number = Column(Text)
    dispute_amount = Column(Numeric(12, 2))
    dispute_currency = Column(String(3))
    customer_email = Column(Text)
    customer_name = Column(Text)
    dispute_type = Column(Text)  # life-cycle stage: INQUIRY, CHARGEBACK, PRE_ARBITRATION...
    dispute_reason = Column(Text)
    dispute_status = Column(Text)
    dispute_outcome = Column(Text)
    outcome_category = Column(Text)  # WON | LOST | CANCELLED | REFUNDED
    outcome_map_version = Column(Integer)
    outcome_needs_review = Column(Boolean, nullable=False, default=False)
    dispute_channel = Column(Text)
    dispute_create_time = Column(UTCDateTime)
    dispute_update_time = Column(UTCDateTime)
    response_due_date = Column(UTCDateTime)
    resolved_at = Column(UTCDateTime)
    raw_data = Column(JSONType)
    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, server_default=func.now(), onupdate=func.now())

    account = relationship("PayPalAccount", back_populates="disputes")
    history = relationship(
        "DisputeHistory", back_populates="dispute", cascade="all, delete-orphan"
    )
    messages = relationship(
        "DisputeMessage", back_populates="dispute", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_disputes_account", "paypal_account_id"),
        Index("ix_disputes_status", "dispute_status"),
        Index("ix_disputes_update_time", "dispute_update_time"),
        Index("ix_disputes_needs_review", "outcome_needs_review"),
    )


class DisputeHistory(Base):
    """
    Append-only audit trail for a dispute.

    Rows come from status changes seen during sync (action_by SYSTEM) and from
    manual actions taken by staff.
    """

    __tablename__ = "dispute_history"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    dispute_pk = Column(
        "dispute_id", BigIntPK, ForeignKey("disputes.id", ondelete="CASCADE"), nullable=False
    )
    action_type = Column(Text, nullable=False)
    action_by = Column(Text, nullable=False)
    old_value = Column(Text)
    new_value = Column(Text)
    description = Column(Text)
    event_metadata = Column("metadata", JSONType)
    created_at = Column(UTCDateTime, server_default=func.now())

    dispute = relationship("Dispute", back_populates="history")

    __table_args__ = (Index("ix_dispute_history_dispute", "dispute_id", "created_at"),)


class DisputeMessage(Base):
    """
    Correspondence on a dispute, de-duplicated on (dispute, posted_at, content_hash).
    """

    __tablename__ = "dispute_messages"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    dispute_pk = Column(
        "dispute_id", BigIntPK, ForeignKey("disputes.id", ondelete="CASCADE"), nullable=False
    )
    message_type = Column(Text, nullable=False)
    posted_by = Column(Text)
    content = Column(Text)
    content_hash = Column(String(64), nullable=False)
    attachments = Column(JSONType)
    posted_at = Column(UTCDateTime, nullable=False)
    created_at = Column(UTCDateTime, server_default=func.now())

    dispute = relationship("Dispute", back_populates="messages")

    __table_args__ = (
        UniqueConstraint(
            "dispute_id", "posted_at", "content_hash", name="uq_dispute_messages_natural_key"
        ),
    )


class SyncLog(Base):
    """
    One sync run for one account. Created as RUNNING before any network call.
    """

    __tablename__ = "sync_logs"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    paypal_account_id = Column(
        String(36), ForeignKey("paypal_accounts.id", ondelete="CASCADE"), nullable=False
    )
    sync_type = Column(Text, nullable=False)  # INCREMENTAL_SYNC | 90DAYS_SYNC | FULL_SYNC
    status = Column(Text, nullable=False)  # RUNNING | SUCCESS | FAILED
    records_fetched = Column(Integer, nullable=False, default=0)
    disputes_synced = Column(Integer, nullable=False, default=0)
    disputes_created = Column(Integer, nullable=False, default=0)
    disputes_updated = Column(Integer, nullable=False, default=0)
    records_skipped = Column(Integer, nullable=False, default=0)
    records_failed = Column(Integer, nullable=False, default=0)
    pages_fetched = Column(Integer, nullable=False, default=0)
    errors = Column(Text)
    started_at = Column(UTCDateTime, nullable=False)
    completed_at = Column(UTCDateTime)

    account = relationship("PayPalAccount", back_populates="sync_logs")

    __table_args__ = (
        Index("ix_sync_logs_account_started", "paypal_account_id", "started_at"),
        Index("ix_sync_logs_status", "status"),
    )


class SyncSetting(Base):
    """Key/value settings row; the sync scheduler reads the "sync" category."""

    __tablename__ = "settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text)
    category = Column(String(50), nullable=False, default="general")
    updated_at = Column(UTCDateTime, server_default=func.now(), onupdate=func.now())
