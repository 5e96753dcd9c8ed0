"""
Normalization of PayPal dispute payloads.

The disputes API returns different shapes depending on API version and on
whether the record came from the list or the detail endpoint. Money can sit
at the top level, on a transaction, inside an offer or inside refund
details, and buyer identity may be missing altogether. normalize_dispute()
resolves each field through an ordered list of extraction rules and keeps
the untouched payload in raw_data.
"""

import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .etl import clean_str, content_hash, first_item, get_path, parse_date, parse_decimal
from .outcomes import classify_outcome

logger = logging.getLogger(__name__)

# CLOSED counts as resolved too; some disputes end in CLOSED without passing through RESOLVED
RESOLVED_STATES = {"RESOLVED", "CLOSED"}


class RecordError(Exception):
    """A single upstream record could not be normalized or stored."""

    def __init__(self, message: str, dispute_id: str | None = None):
        super().__init__(message)
        self.dispute_id = dispute_id


class Money(BaseModel):
    value: Decimal
    currency: str | None = None


class CanonicalMessage(BaseModel):
    """One entry of a dispute's correspondence."""

    posted_by: str | None = None
    posted_at: datetime
    content: str | None = None
    attachments: list[Any] | None = None

    @property
    def message_type(self) -> str:
        return self.posted_by or "UNKNOWN"

    @property
    def content_hash(self) -> str:
        return content_hash(self.content)


class CanonicalDispute(BaseModel):
    """Store-ready representation of one upstream dispute."""

    model_config = ConfigDict(frozen=True)

    dispute_id: str
    transaction_id: str | None = None
    invoice_number: str | None = None
    amount: Money | None = None
    customer_email: str | None = None
    customer_name: str | None = None
    dispute_type: str | None = None
    reason: str | None = None
    status: str | None = None
    outcome: str | None = None
    outcome_category: str | None = None
    outcome_map_version: int | None = None
    outcome_needs_review: bool = False
    channel: str | None = None
    create_time: datetime | None = None
    update_time: datetime | None = None
    response_due_date: datetime | None = None
    resolved_at: datetime | None = None
    messages: list[CanonicalMessage] = Field(default_factory=list)
    raw_data: dict[str, Any] = Field(default_factory=dict)

    def column_values(self) -> dict[str, Any]:
        """Values for the mutable columns of the disputes table."""
        return {
            "transaction_id": self.transaction_id,
            "invoice_number": self.invoice_number,
            "dispute_amount": self.amount.value if self.amount else None,
            "dispute_currency": self.amount.currency if self.amount else None,
            "customer_email": self.customer_email,
            "customer_name": self.customer_name,
            "dispute_type": self.dispute_type,
            "dispute_reason": self.reason,
            "dispute_status": self.status,
            "dispute_outcome": self.outcome,
            "outcome_category": self.outcome_category,
            "outcome_map_version": self.outcome_map_version,
            "outcome_needs_review": self.outcome_needs_review,
            "dispute_channel": self.channel,
            "dispute_create_time": self.create_time,
            "dispute_update_time": self.update_time,
            "response_due_date": self.response_due_date,
            "resolved_at": self.resolved_at,
            "raw_data": self.raw_data,
        }


def primary_transaction(raw: Mapping[str, Any]) -> Mapping[str, Any] | None:
    """First disputed transaction, falling back to the legacy "transactions" key."""
    transaction = first_item(raw.get("disputed_transactions")) or first_item(
        raw.get("transactions")
    )
    return transaction if isinstance(transaction, Mapping) else None


def has_buyer_email(raw: Mapping[str, Any]) -> bool:
    """Whether the record already carries the buyer's email address."""
    return bool(clean_str(get_path(primary_transaction(raw) or {}, "buyer", "email_address")))


def _money(node: Any) -> Money | None:
    if not isinstance(node, Mapping):
        return None
    value = parse_decimal(node.get("value"))
    if value is None:
        return None
    return Money(value=value, currency=clean_str(node.get("currency_code")))


# Amount rules, highest priority first
AMOUNT_RULES: list[tuple[str, Callable[[Mapping[str, Any]], Any]]] = [
    ("dispute_amount", lambda raw: raw.get("dispute_amount")),
    ("transaction.gross_amount", lambda raw: get_path(primary_transaction(raw), "gross_amount")),
    ("offer.buyer_requested_amount", lambda raw: get_path(raw, "offer", "buyer_requested_amount")),
    ("offer.seller_offered_amount", lambda raw: get_path(raw, "offer", "seller_offered_amount")),
    (
        "refund_details.allowed_refund_amount",
        lambda raw: get_path(raw, "refund_details", "allowed_refund_amount"),
    ),
]


def resolve_amount(raw: Mapping[str, Any]) -> Money | None:
    for source, rule in AMOUNT_RULES:
        money = _money(rule(raw))
        if money is not None:
            logger.debug(f"Amount for {raw.get('dispute_id')} taken from {source}")
            return money
    return None


def _outcome_code(value: Any) -> str | None:
    if isinstance(value, Mapping):
        value = value.get("outcome_code")
    return clean_str(value)


def _last_adjudication(raw: Mapping[str, Any]) -> Any:
    adjudications = raw.get("adjudications")
    if isinstance(adjudications, list) and adjudications:
        return get_path(adjudications[-1], "type")
    return None


# Outcome rules, highest priority first
OUTCOME_RULES: list[Callable[[Mapping[str, Any]], str | None]] = [
    lambda raw: _outcome_code(raw.get("outcome")),
    lambda raw: _outcome_code(raw.get("dispute_outcome")),
    lambda raw: clean_str(_last_adjudication(raw)),
    lambda raw: clean_str(raw.get("status")),
    lambda raw: clean_str(raw.get("dispute_state")),
]


def is_resolved(raw: Mapping[str, Any]) -> bool:
    states = (clean_str(raw.get("status")), clean_str(raw.get("dispute_state")))
    return any(state and state.upper() in RESOLVED_STATES for state in states)


def resolve_outcome(raw: Mapping[str, Any]) -> str | None:
    """
    Specific outcome of a resolved dispute, or None.

    The generic RESOLVED/CLOSED strings say that a dispute ended, not how, so
    they never count as an outcome.
    """
    if not is_resolved(raw):
        return None

    for rule in OUTCOME_RULES:
        value = rule(raw)
        if value and value.upper() not in RESOLVED_STATES:
            return value
    return None


def resolve_customer(raw: Mapping[str, Any]) -> tuple[str | None, str | None]:
    """Buyer (email, name) from the primary transaction."""
    buyer = get_path(primary_transaction(raw), "buyer")
    if not isinstance(buyer, Mapping):
        return None, None

    email = clean_str(buyer.get("email_address"))

    name_node = buyer.get("name")
    name = None
    if isinstance(name_node, str):
        name = clean_str(name_node)
    elif isinstance(name_node, Mapping):
        given = clean_str(name_node.get("given_name"))
        surname = clean_str(name_node.get("surname"))
        if given or surname:
            name = " ".join(part for part in (given, surname) if part)
        else:
            name = clean_str(name_node.get("full_name"))

    return email, name


def normalize_messages(raw: Mapping[str, Any]) -> list[CanonicalMessage]:
    entries = raw.get("messages")
    if not isinstance(entries, list):
        return []

    messages = []
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        posted_at = parse_date(entry.get("time_posted"))
        if posted_at is None:
            logger.debug(f"Dropping message without time_posted on {raw.get('dispute_id')}")
            continue
        attachments = entry.get("attachments")
        messages.append(
            CanonicalMessage(
                posted_by=clean_str(entry.get("posted_by")),
                posted_at=posted_at,
                content=entry.get("content") if isinstance(entry.get("content"), str) else None,
                attachments=attachments if isinstance(attachments, list) else None,
            )
        )
    return messages


def normalize_dispute(raw: Any) -> CanonicalDispute:
    """
    Convert one raw PayPal dispute into a CanonicalDispute.

    Raises:
        RecordError: the payload is not an object, has no dispute_id, or
            holds a field whose shape cannot be converted
    """
    if not isinstance(raw, Mapping):
        raise RecordError(f"Dispute record must be an object, got {type(raw).__name__}")

    dispute_id = clean_str(raw.get("dispute_id"))
    if not dispute_id:
        raise RecordError("Dispute record has no dispute_id")

    try:
        return _build_dispute(dispute_id, raw)
    except (TypeError, ValueError, ValidationError) as e:
        raise RecordError(f"Malformed dispute {dispute_id}: {e}", dispute_id) from e


def _build_dispute(dispute_id: str, raw: Mapping[str, Any]) -> CanonicalDispute:
    transaction = primary_transaction(raw) or {}
    email, name = resolve_customer(raw)
    if not email and name:
        logger.debug(f"Customer email not available for dispute {dispute_id}")

    outcome = resolve_outcome(raw)
    classification = classify_outcome(outcome, dispute_id)
    update_time = parse_date(raw.get("update_time"))

    return CanonicalDispute(
        dispute_id=dispute_id,
        transaction_id=clean_str(transaction.get("seller_transaction_id"))
        or clean_str(transaction.get("buyer_transaction_id")),
        invoice_number=clean_str(transaction.get("invoice_number")),
        amount=resolve_amount(raw),
        customer_email=email,
        customer_name=name,
        dispute_type=clean_str(raw.get("dispute_life_cycle_stage")),
        reason=clean_str(raw.get("reason")),
        status=clean_str(raw.get("status")) or clean_str(raw.get("dispute_state")),
        outcome=outcome,
        outcome_category=classification.category.value if classification.category else None,
        outcome_map_version=classification.version,
        outcome_needs_review=classification.needs_review,
        channel=clean_str(raw.get("dispute_channel")),
        create_time=parse_date(raw.get("create_time")),
        update_time=update_time,
        response_due_date=parse_date(raw.get("seller_response_due_date")),
        resolved_at=update_time if is_resolved(raw) else None,
        messages=normalize_messages(raw),
        raw_data=dict(raw),
    )
