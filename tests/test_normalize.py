"""
Tests for dispute normalization and outcome classification.
"""

from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import patch

import pytest

from dispute_mirror.common.normalize import (
    RecordError,
    has_buyer_email,
    normalize_dispute,
    resolve_amount,
    resolve_outcome,
)
from dispute_mirror.common.outcomes import OUTCOME_MAP_VERSION, OutcomeCategory, classify_outcome

from conftest import dispute_record


class TestNormalizeDispute:
    """Test cases for normalize_dispute."""

    def test_open_dispute(self):
        canonical = normalize_dispute(dispute_record("PP-D-100"))

        assert canonical.dispute_id == "PP-D-100"
        assert canonical.transaction_id == "TX-PP-D-100"
        assert canonical.invoice_number == "INV-PP-D-100"
        assert canonical.amount.value == Decimal("25.00")
        assert canonical.amount.currency == "USD"
        assert canonical.customer_email == "buyer@example.com"
        assert canonical.customer_name == "Jane Buyer"
        assert canonical.dispute_type == "INQUIRY"
        assert canonical.reason == "MERCHANDISE_OR_SERVICE_NOT_RECEIVED"
        assert canonical.status == "WAITING_FOR_SELLER_RESPONSE"
        assert canonical.create_time == datetime(2026, 1, 1, 9, 0, tzinfo=UTC)
        assert canonical.outcome is None
        assert canonical.outcome_category is None
        assert canonical.outcome_needs_review is False
        assert canonical.resolved_at is None
        assert canonical.raw_data["dispute_id"] == "PP-D-100"

    def test_rejects_record_without_id(self):
        record = dispute_record("PP-D-100")
        del record["dispute_id"]

        with pytest.raises(RecordError, match="no dispute_id"):
            normalize_dispute(record)

    def test_rejects_non_object(self):
        with pytest.raises(RecordError):
            normalize_dispute(["PP-D-100"])

    def test_buyer_transaction_id_fallback(self):
        record = dispute_record("PP-D-100")
        transaction = record["disputed_transactions"][0]
        del transaction["seller_transaction_id"]
        transaction["buyer_transaction_id"] = "BUYER-TX-1"

        assert normalize_dispute(record).transaction_id == "BUYER-TX-1"

    def test_legacy_transactions_key(self):
        record = dispute_record("PP-D-100")
        record["transactions"] = record.pop("disputed_transactions")

        canonical = normalize_dispute(record)
        assert canonical.transaction_id == "TX-PP-D-100"
        assert canonical.customer_email == "buyer@example.com"

    def test_dispute_state_used_when_status_missing(self):
        record = dispute_record("PP-D-100")
        del record["status"]
        record["dispute_state"] = "OPEN_INQUIRIES"

        assert normalize_dispute(record).status == "OPEN_INQUIRIES"

    def test_structured_buyer_name(self):
        record = dispute_record("PP-D-100")
        record["disputed_transactions"][0]["buyer"]["name"] = {
            "given_name": "Jane",
            "surname": "Buyer",
        }

        assert normalize_dispute(record).customer_name == "Jane Buyer"

    def test_missing_buyer(self):
        record = dispute_record("PP-D-100", email=None)
        del record["disputed_transactions"][0]["buyer"]

        canonical = normalize_dispute(record)
        assert canonical.customer_email is None
        assert canonical.customer_name is None
        assert has_buyer_email(record) is False

    def test_messages_without_time_dropped(self):
        record = dispute_record(
            "PP-D-100",
            messages=[
                {"posted_by": "BUYER", "time_posted": "2026-01-02T10:00:00.000Z", "content": "Where is it?"},
                {"posted_by": "SELLER", "content": "Shipped yesterday"},
            ],
        )

        messages = normalize_dispute(record).messages
        assert len(messages) == 1
        assert messages[0].message_type == "BUYER"
        assert messages[0].posted_at == datetime(2026, 1, 2, 10, 0, tzinfo=UTC)
        assert len(messages[0].content_hash) == 64

    def test_messages_not_a_list_ignored(self):
        for messages in (5, "hello", {"content": "hi"}):
            assert normalize_dispute(dispute_record("PP-D-101", messages=messages)).messages == []

    def test_unexpected_field_error_becomes_record_error(self):
        with patch("dispute_mirror.common.normalize.resolve_amount", side_effect=TypeError("bad amount")):
            with pytest.raises(RecordError, match="PP-D-102") as exc_info:
                normalize_dispute(dispute_record("PP-D-102"))

        assert exc_info.value.dispute_id == "PP-D-102"


class TestResolveAmount:
    """Test cases for the amount extraction order."""

    def test_dispute_amount_preferred(self):
        assert resolve_amount(dispute_record("PP-D-1")).value == Decimal("25.00")

    def test_falls_back_to_transaction_gross(self):
        record = dispute_record("PP-D-1")
        del record["dispute_amount"]

        assert resolve_amount(record).value == Decimal("30.00")

    def test_falls_back_to_offer_then_refund(self):
        record = {
            "dispute_id": "PP-D-1",
            "offer": {"buyer_requested_amount": {"currency_code": "EUR", "value": "12.34"}},
            "refund_details": {"allowed_refund_amount": {"currency_code": "EUR", "value": "9.99"}},
        }
        money = resolve_amount(record)
        assert money.value == Decimal("12.34")
        assert money.currency == "EUR"

        del record["offer"]
        assert resolve_amount(record).value == Decimal("9.99")

    def test_unparseable_amount_skipped(self):
        record = dispute_record("PP-D-1")
        record["dispute_amount"] = {"currency_code": "USD", "value": "n/a"}

        assert resolve_amount(record).value == Decimal("30.00")

    def test_no_amount(self):
        assert resolve_amount({"dispute_id": "PP-D-1"}) is None


class TestOutcomes:
    """Test cases for outcome resolution and classification."""

    def test_open_dispute_has_no_outcome(self):
        record = dispute_record("PP-D-1", outcome={"outcome_code": "RESOLVED_BUYER_FAVOUR"})
        assert resolve_outcome(record) is None

    def test_resolved_with_outcome_code(self):
        record = dispute_record(
            "PP-D-1", status="RESOLVED", outcome={"outcome_code": "RESOLVED_SELLER_FAVOUR"}
        )

        canonical = normalize_dispute(record)
        assert canonical.outcome == "RESOLVED_SELLER_FAVOUR"
        assert canonical.outcome_category == "WON"
        assert canonical.outcome_map_version == OUTCOME_MAP_VERSION
        assert canonical.outcome_needs_review is False
        assert canonical.resolved_at == canonical.update_time

    def test_adjudication_used_without_outcome(self):
        record = dispute_record(
            "PP-D-1",
            status="RESOLVED",
            adjudications=[
                {"type": "PAYOUT_TO_SELLER", "adjudication_time": "2026-01-05T00:00:00.000Z"},
                {"type": "RECOVER_FROM_SELLER", "adjudication_time": "2026-01-08T00:00:00.000Z"},
            ],
        )

        canonical = normalize_dispute(record)
        assert canonical.outcome == "RECOVER_FROM_SELLER"
        assert canonical.outcome_category == "LOST"

    def test_generic_resolved_is_not_an_outcome(self):
        canonical = normalize_dispute(dispute_record("PP-D-1", status="RESOLVED"))

        assert canonical.outcome is None
        assert canonical.outcome_category is None
        assert canonical.outcome_needs_review is False

    def test_unknown_outcome_flagged_for_review(self):
        record = dispute_record("PP-D-1", status="CLOSED", dispute_outcome="SPLIT_DECISION")

        canonical = normalize_dispute(record)
        assert canonical.outcome == "SPLIT_DECISION"
        assert canonical.outcome_category is None
        assert canonical.outcome_needs_review is True
        assert canonical.outcome_map_version == OUTCOME_MAP_VERSION

    def test_classification_table(self):
        assert classify_outcome("resolved_buyer_favour").category is OutcomeCategory.LOST
        assert classify_outcome("CANCELED_BY_BUYER").category is OutcomeCategory.CANCELLED
        assert classify_outcome("ACCEPTED").category is OutcomeCategory.REFUNDED
        assert classify_outcome(None) == (None, False, None)
