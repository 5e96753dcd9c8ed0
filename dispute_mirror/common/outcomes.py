"""
Outcome classification for resolved disputes.

PayPal reports how a dispute ended as a free-form outcome code. Reporting
needs a small fixed set of categories, so codes are classified through an
explicit lookup table. The table is versioned: every classified dispute
stores the version it was classified with, and a change to the table must
bump OUTCOME_MAP_VERSION so stored rows can be re-derived
(see scripts/fix_dispute_outcomes.py).

Codes that are not in the table are never guessed. They get no category
and are flagged for manual review.
"""

import logging
from enum import Enum
from typing import NamedTuple

logger = logging.getLogger(__name__)

OUTCOME_MAP_VERSION = 1


class OutcomeCategory(str, Enum):
    WON = "WON"
    LOST = "LOST"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


# Keys are upper-cased upstream codes
OUTCOME_MAP: dict[str, OutcomeCategory] = {
    # disputes API outcome_code values
    "RESOLVED_SELLER_FAVOUR": OutcomeCategory.WON,
    "RESOLVED_BUYER_FAVOUR": OutcomeCategory.LOST,
    "RESOLVED_WITH_PAYOUT": OutcomeCategory.REFUNDED,
    "CANCELED_BY_BUYER": OutcomeCategory.CANCELLED,
    "ACCEPTED": OutcomeCategory.REFUNDED,
    "DENIED": OutcomeCategory.WON,
    # adjudication types
    "PAYOUT_TO_SELLER": OutcomeCategory.WON,
    "PAYOUT_TO_BUYER": OutcomeCategory.LOST,
    "RECOVER_FROM_SELLER": OutcomeCategory.LOST,
    # spellings seen on older records and manual entries
    "RESOLVED_SELLER_FAVOR": OutcomeCategory.WON,
    "RESOLVED_IN_SELLER_FAVOR": OutcomeCategory.WON,
    "RESOLVED_BUYER_FAVOR": OutcomeCategory.LOST,
    "RESOLVED_IN_BUYER_FAVOR": OutcomeCategory.LOST,
    "SELLER_WIN": OutcomeCategory.WON,
    "BUYER_WIN": OutcomeCategory.LOST,
    "WON": OutcomeCategory.WON,
    "LOST": OutcomeCategory.LOST,
    "CANCELLED": OutcomeCategory.CANCELLED,
    "CANCELED": OutcomeCategory.CANCELLED,
    "REFUNDED": OutcomeCategory.REFUNDED,
}


class OutcomeClassification(NamedTuple):
    category: OutcomeCategory | None
    needs_review: bool
    version: int | None


def classify_outcome(outcome: str | None, dispute_id: str | None = None) -> OutcomeClassification:
    """
    Map an upstream outcome code to a category.

    Returns a classification with no category and no version when there is
    no outcome at all. An unknown code is returned with needs_review set.
    """
    if not outcome:
        return OutcomeClassification(category=None, needs_review=False, version=None)

    category = OUTCOME_MAP.get(outcome.strip().upper())
    if category is None:
        logger.warning(
            f"Unmapped dispute outcome {outcome!r} for dispute {dispute_id}, flagged for review"
        )
        return OutcomeClassification(
            category=None, needs_review=True, version=OUTCOME_MAP_VERSION
        )

    return OutcomeClassification(category=category, needs_review=False, version=OUTCOME_MAP_VERSION)
