#!/usr/bin/env python3
"""
Dispute Outcome Backfill Script

Re-derives dispute_outcome, outcome_category and the review flag of every
resolved dispute from its stored raw_data. Run it after the outcome rules or
the outcome mapping table change.

Usage:
    python scripts/fix_dispute_outcomes.py [--dry-run]
"""

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dispute_mirror.common.outcomes import OUTCOME_MAP_VERSION  # noqa: E402
from dispute_mirror.jobs.dispute_sync import DisputeSyncService  # noqa: E402

# Load environment variables
load_dotenv()


def main() -> int:
    parser = argparse.ArgumentParser(description="Re-derive outcomes of resolved disputes")
    parser.add_argument("--dry-run", action="store_true", help="Report changes without saving")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    print(f"🔧 Re-deriving dispute outcomes (mapping version {OUTCOME_MAP_VERSION})...")
    stats = DisputeSyncService().backfill_outcomes(dry_run=args.dry_run)

    print("\n📈 Summary:")
    print(f"   Checked:      {stats['checked']}")
    print(f"   Updated:      {stats['updated']}{' (dry run, not saved)' if args.dry_run else ''}")
    print(f"   Unchanged:    {stats['unchanged']}")
    print(f"   Needs review: {stats['needs_review']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
