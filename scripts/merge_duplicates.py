"""Merge same-day duplicate health assessments.

Default run:
- Merge every (customer, day) that holds more than one assessment into the
  earliest-created row, re-pointing department data first.
- Validate afterwards and exit non-zero if duplicates remain.

Options:
- `--list` only reports what would be merged.
- `--customer ID --date YYYY-MM-DD` merges a single group.
"""

from __future__ import annotations
import argparse
import sys
from datetime import date

from unified_assessment.config import DATABASE_URL
from unified_assessment.db import init_db, session_scope
from unified_assessment.logging_config import configure_logging, get_logger
from unified_assessment.merger import DuplicateMerger

logger = get_logger("merge_duplicates")

def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Merge duplicate health assessments")
    p.add_argument("--database-url", default=DATABASE_URL, help="SQLAlchemy URL (default: $DATABASE_URL)")
    p.add_argument("--list", action="store_true", help="Report duplicates without changing anything")
    p.add_argument("--customer", help="Merge only this customer's duplicates for --date")
    p.add_argument("--date", type=date.fromisoformat, help="Assessment date (YYYY-MM-DD) for --customer")
    args = p.parse_args(argv)
    if bool(args.customer) != bool(args.date):
        p.error("--customer and --date must be given together")
    return args

def run(db, args) -> int:
    merger = DuplicateMerger(db)

    if args.list:
        for entry in merger.find_customers_with_duplicates():
            for dup in merger.find_duplicates_by_customer(entry["customer_id"]):
                print(f"{entry['customer_id']}  {dup['assessment_date']}  x{dup['count']}  exam ids: {', '.join(filter(None, dup['medical_exam_ids']))}")
        return 0

    if args.customer:
        master = merger.merge_duplicate_assessments(args.customer, args.date)
        if master is None:
            print(f"No assessments for {args.customer} on {args.date}.")
        else:
            print(f"Master assessment {master.id} (exam id {master.medical_exam_id}), removed {merger.stats.records_removed}.")
        return 1 if merger.stats.error_count else 0

    stats = merger.merge_all_duplicates()
    report = merger.validate_merge_results()

    print("=" * 60)
    print(f"Customers processed: {len(stats.processed_customers)}")
    print(f"Groups merged:       {stats.merged_groups}")
    print(f"Records removed:     {stats.records_removed}")
    print(f"Errors:              {stats.error_count}")
    print(f"Total assessments:   {report['total_records']}")
    for rem in report["remaining"]:
        print(f"  still duplicated: {rem['customer_id']} {rem['assessment_date']} x{rem['count']}")
    print("=" * 60)
    return 0 if report["ok"] and not stats.error_count else 1

def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging()
    factory = init_db(args.database_url)
    try:
        with session_scope(factory) as db:
            return run(db, args)
    except Exception:
        logger.exception("Duplicate merge aborted")
        return 1

if __name__ == "__main__":
    sys.exit(main())
