"""
Repair of customer-days that ended up with more than one assessment.

Rows created before assessments were unified, or by two racing first
submissions of the day, leave several assessments for one
(customer, date). The merger keeps the earliest-created row as master,
re-points every dependent row from each other row ("loser") to the master and
then deletes the loser.

Each loser is handled in its own transaction: if re-pointing fails the loser
stays in place, the error is counted and the run moves on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Set

from sqlalchemy.orm import Session

from . import crud
from .logging_config import get_logger
from .models_db import Customer, DepartmentHealthData, HealthAssessment

logger = get_logger(__name__)

Repointer = Callable[[Session, str, str], int]


def column_repointer(model: Any, column: str, copy_from_master: Optional[Dict[str, str]] = None) -> Repointer:
    """Re-pointer that rewrites `model.<column>` from a loser id to the master id.

    `copy_from_master` maps further columns of `model` to master assessment
    attributes whose values are stamped onto the moved rows.
    """
    attr = getattr(model, column)
    copies = dict(copy_from_master or {})

    def repoint(db: Session, loser_id: str, master_id: str) -> int:
        values = {attr: master_id}
        if copies:
            master = crud.get_assessment(db, master_id)
            if master is None:
                raise LookupError(f"Master assessment {master_id} not found")
            for target, source in copies.items():
                values[getattr(model, target)] = getattr(master, source)
        return (
            db.query(model)
            .filter(attr == loser_id)
            .update(values, synchronize_session=False)
        )

    return repoint


class RepointRegistry:
    """Named re-pointing functions, one per table that references assessments."""

    def __init__(self):
        self._repointers: Dict[str, Repointer] = {}

    def register(self, name: str, fn: Repointer) -> None:
        self._repointers[name] = fn

    def unregister(self, name: str) -> None:
        self._repointers.pop(name, None)

    @property
    def names(self) -> List[str]:
        return list(self._repointers)

    def repoint(self, db: Session, loser_id: str, master_id: str) -> Dict[str, int]:
        moved = {}
        for name, fn in self._repointers.items():
            moved[name] = fn(db, loser_id, master_id)
        return moved


def default_repointers() -> RepointRegistry:
    registry = RepointRegistry()
    registry.register(
        "department_health_data",
        column_repointer(
            DepartmentHealthData,
            "health_assessment_id",
            copy_from_master={"medical_exam_id": "medical_exam_id"},
        ),
    )
    return registry


@dataclass
class MergeStats:
    processed_customers: Set[str] = field(default_factory=set)
    merged_groups: int = 0
    records_removed: int = 0
    error_count: int = 0

    def as_dict(self) -> dict:
        return {
            "processed_customers": len(self.processed_customers),
            "merged_groups": self.merged_groups,
            "records_removed": self.records_removed,
            "error_count": self.error_count,
        }


def _as_date(value: date | str) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class DuplicateMerger:
    def __init__(self, db: Session, repointers: Optional[RepointRegistry] = None):
        self.db = db
        self.repointers = repointers if repointers is not None else default_repointers()
        self.stats = MergeStats()

    def reset_stats(self) -> None:
        self.stats = MergeStats()

    def find_customers_with_duplicates(self) -> List[dict]:
        """Customers holding more than one assessment in total, with their distinct dates."""
        out = []
        for customer_id, record_count in crud.customers_with_multiple_records(self.db):
            dates = crud.distinct_dates_for_customer(self.db, customer_id)
            out.append({
                "customer_id": customer_id,
                "record_count": record_count,
                "dates": [d.isoformat() for d in dates],
            })
        logger.info("Customers with several assessments", count=len(out))
        return out

    def find_duplicates_by_customer(self, customer_id: str) -> List[dict]:
        """Days on which `customer_id` has more than one assessment, newest day first."""
        out = []
        for assessment_date, count in crud.duplicate_days_for_customer(self.db, customer_id):
            rows = crud.list_for_day(self.db, customer_id, assessment_date)
            out.append({
                "assessment_date": assessment_date,
                "count": count,
                "medical_exam_ids": [r.medical_exam_id for r in rows],
            })
        return out

    def get_customer_info(self, customer_id: str) -> Customer | None:
        return crud.get_customer(self.db, customer_id)

    def merge_duplicate_assessments(self, customer_id: str, assessment_date: date | str) -> HealthAssessment | None:
        """
        Fold all of one customer-day's assessments into the earliest-created one.

        With zero or one row nothing changes and that row (or None) is
        returned. Otherwise the master is returned after every loser whose
        dependents could be re-pointed has been deleted.
        """
        day = _as_date(assessment_date)
        rows = crud.list_for_day(self.db, customer_id, day)
        if len(rows) <= 1:
            return rows[0] if rows else None

        master, losers = rows[0], rows[1:]
        master_id = master.id
        log = logger.bind(customer_id=customer_id, assessment_date=day.isoformat(), master_id=master_id)
        log.info("Merging duplicate assessments", duplicates=len(losers))

        removed = 0
        for loser_id in [r.id for r in losers]:
            try:
                moved = self.repointers.repoint(self.db, loser_id, master_id)
                crud.delete_assessments(self.db, [loser_id])
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                self.stats.error_count += 1
                log.exception("Failed to merge assessment, left in place", loser_id=loser_id, error=str(e))
                continue
            removed += 1
            log.info("Merged assessment", loser_id=loser_id, repointed=moved)

        self.stats.records_removed += removed
        if removed:
            self.stats.merged_groups += 1
        return crud.get_assessment(self.db, master_id)

    def merge_customer_duplicates(self, customer_id: str) -> bool:
        customer = self.get_customer_info(customer_id)
        if customer is None:
            logger.warning("Customer not found, skipping", customer_id=customer_id)
            return False

        log = logger.bind(customer_id=customer_id, customer_name=customer.name)
        duplicates = self.find_duplicates_by_customer(customer_id)
        if not duplicates:
            log.info("No same-day duplicates")
            return True

        for dup in duplicates:
            try:
                self.merge_duplicate_assessments(customer_id, dup["assessment_date"])
            except Exception as e:
                self.db.rollback()
                self.stats.error_count += 1
                log.exception("Merge failed", assessment_date=dup["assessment_date"].isoformat(), error=str(e))
        return True

    def merge_all_duplicates(self) -> MergeStats:
        """Merge every customer's same-day duplicates; one customer failing does not stop the rest."""
        customers = self.find_customers_with_duplicates()
        if not customers:
            logger.info("No duplicate assessments found")
            return self.stats

        for entry in customers:
            customer_id = entry["customer_id"]
            try:
                self.merge_customer_duplicates(customer_id)
            except Exception as e:
                self.db.rollback()
                self.stats.error_count += 1
                logger.exception("Processing customer failed", customer_id=customer_id, error=str(e))
                continue
            self.stats.processed_customers.add(customer_id)

        logger.info("Duplicate merge finished", **self.stats.as_dict())
        return self.stats

    def validate_merge_results(self) -> dict:
        remaining = [
            {"customer_id": cid, "assessment_date": d.isoformat(), "count": n}
            for cid, d, n in crud.duplicate_days(self.db)
        ]
        result = {
            "ok": not remaining,
            "remaining": remaining,
            "remaining_customers": self.find_customers_with_duplicates(),
            "total_records": crud.count_assessments(self.db),
        }
        if remaining:
            logger.warning("Same-day duplicates remain", groups=len(remaining))
        else:
            logger.info("No same-day duplicates remain", total_records=result["total_records"])
        return result
