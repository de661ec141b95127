"""
One health assessment per customer per calendar day.

Departments (laboratory, general, imaging, ...) submit their data
independently. Before attaching a payload they ask the registry for the
day's assessment; the registry resolves the visit date from the exam id,
finds or creates the single row for that customer-day and keeps its exam id in
line with the most recent caller.

The lookup and the insert are separate statements with no lock between them.
Two first-of-the-day submissions racing each other can both insert; such
pairs are folded together later by `merger.DuplicateMerger`.
"""

from __future__ import annotations

import random
from datetime import date
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from . import crud
from .exam_dates import ExamDateResolver, date_part
from .logging_config import get_logger
from .models_db import (
    Customer,
    HealthAssessment,
    DATE_SOURCE_AUTO,
    DATE_SOURCE_FALLBACK,
    DATE_SOURCE_MANUAL,
)

logger = get_logger(__name__)


def generate_medical_exam_id(today: Optional[date] = None, rng: Optional[random.Random] = None) -> str:
    """`YYMMDD` of today followed by four random digits, e.g. `2410190427`."""
    today = today or date.today()
    rng = rng or random
    return f"{today:%y%m%d}{rng.randrange(10000):04d}"


class UnifiedAssessmentRegistry:
    def __init__(
        self,
        resolver: ExamDateResolver,
        today: Callable[[], date] = date.today,
        rng: Optional[random.Random] = None,
    ):
        self.resolver = resolver
        self._today = today
        self._rng = rng or random.Random()

    def generate_medical_exam_id(self) -> str:
        return generate_medical_exam_id(self._today(), self._rng)

    def resolve_target(self, medical_exam_id: Optional[str]) -> Tuple[str, date, str]:
        """Return (exam id, visit date, date source) for an optional caller exam id."""
        if not medical_exam_id:
            today = self._today()
            minted = generate_medical_exam_id(today, self._rng)
            logger.info("Minted new exam id", medical_exam_id=minted, assessment_date=today.isoformat())
            return minted, today, DATE_SOURCE_MANUAL

        resolved = self.resolver.resolve_date(medical_exam_id)
        if resolved:
            try:
                return medical_exam_id, date.fromisoformat(date_part(resolved)), DATE_SOURCE_AUTO
            except ValueError:
                logger.warning("Exam date service returned a malformed date", medical_exam_id=medical_exam_id, exam_date=resolved)

        today = self._today()
        logger.warning(
            "Exam date unavailable, using today",
            medical_exam_id=medical_exam_id,
            assessment_date=today.isoformat(),
        )
        return medical_exam_id, today, DATE_SOURCE_FALLBACK

    def get_or_create_unified_assessment(
        self,
        db: Session,
        customer_id: str,
        department: Optional[str],
        medical_exam_id: Optional[str] = None,
        doctor: Optional[str] = None,
        created_by: str = "system",
    ) -> HealthAssessment:
        """
        Return the customer's assessment for the visit day, creating it if needed.

        An existing row takes the caller's exam id when it differs, and the
        caller's department and doctor. Storage errors propagate.
        """
        log = logger.bind(customer_id=customer_id, department=department)
        exam_id, assessment_date, date_source = self.resolve_target(medical_exam_id)

        existing = crud.find_latest_for_day(db, customer_id, assessment_date)
        if existing is not None:
            changes: Dict[str, object] = {}
            if existing.medical_exam_id != exam_id:
                log.info(
                    "Reconciling exam id",
                    assessment_id=existing.id,
                    old_medical_exam_id=existing.medical_exam_id,
                    medical_exam_id=exam_id,
                )
                changes["medical_exam_id"] = exam_id
            if department and existing.department != department:
                changes["department"] = department
            if doctor and existing.doctor != doctor:
                changes["doctor"] = doctor
            if changes:
                existing = crud.touch_assessment(db, existing, created_by, **changes)
            log.info("Using existing assessment", assessment_id=existing.id, assessment_date=assessment_date.isoformat())
            return existing

        obj = crud.create_assessment(
            db,
            customer_id=customer_id,
            medical_exam_id=exam_id,
            assessment_date=assessment_date,
            department=department,
            doctor=doctor,
            date_source=date_source,
            created_by=created_by,
        )
        log.info(
            "Created assessment",
            assessment_id=obj.id,
            medical_exam_id=exam_id,
            assessment_date=assessment_date.isoformat(),
            date_source=date_source,
        )
        return obj

    def attach_payload(
        self,
        db: Session,
        assessment: HealthAssessment,
        assessment_data: Optional[dict] = None,
        summary: Optional[str] = None,
        updated_by: str = "system",
    ) -> HealthAssessment:
        """Merge department data into the assessment; a given summary replaces the old one."""
        changes: Dict[str, object] = {}
        if assessment_data:
            merged = dict(assessment.assessment_data or {})
            merged.update(assessment_data)
            changes["assessment_data"] = merged
        if summary is not None:
            changes["summary"] = summary
        if not changes:
            return assessment
        return crud.touch_assessment(db, assessment, updated_by, **changes)

    def list_by_medical_exam_id(self, db: Session, medical_exam_id: str) -> List[Tuple[HealthAssessment, Customer]]:
        return crud.list_by_medical_exam_id(db, medical_exam_id)
