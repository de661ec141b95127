from __future__ import annotations
from datetime import date
from typing import Iterable, List, Optional, Tuple
from sqlalchemy import func
from sqlalchemy.orm import Session
from .models_db import Customer, HealthAssessment, STATUS_ACTIVE, utcnow

def find_latest_for_day(db: Session, customer_id: str, assessment_date: date) -> HealthAssessment | None:
    return (
        db.query(HealthAssessment)
        .filter(
            HealthAssessment.customer_id == customer_id,
            HealthAssessment.assessment_date == assessment_date,
        )
        .order_by(HealthAssessment.created_at.desc(), HealthAssessment.id.desc())
        .first()
    )

def list_for_day(db: Session, customer_id: str, assessment_date: date) -> List[HealthAssessment]:
    """All rows for one customer-day, earliest created first (id breaks ties)."""
    return (
        db.query(HealthAssessment)
        .filter(
            HealthAssessment.customer_id == customer_id,
            HealthAssessment.assessment_date == assessment_date,
        )
        .order_by(HealthAssessment.created_at.asc(), HealthAssessment.id.asc())
        .all()
    )

def create_assessment(
    db: Session,
    customer_id: str,
    medical_exam_id: str,
    assessment_date: date,
    department: str | None,
    doctor: str | None,
    date_source: str | None,
    created_by: str,
) -> HealthAssessment:
    now = utcnow()
    obj = HealthAssessment(
        customer_id=customer_id,
        medical_exam_id=medical_exam_id,
        assessment_date=assessment_date,
        department=department,
        doctor=doctor or None,
        status=STATUS_ACTIVE,
        date_source=date_source,
        assessment_data={},
        created_by=created_by,
        updated_by=created_by,
        created_at=now,
        updated_at=now,
    )
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj

def touch_assessment(db: Session, obj: HealthAssessment, updated_by: str, **fields) -> HealthAssessment:
    for key, value in fields.items():
        setattr(obj, key, value)
    obj.updated_by = updated_by
    obj.updated_at = utcnow()
    db.commit()
    db.refresh(obj)
    return obj

def get_assessment(db: Session, assessment_id: str) -> HealthAssessment | None:
    return db.get(HealthAssessment, assessment_id)

def list_by_medical_exam_id(db: Session, medical_exam_id: str) -> List[Tuple[HealthAssessment, Customer]]:
    return (
        db.query(HealthAssessment, Customer)
        .join(Customer, HealthAssessment.customer_id == Customer.id)
        .filter(HealthAssessment.medical_exam_id == medical_exam_id)
        .order_by(HealthAssessment.department.asc(), HealthAssessment.created_at.asc())
        .all()
    )

def get_customer(db: Session, customer_id: str) -> Customer | None:
    return db.get(Customer, customer_id)

def customers_with_multiple_records(db: Session) -> List[Tuple[str, int]]:
    count = func.count(HealthAssessment.id)
    return (
        db.query(HealthAssessment.customer_id, count)
        .group_by(HealthAssessment.customer_id)
        .having(count > 1)
        .order_by(count.desc(), HealthAssessment.customer_id.asc())
        .all()
    )

def distinct_dates_for_customer(db: Session, customer_id: str) -> List[date]:
    rows = (
        db.query(HealthAssessment.assessment_date)
        .filter(HealthAssessment.customer_id == customer_id)
        .distinct()
        .order_by(HealthAssessment.assessment_date.asc())
        .all()
    )
    return [r[0] for r in rows]

def duplicate_days_for_customer(db: Session, customer_id: str) -> List[Tuple[date, int]]:
    count = func.count(HealthAssessment.id)
    return (
        db.query(HealthAssessment.assessment_date, count)
        .filter(HealthAssessment.customer_id == customer_id)
        .group_by(HealthAssessment.assessment_date)
        .having(count > 1)
        .order_by(HealthAssessment.assessment_date.desc())
        .all()
    )

def duplicate_days(db: Session) -> List[Tuple[str, date, int]]:
    count = func.count(HealthAssessment.id)
    return (
        db.query(HealthAssessment.customer_id, HealthAssessment.assessment_date, count)
        .group_by(HealthAssessment.customer_id, HealthAssessment.assessment_date)
        .having(count > 1)
        .order_by(HealthAssessment.customer_id.asc(), HealthAssessment.assessment_date.asc())
        .all()
    )

def delete_assessments(db: Session, assessment_ids: Iterable[str]) -> int:
    ids = list(assessment_ids)
    if not ids:
        return 0
    return (
        db.query(HealthAssessment)
        .filter(HealthAssessment.id.in_(ids))
        .delete(synchronize_session=False)
    )

def count_assessments(db: Session) -> int:
    return db.query(func.count(HealthAssessment.id)).scalar() or 0
