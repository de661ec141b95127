from __future__ import annotations
import uuid
from datetime import date, datetime, timezone
from typing import Optional
from sqlalchemy import String, Date, DateTime, Text, JSON, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column
from .db import Base

STATUS_ACTIVE = "Active"

# How an assessment's date was obtained.
DATE_SOURCE_AUTO = "auto"          # resolved from the exam date service
DATE_SOURCE_FALLBACK = "fallback"  # service gave nothing, today was used
DATE_SOURCE_MANUAL = "manual"      # exam id minted locally, dated today

def _uuid() -> str:
    return uuid.uuid4().hex

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(100))
    identity_card: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), default=STATUS_ACTIVE)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

class HealthAssessment(Base):
    __tablename__ = "health_assessments"
    __table_args__ = (
        Index("ix_health_assessments_customer_date", "customer_id", "assessment_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    customer_id: Mapped[str] = mapped_column(String(36), index=True)
    medical_exam_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    assessment_date: Mapped[date] = mapped_column(Date)
    department: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    doctor: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=STATUS_ACTIVE)
    date_source: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    assessment_data: Mapped[dict] = mapped_column(JSON, default=dict)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

class DepartmentHealthData(Base):
    """Department payload row (lab item, general finding, imaging result)."""
    __tablename__ = "department_health_data"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    health_assessment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("health_assessments.id"), index=True
    )
    customer_id: Mapped[str] = mapped_column(String(36), index=True)
    medical_exam_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    department_type: Mapped[str] = mapped_column(String(20))
    item_name: Mapped[str] = mapped_column(String(200))
    item_result: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    check_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
