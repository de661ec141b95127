from __future__ import annotations
from datetime import date, datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, Any, List, Optional

class UnifiedAssessmentRequest(BaseModel):
    customer_id: str = Field(min_length=1)
    department: str = Field(min_length=1)
    medical_exam_id: Optional[str] = None
    doctor: Optional[str] = None
    assessment_data: Optional[Dict[str, Any]] = None
    summary: Optional[str] = None

class AssessmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    customer_id: str
    medical_exam_id: Optional[str] = None
    assessment_date: date
    department: Optional[str] = None
    doctor: Optional[str] = None
    status: str
    date_source: Optional[str] = None
    assessment_data: Optional[Dict[str, Any]] = None
    summary: Optional[str] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

class ExamDateRequest(BaseModel):
    studyId: str = ""

class ExamDateBatchRequest(BaseModel):
    studyIds: List[str] = Field(default_factory=list)

class MergeGroupRequest(BaseModel):
    customer_id: Optional[str] = None
    assessment_date: Optional[date] = None
