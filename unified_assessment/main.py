from __future__ import annotations
from contextlib import asynccontextmanager
from fastapi import FastAPI, Header, HTTPException, Depends, Request
from typing import Optional
from sqlalchemy.orm import Session, sessionmaker

from .config import API_KEY, load_exam_date_config
from .db import init_db, create_tables, get_engine
from .logging_config import configure_logging
from .models_api import (
    UnifiedAssessmentRequest,
    AssessmentOut,
    ExamDateRequest,
    ExamDateBatchRequest,
    MergeGroupRequest,
)
from .crud import get_customer
from .exam_dates import ExamDateResolver
from .merger import DuplicateMerger, RepointRegistry, default_repointers
from .registry import UnifiedAssessmentRegistry


def create_app(
    session_factory: Optional[sessionmaker] = None,
    resolver: Optional[ExamDateResolver] = None,
    repointers: Optional[RepointRegistry] = None,
    api_key: Optional[str] = API_KEY,
) -> FastAPI:
    """Build the application; services are constructed at startup and kept on app.state."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        factory = session_factory
        if factory is None:
            factory = init_db()
            create_tables(get_engine())
        # Fails loudly here when the exam date API is not configured.
        date_resolver = resolver or ExamDateResolver(load_exam_date_config())

        app.state.session_factory = factory
        app.state.resolver = date_resolver
        app.state.registry = UnifiedAssessmentRegistry(date_resolver)
        app.state.repointers = repointers if repointers is not None else default_repointers()
        try:
            yield
        finally:
            date_resolver.close()

    app = FastAPI(title="Unified Health Assessment API", version="1.0", lifespan=lifespan)
    app.state.api_key = api_key
    register_routes(app)
    return app


def get_session(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def check_auth(request: Request, authorization: Optional[str]) -> None:
    api_key = request.app.state.api_key
    if not api_key:
        return
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token")
    token = authorization.replace("Bearer ", "", 1).strip()
    if token != api_key:
        raise HTTPException(status_code=403, detail="Invalid token")


def register_routes(app: FastAPI) -> None:

    @app.get("/v1/health")
    def health():
        return {"status": "ok"}

    @app.post("/v1/assessments/unified", status_code=201)
    def create_unified_assessment(
        req: UnifiedAssessmentRequest,
        request: Request,
        db: Session = Depends(get_session),
        authorization: Optional[str] = Header(default=None),
        x_user: Optional[str] = Header(default=None),
    ):
        check_auth(request, authorization)
        customer = get_customer(db, req.customer_id)
        if not customer:
            raise HTTPException(status_code=404, detail="Customer not found")

        actor = x_user or "system"
        registry: UnifiedAssessmentRegistry = request.app.state.registry
        obj = registry.get_or_create_unified_assessment(
            db,
            customer_id=req.customer_id,
            department=req.department,
            medical_exam_id=req.medical_exam_id,
            doctor=req.doctor,
            created_by=actor,
        )
        obj = registry.attach_payload(db, obj, req.assessment_data, req.summary, updated_by=actor)

        data = AssessmentOut.model_validate(obj).model_dump(mode="json")
        data.update({
            "customer_info": {
                "id": customer.id,
                "name": customer.name,
                "identity_card": customer.identity_card,
            },
            "is_unified": True,
            "unified_date": data["assessment_date"],
        })
        message = "Assessment ready (existing exam id)" if req.medical_exam_id else "Assessment ready (new exam id)"
        return {"status": "Success", "message": message, "data": data}

    @app.get("/v1/assessments/by-exam/{medical_exam_id}")
    def assessments_by_exam(
        medical_exam_id: str,
        request: Request,
        db: Session = Depends(get_session),
        authorization: Optional[str] = Header(default=None),
    ):
        check_auth(request, authorization)
        rows = request.app.state.registry.list_by_medical_exam_id(db, medical_exam_id)
        out = []
        for assessment, customer in rows:
            rec = AssessmentOut.model_validate(assessment).model_dump(mode="json")
            rec["customer_name"] = customer.name
            rec["identity_card"] = customer.identity_card
            out.append(rec)
        return {"count": len(out), "records": out}

    @app.post("/v1/exam-dates/resolve")
    def resolve_exam_date(req: ExamDateRequest, request: Request):
        if not req.studyId:
            raise HTTPException(status_code=400, detail="studyId must not be empty")
        exam_date = request.app.state.resolver.resolve_date(req.studyId)
        if exam_date:
            return {"code": 200, "data": exam_date, "message": "Exam date found"}
        return {"code": 404, "data": None, "message": "No exam date found"}

    @app.post("/v1/exam-dates/batch")
    def resolve_exam_dates(req: ExamDateBatchRequest, request: Request):
        dates = request.app.state.resolver.resolve_dates_batch(req.studyIds)
        return {"requested": len(req.studyIds), "resolved": len(dates), "dates": dates}

    @app.get("/v1/exam-dates/health")
    def exam_date_health(request: Request):
        return request.app.state.resolver.health_check()

    @app.post("/v1/maintenance/merge-duplicates")
    def merge_duplicates(
        request: Request,
        req: Optional[MergeGroupRequest] = None,
        db: Session = Depends(get_session),
        authorization: Optional[str] = Header(default=None),
    ):
        check_auth(request, authorization)
        merger = DuplicateMerger(db, request.app.state.repointers)
        if req and req.customer_id:
            if req.assessment_date is None:
                raise HTTPException(status_code=400, detail="assessment_date is required with customer_id")
            master = merger.merge_duplicate_assessments(req.customer_id, req.assessment_date)
            return {
                "master": AssessmentOut.model_validate(master).model_dump(mode="json") if master else None,
                "stats": merger.stats.as_dict(),
            }
        stats = merger.merge_all_duplicates()
        return {"stats": stats.as_dict(), "validation": merger.validate_merge_results()}

    @app.get("/v1/maintenance/validate")
    def validate_merge(
        request: Request,
        db: Session = Depends(get_session),
        authorization: Optional[str] = Header(default=None),
    ):
        check_auth(request, authorization)
        return DuplicateMerger(db, request.app.state.repointers).validate_merge_results()


app = create_app()
