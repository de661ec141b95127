from datetime import date

import pytest
from fastapi.testclient import TestClient

from unified_assessment.main import create_app
from unified_assessment.models_db import HealthAssessment

from conftest import FakeResolver, add_assessment, at


@pytest.fixture
def resolver():
    return FakeResolver({"E1": "2024-03-05 08:30:00", "E2": "2024-03-05 15:00:00"})


@pytest.fixture
def client(session_factory, resolver):
    app = create_app(session_factory=session_factory, resolver=resolver, api_key=None)
    with TestClient(app) as c:
        yield c
    assert resolver.closed


def test_health(client):
    assert client.get("/v1/health").json() == {"status": "ok"}


def test_unified_assessment_flow(client, customer, db):
    r1 = client.post("/v1/assessments/unified", json={
        "customer_id": customer.id,
        "department": "内科",
        "medical_exam_id": "E1",
        "assessment_data": {"bp": "120/80"},
    }, headers={"X-User": "doctor-wang"})
    assert r1.status_code == 201
    d1 = r1.json()["data"]
    assert d1["assessment_date"] == "2024-03-05"
    assert d1["medical_exam_id"] == "E1"
    assert d1["date_source"] == "auto"
    assert d1["created_by"] == "doctor-wang"
    assert d1["is_unified"] is True
    assert d1["customer_info"]["name"] == "张三"

    r2 = client.post("/v1/assessments/unified", json={
        "customer_id": customer.id,
        "department": "外科",
        "medical_exam_id": "E2",
        "assessment_data": {"wound": "healed"},
        "summary": "ok",
    })
    d2 = r2.json()["data"]
    assert d2["id"] == d1["id"]
    assert d2["medical_exam_id"] == "E2"
    assert d2["department"] == "外科"
    assert d2["assessment_data"] == {"bp": "120/80", "wound": "healed"}
    assert d2["summary"] == "ok"
    assert db.query(HealthAssessment).count() == 1


def test_unknown_customer_is_404(client):
    r = client.post("/v1/assessments/unified", json={"customer_id": "nobody", "department": "内科"})
    assert r.status_code == 404


def test_missing_department_is_rejected(client, customer):
    r = client.post("/v1/assessments/unified", json={"customer_id": customer.id})
    assert r.status_code == 422


def test_assessments_by_exam(client, customer):
    client.post("/v1/assessments/unified", json={
        "customer_id": customer.id, "department": "内科", "medical_exam_id": "E1",
    })
    body = client.get("/v1/assessments/by-exam/E1").json()
    assert body["count"] == 1
    assert body["records"][0]["customer_name"] == "张三"
    assert client.get("/v1/assessments/by-exam/E9").json()["count"] == 0


def test_resolve_exam_date_envelope(client):
    assert client.post("/v1/exam-dates/resolve", json={"studyId": "E1"}).json() == {
        "code": 200, "data": "2024-03-05 08:30:00", "message": "Exam date found",
    }
    missing = client.post("/v1/exam-dates/resolve", json={"studyId": "nope"}).json()
    assert missing["code"] == 404
    assert missing["data"] is None
    assert client.post("/v1/exam-dates/resolve", json={}).status_code == 400


def test_batch_exam_dates(client):
    body = client.post("/v1/exam-dates/batch", json={"studyIds": ["E1", "bad", "E2"]}).json()
    assert body["requested"] == 3
    assert body["resolved"] == 2
    assert set(body["dates"]) == {"E1", "E2"}


def test_exam_date_health(client):
    assert client.get("/v1/exam-dates/health").json()["status"] == "healthy"


def test_merge_and_validate_endpoints(client, customer, db):
    day = date(2024, 3, 5)
    first = add_assessment(db, customer.id, day, at(8), exam_id="E1")
    add_assessment(db, customer.id, day, at(9), exam_id="E2")
    first_id = first.id

    before = client.get("/v1/maintenance/validate").json()
    assert before["ok"] is False
    assert before["remaining"] == [{"customer_id": customer.id, "assessment_date": "2024-03-05", "count": 2}]

    body = client.post("/v1/maintenance/merge-duplicates").json()
    assert body["stats"]["records_removed"] == 1
    assert body["validation"]["ok"] is True
    assert body["validation"]["total_records"] == 1

    single = client.post("/v1/maintenance/merge-duplicates", json={
        "customer_id": customer.id, "assessment_date": "2024-03-05",
    }).json()
    assert single["master"]["id"] == first_id
    assert single["stats"]["records_removed"] == 0


def test_merge_group_requires_date(client, customer):
    r = client.post("/v1/maintenance/merge-duplicates", json={"customer_id": customer.id})
    assert r.status_code == 400


def test_maintenance_requires_token_when_configured(session_factory, resolver):
    app = create_app(session_factory=session_factory, resolver=resolver, api_key="s3cret")
    with TestClient(app) as c:
        assert c.get("/v1/maintenance/validate").status_code == 401
        assert c.get("/v1/maintenance/validate", headers={"Authorization": "Bearer nope"}).status_code == 403
        ok = c.get("/v1/maintenance/validate", headers={"Authorization": "Bearer s3cret"})
        assert ok.status_code == 200
