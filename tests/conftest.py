import logging
from datetime import date, datetime

import pytest

from unified_assessment.db import Base, create_tables, make_engine, make_session_factory
from unified_assessment.models_db import Customer, HealthAssessment


TODAY = date(2026, 10, 19)


class FakeResolver:
    """Stands in for ExamDateResolver; `dates` maps exam id -> date string."""

    def __init__(self, dates=None):
        self.dates = dict(dates or {})
        self.calls = []
        self.closed = False

    def resolve_date(self, study_id):
        self.calls.append(study_id)
        if not study_id:
            return None
        return self.dates.get(study_id)

    def resolve_dates_batch(self, study_ids):
        out = {}
        for sid in study_ids:
            d = self.resolve_date(sid)
            if d:
                out[sid] = d
        return out

    def health_check(self):
        return {"status": "healthy", "api_url": "http://fake", "message": "ok", "timestamp": "now"}

    def close(self):
        self.closed = True


@pytest.fixture
def engine():
    eng = make_engine("sqlite://")
    create_tables(eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fake_resolver():
    return FakeResolver()


@pytest.fixture
def customer(db):
    c = Customer(name="张三", identity_card="110101199001011234")
    db.add(c)
    db.commit()
    return c


def add_assessment(db, customer_id, day, created_at, exam_id=None, department="内科"):
    """Insert a raw assessment row, bypassing the registry (legacy data)."""
    row = HealthAssessment(
        customer_id=customer_id,
        assessment_date=day,
        medical_exam_id=exam_id,
        department=department,
        assessment_data={},
        created_at=created_at,
        updated_at=created_at,
    )
    db.add(row)
    db.commit()
    return row


def at(hour, minute=0):
    return datetime(2024, 3, 5, hour, minute)


@pytest.fixture(autouse=True)
def restore_root_logging():
    """configure_logging() swaps root handlers; put the originals back after each test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
