from __future__ import annotations
from contextlib import contextmanager
from typing import Generator, Optional
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Session
from sqlalchemy.pool import StaticPool
from .config import DATABASE_URL

class Base(DeclarativeBase):
    pass

def make_engine(url: str) -> Engine:
    if not url:
        raise RuntimeError("DATABASE_URL is not set")
    # Render and Heroku hand out postgres://, SQLAlchemy 2.x wants postgresql://
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )

def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

ENGINE: Optional[Engine] = None
SessionLocal: Optional[sessionmaker] = None

def init_db(url: str = DATABASE_URL) -> sessionmaker:
    global ENGINE, SessionLocal
    ENGINE = make_engine(url)
    SessionLocal = make_session_factory(ENGINE)
    return SessionLocal

def get_engine() -> Engine:
    if ENGINE is None:
        init_db()
    return ENGINE

def create_tables(engine: Engine) -> None:
    from . import models_db  # noqa: F401  registers table models
    Base.metadata.create_all(bind=engine)

@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """Yield a session that commits on success and rolls back on error."""
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
