"""Database engine, session factory and request-scoped session dependency."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Iterator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import Settings

Base = declarative_base()

SessionFactory = Callable[[], Session]


def build_engine(settings: Settings) -> Engine:
    if settings.DATABASE_URL.startswith("sqlite"):
        return create_engine(settings.DATABASE_URL, connect_args={"check_same_thread": False})
    return create_engine(
        settings.DATABASE_URL,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    # Rows stay readable after commit; use cases return them to the router.
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(factory: SessionFactory) -> Iterator[Session]:
    """Open a session for background work; commit on success, roll back on error."""
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_db(request: Request) -> Iterator[Session]:
    """FastAPI dependency yielding a session from the application context."""
    db = request.app.state.context.session_factory()
    try:
        yield db
    finally:
        db.close()
