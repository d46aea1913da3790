# backend/tests/conftest.py
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from portal.core.rate_limit import code_attempt_limiter, magic_link_limiter
from portal.core.security import create_access_token
from portal.db.base import Base
from portal.db.session import get_db, instrument
from portal.models import Profile, Project


@pytest.fixture()
def SessionLocal():
    """
    Shared in-memory SQLite.

    StaticPool keeps a single connection so the in-memory DB survives across
    the sessions FastAPI opens per request.
    """
    engine = create_engine(
        "sqlite+pysqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    instrument(engine)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False)
    engine.dispose()


@pytest.fixture()
def db(SessionLocal):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    code_attempt_limiter.reset()
    magic_link_limiter.reset()
    yield
    code_attempt_limiter.reset()
    magic_link_limiter.reset()


@pytest.fixture()
def client(SessionLocal):
    from portal.main import app

    def _override_get_db():
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()


# --- Helpers ---------------------------------------------------------------

def make_profile(db, email: str) -> Profile:
    user = Profile(email=email.lower())
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_project(db, name: str = "Acme Website") -> Project:
    project = Project(name=name)
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


def auth_headers(user: Profile) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.email)}"}
