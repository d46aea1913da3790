# backend/tests/test_setup_and_health_api.py
from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from conftest import make_profile
from portal.core.config import settings
from portal.db.session import get_db
from portal.models import ProjectMember, ROLE_AGENCY_ADMIN
from portal.services.credential_store import CredentialStore


def _bootstrap(client, secret="open-sesame", email="founder@studio.example.com", agency_name="Bright Studio"):
    return client.post(
        "/api/v1/setup/bootstrap",
        json={"bootstrap_secret": secret, "agency_name": agency_name, "email": email},
    )


def test_bootstrap_creates_agency_admin_project(client, SessionLocal, monkeypatch):
    monkeypatch.setattr(settings, "bootstrap_secret", "open-sesame")
    db = SessionLocal()
    try:
        founder_id = make_profile(db, "founder@studio.example.com").id
    finally:
        db.close()

    r = _bootstrap(client)
    assert r.status_code == 201, r.text
    body = r.json()

    db = SessionLocal()
    try:
        member = db.query(ProjectMember).filter(ProjectMember.project_id == body["project_id"]).one()
        assert (member.user_id, member.role) == (founder_id, ROLE_AGENCY_ADMIN)
        assert member.project.agency.slug == "bright-studio"
        assert member.project.name == "Bright Studio - Admin Project"
        assert CredentialStore(db).validate(body["client_code"]) == body["project_id"]
    finally:
        db.close()

    again = _bootstrap(client)
    assert again.status_code == 409


def test_bootstrap_rejects_wrong_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "bootstrap_secret", "open-sesame")
    r = _bootstrap(client, secret="guess")
    assert r.status_code == 403
    assert r.json()["code"] == "PERMISSION_DENIED"


def test_bootstrap_is_disabled_without_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "bootstrap_secret", None)
    assert _bootstrap(client, secret="anything").status_code == 403


def test_bootstrap_requires_existing_profile(client, monkeypatch):
    monkeypatch.setattr(settings, "bootstrap_secret", "open-sesame")
    r = _bootstrap(client, email="nobody@studio.example.com")
    assert r.status_code == 404


def test_health(client):
    r = client.get("/api/v1/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.headers.get("X-Request-ID")


def test_health_db(client):
    r = client.get("/api/v1/health/db")
    assert r.status_code == 200
    assert r.json()["db"] == "up"


def test_health_db_reports_unmigrated_schema(client):
    empty = create_engine("sqlite+pysqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)

    def _empty_db():
        session = sessionmaker(bind=empty)()
        try:
            yield session
        finally:
            session.close()

    client.app.dependency_overrides[get_db] = _empty_db
    r = client.get("/api/v1/health/db")
    assert r.status_code == 503
    assert r.json()["detail"]["code"] == "SCHEMA_MISSING"
    assert "client_codes" in r.json()["detail"]["missing_tables"]
    empty.dispose()
