# backend/tests/test_client_codes_api.py
from __future__ import annotations

import pytest

from conftest import auth_headers, make_profile, make_project
from portal.models import AuditEvent, ClientCode, ProjectMember, ROLE_AGENCY_ADMIN, ROLE_CLIENT_ADMIN


@pytest.fixture()
def setup(SessionLocal):
    db = SessionLocal()
    try:
        project = make_project(db)
        admin = make_profile(db, "admin@studio.example.com")
        client_admin = make_profile(db, "owner@client.example.com")
        db.add_all(
            [
                ProjectMember(project_id=project.id, user_id=admin.id, role=ROLE_AGENCY_ADMIN),
                ProjectMember(project_id=project.id, user_id=client_admin.id, role=ROLE_CLIENT_ADMIN),
            ]
        )
        db.commit()
        return {
            "project_id": project.id,
            "admin": auth_headers(admin),
            "client_admin": auth_headers(client_admin),
        }
    finally:
        db.close()


def _issue(client, setup, **body):
    r = client.post(f"/api/v1/projects/{setup['project_id']}/client-codes", json=body, headers=setup["admin"])
    assert r.status_code == 201, r.text
    return r.json()


def _join_status(client, code: str) -> int:
    return client.post("/api/v1/join/validate", json={"code": code}).status_code


def test_issue_returns_plaintext_once(client, setup):
    issued = _issue(client, setup, label="Marketing", client_email="Team@Client.example.com")

    assert len(issued["code"]) == 8
    assert issued["client_email"] == "team@client.example.com"
    assert issued["is_legacy"] is False

    listed = client.get(f"/api/v1/projects/{setup['project_id']}/client-codes", headers=setup["admin"]).json()
    assert [c["id"] for c in listed] == [issued["id"]]
    assert "code" not in listed[0]
    assert _join_status(client, issued["code"]) == 200


def test_client_admin_cannot_manage_codes(client, setup):
    issued = _issue(client, setup)
    h = setup["client_admin"]

    assert client.get(f"/api/v1/projects/{setup['project_id']}/client-codes", headers=h).status_code == 403
    assert client.post(f"/api/v1/projects/{setup['project_id']}/client-codes", json={}, headers=h).status_code == 403
    assert client.post(f"/api/v1/client-codes/{issued['id']}/rotate", headers=h).status_code == 403
    assert client.delete(f"/api/v1/client-codes/{issued['id']}", headers=h).status_code == 403

    r = client.post(f"/api/v1/client-codes/{issued['id']}/active", json={"is_active": False}, headers=h)
    assert r.status_code == 403
    assert r.json()["message"] == "Permission denied: must be agency_admin"


def test_rotate_invalidates_old_code(client, setup):
    issued = _issue(client, setup)

    r = client.post(f"/api/v1/client-codes/{issued['id']}/rotate", headers=setup["admin"])
    assert r.status_code == 200, r.text
    rotated = r.json()

    assert rotated["id"] == issued["id"]
    assert rotated["code"] != issued["code"]
    assert rotated["last_rotated_at"] is not None
    assert _join_status(client, issued["code"]) == 400
    assert _join_status(client, rotated["code"]) == 200


def test_regenerate_single_project_code(client, setup):
    first = client.post(f"/api/v1/projects/{setup['project_id']}/client-code/regenerate", headers=setup["admin"])
    second = client.post(f"/api/v1/projects/{setup['project_id']}/client-code/regenerate", headers=setup["admin"])

    assert first.status_code == second.status_code == 200
    assert first.json()["id"] == second.json()["id"]
    assert _join_status(client, first.json()["code"]) == 400
    assert _join_status(client, second.json()["code"]) == 200


def test_deactivate_and_reactivate(client, setup):
    issued = _issue(client, setup)
    url = f"/api/v1/client-codes/{issued['id']}/active"

    r = client.post(url, json={"is_active": False}, headers=setup["admin"])
    assert r.status_code == 200
    assert r.json()["is_active"] is False
    assert _join_status(client, issued["code"]) == 400

    client.post(url, json={"is_active": True}, headers=setup["admin"])
    assert _join_status(client, issued["code"]) == 200


def test_patch_only_touches_sent_fields(client, setup):
    issued = _issue(client, setup, label="Old", notes="keep")

    r = client.patch(
        f"/api/v1/client-codes/{issued['id']}",
        json={"label": "New", "client_name": None},
        headers=setup["admin"],
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["label"] == "New"
    assert body["notes"] == "keep"
    assert body["client_name"] is None
    assert _join_status(client, issued["code"]) == 200


def test_delete_is_soft(client, setup, SessionLocal):
    issued = _issue(client, setup)

    r = client.delete(f"/api/v1/client-codes/{issued['id']}", headers=setup["admin"])
    assert r.status_code == 204

    assert client.get(f"/api/v1/projects/{setup['project_id']}/client-codes", headers=setup["admin"]).json() == []
    assert _join_status(client, issued["code"]) == 400
    assert client.delete(f"/api/v1/client-codes/{issued['id']}", headers=setup["admin"]).status_code == 404

    db = SessionLocal()
    try:
        row = db.get(ClientCode, issued["id"])
        assert row is not None and row.deleted_at is not None
        actions = [a for (a,) in db.query(AuditEvent.action).filter(AuditEvent.client_code_id == issued["id"])]
        assert actions[-1] == "client_code.deleted"
    finally:
        db.close()


def test_unknown_code_id_is_not_found(client, setup):
    r = client.post("/api/v1/client-codes/does-not-exist/rotate", headers=setup["admin"])
    assert r.status_code == 404
    assert r.json()["code"] == "NOT_FOUND"
