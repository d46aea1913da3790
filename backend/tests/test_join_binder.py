# backend/tests/test_join_binder.py
from __future__ import annotations

import pytest

from conftest import make_profile, make_project
from portal.core.errors import InvalidCode, InvalidFormat
from portal.models import (
    ClientCode,
    ProjectMember,
    ROLE_AGENCY_ADMIN,
    ROLE_CLIENT_ADMIN,
    ROLE_CLIENT_MEMBER,
)
from portal.services.credential_store import CredentialStore
from portal.services.join_binder import JoinBinder, PendingJoin

SECRET = "test-client-code-secret"
ADMIN_EMAIL = "boss@agency.example.com"


@pytest.fixture()
def store(db):
    return CredentialStore(db, secret=SECRET)


@pytest.fixture()
def binder(db, store):
    return JoinBinder(db, store=store, admin_emails=[ADMIN_EMAIL.upper()])


@pytest.fixture()
def project_with_code(db, store):
    project = make_project(db)
    issued = store.issue(project.id)
    return project, issued.plaintext


def _members(db, project_id):
    return {m.user_id: m.role for m in db.query(ProjectMember).filter(ProjectMember.project_id == project_id)}


def test_validate_pre_auth_returns_normalized_code(binder, project_with_code):
    _project, code = project_with_code
    pending = binder.validate_pre_auth(f" {code.lower()} ")
    assert pending == PendingJoin(code=code)


def test_validate_pre_auth_rejects_bad_codes(binder):
    with pytest.raises(InvalidFormat):
        binder.validate_pre_auth("abc")
    with pytest.raises(InvalidCode):
        binder.validate_pre_auth("ZZZZZZZZ")


def test_first_joiner_is_client_admin_then_members(db, binder, project_with_code):
    project, code = project_with_code
    alice = make_profile(db, "alice@client.example.com")
    bob = make_profile(db, "bob@client.example.com")

    first = binder.bind_after_auth(alice, PendingJoin(code=code))
    second = binder.bind_after_auth(bob, PendingJoin(code=code))

    assert (first.role, first.created) == (ROLE_CLIENT_ADMIN, True)
    assert (second.role, second.created) == (ROLE_CLIENT_MEMBER, True)
    assert _members(db, project.id) == {alice.id: ROLE_CLIENT_ADMIN, bob.id: ROLE_CLIENT_MEMBER}


def test_binding_twice_is_idempotent(db, binder, project_with_code):
    project, code = project_with_code
    alice = make_profile(db, "alice@client.example.com")

    binder.bind_after_auth(alice, PendingJoin(code=code))
    again = binder.bind_after_auth(alice, PendingJoin(code=code))

    assert again.already_member
    assert again.role == ROLE_CLIENT_ADMIN
    assert not again.promoted
    assert db.query(ProjectMember).filter(ProjectMember.project_id == project.id).count() == 1


def test_allow_listed_email_joins_as_agency_admin(db, binder, project_with_code):
    project, code = project_with_code
    boss = make_profile(db, ADMIN_EMAIL)

    result = binder.bind_after_auth(boss, PendingJoin(code=code))

    assert result.role == ROLE_AGENCY_ADMIN
    # Does not consume the client_admin slot
    alice = make_profile(db, "alice@client.example.com")
    assert binder.accept(alice, code).role == ROLE_CLIENT_ADMIN


def test_allow_list_escalates_existing_membership(db, binder, project_with_code):
    project, code = project_with_code
    boss = make_profile(db, ADMIN_EMAIL)
    db.add(ProjectMember(project_id=project.id, user_id=boss.id, role=ROLE_CLIENT_MEMBER))
    db.commit()

    result = binder.accept(boss, code)

    assert result.already_member
    assert result.promoted
    assert _members(db, project.id)[boss.id] == ROLE_AGENCY_ADMIN


def test_existing_role_is_never_downgraded(db, store, project_with_code):
    project, code = project_with_code
    carol = make_profile(db, "carol@agency.example.com")
    db.add(ProjectMember(project_id=project.id, user_id=carol.id, role=ROLE_AGENCY_ADMIN))
    db.commit()

    # carol is not on this binder's allow-list
    result = JoinBinder(db, store=store, admin_emails=[]).accept(carol, code)

    assert result.role == ROLE_AGENCY_ADMIN
    assert not result.promoted


def test_pending_code_rotated_mid_login_is_rejected(db, store, binder, project_with_code):
    project, code = project_with_code
    pending = binder.validate_pre_auth(code)

    code_id = db.query(ClientCode.id).filter(ClientCode.project_id == project.id).scalar()
    store.rotate(code_id)

    alice = make_profile(db, "alice@client.example.com")
    assert binder.bind_after_auth(alice, pending) is None
    assert _members(db, project.id) == {}


def test_pending_code_deactivated_mid_login_is_rejected(db, store, binder, project_with_code):
    project, code = project_with_code
    pending = binder.validate_pre_auth(code)

    code_id = db.query(ClientCode.id).filter(ClientCode.project_id == project.id).scalar()
    store.set_active(code_id, False)

    alice = make_profile(db, "alice@client.example.com")
    assert binder.bind_after_auth(alice, pending) is None


def test_no_pending_join_is_a_plain_login(db, binder):
    alice = make_profile(db, "alice@client.example.com")
    assert binder.bind_after_auth(alice, None) is None


def test_project_pointer_pending_requires_an_active_code(db, store, binder):
    project = make_project(db)
    alice = make_profile(db, "alice@client.example.com")

    assert binder.bind_after_auth(alice, PendingJoin(project_id=project.id)) is None

    store.issue(project.id)
    result = binder.bind_after_auth(alice, PendingJoin(project_id=project.id))
    assert result.project_id == project.id
    assert result.role == ROLE_CLIENT_ADMIN


def test_losing_the_client_admin_race_falls_back_to_member(db, binder, project_with_code, monkeypatch):
    project, code = project_with_code
    alice = make_profile(db, "alice@client.example.com")
    bob = make_profile(db, "bob@client.example.com")
    binder.accept(alice, code)

    # bob read "no client_admin yet" before alice's insert landed
    monkeypatch.setattr(binder, "_next_client_role", lambda project_id: ROLE_CLIENT_ADMIN)
    result = binder.accept(bob, code)

    assert result.created
    assert result.role == ROLE_CLIENT_MEMBER
    assert _members(db, project.id) == {alice.id: ROLE_CLIENT_ADMIN, bob.id: ROLE_CLIENT_MEMBER}


def test_duplicate_tab_for_the_same_user_resolves_to_already_member(db, binder, project_with_code, monkeypatch):
    project, code = project_with_code
    alice = make_profile(db, "alice@client.example.com")

    # alice's other tab inserts the membership after this request's check but before its insert
    other_tab = ProjectMember(project_id=project.id, user_id=alice.id, role=ROLE_CLIENT_ADMIN)
    db.add(other_tab)
    db.commit()
    db.expunge(other_tab)

    real_membership = binder._membership
    reads = []

    def stale_first_read(project_id, user_id):
        reads.append(user_id)
        return None if len(reads) == 1 else real_membership(project_id, user_id)

    monkeypatch.setattr(binder, "_membership", stale_first_read)
    result = binder.accept(alice, code)

    assert result.already_member
    assert result.role == ROLE_CLIENT_ADMIN
    assert len(reads) == 2
    assert _members(db, project.id) == {alice.id: ROLE_CLIENT_ADMIN}
