# backend/portal/api/v1/client_codes.py
"""
Admin management of client codes.

Every route requires agency_admin on the owning project. Plaintext codes
appear only in the issue/rotate responses.
"""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from portal.api.deps import get_credential_store, require_project_role
from portal.core.security import get_current_user
from portal.db.session import get_db
from portal.models import ClientCode, Profile
from portal.services.credential_store import CredentialStore, IssuedCode

router = APIRouter(tags=["client-codes"])


# ---------- Schemas ----------

class ClientCodeIn(BaseModel):
    label: Optional[str] = Field(default=None, max_length=255)
    client_name: Optional[str] = Field(default=None, max_length=255)
    client_email: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = Field(default=None, max_length=4000)


class ClientCodeOut(BaseModel):
    id: str
    project_id: str
    label: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool
    # unmigrated single-code rows; no hash yet
    is_legacy: bool
    created_at: Optional[datetime] = None
    last_rotated_at: Optional[datetime] = None


class IssuedCodeOut(ClientCodeOut):
    code: str


class ActiveIn(BaseModel):
    is_active: bool


def _to_out(row: ClientCode) -> ClientCodeOut:
    return ClientCodeOut(
        id=row.id,
        project_id=row.project_id,
        label=row.label,
        client_name=row.client_name,
        client_email=row.client_email,
        notes=row.notes,
        is_active=bool(row.is_active),
        is_legacy=row.code_hash is None,
        created_at=row.created_at,
        last_rotated_at=row.last_rotated_at,
    )


def _issued_out(issued: IssuedCode) -> IssuedCodeOut:
    return IssuedCodeOut(**_to_out(issued.client_code).model_dump(), code=issued.plaintext)


def _owned_code(db: Session, store: CredentialStore, code_id: str, user: Profile) -> ClientCode:
    row = store.get(code_id)
    require_project_role(db, project_id=row.project_id, user=user)
    return row


# ---------- Project-scoped ----------

@router.get("/projects/{project_id}/client-codes", response_model=List[ClientCodeOut])
def list_codes(
    project_id: str,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: CredentialStore = Depends(get_credential_store),
) -> List[ClientCodeOut]:
    require_project_role(db, project_id=project_id, user=user)
    return [_to_out(r) for r in store.list(project_id)]


@router.post(
    "/projects/{project_id}/client-codes",
    response_model=IssuedCodeOut,
    status_code=status.HTTP_201_CREATED,
)
def issue_code(
    project_id: str,
    payload: ClientCodeIn,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: CredentialStore = Depends(get_credential_store),
) -> IssuedCodeOut:
    require_project_role(db, project_id=project_id, user=user)
    issued = store.issue(
        project_id,
        label=payload.label,
        client_name=payload.client_name,
        client_email=payload.client_email,
        notes=payload.notes,
        actor_user_id=user.id,
    )
    return _issued_out(issued)


@router.post("/projects/{project_id}/client-code/regenerate", response_model=IssuedCodeOut)
def regenerate_project_code(
    project_id: str,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: CredentialStore = Depends(get_credential_store),
) -> IssuedCodeOut:
    """Single-code flow: replace the project's primary code."""
    require_project_role(db, project_id=project_id, user=user)
    return _issued_out(store.rotate_project(project_id, actor_user_id=user.id))


# ---------- Code-scoped ----------

@router.post("/client-codes/{code_id}/rotate", response_model=IssuedCodeOut)
def rotate_code(
    code_id: str,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: CredentialStore = Depends(get_credential_store),
) -> IssuedCodeOut:
    _owned_code(db, store, code_id, user)
    return _issued_out(store.rotate(code_id, actor_user_id=user.id))


@router.patch("/client-codes/{code_id}", response_model=ClientCodeOut)
def update_code(
    code_id: str,
    payload: ClientCodeIn,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: CredentialStore = Depends(get_credential_store),
) -> ClientCodeOut:
    _owned_code(db, store, code_id, user)
    # Only fields present in the body are touched; explicit null clears
    changes = {f: getattr(payload, f) for f in payload.model_fields_set}
    row = store.update(code_id, actor_user_id=user.id, **changes)
    return _to_out(row)


@router.post("/client-codes/{code_id}/active", response_model=ClientCodeOut)
def set_code_active(
    code_id: str,
    payload: ActiveIn,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: CredentialStore = Depends(get_credential_store),
) -> ClientCodeOut:
    _owned_code(db, store, code_id, user)
    return _to_out(store.set_active(code_id, payload.is_active, actor_user_id=user.id))


@router.delete("/client-codes/{code_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_code(
    code_id: str,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: CredentialStore = Depends(get_credential_store),
) -> Response:
    _owned_code(db, store, code_id, user)
    store.soft_delete(code_id, actor_user_id=user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
