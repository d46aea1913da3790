# backend/portal/api/deps.py
"""
Shared API dependencies: project membership checks and active-project pinning.

Membership is checked on every request. The active-project pin only decides
which project a request is routed to; it never grants access on its own.
"""

from __future__ import annotations

from typing import Iterable, Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from portal.core.errors import PermissionDenied
from portal.core.security import (
    ACTIVE_PROJECT_COOKIE_NAME,
    get_current_user,
    read_active_project_token,
)
from portal.db.session import get_db
from portal.models import Profile, ProjectMember, ROLE_AGENCY_ADMIN
from portal.services.credential_store import CredentialStore
from portal.services.join_binder import JoinBinder


def get_credential_store(db: Session = Depends(get_db)) -> CredentialStore:
    return CredentialStore(db)


def get_join_binder(
    db: Session = Depends(get_db),
    store: CredentialStore = Depends(get_credential_store),
) -> JoinBinder:
    return JoinBinder(db, store=store)


def get_membership(db: Session, *, project_id: str, user_id: str) -> Optional[ProjectMember]:
    return (
        db.query(ProjectMember)
        .filter(ProjectMember.project_id == project_id, ProjectMember.user_id == user_id)
        .first()
    )


def require_project_role(
    db: Session,
    *,
    project_id: str,
    user: Profile,
    roles: Iterable[str] = (ROLE_AGENCY_ADMIN,),
) -> ProjectMember:
    """
    Explicit role check for admin-only operations.

        member = require_project_role(db, project_id=project_id, user=user)
    """
    allowed = set(roles)
    member = get_membership(db, project_id=project_id, user_id=user.id)
    if member is None or member.role not in allowed:
        raise PermissionDenied(f"Permission denied: must be {' or '.join(sorted(allowed))}")
    return member


def require_agency_admin(db: Session, user: Profile) -> None:
    """agency_admin of at least one project (creating projects, listing agencies)."""
    is_admin = (
        db.query(ProjectMember.project_id)
        .filter(ProjectMember.user_id == user.id, ProjectMember.role == ROLE_AGENCY_ADMIN)
        .first()
        is not None
    )
    if not is_admin:
        raise PermissionDenied("Permission denied: must be agency_admin")


def pinned_project_id(request: Request) -> Optional[str]:
    return read_active_project_token(request.cookies.get(ACTIVE_PROJECT_COOKIE_NAME))


def require_project_member(
    project_id: str,
    request: Request,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ProjectMember:
    """
    Path dependency for project-scoped routes.

    - Pinned to another project the user still belongs to -> 307 to the same
      route under the pinned project.
    - Not a member of the requested project -> 403.
    """
    pinned = pinned_project_id(request)
    if pinned and pinned != project_id and get_membership(db, project_id=pinned, user_id=user.id) is not None:
        location = request.url.path.replace(f"/{project_id}", f"/{pinned}", 1)
        raise HTTPException(
            status_code=status.HTTP_307_TEMPORARY_REDIRECT,
            detail={"code": "PROJECT_PINNED", "message": "Redirecting to the active project.", "project_id": pinned},
            headers={"Location": location},
        )

    member = get_membership(db, project_id=project_id, user_id=user.id)
    if member is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "NOT_A_MEMBER", "message": "Not a member of this project."},
        )
    return member
