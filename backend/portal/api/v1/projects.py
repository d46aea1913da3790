# backend/portal/api/v1/projects.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from portal.api.deps import get_credential_store, get_membership, require_agency_admin, require_project_member
from portal.core.errors import NotFound
from portal.core.security import get_current_user, set_active_project_cookie
from portal.db.session import get_db
from portal.models import Agency, Milestone, Profile, Project, ProjectMember
from portal.services.credential_store import CredentialStore
from portal.services.projects import create_project

router = APIRouter(prefix="/projects", tags=["projects"])


# ---------- Schemas ----------

class ProjectCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    agency_id: str


class ProjectCreateOut(BaseModel):
    id: str
    name: str
    agency_id: Optional[str] = None
    client_code_id: str
    # shown once
    client_code: str


class ActiveProjectIn(BaseModel):
    project_id: str


class MilestoneOut(BaseModel):
    key: str
    title: str
    status: str


class ProjectOut(BaseModel):
    id: str
    name: str
    status: str
    role: str
    created_at: Optional[datetime] = None
    milestones: List[MilestoneOut]


# ---------- Endpoints ----------

@router.post("", response_model=ProjectCreateOut, status_code=status.HTTP_201_CREATED)
def create(
    payload: ProjectCreateIn,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: CredentialStore = Depends(get_credential_store),
) -> ProjectCreateOut:
    require_agency_admin(db, user)
    if db.get(Agency, payload.agency_id) is None:
        raise NotFound("Agency not found.")

    project, issued = create_project(db, store, name=payload.name, agency_id=payload.agency_id, owner=user)
    return ProjectCreateOut(
        id=project.id,
        name=project.name,
        agency_id=project.agency_id,
        client_code_id=issued.client_code.id,
        client_code=issued.plaintext,
    )


@router.post("/active")
def set_active_project(
    payload: ActiveProjectIn,
    response: Response,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Pin the session to one of the caller's projects for subsequent requests."""
    if get_membership(db, project_id=payload.project_id, user_id=user.id) is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "NOT_A_MEMBER", "message": "Not a member of this project."},
        )
    set_active_project_cookie(response, payload.project_id)
    return {"active_project_id": payload.project_id}


@router.get("/{project_id}", response_model=ProjectOut)
def get_project(
    project_id: str,
    member: ProjectMember = Depends(require_project_member),
    db: Session = Depends(get_db),
) -> ProjectOut:
    project = db.get(Project, project_id)
    if project is None:
        raise NotFound("Project not found.")

    milestones = (
        db.query(Milestone)
        .filter(Milestone.project_id == project_id)
        .order_by(Milestone.sort.asc())
        .all()
    )
    return ProjectOut(
        id=project.id,
        name=project.name,
        status=project.status,
        role=member.role,
        created_at=project.created_at,
        milestones=[MilestoneOut(key=m.key, title=m.title, status=m.status) for m in milestones],
    )
