# backend/portal/services/projects.py
from __future__ import annotations

import re
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from portal.models import Agency, Milestone, Profile, Project, ProjectMember, ROLE_AGENCY_ADMIN
from portal.services.audit import record_audit
from portal.services.credential_store import CredentialStore, IssuedCode

DEFAULT_MILESTONES = (
    ("sitemap", "Sitemap"),
    ("homepage_concept", "Homepage Concept"),
    ("full_build", "Full Build"),
    ("qa", "QA"),
    ("launch", "Launch"),
)

PRIMARY_CODE_LABEL = "Primary client code"


def slugify(name: str) -> str:
    return re.sub(r"\s+", "-", (name or "").strip().lower())


def create_agency(db: Session, *, name: str) -> Agency:
    agency = Agency(name=name.strip(), slug=slugify(name))
    db.add(agency)
    db.flush()
    return agency


def create_project(
    db: Session,
    store: CredentialStore,
    *,
    name: str,
    agency_id: Optional[str],
    owner: Profile,
) -> Tuple[Project, IssuedCode]:
    """
    Project plus everything a fresh project needs: default milestones,
    an agency_admin membership for the creator, and its first client code.

    The project is committed before the code is issued so a retried code
    insert can roll back without losing the project.
    """
    project = Project(name=name.strip(), agency_id=agency_id, status="active")
    db.add(project)
    db.flush()

    for sort, (key, title) in enumerate(DEFAULT_MILESTONES, start=1):
        db.add(Milestone(project_id=project.id, key=key, title=title, status="not_started", sort=sort))

    db.add(ProjectMember(project_id=project.id, user_id=owner.id, role=ROLE_AGENCY_ADMIN))

    record_audit(
        db,
        action="project.created",
        project_id=project.id,
        actor_user_id=owner.id,
        detail=f"name={project.name}",
    )
    db.commit()
    db.refresh(project)

    issued = store.issue(project.id, label=PRIMARY_CODE_LABEL, actor_user_id=owner.id)
    return project, issued
