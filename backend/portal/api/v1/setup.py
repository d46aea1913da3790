# backend/portal/api/v1/setup.py
from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from portal.api.deps import get_credential_store
from portal.core.config import settings
from portal.core.errors import NotFound, PermissionDenied
from portal.db.session import get_db
from portal.models import Agency, Profile
from portal.services.credential_store import CredentialStore
from portal.services.projects import create_agency, create_project, slugify

logger = logging.getLogger("portal.setup")

router = APIRouter(prefix="/setup", tags=["setup"])


class BootstrapIn(BaseModel):
    bootstrap_secret: str = Field(..., min_length=1)
    agency_name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr


class BootstrapOut(BaseModel):
    agency_id: str
    project_id: str
    client_code: str


@router.post("/bootstrap", response_model=BootstrapOut, status_code=status.HTTP_201_CREATED)
def bootstrap(
    payload: BootstrapIn,
    db: Session = Depends(get_db),
    store: CredentialStore = Depends(get_credential_store),
) -> BootstrapOut:
    """
    One-time setup for a fresh install: first agency, an admin project owned
    by an existing profile, and that project's first client code.

    Disabled unless BOOTSTRAP_SECRET is configured.
    """
    expected = settings.bootstrap_secret or ""
    if not expected or not hmac.compare_digest(payload.bootstrap_secret.encode(), expected.encode()):
        logger.warning("bootstrap_rejected")
        raise PermissionDenied("Invalid bootstrap secret.")

    email = payload.email.strip().lower()
    owner = db.query(Profile).filter(Profile.email == email).first()
    if owner is None:
        raise NotFound("User not found. Sign in once, then run bootstrap again.")

    name = payload.agency_name.strip()
    exists = (
        db.query(Agency.id)
        .filter((Agency.name == name) | (Agency.slug == slugify(name)))
        .first()
    )
    if exists is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "AGENCY_EXISTS", "message": "An agency with this name already exists."},
        )

    agency = create_agency(db, name=name)
    project, issued = create_project(db, store, name=f"{name} - Admin Project", agency_id=agency.id, owner=owner)

    logger.info("bootstrap_ok agency_id=%s project_id=%s", agency.id, project.id)
    return BootstrapOut(agency_id=agency.id, project_id=project.id, client_code=issued.plaintext)
