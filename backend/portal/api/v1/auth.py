# backend/portal/api/v1/auth.py
from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from portal.api.deps import get_join_binder, pinned_project_id
from portal.core.config import settings
from portal.core.email import send_email
from portal.core.errors import log_exception_with_context
from portal.core.rate_limit import client_ip, magic_link_rate_limit
from portal.core.security import (
    ACTIVE_PROJECT_COOKIE_NAME,
    PENDING_JOIN_COOKIE_NAME,
    SESSION_COOKIE_NAME,
    clear_cookie,
    create_access_token,
    get_current_user,
    get_optional_user,
    hash_token,
    read_pending_join_token,
    set_active_project_cookie,
    set_session_cookie,
)
from portal.db.session import get_db
from portal.models import LoginToken, Profile, Project, ProjectMember
from portal.services.join_binder import JoinBinder, PendingJoin

logger = logging.getLogger("portal.auth")

router = APIRouter(prefix="/auth", tags=["auth"])

LOGIN_TOKEN_PREFIX = "portal_login_"
DEFAULT_NEXT = "/portal"
LOGIN_FAILED_PATH = "/login?error=auth_failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware_utc(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; treat them as UTC
    if dt is None:
        return None
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _safe_next(next_path: Optional[str]) -> str:
    """Only same-site relative paths; anything else falls back to the portal home."""
    p = (next_path or "").strip()
    if not p.startswith("/") or p.startswith("//") or "\\" in p:
        return DEFAULT_NEXT
    return p


# ---------- Schemas ----------

class MagicLinkIn(BaseModel):
    email: EmailStr
    next: Optional[str] = Field(default=None, max_length=512)


class MagicLinkOut(BaseModel):
    detail: str
    # dev only
    debug_login_link: Optional[str] = None


class MembershipOut(BaseModel):
    project_id: str
    project_name: str
    role: str


class MeOut(BaseModel):
    id: str
    email: str
    memberships: List[MembershipOut]
    active_project_id: Optional[str] = None


# ---------- Endpoints ----------

@router.post(
    "/magic-link",
    response_model=MagicLinkOut,
    dependencies=[Depends(magic_link_rate_limit)],
)
def request_magic_link(payload: MagicLinkIn, request: Request, db: Session = Depends(get_db)) -> MagicLinkOut:
    """
    Email a one-time sign-in link. The response is identical whether or not
    the address already has a profile; profiles are created on first exchange.
    """
    email = _normalize_email(payload.email)
    generic = "If the address is valid, a sign-in link has been sent."

    raw = LOGIN_TOKEN_PREFIX + secrets.token_urlsafe(32)
    now = _utcnow()

    db.add(
        LoginToken(
            email=email,
            token_hash=hash_token(raw),
            expires_at=now + timedelta(minutes=settings.login_link_expire_minutes),
            used_at=None,
            request_ip=client_ip(request),
            user_agent=(request.headers.get("user-agent") or "")[:255] or None,
        )
    )
    db.commit()

    link = f"{settings.frontend_url.rstrip('/')}/api/v1/auth/callback?token={quote(raw)}"
    if payload.next:
        link += f"&next={quote(_safe_next(payload.next), safe='/')}"

    send_email(
        to_email=email,
        subject="Your client portal sign-in link",
        text_body=(
            f"Sign in to the client portal (link valid for {settings.login_link_expire_minutes} minutes):\n"
            f"{link}\n\n"
            "If you did not request this, you can ignore this email."
        ),
    )

    if not settings.is_prod and settings.debug:
        return MagicLinkOut(detail=generic, debug_login_link=link)
    return MagicLinkOut(detail=generic)


def _consume_login_token(db: Session, raw: str) -> Optional[Profile]:
    token = (raw or "").strip()
    if not token.startswith(LOGIN_TOKEN_PREFIX):
        return None

    rec = db.query(LoginToken).filter(LoginToken.token_hash == hash_token(token)).first()
    if rec is None or rec.used_at is not None:
        return None

    now = _utcnow()
    expires_at = _as_aware_utc(rec.expires_at)
    if expires_at is None or expires_at < now:
        return None

    user = db.query(Profile).filter(Profile.email == rec.email).first()
    if user is None:
        user = Profile(email=rec.email)
        db.add(user)

    rec.used_at = now
    user.last_login_at = now
    db.commit()
    db.refresh(user)
    return user


@router.get("/callback")
def auth_callback(
    request: Request,
    token: str = Query(..., min_length=10, max_length=512),
    next: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    binder: JoinBinder = Depends(get_join_binder),
):
    """
    Exchange a sign-in link for a session, then finish any pending join.

    The pending-join cookie is consumed here and cleared on every outcome.
    A failed join never blocks the login itself.
    """
    user = _consume_login_token(db, token)
    if user is None:
        logger.info("login_link_rejected ip=%s", client_ip(request))
        response = RedirectResponse(url=LOGIN_FAILED_PATH, status_code=303)
        clear_cookie(response, PENDING_JOIN_COOKIE_NAME)
        return response

    bound = None
    claims = read_pending_join_token(request.cookies.get(PENDING_JOIN_COOKIE_NAME))
    pending = PendingJoin(**claims) if claims else None
    try:
        bound = binder.bind_after_auth(user, pending)
    except Exception:
        db.rollback()
        log_exception_with_context("pending_join_failed", user_id=user.id)

    response = RedirectResponse(url=_safe_next(next), status_code=303)
    set_session_cookie(response, create_access_token(user.id, user.email))
    clear_cookie(response, PENDING_JOIN_COOKIE_NAME)
    if bound is not None:
        set_active_project_cookie(response, bound.project_id)

    logger.info("login_ok user_id=%s joined=%s", user.id, bound.project_id if bound else "-")
    return response


@router.get("/me", response_model=MeOut)
def me(
    request: Request,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> MeOut:
    rows = (
        db.query(ProjectMember, Project)
        .join(Project, Project.id == ProjectMember.project_id)
        .filter(ProjectMember.user_id == user.id)
        .order_by(Project.created_at.asc())
        .all()
    )
    memberships = [MembershipOut(project_id=p.id, project_name=p.name, role=m.role) for m, p in rows]

    pinned = pinned_project_id(request)
    if pinned not in {m.project_id for m in memberships}:
        pinned = None

    return MeOut(id=user.id, email=user.email, memberships=memberships, active_project_id=pinned)


@router.post("/logout")
def logout(response: Response, user: Optional[Profile] = Depends(get_optional_user)):
    logger.info("logout user_id=%s", user.id if user else "-")
    clear_cookie(response, SESSION_COOKIE_NAME)
    clear_cookie(response, ACTIVE_PROJECT_COOKIE_NAME)
    return {"detail": "Signed out."}
