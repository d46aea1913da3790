from __future__ import annotations

import hashlib
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.db.session import get_db
from portal.models import Profile

# Hard guard: never allow default secrets in production-like envs
if settings.is_prod:
    if settings.jwt_secret in {"supersecret", "changeme", "secret", ""}:
        raise RuntimeError(
            "Insecure JWT_SECRET configured in production environment. "
            "Set a strong random secret via the JWT_SECRET env var."
        )
    if settings.client_code_secret in {"dev-client-code-secret", ""}:
        raise RuntimeError("Set CLIENT_CODE_SECRET before running in production.")

SESSION_COOKIE_NAME = "portal_session"
PENDING_JOIN_COOKIE_NAME = "pending_client_code"
ACTIVE_PROJECT_COOKIE_NAME = "active_project_id"

TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_PENDING_JOIN = "pending_join"
TOKEN_TYPE_ACTIVE_PROJECT = "active_project"

# auto_error=False: browser clients send the session cookie instead
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/callback", auto_error=False)


def _http_401(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def hash_token(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


# === Token helpers ===

def _encode(token_type: str, claims: Dict[str, Any], expires_delta: timedelta) -> str:
    to_encode = dict(claims)
    to_encode["type"] = token_type
    to_encode["exp"] = datetime.now(timezone.utc) + expires_delta
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def _decode(token: Optional[str], token_type: str) -> Optional[Dict[str, Any]]:
    """Decode and check the type claim. Any failure -> None."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    if payload.get("type") != token_type:
        return None
    return payload


def create_access_token(user_id: str, email: str) -> str:
    return _encode(
        TOKEN_TYPE_ACCESS,
        {"sub": user_id, "email": email},
        timedelta(minutes=settings.access_token_expire_minutes),
    )


def create_pending_join_token(*, code: Optional[str] = None, project_id: Optional[str] = None) -> str:
    claims: Dict[str, Any] = {}
    if code:
        claims["code"] = code
    if project_id:
        claims["pid"] = project_id
    return _encode(
        TOKEN_TYPE_PENDING_JOIN,
        claims,
        timedelta(minutes=settings.pending_join_expire_minutes),
    )


def read_pending_join_token(token: Optional[str]) -> Optional[Dict[str, Optional[str]]]:
    """Returns {"code", "project_id"} from a valid pending-join cookie, else None."""
    payload = _decode(token, TOKEN_TYPE_PENDING_JOIN)
    if payload is None:
        return None
    code = payload.get("code")
    project_id = payload.get("pid")
    if not code and not project_id:
        return None
    return {"code": code or None, "project_id": project_id or None}


def create_active_project_token(project_id: str) -> str:
    return _encode(
        TOKEN_TYPE_ACTIVE_PROJECT,
        {"pid": project_id},
        timedelta(days=settings.active_project_expire_days),
    )


def read_active_project_token(token: Optional[str]) -> Optional[str]:
    payload = _decode(token, TOKEN_TYPE_ACTIVE_PROJECT)
    if payload is None:
        return None
    return payload.get("pid") or None


# === Cookies ===

def _set_cookie(response: Response, key: str, value: str, max_age: int) -> None:
    response.set_cookie(
        key=key,
        value=value,
        httponly=True,
        secure=settings.is_prod,
        samesite="lax",
        max_age=max_age,
        path="/",
    )


def set_session_cookie(response: Response, access_token: str) -> None:
    _set_cookie(response, SESSION_COOKIE_NAME, access_token, settings.access_token_expire_minutes * 60)


def set_pending_join_cookie(
    response: Response, *, code: Optional[str] = None, project_id: Optional[str] = None
) -> None:
    _set_cookie(
        response,
        PENDING_JOIN_COOKIE_NAME,
        create_pending_join_token(code=code, project_id=project_id),
        settings.pending_join_expire_minutes * 60,
    )


def set_active_project_cookie(response: Response, project_id: str) -> None:
    _set_cookie(
        response,
        ACTIVE_PROJECT_COOKIE_NAME,
        create_active_project_token(project_id),
        settings.active_project_expire_days * 24 * 3600,
    )


def clear_cookie(response: Response, key: str) -> None:
    response.delete_cookie(key, path="/")


# === Current user ===

def _token_from_request(request: Request, bearer: Optional[str]) -> Optional[str]:
    if bearer:
        return bearer
    return request.cookies.get(SESSION_COOKIE_NAME) or None


def _load_profile(db: Session, token: Optional[str]) -> Optional[Profile]:
    payload = _decode(token, TOKEN_TYPE_ACCESS)
    if payload is None:
        return None
    user_id = payload.get("sub")
    if not user_id:
        return None
    return db.query(Profile).filter(Profile.id == str(user_id)).first()


def get_current_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> Profile:
    """
    Session dependency: Authorization: Bearer <jwt>, falling back to the
    httpOnly session cookie set by the auth callback.
    """
    raw = _token_from_request(request, token)
    if not raw:
        raise _http_401("Not authenticated")

    user = _load_profile(db, raw)
    if user is None:
        raise _http_401("Invalid or expired session")
    return user


def get_optional_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> Optional[Profile]:
    return _load_profile(db, _token_from_request(request, token))
