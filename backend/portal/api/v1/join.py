# backend/portal/api/v1/join.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from portal.api.deps import get_join_binder
from portal.core.rate_limit import code_attempt_rate_limit
from portal.core.security import get_current_user, set_active_project_cookie, set_pending_join_cookie
from portal.models import Profile
from portal.services.join_binder import JoinBinder

router = APIRouter(prefix="/join", tags=["join"])


class CodeIn(BaseModel):
    code: str = Field(default="", max_length=64)


class ValidateOut(BaseModel):
    success: bool = True


class AcceptOut(BaseModel):
    project_id: str
    role: str
    already_member: bool


@router.post(
    "/validate",
    response_model=ValidateOut,
    dependencies=[Depends(code_attempt_rate_limit)],
)
def validate_code(payload: CodeIn, response: Response, binder: JoinBinder = Depends(get_join_binder)) -> ValidateOut:
    """
    Pre-auth check. On success the code is stashed in a short-lived signed
    cookie for the sign-in callback; the project is not revealed.
    """
    pending = binder.validate_pre_auth(payload.code)
    set_pending_join_cookie(response, code=pending.code, project_id=pending.project_id)
    return ValidateOut()


@router.post(
    "/accept",
    response_model=AcceptOut,
    dependencies=[Depends(code_attempt_rate_limit)],
)
def accept_code(
    payload: CodeIn,
    response: Response,
    user: Profile = Depends(get_current_user),
    binder: JoinBinder = Depends(get_join_binder),
) -> AcceptOut:
    result = binder.accept(user, payload.code)
    set_active_project_cookie(response, result.project_id)
    return AcceptOut(project_id=result.project_id, role=result.role, already_member=result.already_member)
