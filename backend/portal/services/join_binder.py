# backend/portal/services/join_binder.py
"""
Turns a client code into a project membership.

Two phases around the passwordless sign-in round-trip:
- validate_pre_auth: check the code, hand back what the caller stashes client-side.
- bind_after_auth: re-check the stashed code against storage (a code rotated or
  deactivated mid-login must fail here) and create the membership idempotently.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.errors import InvalidCode, InvalidFormat
from portal.models import (
    Profile,
    ProjectMember,
    ROLE_AGENCY_ADMIN,
    ROLE_CLIENT_ADMIN,
    ROLE_CLIENT_MEMBER,
)
from portal.services.audit import record_audit
from portal.services.client_codes import normalize_client_code
from portal.services.credential_store import CredentialStore

logger = logging.getLogger("portal.join")


@dataclass
class PendingJoin:
    """
    What survives between pre-auth validation and the auth callback.

    `code` is the normalized plaintext. `project_id` is only set for pending
    joins created by the single-code flow, which stashed a project pointer.
    """

    code: Optional[str] = None
    project_id: Optional[str] = None


@dataclass
class BindResult:
    project_id: str
    role: str
    created: bool
    promoted: bool = False

    @property
    def already_member(self) -> bool:
        return not self.created


class JoinBinder:
    def __init__(
        self,
        db: Session,
        *,
        store: Optional[CredentialStore] = None,
        admin_emails: Optional[Iterable[str]] = None,
    ) -> None:
        self.db = db
        self.store = store or CredentialStore(db)
        emails = settings.admin_email_set() if admin_emails is None else admin_emails
        self.admin_emails = {str(e).strip().lower() for e in emails if str(e).strip()}

    def is_admin_email(self, email: Optional[str]) -> bool:
        if not email:
            return False
        return email.strip().lower() in self.admin_emails

    # ---------- phases ----------

    def validate_pre_auth(self, raw: Optional[str]) -> PendingJoin:
        """Raises InvalidFormat / InvalidCode; never reveals which."""
        self.store.resolve(raw)
        return PendingJoin(code=normalize_client_code(raw))

    def bind_after_auth(self, user: Profile, pending: Optional[PendingJoin]) -> Optional[BindResult]:
        """
        Returns None when there is nothing to bind: no pending join (plain login)
        or the stashed code is no longer valid. Failures here never break login.
        """
        if pending is None:
            return None

        project_id = self._resolve_pending(pending)
        if project_id is None:
            logger.warning("pending_join_rejected user_id=%s", user.id)
            return None

        return self.join(user, project_id)

    def accept(self, user: Profile, raw: Optional[str]) -> BindResult:
        """Join while already signed in: validate and bind in one step."""
        project_id = self.store.resolve(raw)
        return self.join(user, project_id)

    # ---------- membership ----------

    def join(self, user: Profile, project_id: str) -> BindResult:
        is_admin = self.is_admin_email(user.email)

        existing = self._membership(project_id, user.id)
        if existing is not None:
            return self._keep_existing(existing, is_admin=is_admin)

        role = ROLE_AGENCY_ADMIN if is_admin else self._next_client_role(project_id)

        for _ in range(2):
            try:
                return self._insert(project_id, user.id, role)
            except IntegrityError:
                self.db.rollback()

            existing = self._membership(project_id, user.id)
            if existing is not None:
                # Same user won the race in another request (duplicate tab)
                logger.info("join_race_resolved project_id=%s user_id=%s", project_id, user.id)
                return self._keep_existing(existing, is_admin=is_admin)

            # Another user became client_admin between our check and insert
            role = ROLE_CLIENT_MEMBER

        raise RuntimeError(f"Unable to create membership project_id={project_id} user_id={user.id}")

    def _resolve_pending(self, pending: PendingJoin) -> Optional[str]:
        if pending.code:
            try:
                return self.store.resolve(pending.code)
            except (InvalidFormat, InvalidCode):
                return None

        if pending.project_id:
            if self.store.has_active_code(pending.project_id):
                return pending.project_id
            return None

        return None

    def _membership(self, project_id: str, user_id: str) -> Optional[ProjectMember]:
        return (
            self.db.query(ProjectMember)
            .filter(ProjectMember.project_id == project_id, ProjectMember.user_id == user_id)
            .first()
        )

    def _next_client_role(self, project_id: str) -> str:
        has_client_admin = (
            self.db.query(ProjectMember.user_id)
            .filter(ProjectMember.project_id == project_id, ProjectMember.role == ROLE_CLIENT_ADMIN)
            .first()
            is not None
        )
        return ROLE_CLIENT_MEMBER if has_client_admin else ROLE_CLIENT_ADMIN

    def _insert(self, project_id: str, user_id: str, role: str) -> BindResult:
        member = ProjectMember(project_id=project_id, user_id=user_id, role=role)
        self.db.add(member)
        self.db.flush()
        record_audit(
            self.db,
            action="project_member.joined",
            project_id=project_id,
            actor_user_id=user_id,
            detail=f"role={role}",
        )
        self.db.commit()
        logger.info("project_joined project_id=%s user_id=%s role=%s", project_id, user_id, role)
        return BindResult(project_id=project_id, role=role, created=True)

    def _keep_existing(self, member: ProjectMember, *, is_admin: bool) -> BindResult:
        # Never downgrade; the allow-list may only escalate to agency_admin
        if is_admin and member.role != ROLE_AGENCY_ADMIN:
            previous = member.role
            member.role = ROLE_AGENCY_ADMIN
            record_audit(
                self.db,
                action="project_member.promoted",
                project_id=member.project_id,
                actor_user_id=member.user_id,
                detail=f"from={previous}; to={ROLE_AGENCY_ADMIN}",
            )
            self.db.commit()
            return BindResult(project_id=member.project_id, role=member.role, created=False, promoted=True)

        return BindResult(project_id=member.project_id, role=member.role, created=False)
