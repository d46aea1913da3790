# backend/portal/services/audit.py
"""
Audit trail for credential and membership changes.

Rows are staged on the caller's session and land with the mutation they
describe. The matching `portal.audit` log line is held on the session and
only written once that transaction commits; a rollback discards it.
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import event
from sqlalchemy.orm import Session

from portal.models import AuditEvent

audit_logger = logging.getLogger("portal.audit")

_PENDING_LINES = "portal_audit_pending"


def record_audit(
    db: Session,
    *,
    action: str,
    project_id: Optional[str],
    actor_user_id: Optional[str],
    client_code_id: Optional[str] = None,
    detail: Optional[str] = None,
) -> AuditEvent:
    """
    Stage an audit row on the caller's session. The caller commits.
    Never pass plaintext codes in `detail`.
    """
    ev = AuditEvent(
        project_id=project_id,
        action=action,
        actor_user_id=actor_user_id,
        client_code_id=client_code_id,
        detail=detail,
    )
    db.add(ev)
    db.info.setdefault(_PENDING_LINES, []).append(
        (action, project_id, actor_user_id or "-", client_code_id or "-", detail or "-")
    )
    return ev


@event.listens_for(Session, "after_commit")
def _write_committed_lines(session: Session) -> None:
    for fields in session.info.pop(_PENDING_LINES, []):
        audit_logger.info("audit action=%s project_id=%s actor=%s client_code_id=%s detail=%s", *fields)


@event.listens_for(Session, "after_soft_rollback")
def _drop_rolled_back_lines(session: Session, previous_transaction) -> None:
    session.info.pop(_PENDING_LINES, None)
