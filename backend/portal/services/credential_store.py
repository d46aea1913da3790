# backend/portal/services/credential_store.py
"""
Credential store for client codes.

This is the only module that computes or compares client code hashes.
Every mutation stages an audit row and commits it in the same transaction.

Generations:
- single code per project: rows imported with `legacy_code` plaintext and no hash.
  They are upgraded by `migrate_legacy` on first successful use, or by rotation.
- several labelled codes per project: rows created by `issue`, hash only.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.errors import CodeSpaceExhausted, InvalidCode, InvalidFormat, NotFound
from portal.models import ClientCode, Project
from portal.services.audit import record_audit
from portal.services.client_codes import (
    generate_client_code,
    hash_client_code,
    is_well_formed,
    normalize_client_code,
)

logger = logging.getLogger("portal.client_codes")

METADATA_FIELDS = ("label", "client_name", "client_email", "notes")


@dataclass
class IssuedCode:
    """A freshly issued or rotated code. `plaintext` is never retrievable again."""

    client_code: ClientCode
    plaintext: str


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    v = str(value).strip()
    return v or None


def _clean_email(value: Optional[str]) -> Optional[str]:
    v = _clean_text(value)
    return v.lower() if v else None


class CredentialStore:
    def __init__(
        self,
        db: Session,
        *,
        secret: Optional[str] = None,
        max_attempts: Optional[int] = None,
        generator: Callable[[], str] = generate_client_code,
    ) -> None:
        self.db = db
        self.secret = secret or settings.client_code_secret
        self.max_attempts = int(max_attempts or settings.client_code_max_attempts)
        self._generate = generator

    def _hash(self, normalized: str) -> str:
        return hash_client_code(normalized, self.secret)

    # ---------- lookups ----------

    def get(self, code_id: str) -> ClientCode:
        row = (
            self.db.query(ClientCode)
            .filter(ClientCode.id == code_id, ClientCode.deleted_at.is_(None))
            .first()
        )
        if row is None:
            raise NotFound("Client code not found.")
        return row

    def list(self, project_id: str) -> List[ClientCode]:
        return (
            self.db.query(ClientCode)
            .filter(ClientCode.project_id == project_id, ClientCode.deleted_at.is_(None))
            .order_by(ClientCode.created_at.desc())
            .all()
        )

    def has_active_code(self, project_id: str) -> bool:
        return (
            self.db.query(ClientCode.id)
            .filter(
                ClientCode.project_id == project_id,
                ClientCode.is_active == True,  # noqa: E712
                ClientCode.deleted_at.is_(None),
            )
            .first()
            is not None
        )

    def _collides(
        self,
        plaintext: str,
        code_hash: str,
        *,
        exclude_id: Optional[str] = None,
        include_deleted: bool = False,
    ) -> bool:
        q = self.db.query(ClientCode.id).filter(
            or_(ClientCode.code_hash == code_hash, ClientCode.legacy_code == plaintext),
        )
        if not include_deleted:
            q = q.filter(ClientCode.deleted_at.is_(None))
        if exclude_id is not None:
            q = q.filter(ClientCode.id != exclude_id)
        return q.first() is not None

    def _candidates(self) -> Iterable[tuple[int, str, str]]:
        for attempt in range(1, self.max_attempts + 1):
            plaintext = self._generate()
            yield attempt, plaintext, self._hash(normalize_client_code(plaintext))

    # ---------- issue / rotate ----------

    def issue(
        self,
        project_id: str,
        *,
        label: Optional[str] = None,
        client_name: Optional[str] = None,
        client_email: Optional[str] = None,
        notes: Optional[str] = None,
        actor_user_id: Optional[str] = None,
    ) -> IssuedCode:
        if self.db.get(Project, project_id) is None:
            raise NotFound("Project not found.")

        for attempt, plaintext, code_hash in self._candidates():
            if self._collides(plaintext, code_hash):
                logger.info("client_code_collision project_id=%s attempt=%s", project_id, attempt)
                continue

            row = ClientCode(
                project_id=project_id,
                code_hash=code_hash,
                is_active=True,
                label=_clean_text(label),
                client_name=_clean_text(client_name),
                client_email=_clean_email(client_email),
                notes=_clean_text(notes),
                created_by_user_id=actor_user_id,
            )
            self.db.add(row)
            try:
                self.db.flush()
                record_audit(
                    self.db,
                    action="client_code.issued",
                    project_id=project_id,
                    actor_user_id=actor_user_id,
                    client_code_id=row.id,
                    detail=f"label={row.label or '-'}",
                )
                self.db.commit()
            except IntegrityError:
                # Lost a race against a concurrent insert of the same hash
                self.db.rollback()
                logger.warning("client_code_insert_conflict project_id=%s attempt=%s", project_id, attempt)
                continue

            self.db.refresh(row)
            return IssuedCode(client_code=row, plaintext=plaintext)

        logger.error("client_code_space_exhausted project_id=%s attempts=%s", project_id, self.max_attempts)
        raise CodeSpaceExhausted(project_id=project_id)

    def rotate(self, code_id: str, *, actor_user_id: Optional[str] = None) -> IssuedCode:
        row = self.get(code_id)

        for attempt, plaintext, code_hash in self._candidates():
            # Self-collision is harmless; only other rows matter
            if self._collides(plaintext, code_hash, exclude_id=row.id):
                logger.info("client_code_collision code_id=%s attempt=%s", code_id, attempt)
                continue

            row.code_hash = code_hash
            row.legacy_code = None
            row.last_rotated_at = _now_utc()
            try:
                self.db.flush()
                record_audit(
                    self.db,
                    action="client_code.rotated",
                    project_id=row.project_id,
                    actor_user_id=actor_user_id,
                    client_code_id=row.id,
                )
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                logger.warning("client_code_rotate_conflict code_id=%s attempt=%s", code_id, attempt)
                row = self.get(code_id)
                continue

            self.db.refresh(row)
            return IssuedCode(client_code=row, plaintext=plaintext)

        logger.error("client_code_space_exhausted code_id=%s attempts=%s", code_id, self.max_attempts)
        raise CodeSpaceExhausted(client_code_id=code_id)

    def rotate_project(self, project_id: str, *, actor_user_id: Optional[str] = None) -> IssuedCode:
        """
        Single-code entry point: rotate the project's primary (oldest) code,
        or issue the first one if the project has none.
        """
        primary = (
            self.db.query(ClientCode)
            .filter(ClientCode.project_id == project_id, ClientCode.deleted_at.is_(None))
            .order_by(ClientCode.created_at.asc())
            .first()
        )
        if primary is None:
            return self.issue(project_id, actor_user_id=actor_user_id)
        return self.rotate(primary.id, actor_user_id=actor_user_id)

    # ---------- validation ----------

    def validate(self, raw: Optional[str]) -> str:
        """
        Pure lookup: normalized code -> owning project id.

        Raises InvalidFormat without touching storage for short/empty input,
        InvalidCode when no active, undeleted row carries the hash.
        """
        normalized = normalize_client_code(raw)
        if not is_well_formed(normalized):
            raise InvalidFormat()

        match = (
            self.db.query(ClientCode.project_id)
            .filter(
                ClientCode.code_hash == self._hash(normalized),
                ClientCode.is_active == True,  # noqa: E712
                ClientCode.deleted_at.is_(None),
            )
            .first()
        )
        if match is None:
            raise InvalidCode()
        return match.project_id

    def migrate_legacy(self, raw: Optional[str]) -> Optional[str]:
        """
        Upgrade an unmigrated single-code row matching this plaintext to hashed form.

        Only rows that never had a hash are eligible, so a rotated, deactivated
        or deleted code can't be revived through its old plaintext.
        """
        normalized = normalize_client_code(raw)
        if not is_well_formed(normalized):
            return None

        row = (
            self.db.query(ClientCode)
            .filter(
                ClientCode.legacy_code == normalized,
                ClientCode.code_hash.is_(None),
                ClientCode.is_active == True,  # noqa: E712
                ClientCode.deleted_at.is_(None),
            )
            .first()
        )
        if row is None:
            return None

        row.code_hash = self._hash(normalized)
        row.legacy_code = None
        try:
            self.db.flush()
            record_audit(
                self.db,
                action="client_code.migrated",
                project_id=row.project_id,
                actor_user_id=None,
                client_code_id=row.id,
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning("client_code_migrate_conflict code_id=%s", row.id)
            return None

        logger.info("client_code_migrated code_id=%s project_id=%s", row.id, row.project_id)
        return row.project_id

    def import_legacy(self, project_id: str, plaintext: str, *, active: bool = True) -> Optional[ClientCode]:
        """
        Load a first-generation single code as an unmigrated row.
        Returns None when the plaintext is malformed or already known.
        """
        normalized = normalize_client_code(plaintext)
        if not is_well_formed(normalized):
            return None
        if self.db.get(Project, project_id) is None:
            raise NotFound("Project not found.")
        # Deleted rows keep their hash, which the unique index still covers
        if self._collides(normalized, self._hash(normalized), include_deleted=True):
            return None

        row = ClientCode(project_id=project_id, code_hash=None, legacy_code=normalized, is_active=bool(active))
        self.db.add(row)
        self.db.flush()
        record_audit(
            self.db,
            action="client_code.imported",
            project_id=project_id,
            actor_user_id=None,
            client_code_id=row.id,
        )
        self.db.commit()
        self.db.refresh(row)
        return row

    def resolve(self, raw: Optional[str]) -> str:
        """validate(), falling back to the legacy migration step on a miss."""
        try:
            return self.validate(raw)
        except InvalidCode:
            project_id = self.migrate_legacy(raw)
            if project_id is None:
                raise
            return project_id

    # ---------- management ----------

    def set_active(self, code_id: str, active: bool, *, actor_user_id: Optional[str] = None) -> ClientCode:
        row = self.get(code_id)
        row.is_active = bool(active)
        record_audit(
            self.db,
            action="client_code.activated" if active else "client_code.deactivated",
            project_id=row.project_id,
            actor_user_id=actor_user_id,
            client_code_id=row.id,
        )
        self.db.commit()
        self.db.refresh(row)
        return row

    def soft_delete(self, code_id: str, *, actor_user_id: Optional[str] = None) -> None:
        row = self.get(code_id)
        row.deleted_at = _now_utc()
        record_audit(
            self.db,
            action="client_code.deleted",
            project_id=row.project_id,
            actor_user_id=actor_user_id,
            client_code_id=row.id,
        )
        self.db.commit()

    def update(self, code_id: str, *, actor_user_id: Optional[str] = None, **changes: Optional[str]) -> ClientCode:
        """
        Metadata-only mutation. Pass only the fields to change; None or "" clears a field.
        The hash is never touched here.
        """
        unknown = set(changes) - set(METADATA_FIELDS)
        if unknown:
            raise ValueError(f"Unknown client code fields: {sorted(unknown)}")

        row = self.get(code_id)
        for field, value in changes.items():
            setattr(row, field, _clean_email(value) if field == "client_email" else _clean_text(value))

        record_audit(
            self.db,
            action="client_code.updated",
            project_id=row.project_id,
            actor_user_id=actor_user_id,
            client_code_id=row.id,
            detail="fields=" + ",".join(sorted(changes)) if changes else None,
        )
        self.db.commit()
        self.db.refresh(row)
        return row
