# backend/portal/models.py
import uuid

import sqlalchemy as sa
from sqlalchemy import (
    Column,
    String,
    Integer,
    ForeignKey,
    Text,
    Index,
    DateTime,
    Boolean,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import text
from portal.db.base import Base

# Cross-DB timestamp default (SQLite + Postgres)
DB_NOW = text("CURRENT_TIMESTAMP")

ROLE_AGENCY_ADMIN = "agency_admin"
ROLE_AGENCY_MEMBER = "agency_member"
ROLE_CLIENT_ADMIN = "client_admin"
ROLE_CLIENT_MEMBER = "client_member"

MEMBER_ROLES = (ROLE_AGENCY_ADMIN, ROLE_AGENCY_MEMBER, ROLE_CLIENT_ADMIN, ROLE_CLIENT_MEMBER)


def _uuid() -> str:
    return str(uuid.uuid4())


class Agency(Base):
    __tablename__ = "agencies"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False, unique=True)
    slug = Column(String(255), nullable=False, unique=True)

    created_at = Column(DateTime(timezone=True), server_default=DB_NOW, nullable=False)

    projects = relationship("Project", back_populates="agency")


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=_uuid)
    agency_id = Column(String(36), ForeignKey("agencies.id"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    status = Column(String(32), nullable=False, server_default=text("'active'"), default="active")

    created_at = Column(DateTime(timezone=True), server_default=DB_NOW, nullable=False)

    agency = relationship("Agency", back_populates="projects")
    client_codes = relationship("ClientCode", back_populates="project", cascade="all, delete-orphan")
    members = relationship("ProjectMember", back_populates="project", cascade="all, delete-orphan")
    milestones = relationship(
        "Milestone",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="Milestone.sort",
    )


class Profile(Base):
    """
    Identity record owned by the passwordless sign-in flow.
    Created on the first successful magic-link exchange.
    """
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=DB_NOW, nullable=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    memberships = relationship("ProjectMember", back_populates="profile")


class ClientCode(Base):
    """
    Bearer credential that lets a client join a project.

    Only the keyed hash is stored. The plaintext is returned once at issue/rotation.
    `legacy_code` holds the plaintext of rows imported from the single-code scheme
    until they are migrated on first use or rotated.
    """
    __tablename__ = "client_codes"

    id = Column(String(36), primary_key=True, default=_uuid)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False, index=True)

    # hmac-sha256 hex = 64 chars; NULL only for unmigrated legacy rows
    code_hash = Column(String(64), nullable=True)
    legacy_code = Column(String(16), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, server_default=sa.true())

    label = Column(String(255), nullable=True)
    client_name = Column(String(255), nullable=True)
    client_email = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    created_by_user_id = Column(String(36), ForeignKey("profiles.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=DB_NOW, nullable=False)
    last_rotated_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    project = relationship("Project", back_populates="client_codes")

    __table_args__ = (
        Index("uq_client_codes_code_hash", "code_hash", unique=True),
        Index("ix_client_codes_legacy_code", "legacy_code"),
        Index("ix_client_codes_project_active", "project_id", "is_active"),
    )


class ProjectMember(Base):
    __tablename__ = "project_members"

    project_id = Column(String(36), ForeignKey("projects.id"), primary_key=True)
    user_id = Column(String(36), ForeignKey("profiles.id"), primary_key=True, index=True)
    role = Column(String(32), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=DB_NOW, nullable=False)

    project = relationship("Project", back_populates="members")
    profile = relationship("Profile", back_populates="memberships")

    __table_args__ = (
        sa.CheckConstraint(
            "role IN (" + ", ".join(f"'{r}'" for r in MEMBER_ROLES) + ")",
            name="ck_project_members_role",
        ),
        # At most one client_admin per project; concurrent first joiners race on this
        Index(
            "uq_project_members_one_client_admin",
            "project_id",
            unique=True,
            sqlite_where=text("role = 'client_admin'"),
            postgresql_where=text("role = 'client_admin'"),
        ),
    )


class Milestone(Base):
    """Onboarding-step placeholder created alongside a project."""
    __tablename__ = "milestones"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False, index=True)
    key = Column(String(64), nullable=False)
    title = Column(String(255), nullable=False)
    status = Column(String(32), nullable=False, server_default=text("'not_started'"), default="not_started")
    sort = Column(Integer, nullable=False, default=0)

    project = relationship("Project", back_populates="milestones")

    __table_args__ = (
        sa.UniqueConstraint("project_id", "key", name="uq_milestones_project_key"),
    )


class LoginToken(Base):
    """
    One-time passwordless sign-in token.

    Only the sha256 hash is stored; the raw token travels in the emailed link.
    """
    __tablename__ = "login_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, index=True)
    token_hash = Column(String(64), nullable=False, unique=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=DB_NOW, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)

    request_ip = Column(String(64), nullable=True)
    user_agent = Column(String(255), nullable=True)


class AuditEvent(Base):
    """Append-only record of credential and membership mutations."""
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(36), nullable=True, index=True)
    action = Column(String(64), nullable=False, index=True)
    actor_user_id = Column(String(36), nullable=True)
    client_code_id = Column(String(36), nullable=True, index=True)
    detail = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=DB_NOW)
