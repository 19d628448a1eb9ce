"""
Database Models (SQLAlchemy) for users, workflows, credentials and their shares.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(Base):
    """Named permission scope, looked up by (name, scope). Reference data."""

    __tablename__ = "roles"
    __table_args__ = (UniqueConstraint("name", "scope", name="uq_roles_name_scope"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(32), nullable=False)
    scope = Column(String(32), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return f"<Role(name={self.name}, scope={self.scope})>"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), nullable=False, unique=True, index=True)
    first_name = Column(String(32), nullable=True)
    last_name = Column(String(32), nullable=True)
    password = Column(String(255), nullable=True)
    api_key = Column(String(255), nullable=True, unique=True, index=True)

    global_role_id = Column(Integer, ForeignKey("roles.id"), nullable=False)
    global_role = relationship(Role, lazy="selectin")

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    @property
    def is_pending(self) -> bool:
        """Invited users stay pending until they set a password"""
        return self.password is None

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, pending={self.is_pending})>"


workflows_tags = Table(
    "workflows_tags",
    Base.metadata,
    Column("workflow_id", String(36), ForeignKey("workflows.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", String(36), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class TagEntity(Base):
    __tablename__ = "tags"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(24), nullable=False, unique=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class WorkflowEntity(Base):
    """A workflow graph plus metadata.

    ``active`` mirrors whether the workflow is registered with the trigger
    runtime; only the lifecycle coordinator writes it.
    """

    __tablename__ = "workflows"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(128), nullable=False)
    active = Column(Boolean, nullable=False, default=False)

    nodes = Column(JSON, nullable=False, default=list)
    connections = Column(JSON, nullable=False, default=dict)
    settings = Column(JSON, nullable=True)
    static_data = Column(JSON, nullable=True)

    # Tags are only loaded on demand (see workflow_tags_disabled)
    tags = relationship(TagEntity, secondary=workflows_tags, lazy="raise")

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return f"<WorkflowEntity(id={self.id}, name={self.name}, active={self.active})>"


class CredentialsEntity(Base):
    __tablename__ = "credentials"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(128), nullable=False)
    type = Column(String(128), nullable=False, index=True)
    data = Column(Text, nullable=False, default="")
    nodes_access = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class SharedWorkflow(Base):
    """(user, workflow, role) share. One row per (user, workflow)."""

    __tablename__ = "shared_workflow"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    workflow_id = Column(
        String(36), ForeignKey("workflows.id", ondelete="CASCADE"), primary_key=True, index=True
    )
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=False)

    user = relationship(User, lazy="raise")
    workflow = relationship(WorkflowEntity, lazy="selectin")
    role = relationship(Role, lazy="selectin")

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return f"<SharedWorkflow(user_id={self.user_id}, workflow_id={self.workflow_id})>"


class SharedCredentials(Base):
    __tablename__ = "shared_credentials"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    credentials_id = Column(
        String(36), ForeignKey("credentials.id", ondelete="CASCADE"), primary_key=True, index=True
    )
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=False)

    credentials = relationship(CredentialsEntity, lazy="selectin")
    role = relationship(Role, lazy="selectin")

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return f"<SharedCredentials(user_id={self.user_id}, credentials_id={self.credentials_id})>"
