"""
Governance Tables

SQLAlchemy 2.0 declarative models behind the SQL adapters:
- users with their role and group memberships
- table grants, field grants, role permissions and row rules
- the audit trail

JSON columns use JSONB on PostgreSQL and serialized TEXT elsewhere. UUIDs
are native on PostgreSQL and CHAR(36) elsewhere. Timestamps are stored as
naive UTC and come back timezone-aware.
"""

import json
from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


# =============================================================================
# Custom Types
# =============================================================================

class JSONType(TypeDecorator):
    """
    JSON column: JSONB on PostgreSQL, serialized TEXT elsewhere.
    """
    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name == "postgresql":
            return value
        return json.dumps(value)

    def process_result_value(self, value, dialect):
        if isinstance(value, str) and dialect.name != "postgresql":
            return json.loads(value)
        return value


class UUIDType(TypeDecorator):
    """
    UUID column: native on PostgreSQL, String(36) elsewhere.
    """
    impl = String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name == "postgresql":
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, UUID):
            return value
        return UUID(value)


class UTCDateTime(TypeDecorator):
    """
    Stores naive UTC, returns aware UTC.

    Keeps comparisons consistent on backends without timezone support.
    """
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# =============================================================================
# Base
# =============================================================================

class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# =============================================================================
# Identity Models
# =============================================================================

class UserModel(Base):
    """
    User directory entry.
    """
    __tablename__ = "gov_users"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    department: Mapped[str | None] = mapped_column(String(255), nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class UserRoleModel(Base):
    """Role membership."""
    __tablename__ = "gov_user_roles"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    role: Mapped[str] = mapped_column(String(255), primary_key=True)


class UserGroupModel(Base):
    """Group membership."""
    __tablename__ = "gov_user_groups"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    group_name: Mapped[str] = mapped_column(String(255), primary_key=True)


# =============================================================================
# Grant Models
# =============================================================================

class TableGrantModel(Base):
    """
    ACL-equivalent table grant: (table, operation, role).
    """
    __tablename__ = "gov_table_grants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    table_name: Mapped[str] = mapped_column(String(255), nullable=False)
    operation: Mapped[str] = mapped_column(String(32), nullable=False)
    role: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("table_name", "operation", "role", name="uq_table_grant"),
    )


class FieldGrantModel(Base):
    """
    ACL-equivalent field grant: (table, field, operation, role).
    """
    __tablename__ = "gov_field_grants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    table_name: Mapped[str] = mapped_column(String(255), nullable=False)
    field_name: Mapped[str] = mapped_column(String(255), nullable=False)
    operation: Mapped[str] = mapped_column(String(32), nullable=False)
    role: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("table_name", "field_name", "operation", "role", name="uq_field_grant"),
    )


class RolePermissionModel(Base):
    """Explicit permission string held by a role."""
    __tablename__ = "gov_role_permissions"

    role: Mapped[str] = mapped_column(String(255), primary_key=True)
    permission: Mapped[str] = mapped_column(String(255), primary_key=True)


class RowRuleModel(Base):
    """
    Row security rule: condition template bound to a set of roles.
    """
    __tablename__ = "gov_row_rules"

    rule_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    table_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    condition: Mapped[str] = mapped_column(Text, nullable=False)
    roles: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")


# =============================================================================
# Audit Model
# =============================================================================

class AuditEventModel(Base):
    """
    Append-only audit event.
    """
    __tablename__ = "gov_audit_events"

    event_id: Mapped[UUID] = mapped_column(UUIDType(), primary_key=True, default=uuid4)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)

    # Subject
    actor_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    target: Mapped[str | None] = mapped_column(String(512), nullable=True)
    decision: Mapped[str | None] = mapped_column(String(32), nullable=True)
    rationale: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)

    # Origin
    session_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    client_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Event data
    data: Mapped[dict] = mapped_column(JSONType(), nullable=False, default=dict)

    __table_args__ = (
        Index("ix_audit_actor_timestamp", "actor_id", "timestamp"),
        Index("ix_audit_session_timestamp", "session_id", "timestamp"),
    )
