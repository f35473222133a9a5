"""
SQLAlchemy Storage Adapters

Identity, grants and the audit trail on the async ORM. Each call opens its
own session from the injected async_sessionmaker, so adapters can be shared
across concurrent requests. Runs on aiosqlite, asyncpg or aiomysql.

Integrity errors on writes surface as ConflictError. The authentication
endpoint is an external service and has no SQL adapter.
"""

from datetime import datetime
from typing import Iterable

from sqlalchemy import and_, delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from govgate.access.models import RowSecurityRule
from govgate.identity.models import UserProfile
from govgate.storage.models import (
    AuditEventModel,
    FieldGrantModel,
    RolePermissionModel,
    RowRuleModel,
    TableGrantModel,
    UserGroupModel,
    UserModel,
    UserRoleModel,
)
from govgate.storage.ports import (
    AuditRecord,
    AuditSink,
    ConflictError,
    FieldGrant,
    GrantSource,
    IdentityProvider,
    TableGrant,
)


# =============================================================================
# Converters
# =============================================================================

def user_model_to_profile(model: UserModel) -> UserProfile:
    """Convert SQLAlchemy model to profile."""
    return UserProfile(
        user_id=model.user_id,
        display_name=model.display_name,
        department=model.department,
        location=model.location,
        email=model.email,
        active=model.active,
    )


def row_rule_model_to_rule(model: RowRuleModel) -> RowSecurityRule:
    return RowSecurityRule(
        rule_id=model.rule_id,
        table=model.table_name,
        condition=model.condition,
        roles=frozenset(model.roles or []),
        description=model.description or "",
    )


def audit_record_to_model(record: AuditRecord) -> AuditEventModel:
    """Convert port record to SQLAlchemy model."""
    return AuditEventModel(
        event_id=record.event_id,
        event_type=record.event_type,
        timestamp=record.timestamp,
        actor_id=record.actor_id,
        target=record.target,
        decision=record.decision,
        rationale=list(record.rationale),
        session_id=record.session_id,
        ip_address=record.ip_address,
        client_id=record.client_id,
        data=dict(record.data),
    )


def audit_model_to_record(model: AuditEventModel) -> AuditRecord:
    """Convert SQLAlchemy model to port record."""
    return AuditRecord(
        event_id=model.event_id,
        event_type=model.event_type,
        timestamp=model.timestamp,
        actor_id=model.actor_id,
        target=model.target,
        decision=model.decision,
        rationale=list(model.rationale or []),
        session_id=model.session_id,
        ip_address=model.ip_address,
        client_id=model.client_id,
        data=dict(model.data or {}),
    )


# =============================================================================
# SQLAlchemy Identity Provider
# =============================================================================

class SqlAlchemyIdentityProvider(IdentityProvider):
    """
    SQLAlchemy implementation of the user directory.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def add_user(
        self,
        profile: UserProfile,
        roles: Iterable[str] = (),
        groups: Iterable[str] = ()
    ) -> UserProfile:
        """Insert or replace a user with its memberships."""
        async with self._session_factory() as session:
            async with session.begin():
                await session.merge(UserModel(
                    user_id=profile.user_id,
                    display_name=profile.display_name,
                    department=profile.department,
                    location=profile.location,
                    email=profile.email,
                    active=profile.active,
                ))
                await session.execute(
                    delete(UserRoleModel).where(UserRoleModel.user_id == profile.user_id)
                )
                await session.execute(
                    delete(UserGroupModel).where(UserGroupModel.user_id == profile.user_id)
                )
                for role in dict.fromkeys(roles):
                    session.add(UserRoleModel(user_id=profile.user_id, role=role))
                for group in dict.fromkeys(groups):
                    session.add(UserGroupModel(user_id=profile.user_id, group_name=group))
        return profile

    async def resolve_user(self, user_id: str) -> UserProfile | None:
        async with self._session_factory() as session:
            model = await session.get(UserModel, user_id)
            if model is None:
                return None
            return user_model_to_profile(model)

    async def resolve_roles(self, user_id: str) -> list[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserRoleModel.role)
                .where(UserRoleModel.user_id == user_id)
                .order_by(UserRoleModel.role)
            )
            return list(result.scalars().all())

    async def resolve_groups(self, user_id: str) -> list[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserGroupModel.group_name)
                .where(UserGroupModel.user_id == user_id)
                .order_by(UserGroupModel.group_name)
            )
            return list(result.scalars().all())


# =============================================================================
# SQLAlchemy Grant Source
# =============================================================================

class SqlAlchemyGrantSource(GrantSource):
    """
    SQLAlchemy implementation of grants, permissions and row rules.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def grant_table(self, table: str, operation: str, role: str) -> TableGrant:
        """
        Raises:
            ConflictError: If the grant already exists
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(TableGrantModel(table_name=table, operation=operation, role=role))
        except IntegrityError as e:
            raise ConflictError(f"Table grant {table}/{operation}/{role} exists") from e
        return TableGrant(table=table, operation=operation, role=role)

    async def grant_field(self, table: str, field: str, operation: str, role: str) -> FieldGrant:
        """
        Raises:
            ConflictError: If the grant already exists
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(FieldGrantModel(
                        table_name=table,
                        field_name=field,
                        operation=operation,
                        role=role,
                    ))
        except IntegrityError as e:
            raise ConflictError(f"Field grant {table}.{field}/{operation}/{role} exists") from e
        return FieldGrant(table=table, field=field, operation=operation, role=role)

    async def grant_permission(self, role: str, permission: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.merge(RolePermissionModel(role=role, permission=permission))

    async def add_row_rule(self, rule: RowSecurityRule) -> RowSecurityRule:
        async with self._session_factory() as session:
            async with session.begin():
                await session.merge(RowRuleModel(
                    rule_id=rule.rule_id,
                    table_name=rule.table,
                    condition=rule.condition,
                    roles=sorted(rule.roles),
                    description=rule.description,
                ))
        return rule

    async def list_table_grants(self, roles: Iterable[str]) -> list[TableGrant]:
        wanted = list(roles)
        if not wanted:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(TableGrantModel)
                .where(TableGrantModel.role.in_(wanted))
                .order_by(TableGrantModel.table_name, TableGrantModel.operation, TableGrantModel.role)
            )
            return [
                TableGrant(table=m.table_name, operation=m.operation, role=m.role)
                for m in result.scalars().all()
            ]

    async def list_field_grants(self, roles: Iterable[str]) -> list[FieldGrant]:
        wanted = list(roles)
        if not wanted:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(FieldGrantModel)
                .where(FieldGrantModel.role.in_(wanted))
                .order_by(
                    FieldGrantModel.table_name,
                    FieldGrantModel.field_name,
                    FieldGrantModel.operation,
                    FieldGrantModel.role,
                )
            )
            return [
                FieldGrant(
                    table=m.table_name,
                    field=m.field_name,
                    operation=m.operation,
                    role=m.role,
                )
                for m in result.scalars().all()
            ]

    async def list_row_rules(self, table: str, roles: Iterable[str]) -> list[RowSecurityRule]:
        wanted = set(roles)
        async with self._session_factory() as session:
            result = await session.execute(
                select(RowRuleModel)
                .where(RowRuleModel.table_name == table)
                .order_by(RowRuleModel.rule_id)
            )
            # Role sets live in a JSON column, intersect portably in Python
            rules = [row_rule_model_to_rule(m) for m in result.scalars().all()]
            return [rule for rule in rules if rule.roles & wanted]

    async def list_permissions(self, roles: Iterable[str]) -> list[str]:
        wanted = list(roles)
        if not wanted:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(RolePermissionModel.permission)
                .where(RolePermissionModel.role.in_(wanted))
                .distinct()
                .order_by(RolePermissionModel.permission)
            )
            return list(result.scalars().all())


# =============================================================================
# SQLAlchemy Audit Sink
# =============================================================================

class SqlAlchemyAuditSink(AuditSink):
    """
    SQLAlchemy implementation of the audit sink.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def append(self, record: AuditRecord) -> None:
        """
        Raises:
            ConflictError: If an event with the same id was already stored
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(audit_record_to_model(record))
        except IntegrityError as e:
            raise ConflictError(f"Audit event {record.event_id} already stored") from e

    async def query(
        self,
        actor_id: str | None = None,
        session_id: str | None = None,
        event_type: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 100
    ) -> list[AuditRecord]:
        async with self._session_factory() as session:
            query = select(AuditEventModel)

            conditions = []
            if actor_id:
                conditions.append(AuditEventModel.actor_id == actor_id)
            if session_id:
                conditions.append(AuditEventModel.session_id == session_id)
            if event_type:
                conditions.append(AuditEventModel.event_type == event_type)
            if since:
                conditions.append(AuditEventModel.timestamp >= since)
            if until:
                conditions.append(AuditEventModel.timestamp <= until)

            if conditions:
                query = query.where(and_(*conditions))

            query = query.order_by(AuditEventModel.timestamp.desc()).limit(limit)

            result = await session.execute(query)
            events = list(result.scalars().all())
            events.reverse()  # Return in chronological order

            return [audit_model_to_record(e) for e in events]
