"""
Test Configuration and Fixtures

Shared fixtures for the governance gateway tests.
Provides a controllable clock, in-memory adapters seeded with a small
directory, and wired session / audit / decision components.
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from govgate.access.cache import (
    AccessContextCache,
    build_field_access,
    build_table_access,
    derive_permissions,
)
from govgate.access.engine import AccessDecisionEngine
from govgate.access.models import RowSecurityRule, SecurityContext
from govgate.audit.logger import AuditLogger
from govgate.identity.models import UserProfile
from govgate.policy.governance import GovernanceDecisionEngine
from govgate.session.manager import SessionManager
from govgate.session.scheduler import ManualScheduler
from govgate.storage.memory import (
    InMemoryAuditSink,
    InMemoryAuthEndpoint,
    InMemoryGrantSource,
    InMemoryIdentityProvider,
)
from govgate.storage.ports import FieldGrant, StorageBundle, TableGrant


T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, moment: datetime) -> datetime:
        self.now = moment
        return self.now


def make_context(
    user_id: str = "u1",
    roles: tuple[str, ...] = (),
    table_grants: list[TableGrant] | None = None,
    field_grants: list[FieldGrant] | None = None,
    permissions: tuple[str, ...] = (),
    is_admin: bool = False,
    department: str | None = None,
) -> SecurityContext:
    """Build a SecurityContext directly, without a cache or adapters."""
    role_set = frozenset(roles)
    table_access = build_table_access(table_grants or [], role_set)
    return SecurityContext(
        user=UserProfile(user_id=user_id, display_name=user_id.upper(), department=department),
        roles=role_set,
        groups=frozenset(),
        permissions=derive_permissions(permissions, table_access),
        table_access=table_access,
        field_access=build_field_access(field_grants or [], role_set),
        is_admin=is_admin,
        last_validated=T0,
    )


# ==================== Clock / Scheduler ====================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


# ==================== Adapters ====================


@pytest.fixture
def identity() -> InMemoryIdentityProvider:
    return InMemoryIdentityProvider()


@pytest.fixture
def grants() -> InMemoryGrantSource:
    return InMemoryGrantSource()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def auth() -> InMemoryAuthEndpoint:
    return InMemoryAuthEndpoint()


@pytest.fixture
def bundle(identity, grants, audit_sink, auth) -> StorageBundle:
    return StorageBundle(identity=identity, grants=grants, audit=audit_sink, auth=auth)


async def seed_directory(identity, grants, auth) -> None:
    """
    Seed a small directory.

    - u1: itil agent in Support, reads/writes incidents, sees own cases
    - ro: read_only on orders
    - root: admin, with a login like u1 and ro
    - gone: inactive user
    """
    await identity.add_user(
        UserProfile(user_id="u1", display_name="Ana", department="Support"),
        roles=["itil"],
        groups=["service-desk"],
    )
    await identity.add_user(UserProfile(user_id="ro", display_name="Reader"), roles=["read_only"])
    await identity.add_user(UserProfile(user_id="root", display_name="Root"), roles=["admin"])
    await identity.add_user(UserProfile(user_id="gone", active=False), roles=["itil"])

    await grants.grant_table("incident", "read", "itil")
    await grants.grant_table("incident", "write", "itil")
    await grants.grant_table("cases", "read", "itil")
    await grants.grant_table("orders", "read", "read_only")
    await grants.grant_field("incident", "short_description", "read", "itil")
    await grants.grant_field("incident", "short_description", "write", "itil")
    await grants.grant_field("incident", "state", "read", "itil")
    await grants.add_row_rule(RowSecurityRule(
        rule_id="cases-own",
        table="cases",
        condition="assigned_to = ${user.id}",
        roles=frozenset({"itil"}),
    ))

    await auth.add_account("ana", "s3cret", user_id="u1")
    await auth.add_account("reader", "r3ad", user_id="ro")
    await auth.add_account("root", "r00t", user_id="root")


@pytest_asyncio.fixture
async def directory(identity, grants, auth):
    await seed_directory(identity, grants, auth)
    return identity


# ==================== Components ====================


@pytest.fixture
def audit_logger(audit_sink) -> AuditLogger:
    return AuditLogger(sink=audit_sink)


@pytest.fixture
def sessions(auth, audit_logger, clock, scheduler) -> SessionManager:
    return SessionManager(
        auth=auth,
        audit=audit_logger,
        clock=clock,
        scheduler=scheduler,
    )


@pytest.fixture
def context_cache(identity, grants, clock) -> AccessContextCache:
    return AccessContextCache(identity=identity, grants=grants, clock=clock)


@pytest.fixture
def access_engine(grants) -> AccessDecisionEngine:
    return AccessDecisionEngine(grants)


@pytest.fixture
def governance(access_engine, sessions, audit_logger, clock) -> GovernanceDecisionEngine:
    return GovernanceDecisionEngine(
        access=access_engine,
        sessions=sessions,
        audit=audit_logger,
        clock=clock,
    )
