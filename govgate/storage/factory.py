"""
Storage Factory

Builds the StorageBundle the gateway runs on from GOV_* settings.

Backends:
- memory: process-local adapters, lost on restart
- sqlite: aiosqlite, one node
- postgresql: asyncpg, shared by several gateway nodes
- mysql: aiomysql, shared by several gateway nodes

GOV_REDIS_URL moves the audit trail to a Redis sorted set whatever the
backend. The authentication endpoint is an external service, so its adapter
is passed to create_storage(); the in-memory endpoint stands in otherwise.

Usage:
    bundle = await create_storage_from_env()

    settings = StorageSettings(database_url="postgresql+asyncpg://gov@db/gov")
    bundle = await create_storage(settings, auth=my_auth_adapter)

    gateway = GovernanceGateway(bundle)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from .memory import (
    InMemoryAuditSink,
    InMemoryAuthEndpoint,
    InMemoryGrantSource,
    InMemoryIdentityProvider,
)
from .models import Base
from .ports import (
    AuditSink,
    AuthenticationEndpoint,
    GrantSource,
    IdentityProvider,
    StorageBundle,
)
from .sqlalchemy import (
    SqlAlchemyAuditSink,
    SqlAlchemyGrantSource,
    SqlAlchemyIdentityProvider,
)

logger = logging.getLogger(__name__)


class StorageBackend(str, Enum):
    MEMORY = "memory"
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"


# URL scheme prefix -> (backend, async driver scheme)
_SCHEMES: dict[str, tuple[StorageBackend, str]] = {
    "sqlite": (StorageBackend.SQLITE, "sqlite+aiosqlite"),
    "postgresql": (StorageBackend.POSTGRESQL, "postgresql+asyncpg"),
    "postgres": (StorageBackend.POSTGRESQL, "postgresql+asyncpg"),
    "mysql": (StorageBackend.MYSQL, "mysql+aiomysql"),
}


@dataclass
class StorageSettings:
    """
    Where identity, grants and the audit trail live.

    Attributes:
        backend: Which adapters to build
        database_url: SQLAlchemy URL; required by every SQL backend
        redis_url: Optional Redis URL for the audit trail
        pool_size: SQL connection pool size (ignored by sqlite)
        pool_max_overflow: Connections allowed above pool_size
        echo_sql: Log every statement
        create_tables: Create missing tables at startup
        key_prefix: Redis key namespace, one per gateway deployment
        audit_max_events: Events the Redis audit set keeps before trimming
    """
    backend: StorageBackend = StorageBackend.MEMORY
    database_url: str | None = None
    redis_url: str | None = None
    pool_size: int = 5
    pool_max_overflow: int = 10
    echo_sql: bool = False
    create_tables: bool = True
    key_prefix: str = "gov"
    audit_max_events: int = 1_000_000


@dataclass
class StorageBundleImpl(StorageBundle):
    """Bundle that owns the engine and Redis client it was built with."""
    identity: IdentityProvider
    grants: GrantSource
    audit: AuditSink
    auth: AuthenticationEndpoint
    _engine: AsyncEngine | None = field(default=None, repr=False)
    _redis: Any = field(default=None, repr=False)  # redis.asyncio.Redis

    async def close(self) -> None:
        if self._engine:
            await self._engine.dispose()
        if self._redis:
            await self._redis.aclose()


def _scheme_of(url: str) -> str:
    return url.split("://", 1)[0].split("+", 1)[0]


def _backend_for_url(url: str) -> StorageBackend:
    scheme = _scheme_of(url)
    if scheme not in _SCHEMES:
        raise ValueError(f"No storage backend for database URL scheme {scheme!r}")
    return _SCHEMES[scheme][0]


def _with_async_driver(url: str) -> str:
    """Swap a bare scheme for its async driver; explicit drivers are kept."""
    head, sep, rest = url.partition("://")
    if "+" in head or head not in _SCHEMES:
        return url
    return f"{_SCHEMES[head][1]}{sep}{rest}"


def settings_from_env() -> StorageSettings:
    """
    Read StorageSettings from GOV_* environment variables.

    GOV_STORAGE_BACKEND picks the backend. When it is unset or "memory" and
    GOV_DATABASE_URL is present, the backend follows the URL scheme.

    Also read: GOV_REDIS_URL, GOV_POOL_SIZE, GOV_POOL_MAX_OVERFLOW,
    GOV_ECHO_SQL, GOV_CREATE_TABLES, GOV_KEY_PREFIX, GOV_AUDIT_MAX_EVENTS.
    """
    database_url = os.getenv("GOV_DATABASE_URL")
    requested = os.getenv("GOV_STORAGE_BACKEND", StorageBackend.MEMORY.value)

    if database_url and requested == StorageBackend.MEMORY.value:
        backend = _backend_for_url(database_url)
    else:
        backend = StorageBackend(requested)

    return StorageSettings(
        backend=backend,
        database_url=database_url,
        redis_url=os.getenv("GOV_REDIS_URL"),
        pool_size=int(os.getenv("GOV_POOL_SIZE", "5")),
        pool_max_overflow=int(os.getenv("GOV_POOL_MAX_OVERFLOW", "10")),
        echo_sql=os.getenv("GOV_ECHO_SQL", "").lower() == "true",
        create_tables=os.getenv("GOV_CREATE_TABLES", "true").lower() != "false",
        key_prefix=os.getenv("GOV_KEY_PREFIX", "gov"),
        audit_max_events=int(os.getenv("GOV_AUDIT_MAX_EVENTS", "1000000")),
    )


def _create_engine(settings: StorageSettings) -> AsyncEngine:
    if not settings.database_url:
        raise ValueError(f"GOV_DATABASE_URL is required for the {settings.backend.value} backend")

    url = _with_async_driver(settings.database_url)

    if settings.backend == StorageBackend.SQLITE:
        # aiosqlite manages its own connection; pool sizing does not apply
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.endswith("://") or url.endswith(":///"):
            kwargs["poolclass"] = StaticPool
        return create_async_engine(url, echo=settings.echo_sql, **kwargs)

    return create_async_engine(
        url,
        pool_size=settings.pool_size,
        max_overflow=settings.pool_max_overflow,
        echo=settings.echo_sql,
    )


async def create_storage(
    settings: StorageSettings,
    auth: AuthenticationEndpoint | None = None,
) -> StorageBundle:
    """
    Build the adapters described by settings.

    Args:
        settings: Backend and connection settings
        auth: Adapter for the external authentication endpoint

    Raises:
        ValueError: If a SQL backend has no database URL or an unknown scheme
    """
    engine: AsyncEngine | None = None
    redis_client: Any = None

    if settings.backend == StorageBackend.MEMORY:
        identity: IdentityProvider = InMemoryIdentityProvider()
        grants: GrantSource = InMemoryGrantSource()
        audit: AuditSink = InMemoryAuditSink()
    else:
        engine = _create_engine(settings)

        if settings.create_tables:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        sessions = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        identity = SqlAlchemyIdentityProvider(sessions)
        grants = SqlAlchemyGrantSource(sessions)
        audit = SqlAlchemyAuditSink(sessions)

    if settings.redis_url:
        from redis.asyncio import Redis
        from .redis import RedisAuditSink

        redis_client = Redis.from_url(settings.redis_url, decode_responses=False)
        audit = RedisAuditSink(
            redis=redis_client,
            key_prefix=settings.key_prefix,
            max_events=settings.audit_max_events,
        )

    logger.info(
        f"Storage ready (backend: {settings.backend.value}, "
        f"audit: {type(audit).__name__})"
    )

    return StorageBundleImpl(
        identity=identity,
        grants=grants,
        audit=audit,
        auth=auth or InMemoryAuthEndpoint(),
        _engine=engine,
        _redis=redis_client,
    )


async def create_storage_from_env(
    auth: AuthenticationEndpoint | None = None,
) -> StorageBundle:
    return await create_storage(settings_from_env(), auth=auth)


async def create_memory_storage() -> StorageBundle:
    return await create_storage(StorageSettings())


async def create_sqlite_storage(
    path: str = ":memory:",
    create_tables: bool = True,
) -> StorageBundle:
    """SQLite bundle on a file path, or in memory by default."""
    return await create_storage(StorageSettings(
        backend=StorageBackend.SQLITE,
        database_url=f"sqlite+aiosqlite:///{path}",
        create_tables=create_tables,
    ))
