# Storage Layer
# Adapters for the external systems the governance core depends on
#
# This module provides:
# - Port interfaces (ABCs) for identity, grants, audit and authentication
# - In-memory implementations for development/testing
# - SQLAlchemy implementations for production persistence
# - Redis audit sink for shared high-throughput audit
# - Factory for configuration-based adapter selection

from .ports import (
    IdentityProvider,
    GrantSource,
    TableGrant,
    FieldGrant,
    AuditSink,
    AuditRecord,
    AuthenticationEndpoint,
    AuthToken,
    StorageBundle,
    StorageError,
    NotFoundError,
    ConflictError,
    AuthenticationFailed,
)
from .memory import (
    InMemoryIdentityProvider,
    InMemoryGrantSource,
    InMemoryAuditSink,
    InMemoryAuthEndpoint,
)
from .factory import (
    StorageSettings,
    StorageBackend,
    create_storage,
    create_storage_from_env,
    create_memory_storage,
    create_sqlite_storage,
    settings_from_env,
)

__all__ = [
    # Ports
    "IdentityProvider",
    "GrantSource",
    "TableGrant",
    "FieldGrant",
    "AuditSink",
    "AuditRecord",
    "AuthenticationEndpoint",
    "AuthToken",
    "StorageBundle",
    "StorageError",
    "NotFoundError",
    "ConflictError",
    "AuthenticationFailed",
    # In-memory
    "InMemoryIdentityProvider",
    "InMemoryGrantSource",
    "InMemoryAuditSink",
    "InMemoryAuthEndpoint",
    # Factory
    "StorageSettings",
    "StorageBackend",
    "create_storage",
    "create_storage_from_env",
    "create_memory_storage",
    "create_sqlite_storage",
    "settings_from_env",
]
