"""
Storage Ports

The external systems the governance core talks to, as async ABCs:
IdentityProvider, GrantSource, AuditSink and AuthenticationEndpoint.
The decision code only sees these interfaces; the gateway receives concrete
adapters in a StorageBundle. Adapters must tolerate concurrent calls from
one event loop.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable
from uuid import UUID

from govgate.access.models import RowSecurityRule
from govgate.identity.models import UserProfile


# =============================================================================
# Identity Provider
# =============================================================================

class IdentityProvider(ABC):
    """
    Resolves opaque user identifiers into profiles, roles and groups.
    """

    @abstractmethod
    async def resolve_user(self, user_id: str) -> UserProfile | None:
        """
        Get a user profile.

        Returns:
            The profile, or None if the user is unknown
        """
        ...

    @abstractmethod
    async def resolve_roles(self, user_id: str) -> list[str]:
        """Role names held by the user."""
        ...

    @abstractmethod
    async def resolve_groups(self, user_id: str) -> list[str]:
        """Group names the user belongs to."""
        ...


# =============================================================================
# Grant Source
# =============================================================================

@dataclass(frozen=True)
class TableGrant:
    """ACL-equivalent grant of one operation on a table to a role."""
    table: str
    operation: str  # "read", "write", "create", "delete"
    role: str


@dataclass(frozen=True)
class FieldGrant:
    """ACL-equivalent grant of one operation on a field to a role."""
    table: str
    field: str
    operation: str  # "read", "write"
    role: str


class GrantSource(ABC):
    """
    Storage interface for role grants and row security rules.
    """

    @abstractmethod
    async def list_table_grants(self, roles: Iterable[str]) -> list[TableGrant]:
        """Table grants held by any of the given roles."""
        ...

    @abstractmethod
    async def list_field_grants(self, roles: Iterable[str]) -> list[FieldGrant]:
        """Field grants held by any of the given roles."""
        ...

    @abstractmethod
    async def list_row_rules(
        self,
        table: str,
        roles: Iterable[str]
    ) -> list[RowSecurityRule]:
        """
        Row security rules for a table bound to any of the given roles.

        Rules are returned in a stable order (by rule_id).
        """
        ...

    @abstractmethod
    async def list_permissions(self, roles: Iterable[str]) -> list[str]:
        """Explicit permission strings (e.g. "export") held by the roles."""
        ...


# =============================================================================
# Audit Sink
# =============================================================================

@dataclass
class AuditRecord:
    """
    Stored audit event.

    This is a storage-level representation, decoupled from the AuditEvent model.
    """
    event_id: UUID
    event_type: str
    timestamp: datetime
    actor_id: str | None
    target: str | None
    decision: str | None
    rationale: list[str]
    session_id: str | None
    ip_address: str | None
    client_id: str | None
    data: dict[str, Any] = field(default_factory=dict)


class AuditSink(ABC):
    """
    Append-only destination for audit events.

    The sink guarantees durability and ordering by timestamp.
    """

    @abstractmethod
    async def append(self, record: AuditRecord) -> None:
        """
        Append an audit event.

        Raises:
            StorageError: If the event could not be persisted
        """
        ...

    @abstractmethod
    async def query(
        self,
        actor_id: str | None = None,
        session_id: str | None = None,
        event_type: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 100
    ) -> list[AuditRecord]:
        """
        Query audit events with filters.

        Returns the most recent `limit` matches, oldest first.
        """
        ...


# =============================================================================
# Authentication Endpoint
# =============================================================================

@dataclass(frozen=True)
class AuthToken:
    """Result of a login or refresh."""
    token: str
    user_id: str
    expires_at: datetime | None = None


class AuthenticationEndpoint(ABC):
    """
    External authentication service.
    """

    @abstractmethod
    async def login(self, credentials: dict[str, Any]) -> AuthToken:
        """
        Authenticate and issue a token.

        Raises:
            AuthenticationFailed: If the credentials are rejected
        """
        ...

    @abstractmethod
    async def refresh(self, token: str) -> AuthToken:
        """Re-issue a token. May return the same token with a new expiry."""
        ...

    @abstractmethod
    async def validate(self, token: str) -> bool:
        """Whether the token is still accepted by the endpoint."""
        ...

    @abstractmethod
    async def logout(self, token: str) -> None:
        """Revoke a token."""
        ...


# =============================================================================
# Storage Bundle
# =============================================================================

@dataclass
class StorageBundle:
    """
    Container for all external adapters.

    Injected into the gateway via dependency inversion.
    """
    identity: IdentityProvider
    grants: GrantSource
    audit: AuditSink
    auth: AuthenticationEndpoint

    async def close(self) -> None:
        """
        Close all storage connections.

        Called during shutdown.
        """
        # Implementations should override to close DB connections, etc.
        pass


# =============================================================================
# Exceptions
# =============================================================================

class StorageError(Exception):
    """Base exception for storage errors."""
    pass


class NotFoundError(StorageError):
    """Record not found."""
    pass


class ConflictError(StorageError):
    """Conflict during write (e.g., duplicate key)."""
    pass


class AuthenticationFailed(StorageError):
    """Credentials rejected by the authentication endpoint."""
    pass
