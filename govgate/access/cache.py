"""
Access Context Cache

Builds and caches one SecurityContext per user.

Build:
1. Profile, roles and groups are fetched concurrently from the identity provider
2. Table grants, field grants and explicit permissions are fetched concurrently
   from the grant source
3. Grants are folded into per-table / per-field access maps (union of roles)

Caching is stale-while-valid: an entry younger than the TTL is returned as-is,
there is no background refresh. Concurrent misses for the same user share one
in-flight build. An invalidation that lands while a build is in flight bumps
the user's generation, so the stale build is returned to its waiters but never
cached.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, TYPE_CHECKING

from govgate.access.models import (
    FieldAccess,
    Operation,
    SecurityContext,
    TableAccess,
    field_key,
)
from govgate.clock import Clock, utcnow
from govgate.errors import IdentityResolutionError

if TYPE_CHECKING:
    from govgate.storage.ports import FieldGrant, GrantSource, IdentityProvider, TableGrant

logger = logging.getLogger(__name__)


DEFAULT_CONTEXT_TTL_SECONDS = 900


# =============================================================================
# Access map construction
# =============================================================================

def build_table_access(
    grants: Iterable[TableGrant],
    roles: Iterable[str]
) -> dict[str, TableAccess]:
    """
    Fold table grants into TableAccess per table.

    Grants for roles the user does not hold are ignored. Each grant can only
    switch an operation on.
    """
    held = set(roles)
    operations: dict[str, set[Operation]] = {}

    for grant in grants:
        if grant.role not in held:
            continue
        try:
            op = Operation(grant.operation)
        except ValueError:
            logger.warning(
                f"Ignoring table grant with unknown operation "
                f"{grant.operation!r} on {grant.table}"
            )
            continue
        operations.setdefault(grant.table, set()).add(op)

    return {
        table: TableAccess.from_operations(ops)
        for table, ops in operations.items()
    }


def build_field_access(
    grants: Iterable[FieldGrant],
    roles: Iterable[str]
) -> dict[str, FieldAccess]:
    """Fold field grants into FieldAccess keyed "table.field"."""
    held = set(roles)
    flags: dict[str, dict[str, bool]] = {}

    for grant in grants:
        if grant.role not in held:
            continue
        if grant.operation not in ("read", "write"):
            logger.warning(
                f"Ignoring field grant with unknown operation "
                f"{grant.operation!r} on {grant.table}.{grant.field}"
            )
            continue
        key = field_key(grant.table, grant.field)
        flags.setdefault(key, {"read": False, "write": False})[grant.operation] = True

    return {key: FieldAccess(**ops) for key, ops in flags.items()}


def derive_permissions(
    explicit: Iterable[str],
    table_access: dict[str, TableAccess]
) -> frozenset[str]:
    """Explicit permissions plus one "table.operation" string per table grant."""
    derived = {
        f"{table}.{op}"
        for table, access in table_access.items()
        for op in access.operations()
    }
    return frozenset(explicit) | derived


# =============================================================================
# Cache
# =============================================================================

@dataclass
class _CacheEntry:
    context: SecurityContext
    expires_at: datetime


class AccessContextCache:
    """
    Owns the context-by-user map.

    No lock spans users; the only shared state per user is the cache entry,
    the in-flight build and the generation counter.
    """

    def __init__(
        self,
        identity: IdentityProvider,
        grants: GrantSource,
        ttl_seconds: float = DEFAULT_CONTEXT_TTL_SECONDS,
        admin_role: str = "admin",
        clock: Clock = utcnow,
    ):
        """
        Initialize the cache.

        Args:
            identity: Identity provider adapter
            grants: Grant source adapter
            ttl_seconds: How long a built context stays valid
            admin_role: Role name that bypasses every access check
            clock: Time source
        """
        self._identity = identity
        self._grants = grants
        self._ttl = timedelta(seconds=ttl_seconds)
        self._admin_role = admin_role
        self._clock = clock

        self._entries: dict[str, _CacheEntry] = {}
        self._inflight: dict[str, asyncio.Task] = {}
        self._generation: dict[str, int] = {}

    async def get_context(self, user_id: str) -> SecurityContext:
        """
        Get the security context for a user, building it on a miss.

        Raises:
            IdentityResolutionError: If the user cannot be resolved
        """
        entry = self._entries.get(user_id)
        if entry is not None:
            if self._clock() < entry.expires_at:
                return entry.context
            del self._entries[user_id]
            logger.debug(f"Security context for {user_id} expired")

        task = self._inflight.get(user_id)
        if task is None:
            generation = self._generation.get(user_id, 0)
            task = asyncio.ensure_future(self._load(user_id, generation))
            self._inflight[user_id] = task

        # A cancelled waiter must not cancel the build other waiters share
        return await asyncio.shield(task)

    async def invalidate(self, user_id: str) -> bool:
        """
        Evict a user's context (role or permission change, logout).

        Returns:
            True if a cached entry was removed
        """
        self._generation[user_id] = self._generation.get(user_id, 0) + 1
        self._inflight.pop(user_id, None)
        removed = self._entries.pop(user_id, None) is not None
        if removed:
            logger.info(f"Security context invalidated for {user_id}")
        return removed

    def clear(self) -> None:
        """Drop every cached context."""
        for user_id in list(self._inflight):
            self._generation[user_id] = self._generation.get(user_id, 0) + 1
        self._inflight.clear()
        self._entries.clear()

    def is_cached(self, user_id: str) -> bool:
        entry = self._entries.get(user_id)
        return entry is not None and self._clock() < entry.expires_at

    @property
    def size(self) -> int:
        """Number of cached contexts (including not yet evicted stale ones)."""
        return len(self._entries)

    async def _load(self, user_id: str, generation: int) -> SecurityContext:
        try:
            context = await self.build_context(user_id)
            if self._generation.get(user_id, 0) == generation:
                self._entries[user_id] = _CacheEntry(
                    context=context,
                    expires_at=context.last_validated + self._ttl,
                )
            else:
                logger.debug(
                    f"Discarding security context for {user_id}: "
                    f"invalidated during build"
                )
            return context
        finally:
            if self._inflight.get(user_id) is asyncio.current_task():
                del self._inflight[user_id]

    async def build_context(self, user_id: str) -> SecurityContext:
        """
        Build a fresh context without touching the cache.

        Raises:
            IdentityResolutionError: On unknown or inactive users, or when
                either collaborator fails
        """
        try:
            profile, roles, groups = await asyncio.gather(
                self._identity.resolve_user(user_id),
                self._identity.resolve_roles(user_id),
                self._identity.resolve_groups(user_id),
            )
        except IdentityResolutionError:
            raise
        except Exception as e:
            raise IdentityResolutionError(user_id, f"identity provider failed: {e}") from e

        if profile is None:
            raise IdentityResolutionError(user_id, "unknown user", not_found=True)
        if not profile.active:
            raise IdentityResolutionError(user_id, "user is inactive", not_found=True)

        role_set = frozenset(roles)

        try:
            table_grants, field_grants, explicit = await asyncio.gather(
                self._grants.list_table_grants(role_set),
                self._grants.list_field_grants(role_set),
                self._grants.list_permissions(role_set),
            )
        except Exception as e:
            raise IdentityResolutionError(user_id, f"grant source failed: {e}") from e

        table_access = build_table_access(table_grants, role_set)
        field_access = build_field_access(field_grants, role_set)

        context = SecurityContext(
            user=profile,
            roles=role_set,
            groups=frozenset(groups),
            permissions=derive_permissions(explicit, table_access),
            table_access=table_access,
            field_access=field_access,
            is_admin=self._admin_role in role_set,
            last_validated=self._clock(),
        )

        logger.debug(
            f"Built security context for {user_id} "
            f"(roles: {sorted(role_set)}, tables: {len(table_access)}, "
            f"admin: {context.is_admin})"
        )
        return context
