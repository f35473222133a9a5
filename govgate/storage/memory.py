"""
In-Memory Storage Adapters

Dictionary-backed adapters guarded by asyncio locks. Nothing survives a
restart. Used by the tests, local runs and single-node deployments that
seed users and grants at startup.
"""

import asyncio
import bisect
import secrets
from datetime import datetime
from typing import Any, Iterable

from govgate.access.models import RowSecurityRule
from govgate.identity.models import UserProfile
from govgate.storage.ports import (
    AuditRecord,
    AuditSink,
    AuthToken,
    AuthenticationEndpoint,
    AuthenticationFailed,
    FieldGrant,
    GrantSource,
    IdentityProvider,
    NotFoundError,
    TableGrant,
)


class InMemoryIdentityProvider(IdentityProvider):
    """
    In-memory user directory.
    """

    def __init__(self):
        self._users: dict[str, UserProfile] = {}
        self._roles: dict[str, list[str]] = {}
        self._groups: dict[str, list[str]] = {}
        self._lock = asyncio.Lock()

    async def add_user(
        self,
        profile: UserProfile,
        roles: Iterable[str] = (),
        groups: Iterable[str] = ()
    ) -> UserProfile:
        async with self._lock:
            self._users[profile.user_id] = profile
            self._roles[profile.user_id] = list(dict.fromkeys(roles))
            self._groups[profile.user_id] = list(dict.fromkeys(groups))
            return profile

    async def set_roles(self, user_id: str, roles: Iterable[str]) -> None:
        async with self._lock:
            if user_id not in self._users:
                raise NotFoundError(f"User {user_id} not found")
            self._roles[user_id] = list(dict.fromkeys(roles))

    async def resolve_user(self, user_id: str) -> UserProfile | None:
        async with self._lock:
            return self._users.get(user_id)

    async def resolve_roles(self, user_id: str) -> list[str]:
        async with self._lock:
            return list(self._roles.get(user_id, []))

    async def resolve_groups(self, user_id: str) -> list[str]:
        async with self._lock:
            return list(self._groups.get(user_id, []))


class InMemoryGrantSource(GrantSource):
    """
    In-memory ACL-equivalent grants, permissions and row rules.
    """

    def __init__(self):
        self._table_grants: set[TableGrant] = set()
        self._field_grants: set[FieldGrant] = set()
        self._permissions: dict[str, set[str]] = {}
        self._row_rules: dict[str, RowSecurityRule] = {}
        self._lock = asyncio.Lock()

    async def grant_table(self, table: str, operation: str, role: str) -> TableGrant:
        grant = TableGrant(table=table, operation=operation, role=role)
        async with self._lock:
            self._table_grants.add(grant)
        return grant

    async def grant_field(self, table: str, field: str, operation: str, role: str) -> FieldGrant:
        grant = FieldGrant(table=table, field=field, operation=operation, role=role)
        async with self._lock:
            self._field_grants.add(grant)
        return grant

    async def grant_permission(self, role: str, permission: str) -> None:
        async with self._lock:
            self._permissions.setdefault(role, set()).add(permission)

    async def add_row_rule(self, rule: RowSecurityRule) -> RowSecurityRule:
        async with self._lock:
            self._row_rules[rule.rule_id] = rule
            return rule

    async def revoke_table(self, table: str, operation: str, role: str) -> bool:
        grant = TableGrant(table=table, operation=operation, role=role)
        async with self._lock:
            if grant in self._table_grants:
                self._table_grants.discard(grant)
                return True
            return False

    async def list_table_grants(self, roles: Iterable[str]) -> list[TableGrant]:
        wanted = set(roles)
        async with self._lock:
            return sorted(
                (g for g in self._table_grants if g.role in wanted),
                key=lambda g: (g.table, g.operation, g.role),
            )

    async def list_field_grants(self, roles: Iterable[str]) -> list[FieldGrant]:
        wanted = set(roles)
        async with self._lock:
            return sorted(
                (g for g in self._field_grants if g.role in wanted),
                key=lambda g: (g.table, g.field, g.operation, g.role),
            )

    async def list_row_rules(self, table: str, roles: Iterable[str]) -> list[RowSecurityRule]:
        wanted = set(roles)
        async with self._lock:
            return [
                rule for _, rule in sorted(self._row_rules.items())
                if rule.table == table and rule.roles & wanted
            ]

    async def list_permissions(self, roles: Iterable[str]) -> list[str]:
        async with self._lock:
            found: set[str] = set()
            for role in roles:
                found |= self._permissions.get(role, set())
            return sorted(found)


class InMemoryAuditSink(AuditSink):
    """
    In-memory append-only audit sink.

    Records are kept ordered by timestamp.
    """

    def __init__(self, max_events: int = 100000):
        self._records: list[AuditRecord] = []
        self._keys: list[datetime] = []
        self._max_events = max_events
        self._lock = asyncio.Lock()

    async def append(self, record: AuditRecord) -> None:
        async with self._lock:
            idx = bisect.bisect_right(self._keys, record.timestamp)
            self._keys.insert(idx, record.timestamp)
            self._records.insert(idx, record)

            # Evict oldest if over limit
            if len(self._records) > self._max_events:
                to_remove = self._max_events // 10
                del self._records[:to_remove]
                del self._keys[:to_remove]

    async def query(
        self,
        actor_id: str | None = None,
        session_id: str | None = None,
        event_type: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 100
    ) -> list[AuditRecord]:
        async with self._lock:
            results = []
            for record in self._records:
                if actor_id and record.actor_id != actor_id:
                    continue
                if session_id and record.session_id != session_id:
                    continue
                if event_type and record.event_type != event_type:
                    continue
                if since and record.timestamp < since:
                    continue
                if until and record.timestamp > until:
                    continue
                results.append(record)
            return results[-limit:] if limit else []

    @property
    def count(self) -> int:
        return len(self._records)


class InMemoryAuthEndpoint(AuthenticationEndpoint):
    """
    In-memory authentication endpoint with username/password accounts.

    Tokens are opaque random strings. Refresh rotates the token when
    rotate_on_refresh is set.
    """

    def __init__(self, rotate_on_refresh: bool = False):
        self._accounts: dict[str, tuple[str, str]] = {}  # username -> (password, user_id)
        self._tokens: dict[str, str] = {}  # token -> user_id
        self._rotate = rotate_on_refresh
        self._lock = asyncio.Lock()

    async def add_account(self, username: str, password: str, user_id: str | None = None) -> None:
        async with self._lock:
            self._accounts[username] = (password, user_id or username)

    async def revoke(self, token: str) -> None:
        """Revoke a token out-of-band (admin action, password reset)."""
        async with self._lock:
            self._tokens.pop(token, None)

    async def login(self, credentials: dict[str, Any]) -> AuthToken:
        username = credentials.get("username", "")
        password = credentials.get("password", "")
        async with self._lock:
            account = self._accounts.get(username)
            if account is None or not secrets.compare_digest(account[0], password):
                raise AuthenticationFailed(f"Invalid credentials for {username!r}")
            token = secrets.token_urlsafe(32)
            self._tokens[token] = account[1]
            return AuthToken(token=token, user_id=account[1])

    async def refresh(self, token: str) -> AuthToken:
        async with self._lock:
            user_id = self._tokens.get(token)
            if user_id is None:
                raise AuthenticationFailed("Token is not active")
            if not self._rotate:
                return AuthToken(token=token, user_id=user_id)
            del self._tokens[token]
            new_token = secrets.token_urlsafe(32)
            self._tokens[new_token] = user_id
            return AuthToken(token=new_token, user_id=user_id)

    async def validate(self, token: str) -> bool:
        async with self._lock:
            return token in self._tokens

    async def logout(self, token: str) -> None:
        async with self._lock:
            self._tokens.pop(token, None)

