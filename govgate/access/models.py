"""
Access Models

Derived access maps and the per-user SecurityContext.

TableAccess and FieldAccess are computed as the union of every role grant
for the key. A role can only add permissions, never revoke them.

A SecurityContext is owned by the AccessContextCache. Consumers receive it
as a frozen snapshot with read-only mappings.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from govgate.identity.models import UserProfile


RESTRICTED = "[restricted]"

# Permission strings that unlock capabilities
EXPORT_PERMISSION = "export"
BULK_UPDATE_PERMISSION = "bulk_update"


class Operation(str, Enum):
    """Record operations gated by the engine."""
    READ = "read"
    WRITE = "write"
    CREATE = "create"
    DELETE = "delete"

    @property
    def is_mutation(self) -> bool:
        return self is not Operation.READ


@dataclass(frozen=True)
class TableAccess:
    """Table-level grants for one user."""
    read: bool = False
    write: bool = False
    delete: bool = False
    create: bool = False

    @classmethod
    def from_operations(cls, operations: Iterable[Operation]) -> "TableAccess":
        ops = set(operations)
        return cls(
            read=Operation.READ in ops,
            write=Operation.WRITE in ops,
            delete=Operation.DELETE in ops,
            create=Operation.CREATE in ops,
        )

    def allows(self, operation: Operation | str) -> bool:
        return bool(getattr(self, Operation(operation).value))

    def operations(self) -> list[str]:
        return [op.value for op in Operation if self.allows(op)]


@dataclass(frozen=True)
class FieldAccess:
    """Field-level grants for one user."""
    read: bool = False
    write: bool = False

    def allows(self, operation: Operation | str) -> bool:
        op = Operation(operation)
        if op is Operation.READ:
            return self.read
        # create/write/delete of a field value all require write
        return self.write


NO_TABLE_ACCESS = TableAccess()
NO_FIELD_ACCESS = FieldAccess()


@dataclass(frozen=True)
class RowSecurityRule:
    """
    A row condition template bound to a set of roles.

    Applicable only when the acting user holds at least one listed role.
    """
    rule_id: str
    table: str
    condition: str
    roles: frozenset[str] = frozenset()
    description: str = ""

    def applies_to(self, roles: Iterable[str]) -> bool:
        return bool(self.roles & set(roles))


@dataclass(frozen=True)
class FieldValue:
    """A record field carrying both its stored and its display value."""
    raw_value: Any
    display_value: Any = None

    @classmethod
    def restricted(cls) -> "FieldValue":
        return cls(raw_value=RESTRICTED, display_value=RESTRICTED)

    @property
    def is_restricted(self) -> bool:
        return self.raw_value == RESTRICTED and self.display_value == RESTRICTED


@dataclass(frozen=True)
class Capabilities:
    """Coarse capabilities surfaced to presentation layers."""
    can_export: bool = False
    can_bulk_update: bool = False
    max_export_records: int = 0


def field_key(table: str, field_name: str) -> str:
    return f"{table}.{field_name}"


@dataclass(frozen=True)
class SecurityContext:
    """
    Everything the decision engines need to know about one user.

    Invariant: is_admin makes every table/field check pass without lookup.
    """
    user: UserProfile
    roles: frozenset[str]
    groups: frozenset[str]
    permissions: frozenset[str]
    table_access: Mapping[str, TableAccess]
    field_access: Mapping[str, FieldAccess]
    is_admin: bool
    last_validated: datetime

    def __post_init__(self) -> None:
        # Freeze the maps so cached contexts cannot be altered by consumers
        if not isinstance(self.table_access, MappingProxyType):
            object.__setattr__(self, "table_access", MappingProxyType(dict(self.table_access)))
        if not isinstance(self.field_access, MappingProxyType):
            object.__setattr__(self, "field_access", MappingProxyType(dict(self.field_access)))

    @property
    def user_id(self) -> str:
        return self.user.user_id

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_permission(self, permission: str) -> bool:
        return self.is_admin or permission in self.permissions

    def table(self, table: str) -> TableAccess:
        """Access for a table. Tables without grants are all-false."""
        return self.table_access.get(table, NO_TABLE_ACCESS)

    def field(self, table: str, field_name: str) -> FieldAccess:
        """Access for a field. Fields without grants are denied."""
        return self.field_access.get(field_key(table, field_name), NO_FIELD_ACCESS)

    def capabilities(self, max_export_records: int = 1000) -> Capabilities:
        can_export = self.has_permission(EXPORT_PERMISSION)
        return Capabilities(
            can_export=can_export,
            can_bulk_update=self.has_permission(BULK_UPDATE_PERMISSION),
            max_export_records=max_export_records if can_export else 0,
        )

    def to_snapshot(self) -> dict[str, Any]:
        """JSON-safe serialization for transport or storage."""
        return {
            "user": self.user.model_dump(),
            "roles": sorted(self.roles),
            "groups": sorted(self.groups),
            "permissions": sorted(self.permissions),
            "table_access": {
                table: access.operations()
                for table, access in sorted(self.table_access.items())
            },
            "field_access": {
                key: {"read": access.read, "write": access.write}
                for key, access in sorted(self.field_access.items())
            },
            "is_admin": self.is_admin,
            "last_validated": self.last_validated.isoformat(),
        }
