"""
Access Decision Engine

Answers table, field and row questions against a SecurityContext.

Table and field checks are fail-closed: a missing grant is a denial. Row
rules are additive filters: when no rule applies, the caller's base filter is
returned unchanged. Admins bypass all three.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, TYPE_CHECKING

from govgate.access.models import (
    FieldValue,
    Operation,
    RESTRICTED,
    RowSecurityRule,
    SecurityContext,
    field_key,
)
from govgate.access.rowfilter import (
    RowRuleCombination,
    combine,
    evaluate,
    render_condition,
)
from govgate.errors import AccessDenied

if TYPE_CHECKING:
    from govgate.storage.ports import GrantSource

logger = logging.getLogger(__name__)


class AccessDecisionEngine:
    """
    Table, field and row level access checks.

    Stateless apart from its grant source; safe to share across requests.
    """

    def __init__(
        self,
        grants: GrantSource,
        combination: RowRuleCombination = RowRuleCombination.ANY,
        always_visible_fields: Iterable[str] = ("sys_id",),
    ):
        """
        Args:
            grants: Source of row security rules
            combination: How multiple applicable row rules combine
            always_visible_fields: Record keys that are never masked
        """
        self._grants = grants
        self._combination = RowRuleCombination(combination)
        self._always_visible = frozenset(always_visible_fields)

    @property
    def combination(self) -> RowRuleCombination:
        return self._combination

    # ===== Table / field =====

    def can_access_table(
        self,
        context: SecurityContext,
        table: str,
        operation: Operation | str
    ) -> bool:
        if context.is_admin:
            return True
        return context.table(table).allows(operation)

    def check_table(
        self,
        context: SecurityContext,
        table: str,
        operation: Operation | str
    ) -> None:
        """
        Raises:
            AccessDenied: If the user holds no grant for the operation
        """
        op = Operation(operation)
        if not self.can_access_table(context, table, op):
            logger.warning(f"Table access denied: {context.user_id} {op.value} {table}")
            raise AccessDenied(table, op.value)

    def can_access_field(
        self,
        context: SecurityContext,
        table: str,
        field_name: str,
        operation: Operation | str
    ) -> bool:
        if context.is_admin:
            return True
        return context.field(table, field_name).allows(operation)

    def check_field(
        self,
        context: SecurityContext,
        table: str,
        field_name: str,
        operation: Operation | str
    ) -> None:
        """
        Raises:
            AccessDenied: With resource "table.field"
        """
        op = Operation(operation)
        if not self.can_access_field(context, table, field_name, op):
            resource = field_key(table, field_name)
            logger.warning(f"Field access denied: {context.user_id} {op.value} {resource}")
            raise AccessDenied(resource, op.value)

    # ===== Rows =====

    async def applicable_rules(
        self,
        context: SecurityContext,
        table: str
    ) -> list[RowSecurityRule]:
        """Row rules for the table whose role set intersects the user's roles."""
        rules = await self._grants.list_row_rules(table, context.roles)
        return [
            rule for rule in rules
            if rule.table == table and rule.applies_to(context.roles)
        ]

    async def build_row_filter(
        self,
        context: SecurityContext,
        table: str,
        base_filter: str | None = None
    ) -> str | None:
        """
        Build the row filter for a query on a table.

        Raises:
            RowRuleTemplateError: If a rule uses an unknown placeholder
        """
        if context.is_admin:
            return base_filter

        rules = await self.applicable_rules(context, table)
        if not rules:
            return base_filter

        values = context.user.placeholder_values()
        conditions = [render_condition(rule.condition, values) for rule in rules]
        return combine(conditions, base_filter, self._combination)

    async def check_row(
        self,
        context: SecurityContext,
        table: str,
        row: Mapping[str, Any]
    ) -> None:
        """
        Check a targeted record against the applicable row rules.

        The record is denied only when the evaluable rules alone place it
        outside the row filter built for the same user and table. With OR
        that means every rule was evaluated and rejected it; with AND, at
        least one evaluated rule rejected it. A rule whose condition cannot
        be evaluated here is left to the row filter the store applies.

        Raises:
            AccessDenied: With resource table and operation "row"
        """
        if context.is_admin:
            return

        rules = await self.applicable_rules(context, table)
        if not rules:
            return

        values = context.user.placeholder_values()
        verdicts = [evaluate(render_condition(rule.condition, values), row) for rule in rules]

        if self._combination == RowRuleCombination.ANY:
            allowed = any(v is not False for v in verdicts)
        else:
            allowed = all(v is not False for v in verdicts)

        if not allowed:
            logger.warning(f"Row access denied: {context.user_id} on {table}")
            raise AccessDenied(table, "row")

    # ===== Masking =====

    def mask_fields(
        self,
        context: SecurityContext,
        table: str,
        records: list[Mapping[str, Any]]
    ) -> list[dict[str, Any]]:
        """
        Replace unreadable field values with the restricted sentinel.

        Every key is kept so consumers see the same shape. Masking an already
        masked record is a no-op. Admins get the records back untouched.
        """
        if context.is_admin:
            return records
        return [self._mask_record(context, table, record) for record in records]

    def _mask_record(
        self,
        context: SecurityContext,
        table: str,
        record: Mapping[str, Any]
    ) -> dict[str, Any]:
        masked: dict[str, Any] = {}
        for name, value in record.items():
            if name in self._always_visible or context.field(table, name).read:
                masked[name] = value
            else:
                masked[name] = _restricted(value)
        return masked


def _restricted(value: Any) -> Any:
    if isinstance(value, FieldValue):
        return FieldValue.restricted()
    return RESTRICTED
