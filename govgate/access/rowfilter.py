"""
Row Filter Templates

Row security conditions are opaque template strings such as

    assigned_to = ${user.id}

Placeholders are substituted in a single left-to-right pass. Each value is
rendered as a single-quoted literal with embedded quotes doubled, so
substituted user attributes can never terminate the literal:

    ${user.id}          -> 'u1'
    ${user.department}  -> 'Sales'
    (missing attribute) -> NULL

Supported keys: id, name, department, location, email.

Rendered conditions are combined with OR (the default) or AND, then
conjoined with the caller's base filter:

    (<base>) AND ((<rule 1>) OR (<rule 2>))
"""

import re
from enum import Enum
from typing import Any, Mapping

from govgate.errors import RowRuleTemplateError


PLACEHOLDER = re.compile(r"\$\{user\.([a-z_]+)\}")

# field = 'value' / field != 'value'
_CLAUSE = re.compile(
    r"^\s*([A-Za-z_][A-Za-z0-9_.]*)\s*(=|!=)\s*'((?:[^']|'')*)'\s*$"
)
# field IN ('a', 'b') / field NOT IN ('a', 'b')
_IN_CLAUSE = re.compile(
    r"^\s*([A-Za-z_][A-Za-z0-9_.]*)\s+(NOT\s+IN|IN)\s*\(\s*('(?:[^']|'')*'(?:\s*,\s*'(?:[^']|'')*')*)\s*\)\s*$",
    re.IGNORECASE,
)
_LITERAL = re.compile(r"'((?:[^']|'')*)'")
_AND = re.compile(r"\s+AND\s+", re.IGNORECASE)


class RowRuleCombination(str, Enum):
    """How multiple applicable row rules combine."""
    ANY = "any"  # OR
    ALL = "all"  # AND


def quote_literal(value: Any) -> str:
    if value is None:
        return "NULL"
    return "'" + str(value).replace("'", "''") + "'"


def render_condition(template: str, values: Mapping[str, Any]) -> str:
    """
    Substitute ${user.<key>} placeholders.

    Raises:
        RowRuleTemplateError: If a placeholder key is unknown
    """
    def _substitute(match: re.Match) -> str:
        key = match.group(1)
        if key not in values:
            raise RowRuleTemplateError(
                f"Unknown placeholder ${{user.{key}}} in row condition: {template}"
            )
        return quote_literal(values[key])

    return PLACEHOLDER.sub(_substitute, template).strip()


def combine(
    conditions: list[str],
    base_filter: str | None = None,
    mode: RowRuleCombination = RowRuleCombination.ANY
) -> str | None:
    """
    Combine rendered rule conditions and conjoin with the base filter.

    Duplicate conditions are dropped, first occurrence wins.
    No conditions returns the base filter unchanged.
    """
    unique = list(dict.fromkeys(c for c in conditions if c))
    base = base_filter.strip() if base_filter else ""

    if not unique:
        return base_filter

    joiner = " OR " if mode == RowRuleCombination.ANY else " AND "
    if len(unique) == 1:
        rules = unique[0]
    else:
        rules = joiner.join(f"({c})" for c in unique)

    if not base:
        return rules
    return f"({base}) AND ({rules})"


def evaluate(condition: str, record: Mapping[str, Any]) -> bool | None:
    """
    Evaluate a rendered condition against a record.

    Understands `field = 'x'`, `field != 'x'`, `field IN ('x', 'y')` and
    `field NOT IN ('x', 'y')` clauses joined by AND. Returns None for
    anything else.
    """
    result = True
    for clause in _AND.split(condition.strip()):
        verdict = _evaluate_clause(clause, record)
        if verdict is None:
            return None
        result = result and verdict
    return result


def _evaluate_clause(clause: str, record: Mapping[str, Any]) -> bool | None:
    match = _CLAUSE.match(clause)
    if match is not None:
        field_name, op, literal = match.groups()
        actual = _record_value(record, field_name)
        expected = literal.replace("''", "'")
        return actual == expected if op == "=" else actual != expected

    match = _IN_CLAUSE.match(clause)
    if match is not None:
        field_name, op, literals = match.groups()
        actual = _record_value(record, field_name)
        options = {lit.replace("''", "'") for lit in _LITERAL.findall(literals)}
        inside = actual in options
        return not inside if op.upper().startswith("NOT") else inside

    return None


def _record_value(record: Mapping[str, Any], field_name: str) -> str | None:
    actual = record.get(field_name)
    # FieldValue-shaped values compare on the raw value
    actual = getattr(actual, "raw_value", actual)
    return None if actual is None else str(actual)
