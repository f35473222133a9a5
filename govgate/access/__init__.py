# Access Control
# Security contexts, table/field/row checks and field masking

from govgate.access.models import (
    RESTRICTED,
    Capabilities,
    FieldAccess,
    FieldValue,
    Operation,
    RowSecurityRule,
    SecurityContext,
    TableAccess,
)
from govgate.access.rowfilter import RowRuleCombination
from govgate.access.sanitize import detect_malicious_input
from govgate.access.cache import AccessContextCache
from govgate.access.engine import AccessDecisionEngine

__all__ = [
    "RESTRICTED",
    "Capabilities",
    "FieldAccess",
    "FieldValue",
    "Operation",
    "RowSecurityRule",
    "SecurityContext",
    "TableAccess",
    "RowRuleCombination",
    "detect_malicious_input",
    "AccessContextCache",
    "AccessDecisionEngine",
]
