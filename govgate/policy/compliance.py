"""
Compliance Validator

Checks an action against a configured set of policies.

Policies are data. Each names a predicate from the registry plus its
parameters, the scope it applies to (tables, fields, operations) and an
enforcement mode:

- block:   a failed predicate makes the action non-compliant
- control: a failed predicate adds the policy's remediations as required
           controls, the action stays compliant

New checks are added with @register_predicate, without touching the
validator.

Example policy file:

    {
      "policies": [
        {
          "name": "hr-salary-elevated",
          "framework": "SOX",
          "tables": ["hr_profile"],
          "fields": ["salary"],
          "predicate": "requires_role",
          "params": {"roles": ["hr_manager"]},
          "remediations": ["request hr_manager role"]
        }
      ]
    }
"""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel, Field

from govgate.access.models import Operation, SecurityContext
from govgate.errors import GovernancePolicyViolation
from govgate.policy.models import Action, ComplianceResult

logger = logging.getLogger(__name__)


Predicate = Callable[[Action, SecurityContext, dict[str, Any]], bool]

PREDICATES: dict[str, Predicate] = {}


def register_predicate(name: str) -> Callable[[Predicate], Predicate]:
    """Register a predicate under a name usable from policy data."""
    def decorator(func: Predicate) -> Predicate:
        PREDICATES[name] = func
        return func
    return decorator


# ===== Built-in predicates =====

@register_predicate("requires_role")
def requires_role(action: Action, context: SecurityContext, params: dict[str, Any]) -> bool:
    roles = params.get("roles") or [params.get("role")]
    return context.is_admin or any(context.has_role(r) for r in roles if r)


@register_predicate("requires_permission")
def requires_permission(action: Action, context: SecurityContext, params: dict[str, Any]) -> bool:
    return context.has_permission(params["permission"])


@register_predicate("forbid_operation")
def forbid_operation(action: Action, context: SecurityContext, params: dict[str, Any]) -> bool:
    forbidden = {Operation(op) for op in params.get("operations", [])}
    return action.operation not in forbidden


@register_predicate("max_records")
def max_records(action: Action, context: SecurityContext, params: dict[str, Any]) -> bool:
    return action.record_count <= int(params["limit"])


@register_predicate("requires_purpose")
def requires_purpose(action: Action, context: SecurityContext, params: dict[str, Any]) -> bool:
    purpose = (action.purpose or "").strip()
    if not purpose:
        return False
    allowed = params.get("purposes")
    return not allowed or purpose in allowed


@register_predicate("requires_capability")
def requires_capability(action: Action, context: SecurityContext, params: dict[str, Any]) -> bool:
    capabilities = context.capabilities()
    return bool(getattr(capabilities, params["capability"], False))


# ===== Policies =====

class Enforcement(str, Enum):
    BLOCK = "block"
    CONTROL = "control"


class CompliancePolicy(BaseModel):
    """
    One regulatory rule, expressed as a registered predicate plus scope.

    Empty scope lists match everything. An action that names no fields
    touches the whole record, so field-scoped policies on its table apply.
    """
    name: str = Field(..., description="Unique policy name, shown in reasons")
    framework: str = Field(default="", description="Regulatory framework (GDPR, SOX, HIPAA, ...)")
    description: str = Field(default="", description="Human-readable summary")
    tables: list[str] = Field(default_factory=list, description="Tables in scope")
    fields: list[str] = Field(default_factory=list, description="Fields in scope")
    operations: list[Operation] = Field(default_factory=list, description="Operations in scope")
    predicate: str = Field(..., description="Registered predicate name")
    params: dict[str, Any] = Field(default_factory=dict, description="Predicate parameters")
    enforcement: Enforcement = Field(default=Enforcement.BLOCK)
    remediations: list[str] = Field(default_factory=list, description="Remediations or controls")

    def applies_to(self, action: Action) -> bool:
        if self.tables and action.table not in self.tables:
            return False
        if self.operations and action.operation not in self.operations:
            return False
        touched = action.touched_fields()
        if self.fields and touched and not set(self.fields) & set(touched):
            return False
        return True


def load_policies(path: str | Path) -> list[CompliancePolicy]:
    """
    Load policies from a JSON file.

    Accepts either a list of policies or an object with a "policies" list.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("policies", [])
    policies = [CompliancePolicy.model_validate(item) for item in data]
    logger.info(f"Loaded {len(policies)} compliance policies from {path}")
    return policies


class ComplianceValidator:
    """
    Evaluates policies in order.

    The first failing block policy is reported as the violation. Remediations
    of failing control policies are accumulated.
    """

    def __init__(self, policies: list[CompliancePolicy] | None = None):
        self._policies: list[CompliancePolicy] = list(policies or [])

    @property
    def policies(self) -> list[CompliancePolicy]:
        return list(self._policies)

    def add_policy(self, policy: CompliancePolicy) -> None:
        self._policies.append(policy)

    def remove_policy(self, name: str) -> bool:
        before = len(self._policies)
        self._policies = [p for p in self._policies if p.name != name]
        return len(self._policies) < before

    def validate(self, action: Action, context: SecurityContext) -> ComplianceResult:
        remediations: list[str] = []
        reasons: list[str] = []

        for policy in self._policies:
            if not policy.applies_to(action):
                continue
            if self._satisfied(policy, action, context):
                continue

            if policy.enforcement == Enforcement.BLOCK:
                violation = GovernancePolicyViolation(
                    policy.name,
                    policy.description or f"{policy.predicate} not satisfied",
                )
                logger.warning(f"{violation} ({context.user_id} {action.operation.value} {action.table})")
                return ComplianceResult(
                    compliant=False,
                    violated_policy=policy.name,
                    remediations=tuple(dict.fromkeys(remediations + policy.remediations)),
                    reasons=tuple(reasons + [str(violation)]),
                )

            remediations.extend(policy.remediations)
            reasons.append(f"Policy {policy.name} requires controls")

        return ComplianceResult(
            compliant=True,
            remediations=tuple(dict.fromkeys(remediations)),
            reasons=tuple(reasons),
        )

    def enforce(self, action: Action, context: SecurityContext) -> ComplianceResult:
        """
        Validate and raise on a hard violation.

        Raises:
            GovernancePolicyViolation: If a block policy fails
        """
        result = self.validate(action, context)
        if not result.compliant:
            raise GovernancePolicyViolation(
                result.violated_policy or "unknown",
                "; ".join(result.reasons),
            )
        return result

    def _satisfied(
        self,
        policy: CompliancePolicy,
        action: Action,
        context: SecurityContext
    ) -> bool:
        predicate = PREDICATES.get(policy.predicate)
        if predicate is None:
            logger.error(f"Policy {policy.name} references unknown predicate {policy.predicate!r}")
            return False
        try:
            return bool(predicate(action, context, policy.params))
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Policy {policy.name} has invalid params: {e}")
            return False
