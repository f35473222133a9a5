# Governance Policy
# Risk scoring, compliance policies and the merged governance decision
# Most restrictive layer wins

from govgate.policy.models import (
    Action,
    ComplianceResult,
    DecisionAction,
    GovernanceDecision,
    RiskAssessment,
    RiskLevel,
)
from govgate.policy.risk import RiskAssessor
from govgate.policy.compliance import (
    CompliancePolicy,
    ComplianceValidator,
    Enforcement,
    load_policies,
    register_predicate,
)
from govgate.policy.governance import GovernanceDecisionEngine, merge_decision

__all__ = [
    "Action",
    "ComplianceResult",
    "DecisionAction",
    "GovernanceDecision",
    "RiskAssessment",
    "RiskLevel",
    "RiskAssessor",
    "CompliancePolicy",
    "ComplianceValidator",
    "Enforcement",
    "load_policies",
    "register_predicate",
    "GovernanceDecisionEngine",
    "merge_decision",
]
