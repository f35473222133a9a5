"""
Risk and Compliance Tests

Risk scoring factors, compliance policy evaluation and the merge rule.
"""

import json

import pytest

from govgate.errors import GovernancePolicyViolation
from govgate.policy.compliance import (
    CompliancePolicy,
    ComplianceValidator,
    Enforcement,
    load_policies,
    register_predicate,
)
from govgate.policy.governance import merge_decision
from govgate.policy.models import (
    Action,
    ComplianceResult,
    DecisionAction,
    RiskAssessment,
    RiskLevel,
)
from govgate.policy.risk import (
    MITIGATION_DESTRUCTIVE,
    MITIGATION_SENSITIVE,
    RiskAssessor,
)

from tests.conftest import T0, make_context


# ==================== Risk ====================


class TestRiskAssessor:
    """Risk factors and escalation."""

    def test_plain_read_is_low(self):
        result = RiskAssessor().assess(Action(operation="read", table="incident"), make_context())
        assert result.level == RiskLevel.LOW
        assert result.reason == "no risk factors"
        assert result.mitigations == ()

    def test_single_factor_is_medium(self):
        action = Action(operation="read", table="hr_profile", sensitive=True)
        result = RiskAssessor().assess(action, make_context())
        assert result.level == RiskLevel.MEDIUM
        assert result.mitigations == (MITIGATION_SENSITIVE,)

    def test_two_factors_are_high(self):
        action = Action(operation="delete", table="hr_profile", sensitive=True)
        result = RiskAssessor().assess(action, make_context())
        assert result.level == RiskLevel.HIGH
        assert MITIGATION_DESTRUCTIVE in result.mitigations

    def test_bulk_threshold(self):
        assessor = RiskAssessor(bulk_threshold=50)
        assert assessor.assess(
            Action(operation="write", table="incident", record_count=50), make_context()
        ).level == RiskLevel.LOW
        assert assessor.assess(
            Action(operation="write", table="incident", record_count=51), make_context()
        ).level == RiskLevel.MEDIUM

    def test_critical_needs_suspicious_non_admin(self):
        action = Action(operation="delete", table="hr_profile", sensitive=True)
        assessor = RiskAssessor()

        assert assessor.assess(action, make_context(), suspicious_activity=1).level == RiskLevel.CRITICAL
        assert assessor.assess(
            action, make_context(is_admin=True), suspicious_activity=1
        ).level == RiskLevel.HIGH
        assert assessor.assess(action, make_context(), suspicious_activity=0).level == RiskLevel.HIGH

    def test_escalation_never_lowers(self):
        assert RiskLevel.HIGH.escalate(RiskLevel.MEDIUM) == RiskLevel.HIGH
        assert RiskLevel.LOW.escalate(RiskLevel.CRITICAL) == RiskLevel.CRITICAL


# ==================== Compliance ====================


SALARY_POLICY = CompliancePolicy(
    name="hr-salary-elevated",
    framework="SOX",
    tables=["hr_profile"],
    fields=["salary"],
    predicate="requires_role",
    params={"roles": ["hr_manager"]},
    remediations=["request hr_manager role"],
)

PURPOSE_CONTROL = CompliancePolicy(
    name="gdpr-purpose",
    framework="GDPR",
    tables=["hr_profile"],
    predicate="requires_purpose",
    enforcement=Enforcement.CONTROL,
    remediations=["record processing purpose"],
)


class TestComplianceValidator:
    """Policy scope, enforcement modes and predicates."""

    def test_no_policies_is_compliant(self):
        result = ComplianceValidator().validate(Action(operation="read", table="x"), make_context())
        assert result.compliant is True
        assert result.requires_controls is False

    def test_block_policy_violation(self):
        validator = ComplianceValidator([SALARY_POLICY])
        action = Action(operation="read", table="hr_profile", fields=["salary"])

        result = validator.validate(action, make_context(roles=("itil",)))

        assert result.compliant is False
        assert result.violated_policy == "hr-salary-elevated"
        assert result.remediations == ("request hr_manager role",)
        assert any(r.startswith("Policy hr-salary-elevated violated") for r in result.reasons)

    def test_out_of_scope_field_skipped(self):
        validator = ComplianceValidator([SALARY_POLICY])
        action = Action(operation="read", table="hr_profile", fields=["name"])
        assert validator.validate(action, make_context()).compliant is True

    def test_whole_record_read_hits_field_policy(self):
        """A read that names no fields returns every field, salary included."""
        validator = ComplianceValidator([SALARY_POLICY])
        action = Action(operation="read", table="hr_profile")

        result = validator.validate(action, make_context(roles=("itil",)))

        assert result.compliant is False
        assert result.violated_policy == "hr-salary-elevated"
        assert validator.validate(action, make_context(roles=("hr_manager",))).compliant is True

    def test_role_satisfies_policy(self):
        validator = ComplianceValidator([SALARY_POLICY])
        action = Action(operation="read", table="hr_profile", fields=["salary"])
        assert validator.validate(action, make_context(roles=("hr_manager",))).compliant is True

    def test_control_policy_adds_remediations(self):
        validator = ComplianceValidator([PURPOSE_CONTROL])
        action = Action(operation="read", table="hr_profile")

        result = validator.validate(action, make_context())

        assert result.compliant is True
        assert result.requires_controls is True
        assert result.remediations == ("record processing purpose",)

        with_purpose = Action(operation="read", table="hr_profile", purpose="payroll")
        assert validator.validate(with_purpose, make_context()).requires_controls is False

    def test_max_records_and_forbid_operation(self):
        validator = ComplianceValidator([
            CompliancePolicy(name="export-cap", predicate="max_records", params={"limit": 10}),
            CompliancePolicy(
                name="no-delete-audit",
                tables=["audit_log"],
                predicate="forbid_operation",
                params={"operations": ["delete"]},
            ),
        ])
        assert validator.validate(
            Action(operation="read", table="x", record_count=11), make_context()
        ).violated_policy == "export-cap"
        assert validator.validate(
            Action(operation="delete", table="audit_log"), make_context()
        ).violated_policy == "no-delete-audit"

    def test_capability_predicate(self):
        validator = ComplianceValidator([
            CompliancePolicy(
                name="export-capability",
                operations=["read"],
                predicate="requires_capability",
                params={"capability": "can_export"},
            ),
        ])
        action = Action(operation="read", table="incident", record_count=500)
        assert validator.validate(action, make_context()).compliant is False
        assert validator.validate(action, make_context(permissions=("export",))).compliant is True

    def test_unknown_predicate_fails_closed(self):
        validator = ComplianceValidator([CompliancePolicy(name="typo", predicate="requires_rol")])
        assert validator.validate(Action(operation="read", table="x"), make_context()).compliant is False

    def test_bad_params_fail_closed(self):
        validator = ComplianceValidator([
            CompliancePolicy(name="broken", predicate="max_records", params={}),
        ])
        assert validator.validate(Action(operation="read", table="x"), make_context()).compliant is False

    def test_custom_predicate(self):
        @register_predicate("business_hours_only")
        def business_hours_only(action, context, params):
            return params.get("open", False)

        validator = ComplianceValidator([
            CompliancePolicy(name="hours", predicate="business_hours_only", params={"open": True}),
        ])
        assert validator.validate(Action(operation="read", table="x"), make_context()).compliant is True

    def test_enforce_raises(self):
        validator = ComplianceValidator([SALARY_POLICY])
        action = Action(operation="write", table="hr_profile", values={"salary": 1})
        with pytest.raises(GovernancePolicyViolation) as exc:
            validator.enforce(action, make_context())
        assert exc.value.policy == "hr-salary-elevated"

    def test_add_and_remove(self):
        validator = ComplianceValidator()
        validator.add_policy(SALARY_POLICY)
        assert validator.remove_policy("hr-salary-elevated") is True
        assert validator.remove_policy("hr-salary-elevated") is False

    def test_load_policies(self, tmp_path):
        path = tmp_path / "policies.json"
        path.write_text(json.dumps({"policies": [SALARY_POLICY.model_dump(mode="json")]}))

        policies = load_policies(path)

        assert len(policies) == 1
        assert policies[0].name == "hr-salary-elevated"
        assert policies[0].enforcement == Enforcement.BLOCK


# ==================== Merge ====================


LOW = RiskAssessment(level=RiskLevel.LOW, reason="no risk factors")
HIGH = RiskAssessment(
    level=RiskLevel.HIGH,
    reason="destructive operation; hr_profile is classified sensitive",
    mitigations=("requires secondary approval",),
)
CRITICAL = RiskAssessment(level=RiskLevel.CRITICAL, reason="x", mitigations=("requires re-authentication",))


class TestMergeDecision:
    """Most-restrictive-wins."""

    def test_allow(self):
        decision = merge_decision(LOW, ComplianceResult(compliant=True), T0, "a = '1'")
        assert decision.action == DecisionAction.ALLOW
        assert decision.reasons == ["access granted"]
        assert decision.required_controls == []
        assert decision.row_filter == "a = '1'"

    def test_high_risk_is_conditional(self):
        decision = merge_decision(HIGH, ComplianceResult(compliant=True), T0)
        assert decision.action == DecisionAction.CONDITIONAL
        assert decision.required_controls == ["requires secondary approval"]

    def test_compliance_controls_are_conditional(self):
        compliance = ComplianceResult(compliant=True, remediations=("record purpose",))
        decision = merge_decision(LOW, compliance, T0)
        assert decision.action == DecisionAction.CONDITIONAL
        assert decision.required_controls == ["record purpose"]

    def test_violation_denies_and_drops_filter(self):
        compliance = ComplianceResult(
            compliant=False,
            violated_policy="p",
            remediations=("do x",),
            reasons=("Policy p violated: nope",),
        )
        decision = merge_decision(HIGH, compliance, T0, "a = '1'")
        assert decision.action == DecisionAction.DENY
        assert decision.row_filter is None
        assert decision.required_controls == ["do x", "requires secondary approval"]

    def test_critical_denies(self):
        assert merge_decision(CRITICAL, ComplianceResult(compliant=True), T0).action == DecisionAction.DENY

    def test_reasons_sorted(self):
        compliance = ComplianceResult(compliant=True, remediations=("z",), reasons=("Policy z requires controls",))
        decision = merge_decision(HIGH, compliance, T0)
        assert decision.reasons == sorted(decision.reasons)
