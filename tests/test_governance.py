"""
Governance Decision Tests

End-to-end decisions through session validation, the input guard, access
checks, risk and compliance, including the audit trail each one leaves.
"""

from datetime import timedelta

import pytest

from govgate.access.models import RowSecurityRule
from govgate.audit.events import AuditEventType
from govgate.audit.logger import AuditLogger
from govgate.policy.compliance import CompliancePolicy, ComplianceValidator
from govgate.policy.governance import GovernanceDecisionEngine
from govgate.policy.models import Action, DecisionAction, GovernanceDecision, RiskLevel
from govgate.session.models import SessionStatus, TerminationReason
from govgate.storage.ports import AuditSink, FieldGrant, TableGrant

from tests.conftest import T0, make_context


class FailingAuditSink(AuditSink):
    async def append(self, record):
        raise ConnectionError("sink down")

    async def query(self, **kwargs):
        return []


async def _login(sessions, username="ana", password="s3cret"):
    return await sessions.login({"username": username, "password": password})


# ==================== Access ====================


class TestAccessOutcomes:
    """Access checks decide before risk and compliance."""

    @pytest.mark.asyncio
    async def test_read_allowed_with_row_filter(self, directory, context_cache, governance):
        context = await context_cache.get_context("u1")
        action = Action(operation="read", table="cases", base_filter="active = true")

        decision = await governance.decide(action, context)

        assert decision.action == DecisionAction.ALLOW
        assert decision.reasons == ["access granted"]
        assert decision.row_filter == "(active = true) AND (assigned_to = 'u1')"
        assert decision.risk_level == RiskLevel.LOW

    @pytest.mark.asyncio
    async def test_access_denial_dominates(self, directory, context_cache, access_engine, clock):
        """Even a blocking policy and high risk report the access denial only."""
        engine = GovernanceDecisionEngine(
            access=access_engine,
            compliance=ComplianceValidator([
                CompliancePolicy(name="never", predicate="forbid_operation", params={"operations": ["write"]}),
            ]),
            clock=clock,
        )
        context = await context_cache.get_context("ro")
        action = Action(operation="write", table="orders", sensitive=True, record_count=1000)

        decision = await engine.decide(action, context)

        assert decision.action == DecisionAction.DENY
        assert decision.reasons == ["Access denied: write on orders"]
        assert decision.risk_level is None
        assert decision.row_filter is None

    @pytest.mark.asyncio
    async def test_field_denial(self, directory, context_cache, governance):
        context = await context_cache.get_context("u1")
        action = Action(operation="write", table="incident", values={"state": "closed"})

        decision = await governance.decide(action, context)

        assert decision.action == DecisionAction.DENY
        assert decision.reasons == ["Access denied: write on incident.state"]

    @pytest.mark.asyncio
    async def test_row_denial(self, directory, context_cache, governance):
        context = await context_cache.get_context("u1")
        action = Action(operation="read", table="cases", row={"sys_id": "c9", "assigned_to": "u2"})

        decision = await governance.decide(action, context)

        assert decision.action == DecisionAction.DENY
        assert decision.reasons == ["Access denied: row on cases"]

    @pytest.mark.asyncio
    async def test_broken_row_rule_denies(self, directory, grants, context_cache, governance):
        await grants.add_row_rule(RowSecurityRule(
            rule_id="cases-ssn",
            table="cases",
            condition="ssn = ${user.ssn}",
            roles=frozenset({"itil"}),
        ))
        context = await context_cache.get_context("u1")

        decision = await governance.decide(Action(operation="read", table="cases"), context)

        assert decision.action == DecisionAction.DENY
        assert decision.reasons == ["row security rule error on cases"]

    @pytest.mark.asyncio
    async def test_admin_sensitive_delete_is_conditional(self, directory, context_cache, governance):
        context = await context_cache.get_context("root")
        action = Action(operation="delete", table="hr_profile", sensitive=True)

        decision = await governance.decide(action, context)

        assert decision.action == DecisionAction.CONDITIONAL
        assert decision.risk_level == RiskLevel.HIGH
        assert decision.required_controls == [
            "requires justification for sensitive data access",
            "requires secondary approval",
        ]


# ==================== Compliance ====================


SALARY_ELEVATED = CompliancePolicy(
    name="salary-elevated",
    tables=["hr_profile"],
    fields=["salary"],
    predicate="requires_role",
    params={"roles": ["hr_manager"]},
)


class TestComplianceOutcomes:
    """Field-scoped policies through decide."""

    @pytest.mark.asyncio
    async def test_whole_table_read_checks_field_policy(self, access_engine, clock):
        engine = GovernanceDecisionEngine(
            access=access_engine,
            compliance=ComplianceValidator([SALARY_ELEVATED]),
            clock=clock,
        )
        context = make_context(
            roles=("hr",),
            table_grants=[TableGrant("hr_profile", "read", "hr")],
            field_grants=[FieldGrant("hr_profile", "salary", "read", "hr")],
        )

        named = await engine.decide(Action(operation="read", table="hr_profile", fields=["salary"]), context)
        whole = await engine.decide(Action(operation="read", table="hr_profile"), context)

        assert named.action == DecisionAction.DENY
        assert whole.action == DecisionAction.DENY
        assert whole.reasons == named.reasons


# ==================== Determinism ====================


class TestDeterminism:
    """Identical inputs give identical decisions."""

    @pytest.mark.asyncio
    async def test_same_action_same_decision(self, directory, context_cache, access_engine, clock):
        engine = GovernanceDecisionEngine(
            access=access_engine,
            compliance=ComplianceValidator([
                CompliancePolicy(
                    name="purpose",
                    predicate="requires_purpose",
                    enforcement="control",
                    remediations=["state a purpose", "notify owner"],
                ),
            ]),
            clock=clock,
        )
        context = await context_cache.get_context("u1")
        action = Action(operation="write", table="incident", fields=["short_description"], record_count=500)

        first = await engine.decide(action, context)
        second = await engine.decide(action, context)

        assert first == second
        assert first.action == DecisionAction.CONDITIONAL
        assert first.required_controls == ["notify owner", "state a purpose"]

    @pytest.mark.asyncio
    async def test_equal_under_wall_clock(self, directory, context_cache, access_engine):
        engine = GovernanceDecisionEngine(access=access_engine)
        context = await context_cache.get_context("u1")
        action = Action(operation="read", table="cases")

        first = await engine.decide(action, context)
        second = await engine.decide(action, context)

        assert first == second
        assert hash(first) == hash(second)

    def test_timestamp_is_not_compared(self):
        earlier = GovernanceDecision(action=DecisionAction.ALLOW, reasons=["access granted"], decided_at=T0)
        later = earlier.model_copy(update={"decided_at": T0 + timedelta(hours=1)})
        denied = earlier.model_copy(update={"action": DecisionAction.DENY})

        assert earlier == later
        assert earlier != denied


# ==================== Sessions ====================


class TestSessionGate:
    """Session validation and the suspicious-activity counter."""

    @pytest.mark.asyncio
    async def test_unknown_session_denied(self, directory, context_cache, governance):
        context = await context_cache.get_context("u1")
        action = Action(operation="read", table="incident", session_id="ses_missing")

        decision = await governance.decide(action, context)

        assert decision.action == DecisionAction.DENY
        assert decision.reasons[0].startswith("session rejected")

    @pytest.mark.asyncio
    async def test_foreign_session_flagged(self, directory, context_cache, sessions, governance):
        session = await _login(sessions, "reader", "r3ad")
        context = await context_cache.get_context("u1")

        decision = await governance.decide(
            Action(operation="read", table="incident", session_id=session.session_id),
            context,
        )

        assert decision.action == DecisionAction.DENY
        assert decision.reasons == ["session does not belong to the acting user"]
        assert sessions.suspicious_count(session.session_id) == 5

    @pytest.mark.asyncio
    async def test_denials_raise_risk_on_later_actions(self, directory, context_cache, sessions, governance):
        session = await _login(sessions)
        context = await context_cache.get_context("u1")

        denied = await governance.decide(
            Action(operation="write", table="orders", session_id=session.session_id),
            context,
        )
        allowed = await governance.decide(
            Action(operation="read", table="incident", session_id=session.session_id),
            context,
        )

        assert denied.action == DecisionAction.DENY
        assert sessions.suspicious_count(session.session_id) == 1
        assert allowed.action == DecisionAction.ALLOW
        assert allowed.risk_level == RiskLevel.MEDIUM
        assert "risk medium: session has 1 suspicious activity signal(s)" in allowed.reasons

    @pytest.mark.asyncio
    async def test_malicious_payloads_terminate_session(self, directory, context_cache, sessions, governance):
        session = await _login(sessions)
        context = await context_cache.get_context("u1")
        action = Action(
            operation="write",
            table="incident",
            values={"short_description": "'; DROP TABLE incident; --"},
            session_id=session.session_id,
        )

        for _ in range(3):
            decision = await governance.decide(action, context)
            assert decision.action == DecisionAction.DENY

        assert sessions.status_of(session.session_id) == SessionStatus.EXPIRED
        assert sessions.get_session(session.session_id).termination_reason == (
            TerminationReason.SUSPICIOUS_ACTIVITY
        )

        clean = await governance.decide(
            Action(operation="read", table="incident", session_id=session.session_id),
            context,
        )
        assert clean.action == DecisionAction.DENY
        assert clean.reasons[0].startswith("session rejected")

    @pytest.mark.asyncio
    async def test_expiry_warning_then_deny(self, directory, context_cache, sessions, governance, clock, audit_logger):
        """Warning at 7h56, expired decision at 8h01, one expiry event."""
        session = await _login(sessions)
        context = await context_cache.get_context("u1")

        # Stay active through the day
        for _ in range(18):
            clock.advance(minutes=25)
            await sessions.record_activity(session.session_id)
        clock.set(T0 + timedelta(hours=7, minutes=50))
        await sessions.record_activity(session.session_id)

        clock.set(T0 + timedelta(hours=7, minutes=56))
        assert await sessions.check_session(session.session_id) == SessionStatus.WARNING

        clock.set(T0 + timedelta(hours=8, minutes=1))
        decision = await governance.decide(
            Action(operation="read", table="incident", session_id=session.session_id),
            context,
        )

        assert decision.action == DecisionAction.DENY
        events, _ = audit_logger.get_by_session(session.session_id)
        terminated = [e for e in events if e.action == AuditEventType.SESSION_TERMINATED]
        assert len(terminated) == 1
        assert terminated[0].rationale == ("expired",)
        warnings = [e for e in events if e.action == AuditEventType.SESSION_WARNING]
        assert len(warnings) == 1
        assert events[-1].action == AuditEventType.DECISION
        assert events[-1].decision == "deny"


# ==================== Audit ====================


class TestDecisionAudit:
    """Every decision is audited; delivery failures never change it."""

    @pytest.mark.asyncio
    async def test_decision_recorded(self, directory, context_cache, governance, audit_logger, audit_sink):
        context = await context_cache.get_context("u1")
        action = Action(operation="read", table="incident", row={"sys_id": "i1"}, fields=["state"])

        decision = await governance.decide(action, context)

        event = audit_logger.tail(1)[0]
        assert event.action == AuditEventType.DECISION
        assert event.actor_id == "u1"
        assert event.target == "incident:i1"
        assert event.decision == decision.action.value
        assert event.data["fields"] == ["state"]
        assert audit_sink.count == 1

    @pytest.mark.asyncio
    async def test_sink_failure_keeps_decision(self, directory, context_cache, access_engine, clock):
        failures = []
        audit = AuditLogger(sink=FailingAuditSink(), on_delivery_failure=failures.append)
        engine = GovernanceDecisionEngine(access=access_engine, audit=audit, clock=clock)
        context = await context_cache.get_context("u1")

        decision = await engine.decide(Action(operation="read", table="incident"), context)

        assert decision.action == DecisionAction.ALLOW
        assert audit.pending_count == 1
        assert len(failures) == 1
        assert failures[0].retryable is True

    @pytest.mark.asyncio
    async def test_evaluate_does_not_audit(self, directory, context_cache, governance, audit_logger):
        context = await context_cache.get_context("u1")
        await governance.evaluate(Action(operation="read", table="incident"), context)
        assert audit_logger.total_events() == 0

