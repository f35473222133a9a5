"""
Governance Decision Engine

Merges the access, risk and compliance layers into one GovernanceDecision.

Evaluation:
1. Session validation (when a session manager and action.session_id are set)
2. Input guard on mutation payloads
3. Table, field and row checks (any failure short-circuits to DENY)
4. Risk and compliance, evaluated concurrently
5. Merge, most-restrictive-wins:
   - access violation, CRITICAL risk or compliance violation -> DENY
   - HIGH risk or compliance controls                        -> CONDITIONAL
   - otherwise                                               -> ALLOW
6. Audit

Reasons and controls are set unions, sorted, so the outcome never depends on
which layer finished first. Expected denials are returned as decisions; only
infrastructure and session errors are raised.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from govgate.access.engine import AccessDecisionEngine
from govgate.access.models import Operation, SecurityContext
from govgate.access.sanitize import detect_malicious_input
from govgate.audit.logger import audit_decision
from govgate.clock import Clock, utcnow
from govgate.errors import (
    AccessDenied,
    MaliciousInputDetected,
    NoActiveSession,
    RowRuleTemplateError,
    SessionInvalid,
)
from govgate.policy.compliance import ComplianceValidator
from govgate.policy.models import (
    Action,
    ComplianceResult,
    DecisionAction,
    GovernanceDecision,
    RiskAssessment,
    RiskLevel,
)
from govgate.policy.risk import RiskAssessor

if TYPE_CHECKING:
    from datetime import datetime

    from govgate.audit.logger import AuditLogger
    from govgate.session.manager import SessionManager

logger = logging.getLogger(__name__)


DEFAULT_DENIAL_WEIGHT = 1
DEFAULT_MALICIOUS_WEIGHT = 5


def merge_decision(
    risk: RiskAssessment,
    compliance: ComplianceResult,
    decided_at: datetime,
    row_filter: str | None = None,
) -> GovernanceDecision:
    """
    Combine risk and compliance outputs, most restrictive wins.

    Pure and order-independent.
    """
    reasons: set[str] = set(compliance.reasons)
    if risk.level != RiskLevel.LOW:
        reasons.add(f"risk {risk.level.value}: {risk.reason}")

    controls: set[str] = set(compliance.remediations)

    if not compliance.compliant or risk.level == RiskLevel.CRITICAL:
        action = DecisionAction.DENY
        controls.update(risk.mitigations)
    elif risk.level == RiskLevel.HIGH or compliance.requires_controls:
        action = DecisionAction.CONDITIONAL
        if risk.level == RiskLevel.HIGH:
            controls.update(risk.mitigations)
    else:
        action = DecisionAction.ALLOW
        controls = set()

    if action == DecisionAction.ALLOW and not reasons:
        reasons.add("access granted")

    return GovernanceDecision(
        action=action,
        reasons=sorted(reasons),
        required_controls=sorted(controls),
        risk_level=risk.level,
        row_filter=row_filter if action != DecisionAction.DENY else None,
        decided_at=decided_at,
    )


class GovernanceDecisionEngine:
    """
    Produces the final ALLOW / DENY / CONDITIONAL for an action.
    """

    def __init__(
        self,
        access: AccessDecisionEngine,
        risk: RiskAssessor | None = None,
        compliance: ComplianceValidator | None = None,
        sessions: SessionManager | None = None,
        audit: AuditLogger | None = None,
        denial_weight: int = DEFAULT_DENIAL_WEIGHT,
        malicious_weight: int = DEFAULT_MALICIOUS_WEIGHT,
        clock: Clock = utcnow,
    ):
        """
        Args:
            access: Table/field/row checks
            risk: Risk assessor (defaults to RiskAssessor())
            compliance: Compliance validator (defaults to no policies)
            sessions: Session manager used to validate action.session_id
            audit: Audit logger receiving every decision
            denial_weight: Suspicious-counter increment per access denial
            malicious_weight: Suspicious-counter increment per malicious payload
            clock: Time source for decided_at
        """
        self._access = access
        self._risk = risk or RiskAssessor()
        self._compliance = compliance or ComplianceValidator()
        self._sessions = sessions
        self._audit = audit
        self._denial_weight = denial_weight
        self._malicious_weight = malicious_weight
        self._clock = clock

    async def decide(self, action: Action, context: SecurityContext) -> GovernanceDecision:
        decision = await self.evaluate(action, context)

        if decision.action == DecisionAction.DENY:
            logger.warning(
                f"DENY {context.user_id} {action.operation.value} {action.target}: "
                f"{'; '.join(decision.reasons)}"
            )
        else:
            logger.debug(
                f"{decision.action.value.upper()} {context.user_id} "
                f"{action.operation.value} {action.target}"
            )

        if self._audit is not None:
            await self._audit.record_safely(audit_decision(action, context, decision))
        return decision

    async def evaluate(self, action: Action, context: SecurityContext) -> GovernanceDecision:
        """Decide without auditing."""
        suspicious = 0

        # === Session ===
        if self._sessions is not None and action.session_id:
            try:
                session = await self._sessions.validate(action.session_id)
                if session.user_id == context.user_id:
                    await self._sessions.record_activity(action.session_id, reset_suspicious=False)
            except (NoActiveSession, SessionInvalid) as e:
                return self._deny([f"session rejected: {e}"])

            if session.user_id != context.user_id:
                await self._flag(action, self._malicious_weight)
                return self._deny(["session does not belong to the acting user"])

            suspicious = session.suspicious_activity_count

        # === Input guard ===
        if action.operation.is_mutation and action.values:
            try:
                detect_malicious_input(action.values)
            except MaliciousInputDetected as e:
                await self._flag(action, self._malicious_weight)
                return self._deny([str(e)])

        # === Access ===
        row_filter: str | None = None
        try:
            self._access.check_table(context, action.table, action.operation)
            field_op = Operation.READ if action.operation == Operation.READ else Operation.WRITE
            for name in action.touched_fields():
                self._access.check_field(context, action.table, name, field_op)
            if action.row is not None:
                await self._access.check_row(context, action.table, action.row)
            if action.operation == Operation.READ:
                row_filter = await self._access.build_row_filter(
                    context, action.table, action.base_filter
                )
        except AccessDenied as e:
            await self._flag(action, self._denial_weight)
            return self._deny([str(e)])
        except RowRuleTemplateError as e:
            logger.error(f"Row rule misconfigured for {action.table}: {e}")
            return self._deny([f"row security rule error on {action.table}"])

        # === Risk + compliance ===
        risk, compliance = await asyncio.gather(
            self._assess_risk(action, context, suspicious),
            self._validate_compliance(action, context),
        )

        return merge_decision(risk, compliance, self._clock(), row_filter)

    async def _assess_risk(
        self,
        action: Action,
        context: SecurityContext,
        suspicious: int
    ) -> RiskAssessment:
        return self._risk.assess(action, context, suspicious)

    async def _validate_compliance(
        self,
        action: Action,
        context: SecurityContext
    ) -> ComplianceResult:
        return self._compliance.validate(action, context)

    async def _flag(self, action: Action, weight: int) -> int:
        if self._sessions is None or not action.session_id:
            return 0
        return await self._sessions.record_suspicious_activity(action.session_id, weight)

    def _deny(self, reasons: list[str]) -> GovernanceDecision:
        return GovernanceDecision(
            action=DecisionAction.DENY,
            reasons=sorted(set(reasons)),
            required_controls=[],
            risk_level=None,
            decided_at=self._clock(),
        )
