"""
Risk Assessor

Scores an action/context pair into a RiskLevel.

Factors:
- sensitive target
- destructive operation (delete)
- non-zero suspicious-activity counter on the session
- bulk volume (record_count above the bulk threshold)

Each factor present raises the level: one factor is MEDIUM, two or more is
HIGH. CRITICAL is reserved for a delete on a sensitive target by a non-admin
whose session has a non-zero suspicious counter. Levels only go up as
factors are added.
"""

import logging

from govgate.access.models import Operation, SecurityContext
from govgate.policy.models import Action, RiskAssessment, RiskLevel

logger = logging.getLogger(__name__)


DEFAULT_BULK_THRESHOLD = 100

MITIGATION_SENSITIVE = "requires justification for sensitive data access"
MITIGATION_DESTRUCTIVE = "requires secondary approval"
MITIGATION_SUSPICIOUS = "requires re-authentication"
MITIGATION_BULK = "requires bulk operation review"


class RiskAssessor:
    """
    Pure function of action metadata and context.
    """

    def __init__(self, bulk_threshold: int = DEFAULT_BULK_THRESHOLD):
        self.bulk_threshold = bulk_threshold

    def assess(
        self,
        action: Action,
        context: SecurityContext,
        suspicious_activity: int = 0
    ) -> RiskAssessment:
        reasons: list[str] = []
        mitigations: list[str] = []

        if action.sensitive:
            reasons.append(f"{action.table} is classified sensitive")
            mitigations.append(MITIGATION_SENSITIVE)

        if action.operation == Operation.DELETE:
            reasons.append("destructive operation")
            mitigations.append(MITIGATION_DESTRUCTIVE)

        if suspicious_activity > 0:
            reasons.append(f"session has {suspicious_activity} suspicious activity signal(s)")
            mitigations.append(MITIGATION_SUSPICIOUS)

        if action.record_count > self.bulk_threshold:
            reasons.append(
                f"bulk operation on {action.record_count} records "
                f"(threshold {self.bulk_threshold})"
            )
            mitigations.append(MITIGATION_BULK)

        level = RiskLevel.LOW
        if len(reasons) == 1:
            level = level.escalate(RiskLevel.MEDIUM)
        elif len(reasons) > 1:
            level = level.escalate(RiskLevel.HIGH)

        if (
            action.operation == Operation.DELETE
            and action.sensitive
            and not context.is_admin
            and suspicious_activity > 0
        ):
            level = level.escalate(RiskLevel.CRITICAL)

        if level.rank >= RiskLevel.HIGH.rank:
            logger.info(
                f"Risk {level.value} for {context.user_id} "
                f"{action.operation.value} {action.table}: {'; '.join(reasons)}"
            )

        return RiskAssessment(
            level=level,
            reason="; ".join(reasons) if reasons else "no risk factors",
            mitigations=tuple(mitigations),
        )
