# govgate - Governance Gateway
# Policy-based access control and governance decisions for record operations

__version__ = "0.1.0"

# Re-export commonly used components for convenience
from govgate.errors import (
    GovernanceError,
    IdentityResolutionError,
    AccessDenied,
    MaliciousInputDetected,
    NoActiveSession,
    SessionInvalid,
    SessionExpired,
    GovernancePolicyViolation,
    AuditDeliveryFailure,
    RowRuleTemplateError,
)
from govgate.access import (
    Operation,
    SecurityContext,
    AccessContextCache,
    AccessDecisionEngine,
)
from govgate.policy import (
    Action,
    DecisionAction,
    GovernanceDecision,
    GovernanceDecisionEngine,
)
from govgate.session import SessionManager, SessionStatus
from govgate.audit import AuditLogger, AuditEvent
from govgate.config import GovernanceSettings, settings_from_env
from govgate.gateway import GovernanceGateway

__all__ = [
    "__version__",
    # Errors
    "GovernanceError",
    "IdentityResolutionError",
    "AccessDenied",
    "MaliciousInputDetected",
    "NoActiveSession",
    "SessionInvalid",
    "SessionExpired",
    "GovernancePolicyViolation",
    "AuditDeliveryFailure",
    "RowRuleTemplateError",
    # Access
    "Operation",
    "SecurityContext",
    "AccessContextCache",
    "AccessDecisionEngine",
    # Decisions
    "Action",
    "DecisionAction",
    "GovernanceDecision",
    "GovernanceDecisionEngine",
    # Sessions / audit
    "SessionManager",
    "SessionStatus",
    "AuditLogger",
    "AuditEvent",
    # Gateway
    "GovernanceSettings",
    "settings_from_env",
    "GovernanceGateway",
]
