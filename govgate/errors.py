"""
Error Taxonomy

Exceptions raised by the governance core.

Propagation:
- Access, compliance and risk failures are folded into a GovernanceDecision
  and never cross the gateway boundary.
- Infrastructure failures (IdentityResolutionError, AuditDeliveryFailure)
  and session-state errors (NoActiveSession, SessionInvalid) do cross it.
"""

from typing import Any


class GovernanceError(Exception):
    """Base exception for the governance core."""
    pass


class IdentityResolutionError(GovernanceError):
    """Identity provider unreachable or user unknown."""

    def __init__(
        self,
        user_id: str,
        reason: str = "user could not be resolved",
        not_found: bool = False
    ):
        self.user_id = user_id
        self.reason = reason
        self.not_found = not_found
        super().__init__(f"Cannot resolve identity {user_id!r}: {reason}")


class AccessDenied(GovernanceError):
    """A table, field or row check failed."""

    def __init__(self, resource: str, operation: str):
        self.resource = resource
        self.operation = operation
        super().__init__(f"Access denied: {operation} on {resource}")


class MaliciousInputDetected(GovernanceError):
    """Input matched an injection or traversal signature."""

    def __init__(self, kind: str, field: str | None = None):
        self.kind = kind
        self.field = field
        where = f" in field {field!r}" if field else ""
        super().__init__(f"Malicious input detected ({kind}){where}")


class NoActiveSession(GovernanceError):
    """Session operation attempted without a valid session."""

    def __init__(self, session_id: Any = None):
        self.session_id = session_id
        super().__init__(f"No active session: {session_id}")


class SessionInvalid(GovernanceError):
    """Session failed validation and has been terminated."""

    def __init__(self, session_id: Any, reason: str):
        self.session_id = session_id
        self.reason = reason
        super().__init__(f"Session {session_id} is invalid ({reason})")


class SessionExpired(SessionInvalid):
    """Session passed its local expiry or inactivity limit."""
    pass


class GovernancePolicyViolation(GovernanceError):
    """Compliance layer found a hard violation."""

    def __init__(self, policy: str, reason: str):
        self.policy = policy
        self.reason = reason
        super().__init__(f"Policy {policy} violated: {reason}")


class RowRuleTemplateError(GovernanceError, ValueError):
    """A row security rule references an unknown placeholder."""
    pass


class AuditDeliveryFailure(GovernanceError):
    """
    Audit event could not be delivered to the sink.

    Non-fatal for decisions. The event stays buffered for retry.
    """

    def __init__(self, event_id: Any, cause: BaseException | None = None):
        self.event_id = event_id
        self.cause = cause
        self.retryable = True
        super().__init__(f"Audit delivery failed for event {event_id}: {cause}")
