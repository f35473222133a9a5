"""
Audit Events

Immutable records of every governance decision and session transition.

Event Categories:
- Decision: decision (allow / deny / conditional with rationale)
- Session: login, refreshed, warning, terminated, logout
- Context: invalidated
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from govgate.clock import utcnow


class AuditEventType(str, Enum):
    """Categories of audited events."""
    # Decisions
    DECISION = "governance.decision"

    # Session lifecycle
    SESSION_LOGIN = "session.login"
    SESSION_REFRESHED = "session.refreshed"
    SESSION_WARNING = "session.warning"
    SESSION_TERMINATED = "session.terminated"
    SESSION_LOGOUT = "session.logout"

    # Security context
    CONTEXT_INVALIDATED = "context.invalidated"


class AuditEvent(BaseModel):
    """
    A single audit event.

    Append-only: never mutated or deleted once recorded. rationale is a
    tuple; data is a plain dict, so the AuditLogger stores and hands out
    deep copies.
    """
    model_config = ConfigDict(frozen=True)

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    action: AuditEventType = Field(
        ...,
        description="Kind of event"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred"
    )

    # Subject
    actor_id: str | None = Field(
        default=None,
        description="User who triggered the event"
    )
    target: str | None = Field(
        default=None,
        description="Table, table.field or table:sys_id"
    )
    decision: str | None = Field(
        default=None,
        description="Decision or transition outcome"
    )
    rationale: tuple[str, ...] = Field(
        default=(),
        description="Reasons behind the decision"
    )

    # Origin
    session_id: str | None = Field(
        default=None,
        description="Session the event belongs to (if any)"
    )
    ip_address: str | None = Field(
        default=None,
        description="Client network address"
    )
    client_id: str | None = Field(
        default=None,
        description="Client application identifier"
    )

    # Payload
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Event-specific metadata"
    )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for transport or a JSON sink."""
        return {
            "event_id": str(self.event_id),
            "action": self.action.value,
            "timestamp": self.timestamp.isoformat(),
            "actor_id": self.actor_id,
            "target": self.target,
            "decision": self.decision,
            "rationale": list(self.rationale),
            "session_id": self.session_id,
            "ip_address": self.ip_address,
            "client_id": self.client_id,
            "data": self.data,
        }
