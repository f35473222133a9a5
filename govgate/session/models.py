"""
Session Model

An authenticated user session.

Session Lifecycle:
1. UNAUTHENTICATED - No session (unknown id)
2. ACTIVE - Logged in, within expiry and inactivity limits
3. WARNING - Within the warning window before expiry, warning emitted once
4. EXPIRED - Expiry, inactivity timeout or suspicious-activity threshold
5. TERMINATED - Logout or token rejected by the authentication endpoint
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class SessionStatus(str, Enum):
    """Session lifecycle states."""
    UNAUTHENTICATED = "unauthenticated"
    ACTIVE = "active"
    WARNING = "warning"        # Expiry is near, warning already issued
    EXPIRED = "expired"
    TERMINATED = "terminated"


class TerminationReason(str, Enum):
    """Reason codes recorded on the terminating audit event."""
    EXPIRED = "expired"
    INACTIVITY_TIMEOUT = "inactivity_timeout"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    INVALID_TOKEN = "invalid_token"
    USER_LOGOUT = "user_logout"


LIVE_STATUSES = (SessionStatus.ACTIVE, SessionStatus.WARNING)


class Session(BaseModel):
    """
    An authenticated session.

    Mutated only by the SessionManager, under the session's lock.
    """

    # === Identity ===
    session_id: str = Field(
        default_factory=lambda: f"ses_{uuid4().hex}",
        description="Unique session identifier"
    )
    token: str = Field(
        ...,
        description="Token issued by the authentication endpoint"
    )
    user_id: str = Field(
        ...,
        description="Owning user"
    )

    # === Lifecycle ===
    status: SessionStatus = Field(
        default=SessionStatus.ACTIVE,
        description="Current session status"
    )
    created_at: datetime = Field(
        ...,
        description="When the session was created"
    )
    expires_at: datetime = Field(
        ...,
        description="Absolute expiry"
    )
    last_activity_at: datetime = Field(
        ...,
        description="Last tracked user interaction"
    )
    terminated_at: datetime | None = Field(
        default=None,
        description="When the session ended"
    )
    termination_reason: TerminationReason | None = Field(
        default=None,
        description="Why the session ended"
    )

    # === Monitoring ===
    suspicious_activity_count: int = Field(
        default=0,
        ge=0,
        description="Weighted anomaly signals since the last interaction"
    )
    warning_issued: bool = Field(
        default=False,
        description="Expiry warning already emitted for the current expiry"
    )

    # === Origin ===
    ip_address: str | None = Field(
        default=None,
        description="Client network address at login"
    )
    client_id: str | None = Field(
        default=None,
        description="Client application identifier"
    )

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def inactive_for(self, now: datetime) -> timedelta:
        return now - self.last_activity_at

    def in_warning_window(self, now: datetime, window: timedelta) -> bool:
        return self.expires_at - window <= now < self.expires_at

    def to_summary_dict(self) -> dict[str, Any]:
        """Return a summary for responses and logging. Never includes the token."""
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
            "suspicious_activity_count": self.suspicious_activity_count,
            "warning_issued": self.warning_issued,
            "termination_reason": (
                self.termination_reason.value if self.termination_reason else None
            ),
        }
