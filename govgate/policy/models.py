"""
Governance Models

Action requests, layer outputs and the merged GovernanceDecision.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from govgate.access.models import Operation
from govgate.clock import utcnow


class RiskLevel(str, Enum):
    """Risk level classifications."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_ORDER[self]

    def escalate(self, other: "RiskLevel") -> "RiskLevel":
        """The higher of the two levels."""
        return other if other.rank > self.rank else self


_RISK_ORDER = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


class DecisionAction(str, Enum):
    """Final governance outcome."""
    ALLOW = "allow"
    DENY = "deny"
    CONDITIONAL = "conditional"  # Allowed once the required controls are met


class Action(BaseModel):
    """
    An operation a user wants to perform on a table.
    """
    operation: Operation = Field(
        ...,
        description="read, write, create or delete"
    )
    table: str = Field(
        ...,
        description="Target table"
    )
    fields: list[str] = Field(
        default_factory=list,
        description="Fields read or written"
    )
    row: dict[str, Any] | None = Field(
        default=None,
        description="Attributes of the targeted record, for row checks"
    )
    values: dict[str, Any] | None = Field(
        default=None,
        description="Mutation payload"
    )
    base_filter: str | None = Field(
        default=None,
        description="Caller-supplied query filter for reads"
    )
    sensitive: bool = Field(
        default=False,
        description="Target is classified sensitive"
    )
    purpose: str | None = Field(
        default=None,
        description="Declared business purpose"
    )
    record_count: int = Field(
        default=1,
        ge=0,
        description="Number of records affected"
    )

    # Origin
    session_id: str | None = Field(
        default=None,
        description="Session the action runs under"
    )
    ip_address: str | None = Field(
        default=None,
        description="Client network address"
    )
    client_id: str | None = Field(
        default=None,
        description="Client application identifier"
    )

    @property
    def target(self) -> str:
        if self.row and self.row.get("sys_id"):
            return f"{self.table}:{self.row['sys_id']}"
        return self.table

    def touched_fields(self) -> list[str]:
        """Declared fields plus mutation payload keys, first occurrence order."""
        names = list(self.fields)
        if self.values:
            names.extend(self.values)
        return list(dict.fromkeys(names))


@dataclass(frozen=True)
class RiskAssessment:
    """Output of the RiskAssessor."""
    level: RiskLevel
    reason: str
    mitigations: tuple[str, ...] = ()


@dataclass(frozen=True)
class ComplianceResult:
    """
    Output of the ComplianceValidator.

    compliant=True with remediations means the action may proceed once the
    remediations are applied as controls.
    """
    compliant: bool
    violated_policy: str | None = None
    remediations: tuple[str, ...] = ()
    reasons: tuple[str, ...] = ()

    @property
    def requires_controls(self) -> bool:
        return self.compliant and bool(self.remediations)


class GovernanceDecision(BaseModel):
    """
    Merged outcome of the access, risk and compliance layers.

    Ephemeral: recomputed per request and persisted only through the audit log.
    decided_at is metadata: two decisions are equal when everything but the
    timestamp matches.
    """
    model_config = ConfigDict(frozen=True)

    action: DecisionAction = Field(
        ...,
        description="allow, deny or conditional"
    )
    reasons: list[str] = Field(
        default_factory=list,
        description="Human-readable reasons, sorted"
    )
    required_controls: list[str] = Field(
        default_factory=list,
        description="Controls to satisfy before proceeding, sorted"
    )
    risk_level: RiskLevel | None = Field(
        default=None,
        description="Assessed risk, absent when access was denied first"
    )
    row_filter: str | None = Field(
        default=None,
        description="Row filter to apply to reads"
    )
    decided_at: datetime = Field(
        default_factory=utcnow,
        description="When the decision was made"
    )

    @property
    def allowed(self) -> bool:
        return self.action != DecisionAction.DENY

    def _outcome(self) -> tuple:
        return (
            self.action,
            tuple(self.reasons),
            tuple(self.required_controls),
            self.risk_level,
            self.row_filter,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GovernanceDecision):
            return NotImplemented
        return self._outcome() == other._outcome()

    def __hash__(self) -> int:
        return hash(self._outcome())

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "reasons": list(self.reasons),
            "required_controls": list(self.required_controls),
            "risk_level": self.risk_level.value if self.risk_level else None,
            "row_filter": self.row_filter,
            "decided_at": self.decided_at.isoformat(),
        }
