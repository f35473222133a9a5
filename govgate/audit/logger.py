"""
Audit Logger

Records every decision and session transition.

Events are kept in an in-memory tail for fast queries and delivered to the
configured AuditSink. Delivery is advisory, not transactional:

- record() raises AuditDeliveryFailure (retryable) after buffering the event
- record_safely() is what the governance core uses; it never raises, so a
  sink outage can never reverse or block a decision already made
- retry_pending() re-delivers buffered events in order
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, TYPE_CHECKING

from govgate.audit.events import AuditEvent, AuditEventType
from govgate.errors import AuditDeliveryFailure
from govgate.storage.ports import AuditRecord

if TYPE_CHECKING:
    from govgate.access.models import SecurityContext
    from govgate.policy.models import Action, GovernanceDecision
    from govgate.session.models import Session
    from govgate.storage.ports import AuditSink

logger = logging.getLogger(__name__)


DeliveryFailureHook = Callable[[AuditDeliveryFailure], Awaitable[None] | None]


class AuditLogger:
    """
    Append-only audit trail with best-effort sink delivery.
    """

    def __init__(
        self,
        sink: AuditSink | None = None,
        max_events: int = 10000,
        max_pending: int = 10000,
        on_delivery_failure: DeliveryFailureHook | None = None,
    ):
        """
        Initialize the audit logger.

        Args:
            sink: Optional persistent sink
            max_events: Max events kept in memory (oldest evicted)
            max_pending: Max undelivered events buffered for retry
            on_delivery_failure: Called with the AuditDeliveryFailure when a
                safe record could not be delivered
        """
        self._sink = sink
        self._max_events = max_events
        self._max_pending = max_pending
        self._on_delivery_failure = on_delivery_failure

        self._events: list[AuditEvent] = []
        self._pending: list[AuditEvent] = []
        self._total = 0

    async def record(self, event: AuditEvent) -> None:
        """
        Record an event.

        Raises:
            AuditDeliveryFailure: If the sink rejected the event. The event is
                kept in memory and buffered for retry_pending().
        """
        self._append(event)

        if self._sink is None:
            return

        try:
            await self._sink.append(event_to_record(event))
        except Exception as e:
            self._buffer(event)
            logger.error(f"Audit delivery failed for {event.action.value} {event.event_id}: {e}")
            raise AuditDeliveryFailure(event.event_id, e) from e

    async def record_safely(self, event: AuditEvent) -> bool:
        """
        Record an event without ever raising.

        Returns:
            True if the event reached the sink (or no sink is configured)
        """
        try:
            await self.record(event)
            return True
        except AuditDeliveryFailure as failure:
            await self._notify(failure)
            return False

    async def retry_pending(self) -> int:
        """
        Re-deliver buffered events, oldest first.

        Stops at the first failure so delivery order is preserved.

        Returns:
            Number of events delivered
        """
        if self._sink is None or not self._pending:
            return 0

        delivered = 0
        while self._pending:
            event = self._pending[0]
            try:
                await self._sink.append(event_to_record(event))
            except Exception as e:
                logger.warning(
                    f"Audit retry failed for {event.event_id} "
                    f"({len(self._pending)} pending): {e}"
                )
                break
            self._pending.pop(0)
            delivered += 1

        if delivered:
            logger.info(f"Re-delivered {delivered} audit events")
        return delivered

    def _append(self, event: AuditEvent) -> None:
        self._events.append(event.model_copy(deep=True))
        self._total += 1
        if len(self._events) > self._max_events:
            # Remove oldest 10%
            del self._events[:max(1, self._max_events // 10)]

    def _buffer(self, event: AuditEvent) -> None:
        self._pending.append(event)
        if len(self._pending) > self._max_pending:
            dropped = self._pending.pop(0)
            logger.error(f"Audit retry buffer full, dropped event {dropped.event_id}")

    async def _notify(self, failure: AuditDeliveryFailure) -> None:
        if self._on_delivery_failure is None:
            return
        try:
            result = self._on_delivery_failure(failure)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Audit delivery failure hook raised")

    # ===== Queries =====

    def get_by_session(self, session_id: str, tail: int = 100) -> tuple[list[AuditEvent], bool]:
        """
        Get events for a session.

        Returns:
            Tuple of (events, truncated)
        """
        events = [e for e in self._events if e.session_id == session_id]
        return _detached(events[-tail:]), len(events) > tail

    def get_by_actor(self, actor_id: str, tail: int = 100) -> tuple[list[AuditEvent], bool]:
        """
        Get events triggered by a user.

        Returns:
            Tuple of (events, truncated)
        """
        events = [e for e in self._events if e.actor_id == actor_id]
        return _detached(events[-tail:]), len(events) > tail

    def tail(self, count: int = 100) -> list[AuditEvent]:
        """Most recent events."""
        return _detached(self._events[-count:])

    def total_events(self) -> int:
        """Events recorded since startup, including evicted ones."""
        return self._total

    @property
    def pending_count(self) -> int:
        return len(self._pending)


def _detached(events: list[AuditEvent]) -> list[AuditEvent]:
    """Copies callers may change without touching the recorded trail."""
    return [e.model_copy(deep=True) for e in events]


# =============================================================================
# Record conversion
# =============================================================================

def event_to_record(event: AuditEvent) -> AuditRecord:
    return AuditRecord(
        event_id=event.event_id,
        event_type=event.action.value,
        timestamp=event.timestamp,
        actor_id=event.actor_id,
        target=event.target,
        decision=event.decision,
        rationale=list(event.rationale),
        session_id=event.session_id,
        ip_address=event.ip_address,
        client_id=event.client_id,
        data=dict(event.data),
    )


def record_to_event(record: AuditRecord) -> AuditEvent:
    return AuditEvent(
        event_id=record.event_id,
        action=AuditEventType(record.event_type),
        timestamp=record.timestamp,
        actor_id=record.actor_id,
        target=record.target,
        decision=record.decision,
        rationale=list(record.rationale),
        session_id=record.session_id,
        ip_address=record.ip_address,
        client_id=record.client_id,
        data=dict(record.data),
    )


# =============================================================================
# Helper functions to create audit events
# =============================================================================

def audit_decision(
    action: Action,
    context: SecurityContext,
    decision: GovernanceDecision
) -> AuditEvent:
    """Create audit event for a governance decision."""
    return AuditEvent(
        action=AuditEventType.DECISION,
        timestamp=decision.decided_at,
        actor_id=context.user_id,
        target=action.target,
        decision=decision.action.value,
        rationale=list(decision.reasons),
        session_id=action.session_id,
        ip_address=action.ip_address,
        client_id=action.client_id,
        data={
            "operation": action.operation.value,
            "fields": action.touched_fields(),
            "required_controls": list(decision.required_controls),
            "risk_level": decision.risk_level.value if decision.risk_level else None,
        },
    )


def audit_session_event(
    event_type: AuditEventType,
    session: Session,
    reason: str | None = None,
    data: dict[str, Any] | None = None,
    timestamp: Any = None,
) -> AuditEvent:
    """Create audit event for a session transition."""
    fields: dict[str, Any] = {
        "action": event_type,
        "actor_id": session.user_id,
        "target": "session",
        "decision": session.status.value,
        "rationale": [reason] if reason else [],
        "session_id": session.session_id,
        "ip_address": session.ip_address,
        "client_id": session.client_id,
        "data": dict(data or {}),
    }
    if timestamp is not None:
        fields["timestamp"] = timestamp
    return AuditEvent(**fields)
