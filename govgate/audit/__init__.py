# Audit
# Append-only record of decisions and session transitions

from govgate.audit.events import AuditEvent, AuditEventType
from govgate.audit.logger import (
    AuditLogger,
    audit_decision,
    audit_session_event,
    event_to_record,
    record_to_event,
)

__all__ = [
    "AuditEvent",
    "AuditEventType",
    "AuditLogger",
    "audit_decision",
    "audit_session_event",
    "event_to_record",
    "record_to_event",
]
