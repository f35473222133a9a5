# Session Management
# Authenticated session lifecycle: login, warning, expiry, logout

from govgate.session.models import (
    Session,
    SessionStatus,
    TerminationReason,
)
from govgate.session.scheduler import (
    Scheduler,
    AsyncioScheduler,
    ManualScheduler,
)
from govgate.session.manager import SessionManager

__all__ = [
    "Session",
    "SessionStatus",
    "TerminationReason",
    "Scheduler",
    "AsyncioScheduler",
    "ManualScheduler",
    "SessionManager",
]
