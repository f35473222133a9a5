"""
Session Manager

Owns the session-by-id map and drives the session state machine:

    UNAUTHENTICATED -> ACTIVE -> WARNING -> EXPIRED / TERMINATED

Transitions for one session are serialized by that session's lock, so a
sweep racing a refresh or a decision applies at most one transition. There
is no lock across sessions.

Every transition emits exactly one audit event:
- session.login       on login
- session.refreshed   on refresh
- session.warning     once per expiry, when the warning window is entered
- session.terminated  on expiry, inactivity, suspicious activity, bad token
- session.logout      on logout (always, even for unknown sessions)

Ended sessions stay queryable for a retention period so validate() can
still say why they ended; the sweep then destroys them.

Time comes from an injectable clock and the periodic sweep from an
injectable scheduler, so the whole machine can be driven deterministically.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, TYPE_CHECKING

from govgate.audit.events import AuditEvent, AuditEventType
from govgate.audit.logger import audit_session_event
from govgate.clock import Clock, utcnow
from govgate.errors import NoActiveSession, SessionExpired, SessionInvalid
from govgate.session.models import (
    Session,
    SessionStatus,
    TerminationReason,
)
from govgate.session.scheduler import AsyncioScheduler, Scheduler
from govgate.storage.ports import AuthenticationFailed, StorageError

if TYPE_CHECKING:
    from govgate.audit.logger import AuditLogger
    from govgate.storage.ports import AuthenticationEndpoint

logger = logging.getLogger(__name__)


DEFAULT_SESSION_DURATION = 8 * 3600
DEFAULT_INACTIVITY_TIMEOUT = 30 * 60
DEFAULT_WARNING_WINDOW = 5 * 60
DEFAULT_CHECK_INTERVAL = 2 * 60
DEFAULT_SUSPICIOUS_THRESHOLD = 10
DEFAULT_ENDED_RETENTION = 5 * 60

# Reasons that end in EXPIRED rather than TERMINATED
_EXPIRY_REASONS = (
    TerminationReason.EXPIRED,
    TerminationReason.INACTIVITY_TIMEOUT,
    TerminationReason.SUSPICIOUS_ACTIVITY,
)


class SessionManager:
    """
    Manages the lifecycle of authenticated sessions.
    """

    def __init__(
        self,
        auth: AuthenticationEndpoint,
        audit: AuditLogger | None = None,
        session_duration_seconds: float = DEFAULT_SESSION_DURATION,
        inactivity_timeout_seconds: float = DEFAULT_INACTIVITY_TIMEOUT,
        warning_window_seconds: float = DEFAULT_WARNING_WINDOW,
        check_interval_seconds: float = DEFAULT_CHECK_INTERVAL,
        suspicious_threshold: int = DEFAULT_SUSPICIOUS_THRESHOLD,
        remote_validation: bool = False,
        ended_retention_seconds: float = DEFAULT_ENDED_RETENTION,
        clock: Clock = utcnow,
        scheduler: Scheduler | None = None,
    ):
        """
        Initialize the session manager.

        Args:
            auth: Authentication endpoint adapter
            audit: Audit logger for transition events
            session_duration_seconds: Lifetime granted at login and refresh
            inactivity_timeout_seconds: Max time without a tracked interaction
            warning_window_seconds: Warn this long before expiry
            check_interval_seconds: How often the sweep runs
            suspicious_threshold: Counter value above which the session ends
            remote_validation: Validate tokens against the endpoint on checks
            ended_retention_seconds: How long an ended session stays queryable
                before the sweep destroys it
            clock: Time source
            scheduler: Runs the periodic sweep (asyncio task by default)
        """
        self._auth = auth
        self._audit = audit
        self._duration = timedelta(seconds=session_duration_seconds)
        self._inactivity_timeout = timedelta(seconds=inactivity_timeout_seconds)
        self._warning_window = timedelta(seconds=warning_window_seconds)
        self._check_interval = check_interval_seconds
        self._suspicious_threshold = suspicious_threshold
        self._remote_validation = remote_validation
        self._ended_retention = timedelta(seconds=ended_retention_seconds)
        self._clock = clock
        self._scheduler = scheduler or AsyncioScheduler()

        # Primary index: session_id -> Session
        self._sessions: dict[str, Session] = {}

        # Secondary index: token -> session_id
        self._by_token: dict[str, str] = {}

        # Sessions the sweep still checks
        self._live: set[str] = set()

        # Per-session locks
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def suspicious_threshold(self) -> int:
        return self._suspicious_threshold

    # ===== Sweep =====

    async def start(self) -> None:
        """Start the periodic session sweep."""
        if not self._scheduler.running:
            self._scheduler.start(self._check_interval, self.sweep)
            logger.info(f"Session sweep started (every {self._check_interval}s)")

    async def stop(self) -> None:
        """Stop the periodic session sweep."""
        if self._scheduler.running:
            await self._scheduler.stop()
            logger.info("Session sweep stopped")

    async def sweep(self) -> int:
        """
        Check every live session once, then destroy sessions that ended
        more than the retention period ago.

        Returns:
            Number of sessions that ended during this sweep
        """
        ended = 0
        for session_id in list(self._live):
            try:
                status = await self.check_session(session_id)
            except StorageError as e:
                logger.error(f"Session check failed for {session_id}: {e}")
                continue
            if status in (SessionStatus.EXPIRED, SessionStatus.TERMINATED):
                ended += 1

        evicted = self._evict_ended(self._clock())
        if evicted:
            logger.debug(f"Destroyed {evicted} ended sessions")
        return ended

    def _evict_ended(self, now: datetime) -> int:
        cutoff = now - self._ended_retention
        stale = [
            session_id
            for session_id, session in self._sessions.items()
            if not session.is_live
            and session.terminated_at is not None
            and session.terminated_at <= cutoff
        ]
        evicted = 0
        for session_id in stale:
            lock = self._locks.get(session_id)
            if lock is not None and lock.locked():
                continue
            session = self._sessions.pop(session_id)
            self._locks.pop(session_id, None)
            if self._by_token.get(session.token) == session_id:
                del self._by_token[session.token]
            evicted += 1
        return evicted

    # ===== Login / refresh / logout =====

    async def login(
        self,
        credentials: dict[str, Any],
        ip_address: str | None = None,
        client_id: str | None = None
    ) -> Session:
        """
        Authenticate and open a session.

        Raises:
            AuthenticationFailed: If the endpoint rejects the credentials
        """
        issued = await self._auth.login(credentials)
        now = self._clock()

        session = Session(
            token=issued.token,
            user_id=issued.user_id,
            created_at=now,
            expires_at=self._expiry_from(now, issued.expires_at),
            last_activity_at=now,
            ip_address=ip_address,
            client_id=client_id,
        )

        self._sessions[session.session_id] = session
        self._by_token[session.token] = session.session_id
        self._locks[session.session_id] = asyncio.Lock()
        self._live.add(session.session_id)

        logger.info(
            f"Session created: {session.session_id} "
            f"(user: {session.user_id}, expires: {session.expires_at.isoformat()})"
        )
        await self._emit(AuditEventType.SESSION_LOGIN, session, now=now)
        return session

    async def refresh_session(self, session_id: str) -> Session:
        """
        Extend a live session and return it to ACTIVE.

        Raises:
            NoActiveSession: If the session is unknown or no longer live
            SessionInvalid: If the endpoint refused to refresh the token
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise NoActiveSession(session_id)

        async with self._locks[session_id]:
            now = self._clock()
            await self._check_locked(session, now)
            if not session.is_live:
                raise NoActiveSession(session_id)

            try:
                issued = await self._auth.refresh(session.token)
            except AuthenticationFailed as e:
                await self._terminate(session, TerminationReason.INVALID_TOKEN, now)
                raise SessionInvalid(session_id, TerminationReason.INVALID_TOKEN.value) from e

            if issued.token != session.token:
                self._by_token.pop(session.token, None)
                session.token = issued.token
                self._by_token[issued.token] = session_id

            session.expires_at = self._expiry_from(now, issued.expires_at)
            session.last_activity_at = now
            session.status = SessionStatus.ACTIVE
            session.warning_issued = False

            logger.info(f"Session refreshed: {session_id} (expires: {session.expires_at.isoformat()})")
            await self._emit(AuditEventType.SESSION_REFRESHED, session, now=now)
            return session

    async def logout(
        self,
        session_id: str,
        reason: str = TerminationReason.USER_LOGOUT.value
    ) -> None:
        """
        End a session. Always succeeds and always audits.

        The session leaves the sweep set immediately. A reason that names a
        TerminationReason is stored on the session (and an expiry reason
        ends it EXPIRED); any other reason is stored as user_logout and kept
        verbatim in the audit rationale.
        """
        session = self._sessions.get(session_id)
        now = self._clock()

        if session is None:
            logger.info(f"Logout for unknown session {session_id}")
            await self._emit_unknown_logout(session_id, reason, now)
            return

        try:
            ending = TerminationReason(reason)
        except ValueError:
            ending = TerminationReason.USER_LOGOUT

        async with self._locks[session_id]:
            was_live = session.is_live
            if was_live:
                status = SessionStatus.EXPIRED if ending in _EXPIRY_REASONS else SessionStatus.TERMINATED
                self._end(session, status, ending, now)
                try:
                    await self._auth.logout(session.token)
                except StorageError as e:
                    logger.warning(f"Token revocation failed for {session_id}: {e}")

            logger.info(f"Session logged out: {session_id} (reason: {reason})")
            await self._emit(
                AuditEventType.SESSION_LOGOUT,
                session,
                reason=reason,
                data={"was_live": was_live},
                now=now,
            )

    # ===== Activity =====

    async def record_activity(
        self,
        session_id: str,
        reset_suspicious: bool = True
    ) -> Session:
        """
        Record a tracked user interaction.

        Resets the inactivity timestamp and, by default, the suspicious
        counter. A session in WARNING stays in WARNING until refreshed.

        Raises:
            NoActiveSession: If the session is unknown or no longer live
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise NoActiveSession(session_id)

        async with self._locks[session_id]:
            now = self._clock()
            await self._check_locked(session, now)
            if not session.is_live:
                raise NoActiveSession(session_id)

            session.last_activity_at = now
            if reset_suspicious:
                session.suspicious_activity_count = 0
            return session

    async def record_suspicious_activity(self, session_id: str, weight: int = 1) -> int:
        """
        Add an anomaly signal to the session's counter.

        The session ends with suspicious_activity once the counter exceeds
        the threshold.

        Returns:
            The counter after the increment (0 for unknown sessions)
        """
        session = self._sessions.get(session_id)
        if session is None:
            return 0

        async with self._locks[session_id]:
            if not session.is_live:
                return session.suspicious_activity_count

            session.suspicious_activity_count += weight
            count = session.suspicious_activity_count
            logger.warning(
                f"Suspicious activity on session {session_id}: "
                f"{count}/{self._suspicious_threshold}"
            )
            if count > self._suspicious_threshold:
                await self._terminate(session, TerminationReason.SUSPICIOUS_ACTIVITY, self._clock())
            return count

    # ===== Checks =====

    async def check_session(self, session_id: str) -> SessionStatus:
        """
        Apply any due transition to a session.

        Returns:
            The session's status after the check
        """
        session = self._sessions.get(session_id)
        if session is None:
            return SessionStatus.UNAUTHENTICATED

        async with self._locks[session_id]:
            await self._check_locked(session, self._clock())
            return session.status

    async def validate(self, session_id: str) -> Session:
        """
        Check a session and return it if it is still live.

        Raises:
            NoActiveSession: If the session is unknown
            SessionExpired: If it ended by expiry, inactivity or suspicious activity
            SessionInvalid: If it was logged out or its token was rejected
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise NoActiveSession(session_id)

        status = await self.check_session(session_id)
        if session.is_live:
            return session

        reason = session.termination_reason.value if session.termination_reason else status.value
        if status == SessionStatus.EXPIRED:
            raise SessionExpired(session_id, reason)
        raise SessionInvalid(session_id, reason)

    async def _check_locked(self, session: Session, now: datetime) -> None:
        if not session.is_live:
            return

        reason = self._due_termination(session, now)
        if reason is None and self._remote_validation:
            if not await self._auth.validate(session.token):
                reason = TerminationReason.INVALID_TOKEN

        if reason is not None:
            await self._terminate(session, reason, now)
            return

        if not session.warning_issued and session.in_warning_window(now, self._warning_window):
            session.status = SessionStatus.WARNING
            session.warning_issued = True
            remaining = int((session.expires_at - now).total_seconds())
            logger.info(f"Session {session.session_id} expires in {remaining}s")
            await self._emit(
                AuditEventType.SESSION_WARNING,
                session,
                data={"seconds_remaining": remaining},
                now=now,
            )

    def _due_termination(self, session: Session, now: datetime) -> TerminationReason | None:
        if session.is_expired(now):
            return TerminationReason.EXPIRED
        if session.inactive_for(now) > self._inactivity_timeout:
            return TerminationReason.INACTIVITY_TIMEOUT
        if session.suspicious_activity_count > self._suspicious_threshold:
            return TerminationReason.SUSPICIOUS_ACTIVITY
        return None

    async def _terminate(
        self,
        session: Session,
        reason: TerminationReason,
        now: datetime
    ) -> None:
        status = SessionStatus.EXPIRED if reason in _EXPIRY_REASONS else SessionStatus.TERMINATED
        self._end(session, status, reason, now)
        logger.info(f"Session {session.session_id} {status.value} (reason: {reason.value})")
        await self._emit(AuditEventType.SESSION_TERMINATED, session, reason=reason.value, now=now)

    def _end(
        self,
        session: Session,
        status: SessionStatus,
        reason: TerminationReason,
        now: datetime
    ) -> None:
        session.status = status
        session.termination_reason = reason
        session.terminated_at = now
        self._live.discard(session.session_id)
        self._by_token.pop(session.token, None)

    def _expiry_from(self, now: datetime, endpoint_expiry: datetime | None) -> datetime:
        expiry = now + self._duration
        if endpoint_expiry is not None and endpoint_expiry < expiry:
            return endpoint_expiry
        return expiry

    async def _emit(
        self,
        event_type: AuditEventType,
        session: Session,
        reason: str | None = None,
        data: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> None:
        if self._audit is None:
            return
        await self._audit.record_safely(
            audit_session_event(event_type, session, reason=reason, data=data, timestamp=now)
        )

    async def _emit_unknown_logout(self, session_id: str, reason: str, now: datetime) -> None:
        if self._audit is None:
            return
        await self._audit.record_safely(AuditEvent(
            action=AuditEventType.SESSION_LOGOUT,
            timestamp=now,
            target="session",
            decision=SessionStatus.UNAUTHENTICATED.value,
            rationale=[reason],
            session_id=session_id,
            data={"was_live": False},
        ))

    # ===== Queries =====

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def get_session_by_token(self, token: str) -> Session | None:
        session_id = self._by_token.get(token)
        return self._sessions.get(session_id) if session_id else None

    def is_authenticated(self, session_id: str) -> bool:
        """Whether the session is live as of the last check."""
        session = self._sessions.get(session_id)
        return session is not None and session.is_live

    def status_of(self, session_id: str) -> SessionStatus:
        session = self._sessions.get(session_id)
        return session.status if session else SessionStatus.UNAUTHENTICATED

    def suspicious_count(self, session_id: str) -> int:
        session = self._sessions.get(session_id)
        return session.suspicious_activity_count if session else 0

    @property
    def session_count(self) -> int:
        """Number of sessions held, including ended ones not yet destroyed."""
        return len(self._sessions)

    @property
    def active_count(self) -> int:
        """Number of live sessions."""
        return len(self._live)
