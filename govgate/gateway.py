"""
Governance Gateway

The single entry point collaborators use. Wires the context cache, access
engine, risk assessor, compliance validator, session manager and audit
logger over a StorageBundle, and exposes the operations a presentation
layer needs.

Usage:
    bundle = await create_storage_from_env()
    gateway = GovernanceGateway(bundle, settings_from_env())
    await gateway.start()

    session = await gateway.login({"username": "ana", "password": "..."})
    context = await gateway.get_context(session.user_id)
    decision = await gateway.decide(
        Action(operation="read", table="incident", session_id=session.session_id),
        context,
    )

    await gateway.close()
"""

import logging
from typing import Any, Iterable, Mapping

from govgate.access.cache import AccessContextCache
from govgate.access.engine import AccessDecisionEngine
from govgate.access.models import Capabilities, Operation, SecurityContext
from govgate.audit.events import AuditEvent, AuditEventType
from govgate.audit.logger import AuditLogger, DeliveryFailureHook
from govgate.clock import Clock, utcnow
from govgate.config import GovernanceSettings
from govgate.errors import NoActiveSession
from govgate.policy.compliance import CompliancePolicy, ComplianceValidator, load_policies
from govgate.policy.governance import GovernanceDecisionEngine
from govgate.policy.models import Action, GovernanceDecision
from govgate.policy.risk import RiskAssessor
from govgate.session.manager import SessionManager
from govgate.session.models import Session
from govgate.session.scheduler import Scheduler
from govgate.storage.ports import StorageBundle

logger = logging.getLogger(__name__)


class GovernanceGateway:
    """
    Facade over the governance core.

    Expected denials come back as GovernanceDecision values. Only identity
    resolution failures, audit delivery failures from record() and session
    errors are raised to the caller.
    """

    def __init__(
        self,
        storage: StorageBundle,
        settings: GovernanceSettings | None = None,
        policies: Iterable[CompliancePolicy] | None = None,
        clock: Clock = utcnow,
        scheduler: Scheduler | None = None,
        on_audit_failure: DeliveryFailureHook | None = None,
    ):
        """
        Initialize the gateway.

        Args:
            storage: Identity, grant, audit and authentication adapters
            settings: Governance settings (defaults if omitted)
            policies: Compliance policies; loaded from
                settings.compliance_policies_path when omitted
            clock: Time source shared by every component
            scheduler: Drives the session sweep (asyncio task if omitted)
            on_audit_failure: Hook called when an audit event is not delivered
        """
        self._storage = storage
        self._settings = settings or GovernanceSettings()
        settings = self._settings

        if policies is None and settings.compliance_policies_path:
            policies = load_policies(settings.compliance_policies_path)

        self.audit = AuditLogger(
            sink=storage.audit,
            max_events=settings.audit_buffer,
            on_delivery_failure=on_audit_failure,
        )
        self.contexts = AccessContextCache(
            identity=storage.identity,
            grants=storage.grants,
            ttl_seconds=settings.context_ttl_seconds,
            admin_role=settings.admin_role,
            clock=clock,
        )
        self.access = AccessDecisionEngine(
            grants=storage.grants,
            combination=settings.row_rule_combination,
        )
        self.compliance = ComplianceValidator(list(policies or []))
        self.sessions = SessionManager(
            auth=storage.auth,
            audit=self.audit,
            session_duration_seconds=settings.session_duration_seconds,
            inactivity_timeout_seconds=settings.inactivity_timeout_seconds,
            warning_window_seconds=settings.warning_window_seconds,
            check_interval_seconds=settings.check_interval_seconds,
            suspicious_threshold=settings.suspicious_threshold,
            remote_validation=settings.remote_session_validation,
            ended_retention_seconds=settings.ended_session_retention_seconds,
            clock=clock,
            scheduler=scheduler,
        )
        self.engine = GovernanceDecisionEngine(
            access=self.access,
            risk=RiskAssessor(bulk_threshold=settings.bulk_threshold),
            compliance=self.compliance,
            sessions=self.sessions,
            audit=self.audit,
            denial_weight=settings.denial_weight,
            malicious_weight=settings.malicious_weight,
            clock=clock,
        )
        self._clock = clock

    @property
    def settings(self) -> GovernanceSettings:
        return self._settings

    @property
    def storage(self) -> StorageBundle:
        return self._storage

    # ===== Lifecycle =====

    async def start(self) -> None:
        """Start the periodic session sweep."""
        await self.sessions.start()
        logger.info("Governance gateway started")

    async def stop(self) -> None:
        await self.sessions.stop()
        logger.info("Governance gateway stopped")

    async def close(self) -> None:
        """Stop the sweep and release storage connections."""
        await self.stop()
        await self._storage.close()

    # ===== Decisions =====

    async def decide(self, action: Action, context: SecurityContext) -> GovernanceDecision:
        """Decide and audit one action."""
        return await self.engine.decide(action, context)

    async def decide_for_user(self, user_id: str, action: Action) -> GovernanceDecision:
        """
        Resolve the user's context and decide.

        Raises:
            IdentityResolutionError: If the user cannot be resolved
        """
        context = await self.contexts.get_context(user_id)
        return await self.engine.decide(action, context)

    async def decide_for_session(self, action: Action) -> GovernanceDecision:
        """
        Decide for the user who owns action.session_id.

        Raises:
            NoActiveSession: If the action carries no known session
            IdentityResolutionError: If the session's user cannot be resolved
        """
        session = self.sessions.get_session(action.session_id) if action.session_id else None
        if session is None:
            raise NoActiveSession(action.session_id or "")
        return await self.decide_for_user(session.user_id, action)

    # ===== Context =====

    async def get_context(self, user_id: str) -> SecurityContext:
        return await self.contexts.get_context(user_id)

    async def invalidate_context(self, user_id: str) -> bool:
        """
        Drop a user's cached context so the next request rebuilds it.

        Returns:
            True if a cached context was removed
        """
        dropped = await self.contexts.invalidate(user_id)
        await self.audit.record_safely(AuditEvent(
            action=AuditEventType.CONTEXT_INVALIDATED,
            timestamp=self._clock(),
            actor_id=user_id,
            target="context",
            decision="invalidated" if dropped else "not_cached",
        ))
        return dropped

    async def has_role(self, user_id: str, role: str) -> bool:
        context = await self.contexts.get_context(user_id)
        return context.has_role(role)

    async def can_access_table(
        self,
        user_id: str,
        table: str,
        operation: Operation | str
    ) -> bool:
        context = await self.contexts.get_context(user_id)
        return self.access.can_access_table(context, table, operation)

    async def can_access_field(
        self,
        user_id: str,
        table: str,
        field_name: str,
        operation: Operation | str
    ) -> bool:
        context = await self.contexts.get_context(user_id)
        return self.access.can_access_field(context, table, field_name, operation)

    async def capabilities(self, user_id: str) -> Capabilities:
        context = await self.contexts.get_context(user_id)
        return context.capabilities(max_export_records=self._settings.max_export_records)

    async def build_row_filter(
        self,
        user_id: str,
        table: str,
        base_filter: str | None = None
    ) -> str | None:
        context = await self.contexts.get_context(user_id)
        return await self.access.build_row_filter(context, table, base_filter)

    async def mask_records(
        self,
        user_id: str,
        table: str,
        records: list[Mapping[str, Any]]
    ) -> list[dict[str, Any]]:
        context = await self.contexts.get_context(user_id)
        return self.access.mask_fields(context, table, records)

    # ===== Sessions =====

    async def login(
        self,
        credentials: dict[str, Any],
        ip_address: str | None = None,
        client_id: str | None = None
    ) -> Session:
        """
        Raises:
            AuthenticationFailed: If the endpoint rejects the credentials
        """
        return await self.sessions.login(credentials, ip_address=ip_address, client_id=client_id)

    async def logout(self, session_id: str) -> None:
        """End the session and drop its user's cached context."""
        session = self.sessions.get_session(session_id)
        await self.sessions.logout(session_id)
        if session is not None:
            await self.contexts.invalidate(session.user_id)

    async def authenticate(self, token: str) -> Session:
        """
        Resolve a session token to its live session.

        Raises:
            NoActiveSession: If no session holds the token
            SessionExpired: If the session ended by expiry or inactivity
            SessionInvalid: If the session was logged out or revoked
        """
        session = self.sessions.get_session_by_token(token)
        if session is None:
            raise NoActiveSession()
        return await self.sessions.validate(session.session_id)

    async def refresh_session(self, session_id: str) -> Session:
        return await self.sessions.refresh_session(session_id)

    async def record_activity(self, session_id: str) -> Session:
        return await self.sessions.record_activity(session_id)

    def is_authenticated(self, session_id: str) -> bool:
        return self.sessions.is_authenticated(session_id)
