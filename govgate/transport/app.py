"""
Governance Gateway Application

FastAPI application exposing the governance gateway over HTTP.
This is the main entry point for running the gateway as a service.

Storage is configured via environment variables:
- GOV_STORAGE_BACKEND: "memory", "sqlite", "postgresql", "mysql"
- GOV_DATABASE_URL: SQLAlchemy async connection URL
- GOV_REDIS_URL: Redis URL for the shared audit sink

Governance behaviour (TTLs, session timeouts, weights, policies) is
configured via the GOV_* variables documented in govgate.config.

Environment variables can be loaded from a .env file in the project root.

/context and /decisions require "Authorization: Bearer <session token>",
the token POST /sessions returns, and act for that session's user.

Run with:
    uvicorn govgate.transport.app:app --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

# Load environment variables from .env file
load_dotenv()

from govgate.config import settings_from_env
from govgate.errors import (
    IdentityResolutionError,
    NoActiveSession,
    SessionInvalid,
)
from govgate.gateway import GovernanceGateway
from govgate.policy.models import Action
from govgate.session.models import Session
from govgate.storage import AuthenticationFailed, create_storage

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Global instance (created at startup)
gateway: GovernanceGateway | None = None


# =============================================================================
# Request bodies
# =============================================================================

class LoginRequest(BaseModel):
    credentials: dict[str, Any] = Field(
        ...,
        description="Passed unchanged to the authentication endpoint"
    )
    client_id: str | None = Field(
        default=None,
        description="Client application identifier"
    )


class DecisionRequest(BaseModel):
    action: Action = Field(
        ...,
        description="The action to decide"
    )
    user_id: str | None = Field(
        default=None,
        description="Decide on behalf of this user (admin sessions only)"
    )


# =============================================================================
# Lifespan
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Builds storage and the gateway, starts the session sweep, and tears
    everything down on shutdown.
    """
    global gateway

    # Startup
    logger.info("Starting governance gateway...")

    settings = settings_from_env()
    storage = await create_storage(settings.storage)
    logger.info(f"Storage initialized: {type(storage.identity).__name__}")

    gateway = GovernanceGateway(storage, settings)
    await gateway.start()

    logger.info(
        f"Governance gateway started "
        f"(policies: {len(gateway.compliance.policies)}, "
        f"row rules: {settings.row_rule_combination.value})"
    )

    yield

    # Shutdown
    logger.info("Shutting down governance gateway...")
    await gateway.close()
    gateway = None
    logger.info("Governance gateway stopped")


app = FastAPI(
    title="Governance Gateway",
    description="Policy-based access control and governance decisions",
    version="0.1.0",
    lifespan=lifespan
)


def _gateway() -> GovernanceGateway:
    if gateway is None:
        raise HTTPException(status_code=503, detail="Gateway not initialized")
    return gateway


bearer = HTTPBearer(auto_error=False)


async def current_session(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> Session:
    """Resolve the Authorization: Bearer <session token> header."""
    if credentials is None:
        raise NoActiveSession()
    return await _gateway().authenticate(credentials.credentials)


async def _require_self_or_admin(session: Session, user_id: str) -> None:
    if user_id == session.user_id:
        return
    caller = await _gateway().get_context(session.user_id)
    if not caller.is_admin:
        raise HTTPException(status_code=403, detail="not permitted for another user")


# =============================================================================
# Error mapping
# =============================================================================

@app.exception_handler(NoActiveSession)
async def no_active_session_handler(request: Request, exc: NoActiveSession):
    return JSONResponse(status_code=401, content={"detail": "no active session"})


@app.exception_handler(SessionInvalid)
async def session_invalid_handler(request: Request, exc: SessionInvalid):
    return JSONResponse(
        status_code=401,
        content={"detail": "session invalid", "reason": exc.reason},
    )


@app.exception_handler(AuthenticationFailed)
async def authentication_failed_handler(request: Request, exc: AuthenticationFailed):
    return JSONResponse(status_code=401, content={"detail": "authentication failed"})


@app.exception_handler(IdentityResolutionError)
async def identity_error_handler(request: Request, exc: IdentityResolutionError):
    if exc.not_found:
        return JSONResponse(
            status_code=404,
            content={"detail": "identity not found", "reason": exc.reason},
        )
    logger.error(f"Identity resolution failed: {exc}")
    return JSONResponse(status_code=503, content={"detail": "identity provider unavailable"})


# =============================================================================
# Sessions
# =============================================================================

@app.post("/sessions", status_code=201)
async def create_session(body: LoginRequest, request: Request):
    """Authenticate and open a session. The token is returned only here."""
    ip_address = request.client.host if request.client else None
    session = await _gateway().login(
        body.credentials,
        ip_address=ip_address,
        client_id=body.client_id,
    )
    return {**session.to_summary_dict(), "token": session.token}


@app.get("/sessions/{session_id}")
async def get_session(session_id: str):
    gw = _gateway()
    await gw.sessions.check_session(session_id)
    session = gw.sessions.get_session(session_id)
    if session is None:
        raise NoActiveSession(session_id)
    return session.to_summary_dict()


@app.post("/sessions/{session_id}/refresh")
async def refresh_session(session_id: str):
    session = await _gateway().refresh_session(session_id)
    return {**session.to_summary_dict(), "token": session.token}


@app.post("/sessions/{session_id}/activity")
async def record_activity(session_id: str):
    session = await _gateway().record_activity(session_id)
    return session.to_summary_dict()


@app.delete("/sessions/{session_id}", status_code=204)
async def logout(session_id: str):
    await _gateway().logout(session_id)


# =============================================================================
# Context and decisions
# =============================================================================

@app.get("/context/{user_id}")
async def get_context(user_id: str, session: Session = Depends(current_session)):
    """Context snapshot of the session's own user, or of anyone for admins."""
    await _require_self_or_admin(session, user_id)
    gw = _gateway()
    context = await gw.get_context(user_id)
    capabilities = context.capabilities(max_export_records=gw.settings.max_export_records)
    return {
        **context.to_snapshot(),
        "capabilities": {
            "can_export": capabilities.can_export,
            "can_bulk_update": capabilities.can_bulk_update,
            "max_export_records": capabilities.max_export_records,
        },
    }


@app.post("/decisions")
async def decide(body: DecisionRequest, session: Session = Depends(current_session)):
    """
    Decide one action for the bearer session's user.

    The action is bound to the bearer session whatever session_id the body
    carries. An admin session may name another user_id. Denials are
    returned as decisions with status 200; only session, permission and
    identity errors map to error statuses.
    """
    gw = _gateway()
    if body.user_id is not None and body.user_id != session.user_id:
        await _require_self_or_admin(session, body.user_id)
        # The admin's session was validated above and is not the user's
        action = body.action.model_copy(update={"session_id": None})
        decision = await gw.decide_for_user(body.user_id, action)
    else:
        action = body.action.model_copy(update={"session_id": session.session_id})
        decision = await gw.decide_for_session(action)
    return decision.to_dict()


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    gw = gateway
    return {
        "status": "healthy" if gw else "starting",
        "sessions": gw.sessions.session_count if gw else 0,
        "active_sessions": gw.sessions.active_count if gw else 0,
        "cached_contexts": gw.contexts.size if gw else 0,
        "audit_events": gw.audit.total_events() if gw else 0,
        "audit_pending": gw.audit.pending_count if gw else 0,
    }
