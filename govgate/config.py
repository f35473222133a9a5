"""
Governance Configuration

Environment-based settings for the governance core. Storage settings live in
govgate.storage.factory and are nested here so one call configures the whole
gateway.

Environment variables (all optional):
    GOV_CONTEXT_TTL: Security context TTL in seconds (default 900)
    GOV_ADMIN_ROLE: Role that bypasses every access check (default "admin")
    GOV_SESSION_DURATION: Session lifetime in seconds (default 8h)
    GOV_INACTIVITY_TIMEOUT: Inactivity timeout in seconds (default 30m)
    GOV_WARNING_WINDOW: Pre-expiry warning window in seconds (default 5m)
    GOV_CHECK_INTERVAL: Session sweep interval in seconds (default 2m)
    GOV_SUSPICIOUS_THRESHOLD: Suspicious counter limit (default 10)
    GOV_ENDED_SESSION_RETENTION: Seconds an ended session stays queryable (default 5m)
    GOV_DENIAL_WEIGHT: Counter increment per access denial (default 1)
    GOV_MALICIOUS_WEIGHT: Counter increment per malicious payload (default 5)
    GOV_ROW_RULE_COMBINATION: "any" (OR) or "all" (AND)
    GOV_BULK_THRESHOLD: Record count above which an action is bulk (default 100)
    GOV_MAX_EXPORT_RECORDS: Export cap for users who can export (default 1000)
    GOV_COMPLIANCE_POLICIES: Path to a JSON policy file
    GOV_REMOTE_SESSION_VALIDATION: "true" to validate tokens on every check
    GOV_AUDIT_BUFFER: In-memory audit events kept (default 10000)

Plus the GOV_* storage variables read by storage.settings_from_env().
"""

import os
from dataclasses import dataclass, field

from govgate.access.cache import DEFAULT_CONTEXT_TTL_SECONDS
from govgate.access.rowfilter import RowRuleCombination
from govgate.policy.governance import DEFAULT_DENIAL_WEIGHT, DEFAULT_MALICIOUS_WEIGHT
from govgate.policy.risk import DEFAULT_BULK_THRESHOLD
from govgate.session.manager import (
    DEFAULT_CHECK_INTERVAL,
    DEFAULT_ENDED_RETENTION,
    DEFAULT_INACTIVITY_TIMEOUT,
    DEFAULT_SESSION_DURATION,
    DEFAULT_SUSPICIOUS_THRESHOLD,
    DEFAULT_WARNING_WINDOW,
)
from govgate.storage.factory import StorageSettings
from govgate.storage.factory import settings_from_env as storage_settings_from_env


@dataclass
class GovernanceSettings:
    """
    Configuration for the governance gateway.

    Attributes:
        context_ttl_seconds: How long a built SecurityContext stays valid
        admin_role: Role name that bypasses access checks
        session_duration_seconds: Session lifetime from login/refresh
        inactivity_timeout_seconds: Idle time after which a session expires
        warning_window_seconds: Time before expiry at which a warning is issued
        check_interval_seconds: Period of the session sweep
        suspicious_threshold: Counter value above which a session is terminated
        ended_session_retention_seconds: Time an ended session stays queryable
        denial_weight: Counter increment per access denial
        malicious_weight: Counter increment per malicious payload
        row_rule_combination: How multiple row rules combine
        bulk_threshold: Record count above which an action counts as bulk
        max_export_records: Export cap reported in capabilities
        compliance_policies_path: JSON file with compliance policies
        remote_session_validation: Validate tokens with the endpoint on checks
        audit_buffer: Audit events kept in memory
        storage: Storage adapter settings
    """
    context_ttl_seconds: float = DEFAULT_CONTEXT_TTL_SECONDS
    admin_role: str = "admin"
    session_duration_seconds: float = DEFAULT_SESSION_DURATION
    inactivity_timeout_seconds: float = DEFAULT_INACTIVITY_TIMEOUT
    warning_window_seconds: float = DEFAULT_WARNING_WINDOW
    check_interval_seconds: float = DEFAULT_CHECK_INTERVAL
    suspicious_threshold: int = DEFAULT_SUSPICIOUS_THRESHOLD
    ended_session_retention_seconds: float = DEFAULT_ENDED_RETENTION
    denial_weight: int = DEFAULT_DENIAL_WEIGHT
    malicious_weight: int = DEFAULT_MALICIOUS_WEIGHT
    row_rule_combination: RowRuleCombination = RowRuleCombination.ANY
    bulk_threshold: int = DEFAULT_BULK_THRESHOLD
    max_export_records: int = 1000
    compliance_policies_path: str | None = None
    remote_session_validation: bool = False
    audit_buffer: int = 10000
    storage: StorageSettings = field(default_factory=StorageSettings)


def _flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def settings_from_env() -> GovernanceSettings:
    """
    Create GovernanceSettings from environment variables.

    Raises:
        ValueError: If a numeric variable does not parse or the row rule
            combination is unknown
    """
    return GovernanceSettings(
        context_ttl_seconds=float(os.getenv("GOV_CONTEXT_TTL", str(DEFAULT_CONTEXT_TTL_SECONDS))),
        admin_role=os.getenv("GOV_ADMIN_ROLE", "admin"),
        session_duration_seconds=float(
            os.getenv("GOV_SESSION_DURATION", str(DEFAULT_SESSION_DURATION))
        ),
        inactivity_timeout_seconds=float(
            os.getenv("GOV_INACTIVITY_TIMEOUT", str(DEFAULT_INACTIVITY_TIMEOUT))
        ),
        warning_window_seconds=float(os.getenv("GOV_WARNING_WINDOW", str(DEFAULT_WARNING_WINDOW))),
        check_interval_seconds=float(os.getenv("GOV_CHECK_INTERVAL", str(DEFAULT_CHECK_INTERVAL))),
        suspicious_threshold=int(
            os.getenv("GOV_SUSPICIOUS_THRESHOLD", str(DEFAULT_SUSPICIOUS_THRESHOLD))
        ),
        ended_session_retention_seconds=float(
            os.getenv("GOV_ENDED_SESSION_RETENTION", str(DEFAULT_ENDED_RETENTION))
        ),
        denial_weight=int(os.getenv("GOV_DENIAL_WEIGHT", str(DEFAULT_DENIAL_WEIGHT))),
        malicious_weight=int(os.getenv("GOV_MALICIOUS_WEIGHT", str(DEFAULT_MALICIOUS_WEIGHT))),
        row_rule_combination=RowRuleCombination(
            os.getenv("GOV_ROW_RULE_COMBINATION", RowRuleCombination.ANY.value).lower()
        ),
        bulk_threshold=int(os.getenv("GOV_BULK_THRESHOLD", str(DEFAULT_BULK_THRESHOLD))),
        max_export_records=int(os.getenv("GOV_MAX_EXPORT_RECORDS", "1000")),
        compliance_policies_path=os.getenv("GOV_COMPLIANCE_POLICIES") or None,
        remote_session_validation=_flag("GOV_REMOTE_SESSION_VALIDATION"),
        audit_buffer=int(os.getenv("GOV_AUDIT_BUFFER", "10000")),
        storage=storage_settings_from_env(),
    )
