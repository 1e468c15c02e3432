"""
Audit logging for tenant context changes and scoping bypasses.

Every bypass invocation, every context clear and every failed
compatibility check is reported to the standard logging system. Bypass
entries carry a structured ``tenant_audit`` payload in the log record's
``extra`` so handlers can ship them to an audit store.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from tenantscope.config.settings import settings

logger = logging.getLogger(__name__)

_PACKAGE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# Outcomes recorded on audit entries
OUTCOME_STARTED = "started"
OUTCOME_DENIED = "denied"
OUTCOME_AUTHORIZED = "authorized"


def caller_location() -> str:
    """Return ``path:line in func`` for the first frame outside tenantscope.

    Never raises; falls back to ``"unknown"``.
    """
    try:
        frame = sys._getframe(1)
        while frame is not None:
            filename = os.path.abspath(frame.f_code.co_filename)
            if not filename.startswith(_PACKAGE_DIR) and "contextlib" not in filename:
                return f"{filename}:{frame.f_lineno} in {frame.f_code.co_name}"
            frame = frame.f_back
    except Exception:  # noqa: BLE001 - audit logging must never break callers
        return "unknown"
    return "unknown"


@dataclass
class BypassAuditEntry:
    """A single audited bypass operation.

    Attributes:
        operation: Bypass operation name, e.g. ``without_scoping``.
        model: Name of the model the bypass was invoked on.
        caller: Location of the code that invoked the bypass.
        tenant_id: Ambient tenant id when the bypass was invoked.
        environment: The deployment environment.
        outcome: ``started``, ``authorized`` or ``denied``.
        details: Operation-specific data.
        performed_at: When the bypass was invoked.
    """

    operation: str
    model: str
    caller: str
    tenant_id: Any = None
    environment: str = ""
    outcome: str = OUTCOME_STARTED
    details: dict[str, Any] = field(default_factory=dict)
    performed_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "model": self.model,
            "caller": self.caller,
            "tenant_id": self.tenant_id,
            "environment": self.environment,
            "outcome": self.outcome,
            "details": self.details,
            "performed_at": self.performed_at.isoformat(),
        }


def log_bypass_operation(
    operation: str,
    model: str,
    outcome: str = OUTCOME_STARTED,
    caller: str | None = None,
    tenant_id: Any = None,
    **details: Any,
) -> BypassAuditEntry:
    """Emit an audit log entry for a bypass operation.

    Denials are logged at error level. Everything else is logged at
    ``TENANT_BYPASS_AUDIT_LOG_LEVEL``; production-like environments get
    an extra warning even when the bypass succeeds.

    Args:
        operation: The bypass operation name.
        model: Name of the model class.
        outcome: One of the ``OUTCOME_*`` constants.
        caller: Caller location; computed when omitted.
        tenant_id: Ambient tenant id at the time of the call.
        **details: Extra fields stored on the entry.

    Returns:
        The entry that was logged.
    """
    entry = BypassAuditEntry(
        operation=operation,
        model=model,
        caller=caller or caller_location(),
        tenant_id=tenant_id,
        environment=settings.TENANT_ENVIRONMENT,
        outcome=outcome,
        details=details,
    )
    extra = {"tenant_audit": entry.to_dict()}

    if outcome == OUTCOME_DENIED:
        logger.error(
            f"[TENANT_ERROR] {model}.{operation} denied at {entry.caller}",
            extra=extra,
        )
        return entry

    level = logging.getLevelName(settings.TENANT_BYPASS_AUDIT_LOG_LEVEL)
    logger.log(
        level,
        f"[TENANT_WARNING] {model}.{operation} {outcome} at {entry.caller}",
        extra=extra,
    )
    if settings.is_production:
        logger.warning(
            f"[TENANT_WARNING] WARNING: tenant scoping bypass in production "
            f"({settings.TENANT_ENVIRONMENT}): {model}.{operation} at {entry.caller}",
            extra=extra,
        )
    return entry


def log_context_cleared(caller: str | None = None) -> None:
    """Log that tenant context was cleared. Never raises."""
    try:
        logger.warning(
            f"[TENANT_WARNING] Tenant context cleared at {caller or caller_location()}"
        )
    except Exception:  # noqa: BLE001 - see docstring
        pass
