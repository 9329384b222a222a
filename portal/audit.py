"""
Audit/security event logging.

Every authentication event and sensitive operation is recorded twice:

  1. As a row in the append-only audit_events table (queryable by admins
     through GET /admin/audit-events)
  2. As one JSON line on the "portal.audit" logger, which
     portal.logging_config routes to the console and, when AUDIT_LOG_FILE
     is set, to a dedicated file

The row is added to the request's session. portal.database.get_db commits
the session even when a domain error is raised, so failed logins, lockouts
and CSRF violations are persisted although the request itself fails.

Never pass passwords or tokens in details.
"""

import enum
import json
import logging
import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.database import execute
from portal.models.audit_event import AuditEvent

audit_log = logging.getLogger("portal.audit")


class SecurityEvent(str, enum.Enum):
    REGISTRATION = "REGISTRATION"
    EMPLOYEE_REGISTERED = "EMPLOYEE_REGISTERED"
    ADMIN_BOOTSTRAPPED = "ADMIN_BOOTSTRAPPED"
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILURE = "LOGIN_FAILURE"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    ACCOUNT_LOCKOUT_BLOCKED = "ACCOUNT_LOCKOUT_BLOCKED"
    ACCOUNT_UNLOCKED = "ADMIN_ACCOUNT_UNLOCK"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    CSRF_VIOLATION = "CSRF_VIOLATION"
    ACCESS_DENIED = "ACCESS_DENIED"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    REFRESH_TOKEN_REUSE = "REFRESH_TOKEN_REUSE"
    LOGOUT = "LOGOUT"
    PASSWORD_RESET_REQUESTED = "PASSWORD_RESET_REQUESTED"
    PASSWORD_RESET_SUCCESS = "PASSWORD_RESET_SUCCESS"
    PASSWORD_RESET_FAILURE = "PASSWORD_RESET_FAILURE"
    PAYMENT_CREATED = "PAYMENT_CREATED"
    TRANSACTION_VERIFIED = "TRANSACTION_VERIFIED"
    TRANSACTION_UNVERIFIED = "TRANSACTION_UNVERIFIED"
    TRANSACTIONS_SUBMITTED = "TRANSACTIONS_SUBMITTED"


def _jsonable(value):
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


async def record_event(
    db: AsyncSession,
    event_type: SecurityEvent,
    *,
    user_id: uuid.UUID | None = None,
    account_number: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
    **details,
) -> AuditEvent:
    """
    Append a security event to the audit trail and the audit log.

    Args:
        db: Session of the current request.
        event_type: What happened.
        user_id: The account the event is about, when known.
        account_number: The account number as submitted (also for unknown accounts).
        ip / user_agent: Client information.
        **details: Extra JSON-serializable context.

    Returns:
        The pending AuditEvent row (flushed with the session).
    """
    details = _jsonable(details)
    event = AuditEvent(
        event_type=SecurityEvent(event_type).value,
        user_id=user_id,
        account_number=account_number,
        ip=ip,
        user_agent=(user_agent or "")[:255] or None,
        details=details,
    )
    db.add(event)

    audit_log.info(
        json.dumps(
            {
                "type": event.event_type,
                "userId": str(user_id) if user_id else None,
                "accountNumber": account_number,
                "ip": ip,
                **details,
            },
            default=str,
        )
    )
    return event


async def list_events(
    db: AsyncSession,
    event_type: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[AuditEvent]:
    """Audit events newest first, optionally filtered by type."""
    query = select(AuditEvent)
    if event_type:
        query = query.where(AuditEvent.event_type == event_type)
    query = query.order_by(AuditEvent.created_at.desc()).offset(offset).limit(limit)
    result = await execute(db, query)
    return list(result.scalars().all())
