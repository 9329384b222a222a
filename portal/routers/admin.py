"""
Admin router — lockout management and the audit trail.

Endpoints (Admin only):
  GET  /admin/locked-accounts          — Accounts currently locked
  POST /admin/unlock-account/{userId}  — Unlock by user id
  POST /admin/unlock-by-account        — Unlock by account number
  GET  /admin/audit-events             — Security events, newest first

Every unlock is itself audited with the state it cleared.
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from portal import audit
from portal.database import get_db, utcnow
from portal.dependencies import GuardedRequest, RequestGuard
from portal.models.user import Role
from portal.schemas.audit import AuditEventResponse
from portal.schemas.user import (
    LockedAccountsResponse,
    LockedUser,
    UnlockAccountResponse,
    UnlockByAccountRequest,
    UnlockByAccountResponse,
    UserSummary,
)
from portal.services import lockout_service

router = APIRouter()

admin_guard = RequestGuard(roles=[Role.ADMIN])
unlock_by_account_guard = RequestGuard(roles=[Role.ADMIN], body=UnlockByAccountRequest)


@router.get(
    "/locked-accounts",
    response_model=LockedAccountsResponse,
    summary="List locked accounts",
)
async def list_locked_accounts(
    guarded: GuardedRequest = Depends(admin_guard),
    db: AsyncSession = Depends(get_db),
):
    now = utcnow()
    users = await lockout_service.list_locked_accounts(db)
    locked = [
        LockedUser(
            id=user.id,
            full_name=user.full_name,
            account_number=user.account_number,
            role=user.role,
            failed_login_attempts=user.failed_login_attempts,
            locked_until=user.locked_until,
            last_failed_login=user.last_failed_login,
            minutes_remaining=-(-lockout_service.seconds_remaining(user, now) // 60),
        )
        for user in users
    ]
    return LockedAccountsResponse(locked_users=locked, count=len(locked))


@router.post(
    "/unlock-account/{user_id}",
    response_model=UnlockAccountResponse,
    summary="Unlock an account by user id",
)
async def unlock_account(
    user_id: uuid.UUID,
    guarded: GuardedRequest = Depends(admin_guard),
    db: AsyncSession = Depends(get_db),
):
    user, _ = await lockout_service.unlock_account(db, user_id, guarded.principal.user_id)
    return UnlockAccountResponse(
        message="Account unlocked successfully",
        user=UserSummary.model_validate(user),
    )


@router.post(
    "/unlock-by-account",
    response_model=UnlockByAccountResponse,
    summary="Unlock an account by account number",
)
async def unlock_by_account(
    guarded: GuardedRequest = Depends(unlock_by_account_guard),
    db: AsyncSession = Depends(get_db),
):
    body: UnlockByAccountRequest = guarded.payload
    user, was_locked = await lockout_service.unlock_by_account_number(
        db, body.account_number, guarded.principal.user_id
    )
    return UnlockByAccountResponse(
        message="Account unlocked successfully",
        account_number=user.account_number,
        was_locked=was_locked,
    )


@router.get(
    "/audit-events",
    response_model=list[AuditEventResponse],
    summary="List security audit events",
)
async def list_audit_events(
    event_type: str | None = Query(None, alias="eventType", description="Filter by event type"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    guarded: GuardedRequest = Depends(admin_guard),
    db: AsyncSession = Depends(get_db),
):
    """Newest first. Events are append-only; there is no way to edit or delete them."""
    return await audit.list_events(db, event_type=event_type, limit=limit, offset=offset)
