"""
Transactions router — the staff verification workflow.

Endpoints (Employee or Admin):
  GET   /transactions/pending          — Unverified payments awaiting review
  GET   /transactions/verified         — Verified payments awaiting submission
  PATCH /transactions/{id}/verify      — pending -> verified
  PATCH /transactions/{id}/unverify    — verified -> pending
  POST  /transactions/submit-to-swift  — Batch verified -> submitted

Transitions that don't apply to the transaction's current status return
409 with the status found; nothing is changed.
"""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from portal.database import get_db
from portal.dependencies import GuardedRequest, RequestGuard
from portal.models.user import STAFF_ROLES
from portal.schemas.transaction import (
    StaffTransactionListResponse,
    StaffTransactionResponse,
    SubmitRequest,
    SubmitResponse,
    TransactionActionResponse,
)
from portal.services import transaction_service

router = APIRouter()

staff_guard = RequestGuard(roles=STAFF_ROLES)
submit_guard = RequestGuard(roles=STAFF_ROLES, body=SubmitRequest)


@router.get(
    "/pending",
    response_model=StaffTransactionListResponse,
    summary="List pending transactions",
)
async def list_pending(
    guarded: GuardedRequest = Depends(staff_guard),
    db: AsyncSession = Depends(get_db),
):
    """Pending, unverified transactions with the customer's name and account number, newest first."""
    txns = await transaction_service.list_pending(db)
    return StaffTransactionListResponse(
        transactions=[StaffTransactionResponse.model_validate(t) for t in txns]
    )


@router.get(
    "/verified",
    response_model=StaffTransactionListResponse,
    summary="List verified transactions awaiting submission",
)
async def list_verified(
    guarded: GuardedRequest = Depends(staff_guard),
    db: AsyncSession = Depends(get_db),
):
    txns = await transaction_service.list_verified(db)
    return StaffTransactionListResponse(
        transactions=[StaffTransactionResponse.model_validate(t) for t in txns]
    )


@router.patch(
    "/{transaction_id}/verify",
    response_model=TransactionActionResponse,
    summary="Verify a pending transaction",
)
async def verify_transaction(
    transaction_id: uuid.UUID,
    guarded: GuardedRequest = Depends(staff_guard),
    db: AsyncSession = Depends(get_db),
):
    txn = await transaction_service.verify(
        db,
        transaction_id,
        employee_id=guarded.principal.user_id,
        ip=guarded.client_ip,
        user_agent=guarded.user_agent,
    )
    return TransactionActionResponse(
        message="Transaction verified",
        transaction=StaffTransactionResponse.model_validate(txn),
    )


@router.patch(
    "/{transaction_id}/unverify",
    response_model=TransactionActionResponse,
    summary="Return a verified transaction to pending",
)
async def unverify_transaction(
    transaction_id: uuid.UUID,
    guarded: GuardedRequest = Depends(staff_guard),
    db: AsyncSession = Depends(get_db),
):
    txn = await transaction_service.unverify(
        db,
        transaction_id,
        employee_id=guarded.principal.user_id,
        ip=guarded.client_ip,
        user_agent=guarded.user_agent,
    )
    return TransactionActionResponse(
        message="Transaction unverified",
        transaction=StaffTransactionResponse.model_validate(txn),
    )


@router.post(
    "/submit-to-swift",
    response_model=SubmitResponse,
    summary="Submit verified transactions",
)
async def submit_to_swift(
    guarded: GuardedRequest = Depends(submit_guard),
    db: AsyncSession = Depends(get_db),
):
    """
    Mark the given transactions as submitted to the settlement network.

    Only transactions that are currently verified are submitted; any other
    ids are skipped. `submittedCount` is the number actually submitted.
    """
    body: SubmitRequest = guarded.payload
    count = await transaction_service.submit_to_swift(
        db,
        body.transaction_ids,
        employee_id=guarded.principal.user_id,
        ip=guarded.client_ip,
        user_agent=guarded.user_agent,
    )
    return SubmitResponse(
        message=f"{count} transaction(s) submitted to SWIFT",
        submitted_count=count,
    )
