"""
Payments router — customers create and list their own payments.

Endpoints:
  POST /payments — Create a pending payment
  GET  /payments — List the caller's payments, newest first

Payments are always scoped to the authenticated user: the owner comes from
the access token, never from the request body.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from portal.database import get_db
from portal.dependencies import GuardedRequest, RequestGuard
from portal.models.user import Role
from portal.schemas.transaction import (
    PaymentCreateRequest,
    PaymentCreatedResponse,
    PaymentListResponse,
    TransactionResponse,
)
from portal.services import transaction_service
from portal.services.rate_limit_service import Bucket

router = APIRouter()

create_payment_guard = RequestGuard(
    limits=[Bucket.PAYMENT],
    roles=[Role.CUSTOMER],
    body=PaymentCreateRequest,
)
customer_guard = RequestGuard(roles=[Role.CUSTOMER])


@router.post(
    "",
    response_model=PaymentCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a payment",
)
async def create_payment(
    guarded: GuardedRequest = Depends(create_payment_guard),
    db: AsyncSession = Depends(get_db),
):
    """
    Submit an international payment for employee verification.

    - **amount**: Greater than 0, at most 1,000,000, at most 2 decimal places
    - **currency**: 3-letter uppercase code (e.g. USD, ZAR)
    - **recipientAccount**: 8-12 digits
    - **swiftCode**: 8 or 11 characters, e.g. ABSAZAJJ (case-insensitive)
    - **recipientName**: 2-100 characters
    - **description**: Optional, defaults to "Payment to <recipientName>"

    The payment starts in status `pending`.
    """
    body: PaymentCreateRequest = guarded.payload
    txn = await transaction_service.create_payment(
        db,
        user_id=guarded.principal.user_id,
        amount=body.amount,
        currency=body.currency,
        recipient_name=body.recipient_name,
        recipient_account=body.recipient_account,
        swift_code=body.swift_code,
        provider=body.provider,
        description=body.description,
        ip=guarded.client_ip,
        user_agent=guarded.user_agent,
    )
    return PaymentCreatedResponse(
        transaction_id=txn.id,
        payment=TransactionResponse.model_validate(txn),
    )


@router.get(
    "",
    response_model=PaymentListResponse,
    summary="List my payments",
)
async def list_payments(
    guarded: GuardedRequest = Depends(customer_guard),
    db: AsyncSession = Depends(get_db),
):
    payments = await transaction_service.list_user_payments(db, guarded.principal.user_id)
    return PaymentListResponse(
        payments=[TransactionResponse.model_validate(p) for p in payments]
    )
