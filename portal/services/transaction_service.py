"""
Transaction service — the payment verification workflow.

Customers create payments; staff (employees and admins) move them through
the verification state machine:

    (none)   ──create──────▶ pending      Customer
    pending  ──verify──────▶ verified     Employee/Admin
    verified ──unverify────▶ pending      Employee/Admin
    verified ──submit──────▶ submitted    Employee/Admin, in batches

Atomicity:
  Every transition is ONE conditional UPDATE:

      UPDATE transactions SET ... WHERE id = :id AND status = :from

  If two employees act on the same transaction concurrently, exactly one
  statement matches the row; the other updates zero rows and is reported
  as a TransactionStateError (409) with the status it found. There is no
  read-then-write window in Python.

  Batch submission is a single bulk UPDATE over the requested ids that are
  still verified. Ids that don't match (unknown, pending, already
  submitted) are silently left out of the returned count — partial
  application is not an error.

Scoping:
  Customers only ever see their own payments (queries filter on user_id).
  Staff listings include the owner's name and account number.

Money:
  The HTTP layer hands over a Decimal with at most two decimal places; it
  is converted to integer cents here and never touches a float.
"""

import logging
import uuid
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from portal.audit import SecurityEvent, record_event
from portal.database import execute, flush, utcnow
from portal.exceptions import InvalidInputError, NotFoundError, TransactionStateError
from portal.models.transaction import Transaction, TransactionStatus
from portal.validation import validate_payment

log = logging.getLogger(__name__)


def to_cents(amount: Decimal | int | float) -> int:
    """Convert a decimal amount (e.g. Decimal("10.50")) to integer cents (1050)."""
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    return int((amount * 100).to_integral_value())


# ---------------------------------------------------------------------------
# Customer operations
# ---------------------------------------------------------------------------


async def create_payment(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: Decimal,
    currency: str,
    recipient_name: str,
    recipient_account: str,
    swift_code: str,
    provider: str = "SWIFT",
    description: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
) -> Transaction:
    """
    Create a pending payment for a customer.

    The SWIFT code is normalized to uppercase before validation. When no
    description is given it defaults to "Payment to <recipient name>".

    Args:
        db: Database session.
        user_id: The customer creating the payment (from the access token).
        amount: Positive amount with at most two decimal places.
        currency: ISO 4217 code, e.g. "USD".
        recipient_name / recipient_account / swift_code: Beneficiary details.
        provider: Settlement provider label, "SWIFT" by default.
        description: Optional memo (max 255 characters).

    Returns:
        The new Transaction in status pending.

    Raises:
        InvalidInputError: Lists every field that failed its format rule.
    """
    swift_code = (swift_code or "").strip().upper()
    recipient_name = (recipient_name or "").strip()
    if description is not None:
        description = description.strip() or None

    errors = validate_payment(
        amount, currency, recipient_name, recipient_account, swift_code, provider, description
    )
    if errors:
        raise InvalidInputError(errors)

    amount_cents = to_cents(amount)
    if amount_cents <= 0:
        raise InvalidInputError(["Amount must be a valid number greater than 0"])

    txn = Transaction(
        user_id=user_id,
        amount_cents=amount_cents,
        currency=currency,
        recipient_name=recipient_name,
        recipient_account=recipient_account,
        swift_code=swift_code,
        provider=provider.strip(),
        description=description or f"Payment to {recipient_name}",
        status=TransactionStatus.PENDING,
        verified=False,
    )
    db.add(txn)
    await flush(db)

    await record_event(
        db,
        SecurityEvent.PAYMENT_CREATED,
        user_id=user_id,
        ip=ip,
        user_agent=user_agent,
        transaction_id=txn.id,
        amount_cents=amount_cents,
        currency=currency,
    )
    return txn


async def list_user_payments(db: AsyncSession, user_id: uuid.UUID) -> list[Transaction]:
    """The customer's own payments, newest first."""
    result = await execute(
        db,
        select(Transaction)
        .where(Transaction.user_id == user_id)
        .order_by(Transaction.created_at.desc()),
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Staff operations
# ---------------------------------------------------------------------------


async def list_pending(db: AsyncSession) -> list[Transaction]:
    """Unverified pending transactions with their owners, newest first."""
    result = await execute(
        db,
        select(Transaction)
        .options(selectinload(Transaction.owner))
        .where(
            Transaction.status == TransactionStatus.PENDING,
            Transaction.verified.is_(False),
        )
        .order_by(Transaction.created_at.desc()),
    )
    return list(result.scalars().all())


async def list_verified(db: AsyncSession) -> list[Transaction]:
    """Verified transactions awaiting submission, newest first."""
    result = await execute(
        db,
        select(Transaction)
        .options(selectinload(Transaction.owner))
        .where(Transaction.status == TransactionStatus.VERIFIED)
        .order_by(Transaction.created_at.desc()),
    )
    return list(result.scalars().all())


async def get_transaction(db: AsyncSession, transaction_id: uuid.UUID) -> Transaction:
    """
    Load one transaction with its owner, bypassing stale identity-map state.

    Raises:
        NotFoundError: If the id doesn't exist.
    """
    result = await execute(
        db,
        select(Transaction)
        .options(selectinload(Transaction.owner))
        .where(Transaction.id == transaction_id)
        .execution_options(populate_existing=True),
    )
    txn = result.scalar_one_or_none()
    if txn is None:
        raise NotFoundError("Transaction", transaction_id)
    return txn


async def _transition(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    from_status: TransactionStatus,
    action: str,
    values: dict,
) -> Transaction:
    result = await execute(
        db,
        update(Transaction)
        .where(Transaction.id == transaction_id, Transaction.status == from_status)
        .values(**values)
        .execution_options(synchronize_session=False),
    )
    if result.rowcount == 0:
        current = await get_transaction(db, transaction_id)
        raise TransactionStateError(transaction_id, current.status.value, action)
    return await get_transaction(db, transaction_id)


async def verify(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    employee_id: uuid.UUID,
    ip: str | None = None,
    user_agent: str | None = None,
) -> Transaction:
    """
    pending -> verified.

    Raises:
        NotFoundError: No such transaction.
        TransactionStateError: The transaction is not pending (nothing changes).
    """
    txn = await _transition(
        db,
        transaction_id,
        TransactionStatus.PENDING,
        "verify",
        {
            "status": TransactionStatus.VERIFIED,
            "verified": True,
            "verified_by": employee_id,
            "verified_at": utcnow(),
        },
    )
    await record_event(
        db,
        SecurityEvent.TRANSACTION_VERIFIED,
        user_id=employee_id,
        ip=ip,
        user_agent=user_agent,
        transaction_id=transaction_id,
    )
    return txn


async def unverify(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    employee_id: uuid.UUID,
    ip: str | None = None,
    user_agent: str | None = None,
) -> Transaction:
    """
    verified -> pending, clearing the verification fields.

    Raises:
        NotFoundError: No such transaction.
        TransactionStateError: The transaction is not verified.
    """
    txn = await _transition(
        db,
        transaction_id,
        TransactionStatus.VERIFIED,
        "unverify",
        {
            "status": TransactionStatus.PENDING,
            "verified": False,
            "verified_by": None,
            "verified_at": None,
        },
    )
    await record_event(
        db,
        SecurityEvent.TRANSACTION_UNVERIFIED,
        user_id=employee_id,
        ip=ip,
        user_agent=user_agent,
        transaction_id=transaction_id,
    )
    return txn


async def submit_to_swift(
    db: AsyncSession,
    transaction_ids: list[uuid.UUID],
    employee_id: uuid.UUID,
    ip: str | None = None,
    user_agent: str | None = None,
) -> int:
    """
    Mark a batch of verified transactions as submitted.

    No external network is contacted; submission is a status change.

    Returns:
        The number of transactions that were verified at update time and
        are now submitted.

    Raises:
        InvalidInputError: If no ids were given.
    """
    ids = list(dict.fromkeys(transaction_ids))
    if not ids:
        raise InvalidInputError(["transactionIds must be a non-empty array"])

    result = await execute(
        db,
        update(Transaction)
        .where(
            Transaction.id.in_(ids),
            Transaction.verified.is_(True),
            Transaction.status == TransactionStatus.VERIFIED,
        )
        .values(
            status=TransactionStatus.SUBMITTED,
            submitted_by=employee_id,
            submitted_to_swift_at=utcnow(),
        )
        .execution_options(synchronize_session=False),
    )
    count = result.rowcount

    await record_event(
        db,
        SecurityEvent.TRANSACTIONS_SUBMITTED,
        user_id=employee_id,
        ip=ip,
        user_agent=user_agent,
        requested=len(ids),
        submitted=count,
    )
    log.info("Employee %s submitted %d of %d transactions", employee_id, count, len(ids))
    return count
