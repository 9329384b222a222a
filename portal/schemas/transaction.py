"""
Pydantic schemas for payments and the staff verification workflow.

Amounts:
  Requests carry a decimal "amount" (at most two decimal places, greater
  than zero, at most MAX_PAYMENT_AMOUNT). Responses carry both the exact
  integer "amountCents" and "amount" rendered as a fixed two-decimal string,
  so no client ever has to parse a float.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import Field, computed_field

from portal.config import settings
from portal.models.transaction import TransactionStatus
from portal.schemas.common import CamelModel


class PaymentCreateRequest(CamelModel):
    """Request body for POST /payments."""
    amount: Decimal = Field(
        gt=0,
        le=settings.MAX_PAYMENT_AMOUNT,
        decimal_places=2,
        allow_inf_nan=False,
        description="Amount with at most two decimal places (e.g. 150.75)",
    )
    currency: str = Field(max_length=3)
    recipient_name: str = Field(max_length=100)
    recipient_account: str = Field(max_length=32)
    swift_code: str = Field(max_length=11)
    provider: str = Field("SWIFT", max_length=50)
    description: str | None = Field(None, max_length=255)


class OwnerSummary(CamelModel):
    full_name: str
    account_number: str


class TransactionResponse(CamelModel):
    """Public representation of a transaction."""
    id: uuid.UUID
    user_id: uuid.UUID
    amount_cents: int
    currency: str
    recipient_name: str
    recipient_account: str
    swift_code: str
    provider: str
    description: str | None
    status: TransactionStatus
    verified: bool
    verified_by: uuid.UUID | None
    verified_at: datetime | None
    submitted_by: uuid.UUID | None
    submitted_to_swift_at: datetime | None
    created_at: datetime

    @computed_field
    @property
    def amount(self) -> str:
        return f"{self.amount_cents // 100}.{self.amount_cents % 100:02d}"


class StaffTransactionResponse(TransactionResponse):
    """Staff view: includes who requested the payment."""
    owner: OwnerSummary | None = None


class PaymentCreatedResponse(CamelModel):
    message: str = "Payment created successfully"
    transaction_id: uuid.UUID
    payment: TransactionResponse


class PaymentListResponse(CamelModel):
    payments: list[TransactionResponse]


class StaffTransactionListResponse(CamelModel):
    transactions: list[StaffTransactionResponse]


class TransactionActionResponse(CamelModel):
    message: str
    transaction: StaffTransactionResponse


class SubmitRequest(CamelModel):
    """Request body for POST /transactions/submit-to-swift."""
    transaction_ids: list[uuid.UUID] = Field(min_length=1, max_length=500)


class SubmitResponse(CamelModel):
    message: str
    submitted_count: int
