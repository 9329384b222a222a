"""
Transaction model — a customer's cross-border payment request.

A Transaction moves through the verification workflow:

    pending ──verify──▶ verified ──submit──▶ submitted
       ▲                   │
       └─────unverify──────┘

  - pending:   Created by a customer; awaiting employee review
  - verified:  An employee/admin attested the details (verified_by/verified_at)
  - submitted: Included in a batch marked as sent to the settlement network
  - completed / failed: Terminal states owned by the settlement collaborator;
    no in-process code path moves a transaction there

Key fields:
  - amount_cents: Always positive, integer cents (e.g., 1050 = 10.50)
  - currency: ISO 4217 three-letter code
  - recipient_account / swift_code: Validated against fixed formats before
    the row is ever created
  - verified: Mirrors the verification step; verified=True implies status is
    verified, submitted or completed

Why amount_cents?
  Floating-point numbers introduce rounding errors in financial
  calculations. The HTTP contract accepts a decimal amount with at most two
  decimal places; it is converted to exact integer cents at the boundary.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import String, Integer, Boolean, Enum, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from portal.database import Base, UTCDateTime, utcnow


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    FAILED = "failed"


class Transaction(Base):
    __tablename__ = "transactions"

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_transactions_positive_amount"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    # Customer who requested the payment
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )

    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    recipient_name: Mapped[str] = mapped_column(String(100), nullable=False)
    recipient_account: Mapped[str] = mapped_column(String(12), nullable=False)
    swift_code: Mapped[str] = mapped_column(String(11), nullable=False)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False, default="SWIFT")

    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus, values_callable=lambda states: [s.value for s in states]),
        nullable=False,
        default=TransactionStatus.PENDING,
        index=True,
    )

    # --- Verification ---
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verified_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
    )
    verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # --- Submission ---
    submitted_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
    )
    submitted_to_swift_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Indexed for newest-first listings
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    # --- Relationships ---
    owner: Mapped["User"] = relationship(foreign_keys=[user_id])
