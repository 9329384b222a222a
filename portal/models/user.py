"""
User model — the credential store for customers, employees and admins.

Each User is a login identity (account number + hashed password) with a
fixed role, the lockout counters used by the lockout tracker, and a short
login history.

Roles:
  - CUSTOMER: Self-registered; submits payments and sees only their own
  - EMPLOYEE: Created by an admin; verifies and submits payments
  - ADMIN:    Created once through the bootstrap path; satisfies every role
              check and manages employees and lockouts

Role values are capitalized ("Customer", "Employee", "Admin") and are the
only spelling accepted anywhere in the system — authorization goes through
role_permits() rather than string comparisons.

Lockout fields:
  failed_login_attempts, locked_until and last_failed_login are mutated
  only by portal.services.lockout_service, always through single atomic
  UPDATE statements.

The password is stored as an Argon2id hash — never in plaintext.
"""

import enum
import uuid
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import String, Boolean, Integer, Enum, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from portal.database import Base, UTCDateTime, utcnow


class Role(str, enum.Enum):
    """
    Defines the role a user holds within the portal.

    Inherits from str so the enum value serializes naturally to JSON
    and can be stored as a simple string in the database.
    """
    CUSTOMER = "Customer"
    EMPLOYEE = "Employee"
    ADMIN = "Admin"


STAFF_ROLES = frozenset({Role.EMPLOYEE, Role.ADMIN})


def role_permits(role: Role, allowed: Iterable[Role]) -> bool:
    """The single authorization predicate. Admin satisfies any role check."""
    return role == Role.ADMIN or role in set(allowed)


class User(Base):
    __tablename__ = "users"

    # Primary key: UUID provides globally unique IDs without sequential guessing
    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    full_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # National ID number (13 digits), unique across all users
    id_number: Mapped[str] = mapped_column(
        String(13),
        unique=True,
        nullable=False,
        index=True,
    )

    # Login identifier (8-12 digits), unique and indexed
    account_number: Mapped[str] = mapped_column(
        String(12),
        unique=True,
        nullable=False,
        index=True,
    )

    # Argon2id hash of the password (never store plaintext!)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)

    # Fixed at creation time
    role: Mapped[Role] = mapped_column(
        Enum(Role, values_callable=lambda roles: [r.value for r in roles]),
        default=Role.CUSTOMER,
        nullable=False,
        index=True,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # --- Lockout state ---
    failed_login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    locked_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_failed_login: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_login: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    # --- Relationships ---
    login_history: Mapped[list["LoginRecord"]] = relationship(
        back_populates="user",
        order_by="LoginRecord.timestamp",
        cascade="all, delete-orphan",
    )


class LoginRecord(Base):
    """One login attempt against an existing account. Bounded per user."""

    __tablename__ = "login_history"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )
    ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False,
        index=True,
    )

    user: Mapped["User"] = relationship(back_populates="login_history")
