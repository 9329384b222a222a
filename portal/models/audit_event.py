"""
AuditEvent model — append-only trail of authentication and sensitive operations.

Rows are only ever inserted (portal.audit.record_event). Nothing in the
code base updates or deletes them.
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from portal.database import Base, UTCDateTime, utcnow


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    event_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Not a foreign key: events about unknown accounts are recorded too
    user_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)
    account_number: Mapped[str | None] = mapped_column(String(32), nullable=True)

    ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False,
        index=True,
    )
