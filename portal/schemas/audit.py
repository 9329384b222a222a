"""
Pydantic schemas for the admin audit trail.
"""

import uuid
from datetime import datetime

from portal.schemas.common import CamelModel


class AuditEventResponse(CamelModel):
    id: uuid.UUID
    event_type: str
    user_id: uuid.UUID | None
    account_number: str | None
    ip: str | None
    user_agent: str | None
    details: dict
    created_at: datetime
