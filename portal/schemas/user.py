"""
Pydantic schemas for user representations.
"""

import uuid
from datetime import datetime

from portal.models.user import Role
from portal.schemas.common import CamelModel


class UserSummary(CamelModel):
    """Public profile returned by login and registration. No credential or lockout fields."""
    id: uuid.UUID
    full_name: str
    account_number: str
    role: Role


class LockedUser(CamelModel):
    id: uuid.UUID
    full_name: str
    account_number: str
    role: Role
    failed_login_attempts: int
    locked_until: datetime | None
    last_failed_login: datetime | None
    minutes_remaining: int = 0


class LockedAccountsResponse(CamelModel):
    locked_users: list[LockedUser]
    count: int


class UnlockAccountResponse(CamelModel):
    message: str
    user: UserSummary


class UnlockByAccountRequest(CamelModel):
    account_number: str


class UnlockByAccountResponse(CamelModel):
    message: str
    account_number: str
    was_locked: bool
