"""
Lockout service — per-account failed-login tracking.

State machine per account:

    Open   (failed_login_attempts < LOCKOUT_THRESHOLD)
    Locked (failed_login_attempts >= LOCKOUT_THRESHOLD and locked_until > now)

  Open ──failed attempt──▶ Open      counter + 1, last_failed_login = now
  Open ──5th failure─────▶ Locked    locked_until = now + LOCKOUT_MINUTES
  Locked ──lock elapses──▶ Open      detected at read time, counter cleared
  Locked ──admin unlock──▶ Open      counter 0, lock fields cleared
  Open ──success─────────▶ Open      counter 0

Atomicity:
  The failure path is a single UPDATE that increments the counter and
  decides the lock in the same statement (RETURNING the new values). Two
  concurrent failed logins can therefore never both read "4" and both
  write "5" — the classic lost update of a read-modify-write in Python.

A login attempt against a locked account is rejected before the password
is compared (see ensure_not_locked), so lockout also bounds the cost of
brute-force attempts and leaks no timing information.
"""

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, case, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from portal.audit import SecurityEvent, record_event
from portal.config import settings
from portal.database import UTCDateTime, execute, utcnow
from portal.exceptions import AccountLockedError, NotFoundError
from portal.models.user import User

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class FailureOutcome:
    attempts: int
    locked_until: datetime | None

    @property
    def locked(self) -> bool:
        return self.locked_until is not None


def is_locked(user: User, now: datetime | None = None) -> bool:
    now = now or utcnow()
    return user.locked_until is not None and user.locked_until > now


def seconds_remaining(user: User, now: datetime | None = None) -> int:
    now = now or utcnow()
    return max(math.ceil((user.locked_until - now).total_seconds()), 1)


async def clear_expired_lock(db: AsyncSession, user: User, now: datetime | None = None) -> bool:
    """
    Passive Locked -> Open transition.

    If the lock has elapsed, clear it and the counter so the account starts
    from a clean slate. Returns True if anything was cleared.
    """
    now = now or utcnow()
    if user.locked_until is None or user.locked_until > now:
        return False

    await execute(
        db,
        update(User)
        .where(User.id == user.id, User.locked_until <= now)
        .values(failed_login_attempts=0, locked_until=None)
        .execution_options(synchronize_session=False),
    )
    user.failed_login_attempts = 0
    user.locked_until = None
    log.info("Lock on user %s elapsed", user.id)
    return True


async def ensure_not_locked(
    db: AsyncSession,
    user: User,
    ip: str | None = None,
    user_agent: str | None = None,
) -> None:
    """
    Reject the attempt if the account is currently locked.

    Called before any credential comparison. Clears an elapsed lock as a
    side effect.

    Raises:
        AccountLockedError: With the seconds left on the lock.
    """
    now = utcnow()
    if is_locked(user, now):
        await record_event(
            db,
            SecurityEvent.ACCOUNT_LOCKOUT_BLOCKED,
            user_id=user.id,
            account_number=user.account_number,
            ip=ip,
            user_agent=user_agent,
            locked_until=user.locked_until,
        )
        raise AccountLockedError(seconds_remaining(user, now))
    await clear_expired_lock(db, user, now)


async def record_failure(db: AsyncSession, user_id: uuid.UUID) -> FailureOutcome:
    """
    Count one failed login, locking the account when the threshold is reached.

    One UPDATE ... RETURNING statement: increment, stamp last_failed_login,
    and set locked_until when the new count reaches LOCKOUT_THRESHOLD. An
    already-elapsed lock restarts the count at 1.
    """
    now = utcnow()
    lock_until = now + timedelta(minutes=settings.LOCKOUT_MINUTES)
    elapsed = and_(User.locked_until.is_not(None), User.locked_until <= now)

    result = await execute(
        db,
        update(User)
        .where(User.id == user_id)
        .values(
            failed_login_attempts=case(
                (elapsed, 1),
                else_=User.failed_login_attempts + 1,
            ),
            locked_until=case(
                (elapsed, None),
                (
                    User.failed_login_attempts + 1 >= settings.LOCKOUT_THRESHOLD,
                    literal(lock_until, UTCDateTime()),
                ),
                else_=User.locked_until,
            ),
            last_failed_login=now,
        )
        .returning(User.failed_login_attempts, User.locked_until)
        .execution_options(synchronize_session=False),
    )
    attempts, locked_until = result.one()
    return FailureOutcome(attempts=attempts, locked_until=locked_until)


async def reset_on_success(db: AsyncSession, user_id: uuid.UUID) -> None:
    """Successful authentication: counter back to zero, last_login stamped."""
    await execute(
        db,
        update(User)
        .where(User.id == user_id)
        .values(failed_login_attempts=0, locked_until=None, last_login=utcnow())
        .execution_options(synchronize_session=False),
    )


async def clear_lockout(db: AsyncSession, user_id: uuid.UUID) -> None:
    """Full reset of lockout state (admin unlock, password reset)."""
    await execute(
        db,
        update(User)
        .where(User.id == user_id)
        .values(failed_login_attempts=0, locked_until=None, last_failed_login=None)
        .execution_options(synchronize_session=False),
    )


# ---------------------------------------------------------------------------
# Admin operations
# ---------------------------------------------------------------------------


async def list_locked_accounts(db: AsyncSession) -> list[User]:
    result = await execute(
        db,
        select(User)
        .where(User.locked_until > utcnow())
        .order_by(User.locked_until.desc()),
    )
    return list(result.scalars().all())


async def _unlock(db: AsyncSession, user: User, admin_id: uuid.UUID) -> bool:
    was_locked = is_locked(user)
    previous_attempts = user.failed_login_attempts

    await clear_lockout(db, user.id)
    user.failed_login_attempts = 0
    user.locked_until = None
    user.last_failed_login = None

    await record_event(
        db,
        SecurityEvent.ACCOUNT_UNLOCKED,
        user_id=user.id,
        account_number=user.account_number,
        admin_id=admin_id,
        was_locked=was_locked,
        previous_attempts=previous_attempts,
    )
    log.info("Admin %s unlocked user %s", admin_id, user.id)
    return was_locked


async def unlock_account(
    db: AsyncSession, user_id: uuid.UUID, admin_id: uuid.UUID
) -> tuple[User, bool]:
    """
    Admin unlock by user id.

    Returns:
        The user and whether a lock was actually in force.

    Raises:
        NotFoundError: If the user doesn't exist.
    """
    user = await db.get(User, user_id, populate_existing=True)
    if user is None:
        raise NotFoundError("User", user_id)
    return user, await _unlock(db, user, admin_id)


async def unlock_by_account_number(
    db: AsyncSession, account_number: str, admin_id: uuid.UUID
) -> tuple[User, bool]:
    result = await execute(
        db,
        select(User)
        .where(User.account_number == account_number)
        .execution_options(populate_existing=True),
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("Account", account_number)
    return user, await _unlock(db, user, admin_id)
