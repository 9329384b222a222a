"""
Authentication service — registration, login, token refresh and password reset.

This module contains the identity business logic, separated from HTTP
concerns. The router calls these functions and translates the results
into HTTP responses, so the logic can be tested without a web server.

Registration flow (customers, employees, the bootstrap admin):
  1. Validate every field and collect all problems (InvalidInputError)
  2. Reject a reused id number or account number (DuplicateAccountError)
  3. Hash the password with Argon2id off the event loop
  4. Insert inside a SAVEPOINT; a unique-constraint race maps to the same
     DuplicateAccountError

Login flow:
  1. Look up the account by account number
  2. Locked? Reject with AccountLockedError before touching the password
  3. Verify the password (unknown accounts burn an equivalent hash check)
  4. Failure: atomic counter increment (may lock), history row, audit event,
     InvalidCredentialsError
  5. Success: reset counter, history row, access + refresh token, audit event

Password reset flow:
  1. request_password_reset issues a single-use token (15 minutes) only if
     the account exists; callers always see the same response
  2. reset_password checks the token, re-validates strength, consumes the
     token by compare-and-swap, rehashes, clears lockout and revokes every
     refresh token of the account

Security notes:
  - Login returns the same error for "wrong password" and "no such
    account" to prevent account enumeration
  - Employee registration re-checks the requester's role in the store;
    the role claim in the token alone is not trusted for this
"""

import hashlib
import logging
import secrets
import time
import uuid
from dataclasses import dataclass

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.audit import SecurityEvent, record_event
from portal.config import settings
from portal.database import execute, flush
from portal.exceptions import (
    AdminAlreadyExistsError,
    DuplicateAccountError,
    ExpiredResetTokenError,
    ForbiddenError,
    InvalidCredentialsError,
    InvalidInputError,
    InvalidResetTokenError,
    InvalidTokenError,
    TokenExpiredError,
    TransientStoreError,
    UsedResetTokenError,
    WeakPasswordError,
)
from portal.kvstore import KeyValueStore
from portal.models.user import LoginRecord, Role, User
from portal.security import (
    burn_password_check,
    create_access_token,
    decode_refresh_token,
    hash_password_async,
    verify_password_async,
)
from portal.services import lockout_service, token_service
from portal.validation import validate_password_strength, validate_registration

log = logging.getLogger(__name__)


@dataclass
class LoginResult:
    user: User
    access_token: str
    refresh_token: str


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


async def _find_by_account_number(db: AsyncSession, account_number: str) -> User | None:
    result = await execute(
        db,
        select(User)
        .where(User.account_number == account_number)
        .execution_options(populate_existing=True),
    )
    return result.scalar_one_or_none()


async def _create_user(
    db: AsyncSession,
    full_name: str,
    id_number: str,
    account_number: str,
    password: str,
    role: Role,
) -> User:
    errors = validate_registration(full_name, id_number, account_number, password)
    if errors:
        raise InvalidInputError(errors)

    result = await execute(
        db,
        select(User.id).where(
            or_(User.id_number == id_number, User.account_number == account_number)
        ),
    )
    if result.first() is not None:
        raise DuplicateAccountError()

    user = User(
        full_name=full_name.strip(),
        id_number=id_number,
        account_number=account_number,
        hashed_password=await hash_password_async(password),
        role=role,
    )
    try:
        async with db.begin_nested():
            db.add(user)
            await flush(db)
    except IntegrityError:
        # Lost a race with a concurrent registration of the same numbers
        raise DuplicateAccountError()
    return user


async def register(
    db: AsyncSession,
    full_name: str,
    id_number: str,
    account_number: str,
    password: str,
    ip: str | None = None,
    user_agent: str | None = None,
) -> User:
    """
    Self-registration of a Customer.

    Raises:
        InvalidInputError: Lists every failed field and password rule.
        DuplicateAccountError: Id number or account number already registered.
    """
    user = await _create_user(db, full_name, id_number, account_number, password, Role.CUSTOMER)
    await record_event(
        db,
        SecurityEvent.REGISTRATION,
        user_id=user.id,
        account_number=account_number,
        ip=ip,
        user_agent=user_agent,
        role=user.role,
    )
    return user


async def register_admin(
    db: AsyncSession,
    full_name: str,
    id_number: str,
    account_number: str,
    password: str,
    ip: str | None = None,
    user_agent: str | None = None,
) -> User:
    """
    Bootstrap path for the first Admin.

    Raises:
        AdminAlreadyExistsError: Any Admin already exists.
    """
    result = await execute(db, select(User.id).where(User.role == Role.ADMIN).limit(1))
    if result.first() is not None:
        raise AdminAlreadyExistsError()

    user = await _create_user(db, full_name, id_number, account_number, password, Role.ADMIN)
    await record_event(
        db,
        SecurityEvent.ADMIN_BOOTSTRAPPED,
        user_id=user.id,
        account_number=account_number,
        ip=ip,
        user_agent=user_agent,
    )
    log.info("Bootstrap admin %s created", user.id)
    return user


async def register_employee(
    db: AsyncSession,
    requester_id: uuid.UUID,
    full_name: str,
    id_number: str,
    account_number: str,
    password: str,
    ip: str | None = None,
    user_agent: str | None = None,
) -> User:
    """
    Admin-only creation of an Employee.

    Raises:
        ForbiddenError: The requester is not a persisted, active Admin.
    """
    requester = await db.get(User, requester_id)
    if requester is None or not requester.is_active or requester.role != Role.ADMIN:
        await record_event(
            db,
            SecurityEvent.ACCESS_DENIED,
            user_id=requester_id,
            ip=ip,
            user_agent=user_agent,
            action="register_employee",
        )
        raise ForbiddenError("Access denied. Admins only.")

    user = await _create_user(db, full_name, id_number, account_number, password, Role.EMPLOYEE)
    await record_event(
        db,
        SecurityEvent.EMPLOYEE_REGISTERED,
        user_id=user.id,
        account_number=account_number,
        ip=ip,
        user_agent=user_agent,
        admin_id=requester_id,
    )
    log.info("Employee %s registered by admin %s", user.id, requester_id)
    return user


# ---------------------------------------------------------------------------
# Login / refresh / logout
# ---------------------------------------------------------------------------


async def _append_login_history(
    db: AsyncSession,
    user_id: uuid.UUID,
    ip: str | None,
    user_agent: str | None,
    success: bool,
) -> None:
    """Add one history row and evict the oldest beyond LOGIN_HISTORY_LIMIT."""
    db.add(
        LoginRecord(
            user_id=user_id,
            ip=ip,
            user_agent=(user_agent or "")[:255] or None,
            success=success,
        )
    )
    await flush(db)

    stale = (
        select(LoginRecord.id)
        .where(LoginRecord.user_id == user_id)
        .order_by(LoginRecord.timestamp.desc())
        .offset(settings.LOGIN_HISTORY_LIMIT)
    )
    await execute(
        db,
        delete(LoginRecord)
        .where(LoginRecord.id.in_(stale))
        .execution_options(synchronize_session=False),
    )


async def login(
    db: AsyncSession,
    account_number: str,
    password: str,
    ip: str | None = None,
    user_agent: str | None = None,
) -> LoginResult:
    """
    Authenticate an account and issue an access + refresh token pair.

    Raises:
        AccountLockedError: The account is locked (checked first).
        InvalidCredentialsError: Unknown account, wrong password or
            inactive account — indistinguishable to the caller.
    """
    user = await _find_by_account_number(db, account_number)

    if user is None:
        await burn_password_check(password)
        await record_event(
            db,
            SecurityEvent.LOGIN_FAILURE,
            account_number=account_number,
            ip=ip,
            user_agent=user_agent,
            reason="unknown_account",
        )
        raise InvalidCredentialsError()

    await lockout_service.ensure_not_locked(db, user, ip, user_agent)

    valid = await verify_password_async(password, user.hashed_password)
    if not valid or not user.is_active:
        outcome = await lockout_service.record_failure(db, user.id)
        await _append_login_history(db, user.id, ip, user_agent, success=False)
        await record_event(
            db,
            SecurityEvent.LOGIN_FAILURE,
            user_id=user.id,
            account_number=account_number,
            ip=ip,
            user_agent=user_agent,
            attempts=outcome.attempts,
        )
        if outcome.locked:
            await record_event(
                db,
                SecurityEvent.ACCOUNT_LOCKED,
                user_id=user.id,
                account_number=account_number,
                ip=ip,
                user_agent=user_agent,
                failed_attempts=outcome.attempts,
                locked_until=outcome.locked_until,
            )
            log.warning("Account %s locked after %d failed logins", user.id, outcome.attempts)
        raise InvalidCredentialsError()

    await lockout_service.reset_on_success(db, user.id)
    await _append_login_history(db, user.id, ip, user_agent, success=True)

    access_token = create_access_token(user.id, user.role)
    refresh_token, _ = await token_service.issue_refresh_token(db, user.id, user.role)

    await record_event(
        db,
        SecurityEvent.LOGIN_SUCCESS,
        user_id=user.id,
        account_number=account_number,
        ip=ip,
        user_agent=user_agent,
    )
    return LoginResult(user=user, access_token=access_token, refresh_token=refresh_token)


async def refresh(
    db: AsyncSession,
    refresh_token: str | None,
    ip: str | None = None,
    user_agent: str | None = None,
) -> tuple[str, str]:
    """Rotate a refresh token. Returns (access token, new refresh token)."""
    if not refresh_token:
        raise InvalidTokenError()
    return await token_service.rotate(db, refresh_token, ip, user_agent)


async def logout(
    db: AsyncSession,
    refresh_token: str | None,
    ip: str | None = None,
    user_agent: str | None = None,
) -> None:
    """
    Revoke the session's refresh token. Always succeeds — an absent or
    unreadable token simply means there's nothing to revoke.
    """
    if not refresh_token:
        return
    try:
        claims = decode_refresh_token(refresh_token)
    except (InvalidTokenError, TokenExpiredError):
        return
    if await token_service.revoke(db, claims.token_id):
        await record_event(
            db,
            SecurityEvent.LOGOUT,
            user_id=claims.user_id,
            ip=ip,
            user_agent=user_agent,
        )


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


def _reset_key(token: str) -> str:
    # Only the digest is stored; a dump of the store doesn't yield usable tokens
    return "reset:" + hashlib.sha256(token.encode()).hexdigest()


async def request_password_reset(
    db: AsyncSession,
    store: KeyValueStore,
    account_number: str,
    ip: str | None = None,
) -> str | None:
    """
    Issue a single-use reset token if the account exists.

    The HTTP layer discards the return value and answers identically
    either way. The token is delivered out of band; with no mail transport
    configured the link is written to the log in DEBUG mode only.

    Returns:
        The raw token, or None if the account doesn't exist.
    """
    user = await _find_by_account_number(db, account_number)
    if user is None:
        await record_event(
            db,
            SecurityEvent.PASSWORD_RESET_REQUESTED,
            account_number=account_number,
            ip=ip,
            issued=False,
        )
        return None

    token = secrets.token_hex(32)
    lifetime = settings.RESET_TOKEN_EXPIRE_MINUTES * 60
    await store.set(
        _reset_key(token),
        {"user_id": str(user.id), "expires_at": time.time() + lifetime, "used": False},
        # Kept past expiry so expired and used tokens get a precise error
        ttl=lifetime * 2,
    )
    await record_event(
        db,
        SecurityEvent.PASSWORD_RESET_REQUESTED,
        user_id=user.id,
        account_number=account_number,
        ip=ip,
        issued=True,
    )

    if settings.DEBUG:
        log.info(
            "Password reset link for %s: %s?token=%s",
            account_number,
            settings.RESET_LINK_BASE_URL,
            token,
        )
    return token


async def reset_password(
    db: AsyncSession,
    store: KeyValueStore,
    token: str,
    new_password: str,
    ip: str | None = None,
) -> User:
    """
    Complete a password reset.

    Raises:
        InvalidResetTokenError: Unknown token.
        UsedResetTokenError: Token already consumed.
        ExpiredResetTokenError: Token past its 15 minutes.
        WeakPasswordError: Lists every failed strength rule.
    """
    key = _reset_key(token or "")
    entry = await store.get(key)

    failure = None
    if entry is None:
        failure = InvalidResetTokenError()
    elif entry["used"]:
        failure = UsedResetTokenError()
    elif entry["expires_at"] <= time.time():
        failure = ExpiredResetTokenError()
    if failure is not None:
        await record_event(
            db,
            SecurityEvent.PASSWORD_RESET_FAILURE,
            user_id=uuid.UUID(entry["user_id"]) if entry else None,
            ip=ip,
            reason=failure.error_type,
        )
        raise failure

    errors = validate_password_strength(new_password)
    if errors:
        raise WeakPasswordError(errors)

    # Consume before acting: of two concurrent resets only one wins the swap
    used = {**entry, "used": True}
    if not await store.compare_and_swap(key, entry, used):
        raise UsedResetTokenError()

    user = await db.get(User, uuid.UUID(entry["user_id"]))
    if user is None:
        raise InvalidResetTokenError()

    try:
        user.hashed_password = await hash_password_async(new_password)
        await flush(db)
        await lockout_service.clear_lockout(db, user.id)
        revoked = await token_service.revoke_all_for_user(db, user.id)
    except TransientStoreError:
        # The session rolls back, so hand the token back for a retry
        await store.compare_and_swap(key, used, entry)
        raise

    await record_event(
        db,
        SecurityEvent.PASSWORD_RESET_SUCCESS,
        user_id=user.id,
        account_number=user.account_number,
        ip=ip,
        revoked_sessions=revoked,
    )
    return user
