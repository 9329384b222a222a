"""
Token service — issuing, rotating and revoking refresh tokens.

Access tokens are stateless (portal.security); this module covers the
server-side half of the refresh-token lifecycle:

  issue   — sign a refresh token with a random jti and record the jti
  verify  — signature + expiry + the jti must be tracked and not revoked
  rotate  — verify, revoke the presented token, issue a fresh pair
  revoke  — mark one jti revoked (logout)
  prune   — drop a user's expired rows whenever a new token is issued

Misuse detection:
  Every refresh revokes the token it was given. If a revoked token is ever
  presented again, either the legitimate client or an attacker holds a
  copy. We can't tell which, so every live refresh token of that user is
  revoked and both parties must log in again.
"""

import logging
import secrets
import uuid

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from portal.audit import SecurityEvent, record_event
from portal.database import execute, flush, utcnow
from portal.exceptions import InvalidTokenError, TokenExpiredError, TokenRevokedError
from portal.models.refresh_token import RefreshToken
from portal.models.user import Role, User
from portal.security import (
    TokenClaims,
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
)

log = logging.getLogger(__name__)


async def issue_refresh_token(
    db: AsyncSession, user_id: uuid.UUID, role: Role
) -> tuple[str, str]:
    """
    Sign a refresh token and start tracking its id.

    Returns:
        Tuple of (refresh token string, token id).
    """
    await prune_expired(db, user_id)
    token_id = secrets.token_hex(16)
    token, expires_at = create_refresh_token(user_id, role, token_id)
    db.add(RefreshToken(token_id=token_id, user_id=user_id, expires_at=expires_at))
    await flush(db)
    return token, token_id


async def prune_expired(db: AsyncSession, user_id: uuid.UUID) -> int:
    """
    Delete the user's refresh-token rows that are past their expiry.

    Revoked rows are kept until then: reuse detection needs them while the
    signed token would still verify.
    """
    result = await execute(
        db,
        delete(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.expires_at <= utcnow())
        .execution_options(synchronize_session=False),
    )
    return result.rowcount


async def _tracked(db: AsyncSession, token_id: str) -> RefreshToken | None:
    result = await execute(
        db,
        select(RefreshToken)
        .where(RefreshToken.token_id == token_id)
        .execution_options(populate_existing=True),
    )
    return result.scalar_one_or_none()


async def verify_refresh_token(db: AsyncSession, token: str) -> TokenClaims:
    """
    Validate a refresh token against its signature and the tracking table.

    Raises:
        TokenExpiredError: Past its expiry.
        InvalidTokenError: Bad signature, wrong type, or unknown id.
        TokenRevokedError: The id was revoked.
    """
    claims = decode_refresh_token(token)
    record = await _tracked(db, claims.token_id)
    if record is None or record.user_id != claims.user_id:
        raise InvalidTokenError()
    if record.revoked:
        raise TokenRevokedError()
    if record.expires_at <= utcnow():
        raise TokenExpiredError()
    return claims


async def revoke(db: AsyncSession, token_id: str) -> bool:
    """Mark one refresh token revoked. Returns True if a live token was revoked."""
    result = await execute(
        db,
        update(RefreshToken)
        .where(RefreshToken.token_id == token_id, RefreshToken.revoked.is_(False))
        .values(revoked=True)
        .execution_options(synchronize_session=False),
    )
    return result.rowcount > 0


async def revoke_all_for_user(db: AsyncSession, user_id: uuid.UUID) -> int:
    result = await execute(
        db,
        update(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.revoked.is_(False))
        .values(revoked=True)
        .execution_options(synchronize_session=False),
    )
    return result.rowcount


async def rotate(
    db: AsyncSession,
    token: str,
    ip: str | None = None,
    user_agent: str | None = None,
) -> tuple[str, str]:
    """
    Exchange a refresh token for a new access token and a new refresh token.

    The presented token is revoked with a conditional update, so two
    concurrent refreshes with the same token can't both succeed. The role
    is re-read from the store rather than trusted from the old token.

    Returns:
        Tuple of (access token, refresh token).
    """
    try:
        claims = await verify_refresh_token(db, token)
    except TokenRevokedError:
        claims = decode_refresh_token(token)
        revoked = await revoke_all_for_user(db, claims.user_id)
        await record_event(
            db,
            SecurityEvent.REFRESH_TOKEN_REUSE,
            user_id=claims.user_id,
            ip=ip,
            user_agent=user_agent,
            revoked_tokens=revoked,
        )
        log.warning("Revoked refresh token reused for user %s", claims.user_id)
        raise

    if not await revoke(db, claims.token_id):
        raise TokenRevokedError()

    user = await db.get(User, claims.user_id)
    if user is None or not user.is_active:
        raise InvalidTokenError()

    access_token = create_access_token(user.id, user.role)
    refresh_token, _ = await issue_refresh_token(db, user.id, user.role)
    await record_event(
        db,
        SecurityEvent.TOKEN_REFRESHED,
        user_id=user.id,
        ip=ip,
        user_agent=user_agent,
    )
    return access_token, refresh_token
