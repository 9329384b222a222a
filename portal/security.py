"""
Security utilities: password hashing and JWT tokens.

This module centralizes the cryptographic primitives so they're easy to
audit and update. Two concerns are handled here:

1. PASSWORD HASHING (Argon2)
   - Passwords are never stored in plaintext
   - Argon2id is memory-hard and time-hard, resistant to GPU-based and
     side-channel attacks
   - The work factor is configurable: PASSWORD_HASH_ROUNDS is the Argon2
     time cost (>= 10, default 12) and PASSWORD_HASH_MEMORY_KIB the memory
     cost. Every call draws a fresh random salt.
   - We use passlib's CryptContext for safe, high-level Argon2 operations

2. JWT TOKENS (JSON Web Tokens)
   - Access tokens: signed with SECRET_KEY (HS256), lifetime at most 1 hour,
     stateless — verified on every request without touching the database
   - Refresh tokens: signed with REFRESH_SECRET_KEY, lifetime 7 days, carry
     a "jti" that portal.services.token_service tracks server-side so they
     can be revoked
   - Every token carries the same identity claim shape:
       {"sub": <user id>, "role": <Role>, "iat", "exp", "type"}

Hashing is CPU-bound: request handlers call hash_password_async /
verify_password_async, which run the work in the threadpool so the event
loop keeps serving other requests.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi.concurrency import run_in_threadpool
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from portal.config import settings
from portal.exceptions import InvalidTokenError, TokenExpiredError
from portal.models.user import Role

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# 1. Password Hashing (Argon2)
# ---------------------------------------------------------------------------

# CryptContext manages hashing schemes. "argon2" is the active scheme; if
# it's ever replaced, old hashes still verify and new ones use the new
# scheme ("deprecated='auto'").
pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
    argon2__rounds=settings.PASSWORD_HASH_ROUNDS,
    argon2__memory_cost=settings.PASSWORD_HASH_MEMORY_KIB,
)


def hash_password(plain_password: str) -> str:
    """
    Hash a plaintext password using Argon2id with a random salt.

    Returns:
        An Argon2 hash string (e.g., "$argon2id$v=19$m=65536,t=12,p=4$...").
    """
    return pwd_context.hash(plain_password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plaintext password against a stored Argon2 hash.

    This is a constant-time comparison. A mismatch returns False; so does a
    stored hash that can't be parsed, which is logged rather than raised.
    """
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        log.warning("Stored password hash is malformed; treating as mismatch")
        return False


async def hash_password_async(plain_password: str) -> str:
    return await run_in_threadpool(hash_password, plain_password)


async def verify_password_async(plain_password: str, hashed_password: str) -> bool:
    return await run_in_threadpool(verify_password, plain_password, hashed_password)


# Verified against when the account doesn't exist, so an unknown account
# number costs the same as a wrong password.
_DUMMY_HASH = hash_password(uuid.uuid4().hex)


async def burn_password_check(plain_password: str) -> None:
    await verify_password_async(plain_password, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# 2. JWT Tokens
# ---------------------------------------------------------------------------

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    """Decoded, validated token payload."""
    user_id: uuid.UUID
    role: Role
    token_type: str
    issued_at: datetime
    expires_at: datetime
    token_id: str | None = None


def _encode(claims: dict, lifetime: timedelta, key: str) -> tuple[str, datetime]:
    now = datetime.now(timezone.utc)
    expire = now + lifetime
    to_encode = claims.copy()
    to_encode.update({"iat": int(now.timestamp()), "exp": expire})
    return jwt.encode(to_encode, key, algorithm=settings.ALGORITHM), expire


def _decode(token: str, key: str, expected_type: str) -> TokenClaims:
    try:
        payload = jwt.decode(token, key, algorithms=[settings.ALGORITHM])
    except ExpiredSignatureError:
        raise TokenExpiredError()
    except JWTError:
        raise InvalidTokenError()

    if payload.get("type") != expected_type:
        raise InvalidTokenError()

    try:
        return TokenClaims(
            user_id=uuid.UUID(payload["sub"]),
            role=Role(payload["role"]),
            token_type=payload["type"],
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            token_id=payload.get("jti"),
        )
    except (KeyError, ValueError, TypeError):
        raise InvalidTokenError()


def create_access_token(user_id: uuid.UUID, role: Role) -> str:
    """
    Create a signed access token.

    The payload contains:
      - "sub":  The subject (user ID as string)
      - "role": The user's role at issue time
      - "iat" / "exp": Issue and expiry timestamps (expiry <= 1 hour)
      - "type": "access" (refresh tokens are rejected where access is expected)
    """
    token, _ = _encode(
        {"sub": str(user_id), "role": Role(role).value, "type": ACCESS},
        timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        settings.SECRET_KEY,
    )
    return token


def decode_access_token(token: str) -> TokenClaims:
    """
    Decode and verify an access token.

    Raises:
        TokenExpiredError: If the token is past its expiry.
        InvalidTokenError: If the token is tampered with, malformed, or not
            an access token.
    """
    return _decode(token, settings.SECRET_KEY, ACCESS)


def create_refresh_token(user_id: uuid.UUID, role: Role, token_id: str) -> tuple[str, datetime]:
    """Create a signed refresh token. Returns the token and its expiry."""
    return _encode(
        {"sub": str(user_id), "role": Role(role).value, "type": REFRESH, "jti": token_id},
        timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        settings.REFRESH_SECRET_KEY,
    )


def decode_refresh_token(token: str) -> TokenClaims:
    claims = _decode(token, settings.REFRESH_SECRET_KEY, REFRESH)
    if not claims.token_id:
        raise InvalidTokenError()
    return claims
