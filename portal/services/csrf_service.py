"""
CSRF protection — per-session synchronizer tokens.

GET /csrf-token gives the browser:
  - a random session id in an http-only, SameSite=Strict cookie
  - a random token in the JSON body, which the client keeps in memory and
    echoes in the X-CSRF-Token header on every state-changing request

The token is stored in the key-value store under the session id. A forged
cross-site request carries the cookie but cannot read the token, so the
header comparison fails.

Calling GET /csrf-token again within the session returns the same token.
"""

import hmac
import secrets

from portal.config import settings
from portal.exceptions import InvalidCSRFError
from portal.kvstore import KeyValueStore

STATE_CHANGING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def _key(session_id: str) -> str:
    return f"csrf:{session_id}"


async def issue_token(store: KeyValueStore, session_id: str | None) -> tuple[str, str]:
    """
    Return (session id, token), reusing the session's token if it has one.
    """
    if session_id:
        existing = await store.get(_key(session_id))
        if existing:
            return session_id, existing

    session_id = secrets.token_urlsafe(32)
    token = secrets.token_urlsafe(32)
    await store.set(_key(session_id), token, ttl=settings.CSRF_TOKEN_TTL_SECONDS)
    return session_id, token


async def validate(store: KeyValueStore, session_id: str | None, token: str | None) -> None:
    """
    Raises:
        InvalidCSRFError: Missing session, missing header, or mismatch.
    """
    if not session_id or not token:
        raise InvalidCSRFError()
    expected = await store.get(_key(session_id))
    if not expected or not hmac.compare_digest(expected.encode(), token.encode()):
        raise InvalidCSRFError()
