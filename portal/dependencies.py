"""
FastAPI dependencies — the request guard pipeline.

Every endpoint declares one RequestGuard, configured for what it needs.
FastAPI calls it before the route handler; the guard runs the stages
below in order and the first failing stage short-circuits with a typed
PortalError:

  1. Rate limit        every request counts against the "api" bucket; login
                       and payment creation also against their own bucket
                       → RateLimitedError (429, Retry-After)
  2. Lockout           login only: the account named in the body is checked
                       before anything else touches credentials
                       → AccountLockedError (423, Retry-After)
  3. CSRF              POST/PUT/PATCH/DELETE must echo the session's token
                       in the X-CSRF-Token header
                       → InvalidCSRFError (403)
  4. Sanitize/validate the JSON body is cleaned (portal.sanitize) and then
                       validated into the endpoint's Pydantic model
                       → 400 validation_error
  5. Authenticate      Bearer access token → Principal(user_id, role)
                       → 401
  6. Authorize         role_permits(principal.role, allowed roles)
                       → ForbiddenError (403)

Rate-limit, CSRF and authorization failures are written to the audit trail.

Usage in a route:

    staff_only = RequestGuard(roles=STAFF_ROLES)

    @router.get("/pending")
    async def list_pending(
        guarded: GuardedRequest = Depends(staff_only),
        db: AsyncSession = Depends(get_db),
    ):
        ...

The guard and the route share the same database session (FastAPI caches
get_db per request), so audit rows written by the guard are committed
with the request.
"""

import json
import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from fastapi import Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.audit import SecurityEvent, record_event
from portal.config import settings
from portal.database import execute, get_db
from portal.exceptions import (
    AuthenticationRequiredError,
    ForbiddenError,
    InvalidCSRFError,
    InvalidInputError,
    RateLimitedError,
)
from portal.kvstore import KeyValueStore
from portal.models.user import Role, User, role_permits
from portal.sanitize import sanitize
from portal.security import decode_access_token
from portal.services import csrf_service, lockout_service, rate_limit_service
from portal.services.rate_limit_service import Bucket

log = logging.getLogger(__name__)


# OAuth2PasswordBearer reads "Authorization: Bearer <token>". auto_error is
# off so a missing token surfaces as our own AuthenticationRequiredError.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, taken from the access token."""
    user_id: uuid.UUID
    role: Role


@dataclass
class GuardedRequest:
    """What a route handler receives once every guard stage has passed."""
    client_ip: str
    user_agent: str | None
    principal: Principal | None = None
    payload: BaseModel | None = None


def get_kv_store(request: Request) -> KeyValueStore:
    return request.app.state.kv_store


def client_ip(request: Request) -> str:
    # The socket peer only; X-Forwarded-For is client-controlled
    return request.client.host if request.client else "unknown"


class RequestGuard:
    """
    Configurable guard dependency.

    Args:
        limits: Rate-limit buckets counted in addition to "api".
        roles: Allowed roles. Implies authenticate. Admin always passes.
        authenticate: Require a valid access token.
        lockout: Check the lockout state of body["accountNumber"] (login).
        body: Pydantic model the sanitized JSON body is validated into.
    """

    def __init__(
        self,
        *,
        limits: Iterable[Bucket] = (),
        roles: Iterable[Role] | None = None,
        authenticate: bool = False,
        lockout: bool = False,
        body: type[BaseModel] | None = None,
    ):
        self.limits = (Bucket.API, *limits)
        self.roles = frozenset(roles) if roles is not None else None
        self.authenticate = authenticate or self.roles is not None
        self.lockout = lockout
        self.body = body

    async def __call__(
        self,
        request: Request,
        token: str | None = Depends(oauth2_scheme),
        db: AsyncSession = Depends(get_db),
    ) -> GuardedRequest:
        store = get_kv_store(request)
        guarded = GuardedRequest(
            client_ip=client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )

        await self._check_rate_limits(request, db, store, guarded)

        data = None
        if self.body is not None:
            data = sanitize(await self._read_json(request))

        if self.lockout and isinstance(data, dict):
            await self._check_lockout(db, data, guarded)

        if request.method in csrf_service.STATE_CHANGING_METHODS:
            await self._check_csrf(request, db, store, guarded)

        if self.body is not None:
            try:
                guarded.payload = self.body.model_validate(data)
            except ValidationError as exc:
                raise RequestValidationError(exc.errors())

        if self.authenticate:
            guarded.principal = self._authenticate(token)

        if self.roles is not None and not role_permits(guarded.principal.role, self.roles):
            await record_event(
                db,
                SecurityEvent.ACCESS_DENIED,
                user_id=guarded.principal.user_id,
                ip=guarded.client_ip,
                user_agent=guarded.user_agent,
                path=request.url.path,
                role=guarded.principal.role,
                required=sorted(role.value for role in self.roles),
            )
            raise ForbiddenError("Access denied. Insufficient permissions.")

        return guarded

    # -----------------------------------------------------------------------
    # Stages
    # -----------------------------------------------------------------------

    async def _check_rate_limits(
        self, request: Request, db: AsyncSession, store: KeyValueStore, guarded: GuardedRequest
    ) -> None:
        for bucket in self.limits:
            try:
                await rate_limit_service.check(store, bucket, guarded.client_ip)
            except RateLimitedError as exc:
                await record_event(
                    db,
                    SecurityEvent.RATE_LIMIT_EXCEEDED,
                    ip=guarded.client_ip,
                    user_agent=guarded.user_agent,
                    bucket=bucket.value,
                    path=request.url.path,
                    retry_after=exc.retry_after,
                )
                raise

    async def _read_json(self, request: Request):
        body = await request.body()
        if not body:
            return {}
        try:
            return json.loads(body, parse_float=Decimal)
        except (ValueError, UnicodeDecodeError):
            raise InvalidInputError(["Request body must be valid JSON"])

    async def _check_lockout(self, db: AsyncSession, data: dict, guarded: GuardedRequest) -> None:
        account_number = data.get("accountNumber", data.get("account_number"))
        if not isinstance(account_number, str) or not account_number:
            return
        result = await execute(
            db,
            select(User)
            .where(User.account_number == account_number)
            .execution_options(populate_existing=True),
        )
        user = result.scalar_one_or_none()
        if user is not None:
            await lockout_service.ensure_not_locked(
                db, user, guarded.client_ip, guarded.user_agent
            )

    async def _check_csrf(
        self, request: Request, db: AsyncSession, store: KeyValueStore, guarded: GuardedRequest
    ) -> None:
        try:
            await csrf_service.validate(
                store,
                request.cookies.get(settings.CSRF_COOKIE_NAME),
                request.headers.get(settings.CSRF_HEADER_NAME),
            )
        except InvalidCSRFError:
            await record_event(
                db,
                SecurityEvent.CSRF_VIOLATION,
                ip=guarded.client_ip,
                user_agent=guarded.user_agent,
                method=request.method,
                path=request.url.path,
            )
            log.warning("CSRF violation on %s %s from %s",
                        request.method, request.url.path, guarded.client_ip)
            raise

    def _authenticate(self, token: str | None) -> Principal:
        if not token:
            raise AuthenticationRequiredError("Not authenticated")
        claims = decode_access_token(token)
        return Principal(user_id=claims.user_id, role=claims.role)
