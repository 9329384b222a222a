"""
Authentication router — registration, login, token refresh and password reset.

Endpoints:
  POST /auth/register           — Customer self-registration
  POST /auth/login              — Access token in the body, refresh token in a cookie
  POST /auth/refresh            — Rotate the refresh cookie, new access token
  POST /auth/logout             — Revoke the refresh token, clear the cookie
  POST /auth/register-admin     — One-time bootstrap of the first admin
  POST /auth/register-employee  — Admin creates an employee
  POST /auth/request-reset      — Issue a reset token (same answer either way)
  POST /auth/reset-password     — Complete a reset with the token

Security audit notes:
  - Plaintext passwords exist only in memory during request processing;
    they are hashed before any database operation and never logged.
  - The refresh token is only ever carried in an http-only, SameSite=Strict
    cookie scoped to /auth; it never appears in a JSON body.
  - Every state-changing endpoint requires the CSRF header (see
    portal.dependencies.RequestGuard).
"""

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from portal.config import settings
from portal.database import get_db
from portal.dependencies import GuardedRequest, RequestGuard, get_kv_store
from portal.kvstore import KeyValueStore
from portal.models.user import Role
from portal.schemas.auth import (
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    ResetRequest,
    TokenResponse,
)
from portal.schemas.common import MessageResponse
from portal.schemas.user import UserSummary
from portal.services import auth_service
from portal.services.rate_limit_service import Bucket

router = APIRouter()

registration_guard = RequestGuard(body=RegisterRequest)
login_guard = RequestGuard(limits=[Bucket.LOGIN], lockout=True, body=LoginRequest)
cookie_guard = RequestGuard()
employee_registration_guard = RequestGuard(roles=[Role.ADMIN], body=RegisterRequest)
reset_request_guard = RequestGuard(body=ResetRequest)
reset_guard = RequestGuard(body=ResetPasswordRequest)


def _set_refresh_cookie(response: Response, refresh_token: str) -> None:
    response.set_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        value=refresh_token,
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
        path=settings.REFRESH_COOKIE_PATH,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict",
    )


def _clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        path=settings.REFRESH_COOKIE_PATH,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict",
    )


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new customer",
)
async def register(
    guarded: GuardedRequest = Depends(registration_guard),
    db: AsyncSession = Depends(get_db),
):
    """
    Register a new customer.

    - **fullName**: Letters and spaces, 2-50 characters
    - **idNumber**: Exactly 13 digits, not already registered
    - **accountNumber**: 8-12 digits, not already registered
    - **password**: At least 8 characters with upper, lower, digit and symbol

    Every violated rule is returned at once in `errors`.
    """
    body: RegisterRequest = guarded.payload
    user = await auth_service.register(
        db,
        full_name=body.full_name,
        id_number=body.id_number,
        account_number=body.account_number,
        password=body.password,
        ip=guarded.client_ip,
        user_agent=guarded.user_agent,
    )
    return RegisterResponse(
        message="User registered successfully",
        user=UserSummary.model_validate(user),
    )


@router.post(
    "/login",
    response_model=LoginResponse,
    summary="Log in with account number and password",
)
async def login(
    response: Response,
    guarded: GuardedRequest = Depends(login_guard),
    db: AsyncSession = Depends(get_db),
):
    """
    Authenticate with account number and password.

    Returns a short-lived access token (use as `Authorization: Bearer <token>`)
    and sets the refresh token cookie. After 5 consecutive failures the
    account is locked for 15 minutes (HTTP 423 with `Retry-After`).
    """
    body: LoginRequest = guarded.payload
    result = await auth_service.login(
        db,
        account_number=body.account_number,
        password=body.password,
        ip=guarded.client_ip,
        user_agent=guarded.user_agent,
    )
    _set_refresh_cookie(response, result.refresh_token)
    return LoginResponse(
        access_token=result.access_token,
        user=UserSummary.model_validate(result.user),
    )


@router.post(
    "/refresh",
    response_model=TokenResponse,
    summary="Exchange the refresh cookie for a new access token",
)
async def refresh(
    request: Request,
    response: Response,
    guarded: GuardedRequest = Depends(cookie_guard),
    db: AsyncSession = Depends(get_db),
):
    """
    Rotate the refresh token. The old cookie value becomes unusable; replaying
    it revokes every session of the account.
    """
    access_token, refresh_token = await auth_service.refresh(
        db,
        request.cookies.get(settings.REFRESH_COOKIE_NAME),
        ip=guarded.client_ip,
        user_agent=guarded.user_agent,
    )
    _set_refresh_cookie(response, refresh_token)
    return TokenResponse(access_token=access_token)


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Log out and revoke the refresh token",
)
async def logout(
    request: Request,
    response: Response,
    guarded: GuardedRequest = Depends(cookie_guard),
    db: AsyncSession = Depends(get_db),
):
    await auth_service.logout(
        db,
        request.cookies.get(settings.REFRESH_COOKIE_NAME),
        ip=guarded.client_ip,
        user_agent=guarded.user_agent,
    )
    _clear_refresh_cookie(response)
    return MessageResponse(message="Logged out successfully")


@router.post(
    "/register-admin",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Bootstrap the first admin",
)
async def register_admin(
    guarded: GuardedRequest = Depends(registration_guard),
    db: AsyncSession = Depends(get_db),
):
    """
    Create the first admin. Works exactly once; afterwards returns 409.
    """
    body: RegisterRequest = guarded.payload
    user = await auth_service.register_admin(
        db,
        full_name=body.full_name,
        id_number=body.id_number,
        account_number=body.account_number,
        password=body.password,
        ip=guarded.client_ip,
        user_agent=guarded.user_agent,
    )
    return RegisterResponse(
        message="Admin registered successfully",
        user=UserSummary.model_validate(user),
    )


@router.post(
    "/register-employee",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register an employee (admin only)",
)
async def register_employee(
    guarded: GuardedRequest = Depends(employee_registration_guard),
    db: AsyncSession = Depends(get_db),
):
    body: RegisterRequest = guarded.payload
    user = await auth_service.register_employee(
        db,
        requester_id=guarded.principal.user_id,
        full_name=body.full_name,
        id_number=body.id_number,
        account_number=body.account_number,
        password=body.password,
        ip=guarded.client_ip,
        user_agent=guarded.user_agent,
    )
    return RegisterResponse(
        message="Employee registered successfully",
        user=UserSummary.model_validate(user),
    )


@router.post(
    "/request-reset",
    response_model=MessageResponse,
    summary="Request a password reset",
)
async def request_reset(
    guarded: GuardedRequest = Depends(reset_request_guard),
    db: AsyncSession = Depends(get_db),
    store: KeyValueStore = Depends(get_kv_store),
):
    """
    Always answers the same way, whether or not the account exists.
    """
    body: ResetRequest = guarded.payload
    await auth_service.request_password_reset(
        db, store, body.account_number, ip=guarded.client_ip
    )
    return MessageResponse(
        message="If that account exists, a password reset link has been sent."
    )


@router.post(
    "/reset-password",
    response_model=MessageResponse,
    summary="Set a new password with a reset token",
)
async def reset_password(
    guarded: GuardedRequest = Depends(reset_guard),
    db: AsyncSession = Depends(get_db),
    store: KeyValueStore = Depends(get_kv_store),
):
    """
    Tokens are single-use and expire after 15 minutes. A successful reset
    clears any lockout and logs the account out everywhere.
    """
    body: ResetPasswordRequest = guarded.payload
    await auth_service.reset_password(
        db, store, body.token, body.new_password, ip=guarded.client_ip
    )
    return MessageResponse(message="Password has been reset successfully.")
