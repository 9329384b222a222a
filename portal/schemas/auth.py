"""
Pydantic schemas for authentication endpoints.

Format rules (13-digit id number, password strength, ...) are deliberately
NOT expressed here: the auth service validates every field at once and
returns the complete list of problems. The schemas only guarantee that
the fields are present and are strings of a sane length.

The refresh token never appears in any schema — it travels only in the
http-only refreshToken cookie.
"""

from pydantic import Field

from portal.schemas.common import CamelModel
from portal.schemas.user import UserSummary


class RegisterRequest(CamelModel):
    """Request body for POST /auth/register, /auth/register-admin and /auth/register-employee."""
    full_name: str = Field(max_length=100)
    id_number: str = Field(max_length=32)
    account_number: str = Field(max_length=32)
    password: str = Field(max_length=128)


class RegisterResponse(CamelModel):
    message: str
    user: UserSummary


class LoginRequest(CamelModel):
    """Request body for POST /auth/login."""
    account_number: str = Field(min_length=1, max_length=32)
    password: str = Field(min_length=1, max_length=128)


class TokenResponse(CamelModel):
    """Response body for POST /auth/refresh."""
    access_token: str
    token_type: str = "Bearer"


class LoginResponse(TokenResponse):
    """Response body for a successful login — access token + profile."""
    user: UserSummary


class ResetRequest(CamelModel):
    """Request body for POST /auth/request-reset."""
    account_number: str = Field(max_length=32)


class ResetPasswordRequest(CamelModel):
    """Request body for POST /auth/reset-password."""
    token: str = Field(max_length=256)
    new_password: str = Field(max_length=128)


class CsrfTokenResponse(CamelModel):
    csrf_token: str
