"""
Custom exception classes and FastAPI exception handlers.

Why custom exceptions?
  The service layer raises domain-specific errors (like AccountLockedError)
  without importing HTTP concepts. The handler layer then translates these
  into proper HTTP responses.

  This separation means:
    - Service code is testable without HTTP
    - Error responses are consistent across all endpoints
    - Adding new error types is a matter of declaring a subclass

Every PortalError carries its HTTP status and a machine-readable
error_type as class attributes, and renders as:

    {"detail": "...", "error_type": "...", ...extra fields}

Exception hierarchy:
    PortalError (base)
    ├── InvalidInputError          — malformed or missing input (lists every problem)
    ├── DuplicateAccountError      — id number or account number already registered
    ├── AdminAlreadyExistsError    — bootstrap admin creation after an admin exists
    ├── InvalidCredentialsError    — never says which field was wrong
    ├── AccountLockedError         — too many failed logins, carries retry_after
    ├── RateLimitedError           — too many requests, carries retry_after
    ├── AuthenticationRequiredError
    │   ├── TokenExpiredError
    │   ├── InvalidTokenError
    │   └── TokenRevokedError
    ├── ForbiddenError             — authenticated but insufficient role
    ├── InvalidCSRFError
    ├── NotFoundError
    ├── TransactionStateError      — transition not allowed from the current status
    ├── InvalidResetTokenError
    │   ├── ExpiredResetTokenError
    │   └── UsedResetTokenError
    ├── WeakPasswordError
    └── TransientStoreError        — store timeout/connectivity, safe to retry
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class PortalError(Exception):
    """Base exception for all Payment Portal domain errors."""

    status_code: int = 400
    error_type: str = "error"

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)

    def extra(self) -> dict:
        """Additional fields merged into the JSON error body."""
        return {}

    def headers(self) -> dict[str, str] | None:
        return None


# ---------------------------------------------------------------------------
# Validation and conflicts
# ---------------------------------------------------------------------------

class InvalidInputError(PortalError):
    """Raised when input fails format rules. Lists every violation, not just the first."""

    status_code = 400
    error_type = "validation_error"

    def __init__(self, errors: list[str], detail: str = "Validation failed"):
        self.errors = errors
        super().__init__(detail)

    def extra(self) -> dict:
        return {"errors": self.errors}


class DuplicateAccountError(PortalError):
    """Raised when the id number or account number is already registered."""

    status_code = 400
    error_type = "duplicate_account"

    def __init__(self):
        super().__init__("Account already exists")


class AdminAlreadyExistsError(PortalError):
    status_code = 409
    error_type = "admin_exists"

    def __init__(self):
        super().__init__("Admin already exists")


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

class InvalidCredentialsError(PortalError):
    """Raised when login credentials are incorrect (or the account doesn't exist)."""

    status_code = 401
    error_type = "invalid_credentials"

    def __init__(self):
        super().__init__("Invalid credentials")


class AccountLockedError(PortalError):
    """
    Raised when an account is locked after repeated failed logins.

    Attributes:
        retry_after: Seconds until the lock elapses.
    """

    status_code = 423
    error_type = "account_locked"

    def __init__(self, retry_after: int):
        self.retry_after = max(retry_after, 1)
        minutes = -(-self.retry_after // 60)
        super().__init__(
            f"Too many failed login attempts. Account locked for {minutes} more minutes."
        )

    def extra(self) -> dict:
        return {"retry_after": self.retry_after}

    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class RateLimitedError(PortalError):
    status_code = 429
    error_type = "rate_limited"

    def __init__(self, retry_after: int):
        self.retry_after = max(retry_after, 1)
        super().__init__("Too many requests. Please try again later.")

    def extra(self) -> dict:
        return {"retry_after": self.retry_after}

    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class AuthenticationRequiredError(PortalError):
    """Raised when a request carries no usable access token."""

    status_code = 401
    error_type = "not_authenticated"

    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(detail)

    def headers(self) -> dict[str, str]:
        return {"WWW-Authenticate": "Bearer"}


class TokenExpiredError(AuthenticationRequiredError):
    error_type = "token_expired"

    def __init__(self):
        super().__init__("Token expired")


class InvalidTokenError(AuthenticationRequiredError):
    error_type = "invalid_token"

    def __init__(self):
        super().__init__("Invalid token")


class TokenRevokedError(AuthenticationRequiredError):
    error_type = "token_revoked"

    def __init__(self):
        super().__init__("Token has been revoked")


# ---------------------------------------------------------------------------
# Authorization and request integrity
# ---------------------------------------------------------------------------

class ForbiddenError(PortalError):
    """Raised when the caller is authenticated but lacks the required role."""

    status_code = 403
    error_type = "forbidden"

    def __init__(self, detail: str = "You do not have access to this resource"):
        super().__init__(detail)


class InvalidCSRFError(PortalError):
    status_code = 403
    error_type = "invalid_csrf"

    def __init__(self):
        super().__init__("Invalid CSRF token")


class NotFoundError(PortalError):
    status_code = 404
    error_type = "not_found"

    def __init__(self, resource: str, identifier):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} {identifier} not found")


class TransactionStateError(PortalError):
    """Raised when a transition is not allowed from the transaction's current status."""

    status_code = 409
    error_type = "invalid_transition"

    def __init__(self, transaction_id, current_status: str, action: str):
        self.transaction_id = transaction_id
        self.current_status = current_status
        super().__init__(
            f"Cannot {action} transaction {transaction_id} while it is {current_status}"
        )

    def extra(self) -> dict:
        return {"current_status": self.current_status}


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------

class InvalidResetTokenError(PortalError):
    status_code = 400
    error_type = "invalid_token"

    def __init__(self, detail: str = "Invalid or expired token"):
        super().__init__(detail)


class ExpiredResetTokenError(InvalidResetTokenError):
    error_type = "expired_token"

    def __init__(self):
        super().__init__("Token expired")


class UsedResetTokenError(InvalidResetTokenError):
    error_type = "used_token"

    def __init__(self):
        super().__init__("Token already used")


class WeakPasswordError(PortalError):
    status_code = 400
    error_type = "weak_password"

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("Password does not meet strength requirements")

    def extra(self) -> dict:
        return {"errors": self.errors}


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------

class TransientStoreError(PortalError):
    """Raised when the store times out or is unreachable. Safe to retry."""

    status_code = 503
    error_type = "transient_store_error"

    def __init__(self):
        super().__init__("Service temporarily unavailable. Please retry.")


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def register_exception_handlers(app: FastAPI, debug: bool = False) -> None:
    """
    Register exception handlers with the FastAPI application.

    Domain errors render from their class attributes. Request-model
    validation errors become 400 validation_error so every malformed input
    shares one shape. Anything unexpected is logged with full detail and
    answered with a generic 500; the detail is only echoed when debug is on.
    """

    @app.exception_handler(PortalError)
    async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "error_type": exc.error_type, **exc.extra()},
            headers=exc.headers(),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
            errors.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
        return JSONResponse(
            status_code=400,
            content={
                "detail": "Validation failed",
                "error_type": "validation_error",
                "errors": errors,
            },
        )

    @app.exception_handler(Exception)
    async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
        log.exception("Unhandled error on %s %s", request.method, request.url.path)
        content = {"detail": "Internal server error", "error_type": "internal_error"}
        if debug:
            content["debug"] = repr(exc)
        return JSONResponse(status_code=500, content=content)
