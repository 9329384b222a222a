"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables, with an optional .env file
as a fallback. This pattern keeps secrets out of source code — the .env file is
gitignored, and .env.example provides a safe template for developers.

Pydantic Settings automatically:
  1. Reads from environment variables (highest priority)
  2. Falls back to .env file values
  3. Uses defaults defined here (lowest priority)

Usage:
    from portal.config import settings
    print(settings.SECRET_KEY)
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the Payment Portal API.

    Required fields (no defaults) MUST be set in .env or environment:
      - SECRET_KEY: Signs access tokens
      - REFRESH_SECRET_KEY: Signs refresh tokens (kept separate so a leaked
        access-token key cannot mint long-lived sessions)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "Payment Portal API"
    APP_VERSION: str = "0.1.0"
    # DEBUG also controls whether 500 responses carry exception detail
    DEBUG: bool = False

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    # Optional append-only file for security events (in addition to the console)
    AUDIT_LOG_FILE: str | None = None

    # --- Database ---
    # SQLite for MVP; swap to PostgreSQL connection string for production
    DATABASE_URL: str = "sqlite+aiosqlite:///./portal.db"
    # Upper bound on any single store round-trip
    STORE_TIMEOUT_SECONDS: float = 5.0

    # --- Authentication ---
    # REQUIRED: no default, the developer must set a real secret
    SECRET_KEY: str
    REFRESH_SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(60, ge=1, le=60)
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    REFRESH_COOKIE_NAME: str = "refreshToken"
    REFRESH_COOKIE_PATH: str = "/auth"
    # Disable only for plain-http local development
    COOKIE_SECURE: bool = True

    # --- Password hashing (Argon2) ---
    # Argon2 time cost ("rounds"); memory cost is in KiB
    PASSWORD_HASH_ROUNDS: int = Field(12, ge=10)
    PASSWORD_HASH_MEMORY_KIB: int = Field(65536, ge=64)

    # --- Password strength ---
    PASSWORD_MIN_LENGTH: int = 8
    PASSWORD_REQUIRE_UPPERCASE: bool = True
    PASSWORD_REQUIRE_LOWERCASE: bool = True
    PASSWORD_REQUIRE_NUMBERS: bool = True
    PASSWORD_REQUIRE_SYMBOLS: bool = True

    # --- Lockout ---
    LOCKOUT_THRESHOLD: int = 5
    LOCKOUT_MINUTES: int = 15
    LOGIN_HISTORY_LIMIT: int = 10

    # --- Password reset ---
    RESET_TOKEN_EXPIRE_MINUTES: int = 15
    RESET_LINK_BASE_URL: str = "http://localhost:3000/reset-password"

    # --- Rate limiting (sliding window per client IP) ---
    API_RATE_LIMIT: int = 100
    API_RATE_WINDOW_SECONDS: int = 15 * 60
    LOGIN_RATE_LIMIT: int = 5
    LOGIN_RATE_WINDOW_SECONDS: int = 15 * 60
    PAYMENT_RATE_LIMIT: int = 10
    PAYMENT_RATE_WINDOW_SECONDS: int = 60 * 60

    # --- CSRF ---
    CSRF_COOKIE_NAME: str = "csrfSession"
    CSRF_HEADER_NAME: str = "X-CSRF-Token"
    CSRF_TOKEN_TTL_SECONDS: int = 60 * 60

    # --- Payments ---
    MAX_PAYMENT_AMOUNT: int = 1_000_000

    # --- CORS ---
    # Origins allowed to make cross-origin requests (frontend URLs)
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]


# Singleton: import this instance everywhere instead of creating new Settings()
settings = Settings()
