"""
FastAPI application factory and entry point.

This module creates and configures the FastAPI application:
  1. Lifespan manager — logging setup, table creation, engine disposal
  2. CORS middleware — allows the frontend origin to call the API with cookies
  3. Key-value store — one process-local store on app.state.kv_store for
     reset tokens, rate-limit windows and CSRF sessions
  4. Exception handlers — maps domain errors to HTTP responses
  5. Router registration — mounts all API endpoint groups

Running locally:
    uvicorn portal.main:app --reload

The key-value store is in-process, so run a single worker: with several
workers each would enforce its own rate limits and CSRF sessions.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from portal import models  # noqa: F401  (registers every table on Base.metadata)
from portal.config import settings
from portal.database import engine, Base
from portal.exceptions import register_exception_handlers
from portal.kvstore import MemoryKeyValueStore
from portal.logging_config import configure_logging
from portal.routers import admin, auth, csrf, payments, transactions

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
      Configures logging and creates all database tables if they don't
      exist. In production you'd use migrations instead of create_all.

    Shutdown:
      Disposes of the database engine, closing all connections cleanly.
    """
    # --- Startup ---
    configure_logging()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    log.info("%s %s started", settings.APP_NAME, settings.APP_VERSION)
    yield
    # --- Shutdown ---
    await engine.dispose()


# Create the FastAPI application instance
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Payment portal API: customer payments, staff verification and submission",
    lifespan=lifespan,
)

app.state.kv_store = MemoryKeyValueStore()

# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

# CORS: credentials are allowed so the browser sends the refresh and CSRF
# session cookies; origins must therefore be listed explicitly.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", settings.CSRF_HEADER_NAME],
)

# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

register_exception_handlers(app, debug=settings.DEBUG)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(csrf.router, tags=["Security"])
app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
app.include_router(payments.router, prefix="/payments", tags=["Payments"])
app.include_router(transactions.router, prefix="/transactions", tags=["Transactions"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint for deployment probes (Kubernetes, Docker, etc.).

    Unguarded: probes are not rate limited.
    """
    return {"status": "ok", "version": settings.APP_VERSION}
