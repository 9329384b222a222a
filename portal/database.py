"""
Database engine, session management, and base model class.

This module sets up SQLAlchemy 2.0 with async support. Key components:

  - engine: The async database engine (connection pool for production DBs)
  - AsyncSessionLocal: Factory for creating async database sessions
  - Base: Declarative base class that all ORM models inherit from
  - UTCDateTime: Column type that always hands back timezone-aware UTC values
  - get_db(): FastAPI dependency that provides a session per request
  - execute() / flush(): Store calls bounded by STORE_TIMEOUT_SECONDS

Session lifecycle:
  Each API request gets its own session via get_db(). The session commits
  on success, also commits when a domain error (PortalError) is raised so
  audit rows and lockout counters survive the failed request, and rolls
  back on anything else.

Timeouts:
  Every service-level round-trip goes through execute()/flush(). A call
  that exceeds the timeout, or fails because the database is unreachable,
  surfaces as TransientStoreError (HTTP 503, safe to retry) instead of
  hanging the request.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from portal.config import settings
from portal.exceptions import PortalError, TransientStoreError

log = logging.getLogger(__name__)


# Create the async engine.
# echo=True in debug mode logs every SQL statement.
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
)

# Session factory: creates new AsyncSession instances.
# expire_on_commit=False prevents lazy-load errors after commit:
# without this, accessing attributes on a committed object would trigger
# a synchronous DB call, which fails in async context.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""
    pass


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC timestamp.

    SQLite has no native timestamp type and returns naive datetimes even
    for DateTime(timezone=True) columns. Values are normalized to UTC on
    the way in and tagged as UTC on the way out, so comparisons against
    datetime.now(timezone.utc) work on every backend.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def _bounded(awaitable, operation: str):
    try:
        return await asyncio.wait_for(awaitable, timeout=settings.STORE_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        log.error("Store %s timed out after %.1fs", operation, settings.STORE_TIMEOUT_SECONDS)
        raise TransientStoreError()
    except (OperationalError, InterfaceError) as exc:
        log.error("Store %s failed: %s", operation, exc)
        raise TransientStoreError() from exc


async def execute(db: AsyncSession, statement):
    """Run a statement on the session with the store timeout applied."""
    return await _bounded(db.execute(statement), "execute")


async def flush(db: AsyncSession) -> None:
    """Flush pending ORM changes with the store timeout applied."""
    await _bounded(db.flush(), "flush")


@asynccontextmanager
async def managed_session(session_factory: async_sessionmaker | None = None):
    """
    Open a session and settle it according to how the block exits.

    The test suite passes its own factory bound to an in-memory database.
    """
    async with (session_factory or AsyncSessionLocal)() as session:
        try:
            yield session
            await session.commit()
        except TransientStoreError:
            await session.rollback()
            raise
        except PortalError:
            # Domain errors (failed login, CSRF violation, ...): commit so
            # audit events and lockout counters are persisted.
            await session.commit()
            raise
        except Exception:
            await session.rollback()
            raise


async def get_db():
    """
    FastAPI dependency that provides a database session.

    Usage in a route:
        @router.get("/items")
        async def list_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with managed_session() as session:
        yield session
