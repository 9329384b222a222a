"""
Test fixtures for the Payment Portal test suite.

This module provides shared fixtures used across all test files:

  - db_engine / db_session: Fresh in-memory SQLite database for each test
  - kv_store: Fresh key-value store for each test (rate limits, CSRF, resets)
  - client: Async HTTP test client (unauthenticated) holding a CSRF session
  - customer_client / second_customer_client: Registered customers, logged in
  - admin_client: The bootstrap admin, logged in
  - employee_client: An employee created by the admin, logged in

Key design decisions:
  - The environment is prepared BEFORE the application is imported:
    portal.config.settings is built at import time.
  - In-memory SQLite (sqlite+aiosqlite://) is used for speed and isolation.
    Each test gets a completely fresh database — no state leaks between tests.
  - We override FastAPI's get_db dependency with the same managed_session
    lifecycle the app uses, bound to the test engine, so commit-on-domain-
    error behaves exactly as in production.
  - Every role fixture goes through the real HTTP endpoints (register,
    register-admin, register-employee, login).
  - Each logged-in user gets its own AsyncClient so its cookies (refresh
    token, CSRF session) don't leak into another user's requests.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-access-secret-key-0123456789abcdef")
os.environ.setdefault("REFRESH_SECRET_KEY", "test-refresh-secret-key-0123456789abcdef")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ["COOKIE_SECURE"] = "false"
os.environ["PASSWORD_HASH_ROUNDS"] = "10"
os.environ["PASSWORD_HASH_MEMORY_KIB"] = "1024"
# Fixtures log several users in from the same test IP; the rate-limit tests
# restore the production budgets with the production_rate_limits fixture.
os.environ["API_RATE_LIMIT"] = "10000"
os.environ["LOGIN_RATE_LIMIT"] = "1000"
os.environ["PAYMENT_RATE_LIMIT"] = "1000"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import AsyncClient, ASGITransport  # noqa: E402
from sqlalchemy import update  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker  # noqa: E402

from portal.config import settings  # noqa: E402
from portal.database import Base, get_db, managed_session  # noqa: E402
from portal.kvstore import MemoryKeyValueStore  # noqa: E402
from portal.main import app  # noqa: E402
from portal.models.user import User  # noqa: E402


# In-memory SQLite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite://"

CUSTOMER = {
    "fullName": "Jane Doe",
    "idNumber": "1234567890123",
    "accountNumber": "12345678",
    "password": "Str0ng!Pass",
}
SECOND_CUSTOMER = {
    "fullName": "John Smith",
    "idNumber": "9876543210987",
    "accountNumber": "87654321",
    "password": "An0ther!Pass",
}
ADMIN = {
    "fullName": "Alice Admin",
    "idNumber": "1111111111111",
    "accountNumber": "100000001",
    "password": "Adm1n!Pass",
}
EMPLOYEE = {
    "fullName": "Eve Employee",
    "idNumber": "2222222222222",
    "accountNumber": "200000002",
    "password": "Empl0yee!Pass",
}

PAYMENT = {
    "amount": "150.75",
    "currency": "USD",
    "recipientName": "Acme Trading",
    "recipientAccount": "9876543210",
    "swiftCode": "ABSAZAJJ",
    "provider": "SWIFT",
}


@pytest_asyncio.fixture
async def db_engine():
    """Create a fresh async engine with all tables for each test."""
    engine = create_async_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Provide an async session bound to the test engine."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def kv_store():
    """Fresh key-value store, installed on the app for the duration of the test."""
    store = MemoryKeyValueStore()
    previous = app.state.kv_store
    app.state.kv_store = store
    yield store
    app.state.kv_store = previous


@pytest_asyncio.fixture
async def app_client_factory(session_factory, kv_store):
    """
    Build AsyncClients wired to the test database.

    The first call installs the get_db override; every client is closed and
    the override removed at teardown.
    """
    async def override_get_db():
        async with managed_session(session_factory) as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    clients = []

    async def make(with_csrf: bool = True) -> AsyncClient:
        ac = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(ac)
        if with_csrf:
            response = await ac.get("/csrf-token")
            assert response.status_code == 200, response.text
            ac.headers[settings.CSRF_HEADER_NAME] = response.json()["csrfToken"]
        return ac

    yield make

    for ac in clients:
        await ac.aclose()
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app_client_factory):
    """
    Async HTTP test client with the test database injected.

    Holds a CSRF session: the session cookie is in the client's jar and the
    token is preset as a default header.
    """
    return await app_client_factory()


async def login(ac: AsyncClient, account_number: str, password: str) -> dict:
    response = await ac.post(
        "/auth/login",
        json={"accountNumber": account_number, "password": password},
    )
    assert response.status_code == 200, f"Login failed: {response.text}"
    data = response.json()
    ac.headers["Authorization"] = f"Bearer {data['accessToken']}"
    return data


async def register_and_login(app_client_factory, user: dict, path: str = "/auth/register",
                             registrar: AsyncClient | None = None) -> AsyncClient:
    ac = await app_client_factory()
    response = await (registrar or ac).post(path, json=user)
    assert response.status_code == 201, f"Registration failed: {response.text}"
    ac.user_id = response.json()["user"]["id"]
    await login(ac, user["accountNumber"], user["password"])
    return ac


@pytest_asyncio.fixture
async def customer_client(app_client_factory):
    """Client logged in as a registered Customer (Jane Doe, 12345678)."""
    return await register_and_login(app_client_factory, CUSTOMER)


@pytest_asyncio.fixture
async def second_customer_client(app_client_factory):
    """
    A second Customer for cross-user isolation tests.

    Use alongside customer_client to verify that one customer never sees
    another customer's payments.
    """
    return await register_and_login(app_client_factory, SECOND_CUSTOMER)


@pytest_asyncio.fixture
async def admin_client(app_client_factory):
    """Client logged in as the bootstrap Admin (created via /auth/register-admin)."""
    return await register_and_login(app_client_factory, ADMIN, "/auth/register-admin")


@pytest_asyncio.fixture
async def employee_client(app_client_factory, admin_client):
    """Client logged in as an Employee created by the admin."""
    return await register_and_login(
        app_client_factory, EMPLOYEE, "/auth/register-employee", registrar=admin_client
    )


@pytest_asyncio.fixture
async def expire_lock(session_factory):
    """
    Simulate the lockout window elapsing for an account by moving its
    locked_until into the past directly in the database.
    """
    from datetime import timedelta

    from portal.database import utcnow

    async def _expire(account_number: str) -> None:
        async with session_factory() as session:
            await session.execute(
                update(User)
                .where(User.account_number == account_number)
                .values(locked_until=utcnow() - timedelta(seconds=1))
            )
            await session.commit()

    return _expire


@pytest.fixture
def production_rate_limits(monkeypatch):
    """Restore the production budgets: api 100, login 5, payment 10."""
    monkeypatch.setattr(settings, "API_RATE_LIMIT", 100)
    monkeypatch.setattr(settings, "LOGIN_RATE_LIMIT", 5)
    monkeypatch.setattr(settings, "PAYMENT_RATE_LIMIT", 10)
