"""
Tests for the request guard pipeline (portal.dependencies.RequestGuard).

These tests verify:
  - State-changing requests without a matching CSRF token get 403
  - Login is limited to 5 attempts per IP per window (429 + Retry-After)
  - Payment creation is limited to 10 per IP per window
  - Request bodies are sanitized before validation (HTML stripped,
    operator keys dropped)
  - Role checks: customers can't reach staff endpoints; admins pass everywhere
  - Violations are written to the audit trail
"""

from sqlalchemy import select

from conftest import CUSTOMER, PAYMENT
from portal.config import settings
from portal.models.audit_event import AuditEvent


async def _event_types(db_session) -> list[str]:
    return (await db_session.execute(select(AuditEvent.event_type))).scalars().all()


class TestCsrf:
    """Tests for GET /csrf-token and the X-CSRF-Token check."""

    async def test_missing_header_rejected(self, app_client_factory, db_session):
        ac = await app_client_factory(with_csrf=False)
        response = await ac.post("/auth/register", json=CUSTOMER)

        assert response.status_code == 403
        assert response.json()["error_type"] == "invalid_csrf"
        assert "CSRF_VIOLATION" in await _event_types(db_session)

    async def test_wrong_token_rejected(self, client):
        response = await client.post(
            "/auth/register", json=CUSTOMER, headers={settings.CSRF_HEADER_NAME: "forged"}
        )
        assert response.status_code == 403

    async def test_token_without_session_cookie_rejected(self, client, app_client_factory):
        """A token stolen from another session is useless without that session's cookie."""
        other = await app_client_factory(with_csrf=False)
        response = await other.post(
            "/auth/register",
            json=CUSTOMER,
            headers={settings.CSRF_HEADER_NAME: client.headers[settings.CSRF_HEADER_NAME]},
        )
        assert response.status_code == 403

    async def test_token_reused_within_session(self, client):
        first = client.headers[settings.CSRF_HEADER_NAME]
        response = await client.get("/csrf-token")
        assert response.status_code == 200
        assert response.json()["csrfToken"] == first

    async def test_safe_methods_need_no_token(self, customer_client):
        del customer_client.headers[settings.CSRF_HEADER_NAME]
        response = await customer_client.get("/payments")
        assert response.status_code == 200


class TestRateLimits:

    async def test_login_limited_per_ip(self, client, production_rate_limits, db_session):
        """The sixth login attempt from one IP within the window gets 429."""
        await client.post("/auth/register", json=CUSTOMER)

        for _ in range(5):
            response = await client.post(
                "/auth/login",
                json={"accountNumber": "55555555", "password": "Wr0ng!Pass"},
            )
            assert response.status_code == 401

        response = await client.post(
            "/auth/login",
            json={"accountNumber": CUSTOMER["accountNumber"], "password": CUSTOMER["password"]},
        )
        assert response.status_code == 429
        assert response.json()["error_type"] == "rate_limited"
        assert 0 < int(response.headers["Retry-After"]) <= settings.LOGIN_RATE_WINDOW_SECONDS
        assert "RATE_LIMIT_EXCEEDED" in await _event_types(db_session)

    async def test_payment_creation_limited(self, customer_client, production_rate_limits):
        for _ in range(10):
            response = await customer_client.post("/payments", json=PAYMENT)
            assert response.status_code == 201

        response = await customer_client.post("/payments", json=PAYMENT)
        assert response.status_code == 429

        # Reads only count against the general api bucket
        assert (await customer_client.get("/payments")).status_code == 200

    async def test_api_bucket_covers_every_route(self, client, monkeypatch):
        monkeypatch.setattr(settings, "API_RATE_LIMIT", 2)
        # The client fixture already spent one hit on /csrf-token
        assert (await client.get("/csrf-token")).status_code == 200
        response = await client.get("/csrf-token")
        assert response.status_code == 429


class TestSanitization:

    async def test_script_tags_stripped(self, customer_client):
        response = await customer_client.post(
            "/payments",
            json={
                **PAYMENT,
                "recipientName": "<script>alert('x')</script>Acme <b>Trading</b>",
                "description": "<img src=x onerror=alert(1)>Invoice 42",
            },
        )
        assert response.status_code == 201
        payment = response.json()["payment"]
        assert payment["recipientName"] == "Acme Trading"
        assert payment["description"] == "Invoice 42"

    async def test_operator_keys_dropped(self, client):
        """{"$gt": ""} is removed, leaving an object that fails validation."""
        response = await client.post(
            "/auth/login",
            json={"accountNumber": {"$gt": ""}, "password": CUSTOMER["password"]},
        )
        assert response.status_code == 400
        assert response.json()["error_type"] == "validation_error"

    async def test_invalid_json(self, client):
        response = await client.post(
            "/auth/login",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["errors"] == ["Request body must be valid JSON"]


class TestRoles:

    async def test_customer_cannot_list_pending(self, customer_client, db_session):
        response = await customer_client.get("/transactions/pending")
        assert response.status_code == 403
        assert "ACCESS_DENIED" in await _event_types(db_session)

    async def test_customer_cannot_reach_admin(self, customer_client):
        response = await customer_client.get("/admin/locked-accounts")
        assert response.status_code == 403

    async def test_employee_cannot_reach_admin(self, employee_client):
        response = await employee_client.get("/admin/locked-accounts")
        assert response.status_code == 403

    async def test_employee_cannot_create_payment(self, employee_client):
        response = await employee_client.post("/payments", json=PAYMENT)
        assert response.status_code == 403

    async def test_admin_passes_every_role_check(self, admin_client):
        assert (await admin_client.get("/transactions/pending")).status_code == 200
        assert (await admin_client.get("/payments")).status_code == 200

        response = await admin_client.post("/payments", json=PAYMENT)
        assert response.status_code == 201

    async def test_unauthenticated_staff_endpoint(self, client):
        response = await client.get("/transactions/pending")
        assert response.status_code == 401
